from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from functools import lru_cache
from typing import Callable, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from balances import (
    BalanceCache,
    BalanceService,
    CacheMetrics,
    PaymentDifference,
    SavingsGoalBalanceService,
)
from business_days import (
    BusinessDayCalculator,
    CustomHolidayProvider,
    StaticHolidayProvider,
    invalidate_holiday_caches,
)
from config import get_settings
from database import write_lock
from detection import DetectionCriteria, DetectionService, Suggestion
from models import (
    Category,
    CustomHoliday,
    ObligationDefinition,
    Occurrence,
    OccurrenceStatus,
    SavingBalance,
    SavingsGoal,
    SavingsGoalBalance,
    SavingsGoalWithdrawal,
    Transaction,
    utcnow,
)
from periods import YearMonth, add_months
from recurrence import DEFAULT_HORIZON_MONTHS, ScheduleEngine, local_today
from schemas import (
    CategoryIn,
    CustomHolidayIn,
    DefinitionIn,
    OccurrenceCompletionIn,
    OccurrenceUpdateIn,
    SavingsGoalIn,
    SynchronizationSummary,
    TransactionIn,
    WithdrawalIn,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], date]


class ObligationError(ValueError):
    pass


class InvalidRecurrence(ObligationError):
    def __init__(self) -> None:
        super().__init__("Recurrence interval must be at least one month")


class InvalidHorizon(ObligationError):
    def __init__(self, horizon_months: int) -> None:
        super().__init__(f"Horizon cannot be negative: {horizon_months}")
        self.horizon_months = horizon_months


class NotFound(ObligationError):
    pass


class ValidationFailed(ObligationError):
    def __init__(self, messages: list[str]) -> None:
        super().__init__("; ".join(messages))
        self.messages = list(messages)


class CategoryNotFound(NotFound):
    def __init__(self) -> None:
        super().__init__("Category not found")


class DefinitionNotFound(NotFound):
    def __init__(self) -> None:
        super().__init__("Definition not found")


class OccurrenceNotFound(NotFound):
    def __init__(self) -> None:
        super().__init__("Occurrence not found")


class TransactionNotFound(NotFound):
    def __init__(self) -> None:
        super().__init__("Transaction not found")


@lru_cache(maxsize=1)
def default_balance_cache() -> BalanceCache:
    return BalanceCache()


@lru_cache(maxsize=1)
def default_goal_balance_cache() -> BalanceCache:
    return BalanceCache()


def build_business_days(session: Session) -> BusinessDayCalculator:
    settings = get_settings()
    return BusinessDayCalculator(
        providers=[
            StaticHolidayProvider(settings.holidays),
            CustomHolidayProvider(session),
        ]
    )


class ObligationService:
    """Definitions, their occurrences and schedule synchronization."""

    def __init__(
        self,
        session: Session,
        *,
        clock: Optional[Clock] = None,
        engine: Optional[ScheduleEngine] = None,
        cache: Optional[BalanceCache] = None,
    ) -> None:
        self.session = session
        self.clock = clock or local_today
        self.engine = engine or ScheduleEngine(build_business_days(session))
        self.cache = cache or default_balance_cache()

    def get(self, definition_id: int) -> ObligationDefinition:
        definition = self.session.get(ObligationDefinition, definition_id)
        if not definition:
            raise DefinitionNotFound()
        return definition

    def get_occurrence(self, occurrence_id: int) -> Occurrence:
        occurrence = self.session.get(Occurrence, occurrence_id)
        if not occurrence:
            raise OccurrenceNotFound()
        return occurrence

    def list_definitions(
        self,
        search: Optional[str] = None,
        category_ids: Optional[Iterable[int]] = None,
    ) -> list[ObligationDefinition]:
        stmt = (
            select(ObligationDefinition)
            .options(selectinload(ObligationDefinition.occurrences))
            .order_by(ObligationDefinition.name, ObligationDefinition.id)
        )
        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            stmt = stmt.where(func.lower(ObligationDefinition.name).like(pattern))
        ids = list(category_ids or [])
        if ids:
            stmt = stmt.where(ObligationDefinition.category_id.in_(ids))
        return list(self.session.scalars(stmt).all())

    def list_occurrences(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        statuses: Optional[Iterable[OccurrenceStatus]] = None,
        definition_ids: Optional[Iterable[int]] = None,
    ) -> list[Occurrence]:
        stmt = select(Occurrence).order_by(Occurrence.scheduled_date, Occurrence.id)
        if start:
            stmt = stmt.where(Occurrence.scheduled_date >= start)
        if end:
            stmt = stmt.where(Occurrence.scheduled_date <= end)
        status_list = list(statuses or [])
        if status_list:
            stmt = stmt.where(Occurrence.status.in_(status_list))
        id_list = list(definition_ids or [])
        if id_list:
            stmt = stmt.where(Occurrence.definition_id.in_(id_list))
        return list(self.session.scalars(stmt).all())

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is not None and not self.session.get(Category, category_id):
            raise CategoryNotFound()

    @staticmethod
    def _assign(definition: ObligationDefinition, data: DefinitionIn) -> None:
        for field, value in data.model_dump(exclude={"day_pattern"}).items():
            setattr(definition, field, value)
        definition.name = (data.name or "").strip()
        definition.day_pattern = data.day_pattern

    def create_definition(
        self, data: DefinitionIn, horizon_months: int = DEFAULT_HORIZON_MONTHS
    ) -> int:
        definition = ObligationDefinition()
        self._assign(definition, data)
        errors = definition.validate()
        if errors:
            raise ValidationFailed(errors)
        self._check_category(data.category_id)

        with write_lock(self.session):
            try:
                self.session.add(definition)
                self.session.flush()
                summary = self._synchronize(definition, horizon_months, self.clock())
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        logger.info(
            f"definition_created: id={definition.id} "
            f"occurrences={summary.created_count}"
        )
        return definition.id

    def update_definition(
        self,
        definition_id: int,
        data: DefinitionIn,
        horizon_months: int = DEFAULT_HORIZON_MONTHS,
    ) -> ObligationDefinition:
        with write_lock(self.session):
            definition = self.get(definition_id)
            self._check_category(data.category_id)
            try:
                self._assign(definition, data)
                errors = definition.validate()
                if errors:
                    raise ValidationFailed(errors)
                definition.updated_at = utcnow()
                self.session.flush()
                self._synchronize(definition, horizon_months, self.clock())
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
            self.cache.invalidate(definition.balance.id if definition.balance else None)
        self.session.refresh(definition)
        logger.info(f"definition_updated: id={definition.id}")
        return definition

    def delete_definition(self, definition_id: int) -> None:
        with write_lock(self.session):
            definition = self.get(definition_id)
            balance_id = definition.balance.id if definition.balance else None
            self.session.delete(definition)
            try:
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
            if balance_id is not None:
                self.cache.invalidate(balance_id)
        logger.info(f"definition_deleted: id={definition_id}")

    def synchronize(
        self,
        definition_id: int,
        horizon_months: int = DEFAULT_HORIZON_MONTHS,
        reference_date: Optional[date] = None,
    ) -> SynchronizationSummary:
        with write_lock(self.session):
            definition = self.get(definition_id)
            try:
                summary = self._synchronize(
                    definition, horizon_months, reference_date or self.clock()
                )
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        return summary

    def _synchronize(
        self,
        definition: ObligationDefinition,
        horizon_months: int,
        reference_date: date,
    ) -> SynchronizationSummary:
        """Compute the full plan, then apply it in one step. The caller commits."""
        if definition.recurrence_interval_months <= 0:
            raise InvalidRecurrence()
        if horizon_months < 0:
            raise InvalidHorizon(horizon_months)

        plan = self.engine.synchronization_plan(
            definition, reference_date, horizon_months
        )
        if plan.has_changes:
            plan.apply(definition)
            self.session.flush()
            if definition.balance is not None:
                self.cache.invalidate(definition.balance.id)
        summary = SynchronizationSummary(
            created_count=len(plan.created),
            updated_count=len(plan.updated),
            removed_count=len(plan.removed),
            synced_at=utcnow(),
        )
        logger.info(
            f"synchronize: definition_id={definition.id} "
            f"reference={reference_date.isoformat()} horizon={horizon_months} "
            f"created={summary.created_count} updated={summary.updated_count} "
            f"removed={summary.removed_count} locked={len(plan.locked)}"
        )
        return summary

    def _resolve_transaction(self, transaction_id: Optional[int]) -> None:
        if transaction_id is not None and not self.session.get(
            Transaction, transaction_id
        ):
            raise TransactionNotFound()

    @staticmethod
    def _validate_occurrence(
        occurrence: Occurrence,
        status: OccurrenceStatus,
        actual_date: Optional[date],
        actual_amount: Optional[Decimal],
    ) -> list[str]:
        # Validate a detached copy so a rejected edit leaves the row untouched.
        candidate = Occurrence(
            scheduled_date=occurrence.scheduled_date,
            expected_amount=occurrence.expected_amount,
            status=status,
            actual_date=actual_date,
            actual_amount=actual_amount,
        )
        tolerance = get_settings().actual_date_tolerance_days
        return candidate.validate(actual_date_tolerance_days=tolerance)

    def mark_completed(
        self,
        occurrence_id: int,
        data: OccurrenceCompletionIn,
        horizon_months: int = DEFAULT_HORIZON_MONTHS,
    ) -> SynchronizationSummary:
        with write_lock(self.session):
            occurrence = self.get_occurrence(occurrence_id)
            self._resolve_transaction(data.transaction_id)
            errors = self._validate_occurrence(
                occurrence,
                OccurrenceStatus.completed,
                data.actual_date,
                data.actual_amount,
            )
            if errors:
                raise ValidationFailed(errors)

            try:
                occurrence.status = OccurrenceStatus.completed
                occurrence.actual_date = data.actual_date
                occurrence.actual_amount = data.actual_amount
                occurrence.transaction_id = data.transaction_id
                self.session.flush()
                definition = self.get(occurrence.definition_id)
                summary = self._synchronize(definition, horizon_months, self.clock())
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        logger.info(
            f"occurrence_completed: id={occurrence_id} "
            f"definition_id={occurrence.definition_id}"
        )
        return summary

    def update_occurrence(
        self,
        occurrence_id: int,
        data: OccurrenceUpdateIn,
        horizon_months: int = DEFAULT_HORIZON_MONTHS,
    ) -> Optional[SynchronizationSummary]:
        """Edit status and actuals; re-synchronize only when completion flips."""
        with write_lock(self.session):
            occurrence = self.get_occurrence(occurrence_id)
            self._resolve_transaction(data.transaction_id)
            errors = self._validate_occurrence(
                occurrence, data.status, data.actual_date, data.actual_amount
            )
            if errors:
                raise ValidationFailed(errors)

            was_completed = occurrence.is_completed
            will_be_completed = data.status == OccurrenceStatus.completed
            try:
                occurrence.status = data.status
                occurrence.actual_date = data.actual_date
                occurrence.actual_amount = data.actual_amount
                occurrence.transaction_id = data.transaction_id
                self.session.flush()
                summary = None
                if was_completed != will_be_completed:
                    definition = self.get(occurrence.definition_id)
                    summary = self._synchronize(
                        definition, horizon_months, self.clock()
                    )
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        return summary

    def synchronize_all(
        self, horizon_months: int = DEFAULT_HORIZON_MONTHS
    ) -> int:
        """Synchronize every definition with a valid interval; returns how many changed."""
        ids = self.session.scalars(
            select(ObligationDefinition.id).where(
                ObligationDefinition.recurrence_interval_months > 0
            )
        ).all()
        changed = 0
        for definition_id in ids:
            summary = self.synchronize(definition_id, horizon_months)
            if summary.created_count or summary.updated_count or summary.removed_count:
                changed += 1
        return changed


class SuggestionService:
    def __init__(self, session: Session, *, clock: Optional[Clock] = None) -> None:
        self.session = session
        self.clock = clock or local_today

    def detect_suggestions(
        self, criteria: Optional[DetectionCriteria] = None
    ) -> list[Suggestion]:
        """Read-only: proposes definitions from recent transactions."""
        criteria = criteria or DetectionCriteria.from_settings()
        today = self.clock()
        since = add_months(today, -12 * criteria.lookback_years)
        transactions = self.session.scalars(
            select(Transaction)
            .where(Transaction.date >= since, Transaction.date <= today)
            .order_by(Transaction.date, Transaction.id)
        ).all()
        definitions = self.session.scalars(select(ObligationDefinition)).all()
        suggestions = DetectionService(criteria).detect(transactions, definitions)
        logger.info(
            f"detect_suggestions: transactions={len(transactions)} "
            f"suggestions={len(suggestions)}"
        )
        return suggestions


class SavingsService:
    """Balance bookkeeping for obligations, on top of ``BalanceService``."""

    def __init__(
        self, session: Session, *, cache: Optional[BalanceCache] = None
    ) -> None:
        self.session = session
        self.balances = BalanceService(cache or default_balance_cache())

    def _definition(self, definition_id: int) -> ObligationDefinition:
        definition = self.session.get(ObligationDefinition, definition_id)
        if not definition:
            raise DefinitionNotFound()
        return definition

    def get_balance(self, definition_id: int) -> Optional[SavingBalance]:
        return self._definition(definition_id).balance

    def record_monthly_savings(self, year: int, month: int) -> int:
        """Accrue one month for every definition; already recorded months are skipped."""
        with write_lock(self.session):
            definitions = self.session.scalars(select(ObligationDefinition)).all()
            try:
                for definition in definitions:
                    self.balances.record_monthly_savings(definition, year, month)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        logger.info(
            f"record_monthly_savings: period={YearMonth(year, month)} "
            f"definitions={len(definitions)}"
        )
        return len(definitions)

    def recalculate(
        self,
        definition_id: int,
        year: int,
        month: int,
        start_year: Optional[int] = None,
        start_month: Optional[int] = None,
    ) -> SavingBalance:
        with write_lock(self.session):
            definition = self._definition(definition_id)
            balance = definition.balance
            if balance is None:
                balance = SavingBalance(
                    definition_id=definition.id,
                    last_updated_year=year,
                    last_updated_month=month,
                )
                definition.balance = balance
                self.session.flush()
            self.balances.recalculate_balance(
                definition, balance, year, month, start_year, start_month
            )
            try:
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        return balance

    def apply_payment(self, occurrence_id: int) -> PaymentDifference:
        with write_lock(self.session):
            occurrence = self.session.get(Occurrence, occurrence_id)
            if not occurrence:
                raise OccurrenceNotFound()
            if not occurrence.is_completed:
                raise ValidationFailed(
                    ["Only completed occurrences can be booked as payments"]
                )
            definition = self._definition(occurrence.definition_id)
            try:
                balance = definition.balance
                if balance is None:
                    today = YearMonth.of(
                        occurrence.actual_date or occurrence.scheduled_date
                    )
                    balance = SavingBalance(
                        definition_id=definition.id,
                        total_saved_amount=Decimal("0"),
                        total_paid_amount=Decimal("0"),
                        last_updated_year=today.year,
                        last_updated_month=today.month,
                    )
                    definition.balance = balance
                    self.session.flush()
                difference = self.balances.process_payment(occurrence, balance)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        logger.info(
            f"payment_applied: occurrence_id={occurrence_id} "
            f"kind={difference.kind.value} difference={difference.difference}"
        )
        return difference

    def monthly_allocation(
        self, year: int, month: int
    ) -> tuple[Decimal, dict[Optional[int], Decimal]]:
        """Total monthly saving for ``year``/``month``, also split by category.

        Definitions that have not started yet or already ended contribute nothing.
        """
        period = YearMonth(year, month)
        total = Decimal("0")
        by_category: dict[Optional[int], Decimal] = {}
        for definition in self.session.scalars(select(ObligationDefinition)).all():
            if YearMonth.of(definition.first_occurrence_date) > period:
                continue
            if definition.end_date and YearMonth.of(definition.end_date) < period:
                continue
            amount = definition.monthly_saving_amount
            if amount <= 0:
                continue
            total += amount
            key = definition.category_id
            by_category[key] = by_category.get(key, Decimal("0")) + amount
        return total, by_category

    def cache_metrics(self) -> CacheMetrics:
        return self.balances.cache_metrics()


class SavingsGoalService:
    def __init__(
        self, session: Session, *, cache: Optional[BalanceCache] = None
    ) -> None:
        self.session = session
        self.balances = SavingsGoalBalanceService(cache or default_goal_balance_cache())

    def get(self, goal_id: int) -> SavingsGoal:
        goal = self.session.get(SavingsGoal, goal_id)
        if not goal:
            raise ValueError("Savings goal not found")
        return goal

    def create_goal(self, data: SavingsGoalIn) -> SavingsGoal:
        if data.category_id is not None and not self.session.get(
            Category, data.category_id
        ):
            raise CategoryNotFound()
        goal = SavingsGoal(**data.model_dump())
        goal.name = (data.name or "").strip()
        errors = goal.validate()
        if errors:
            raise ValidationFailed(errors)
        with write_lock(self.session):
            self.session.add(goal)
            self.session.commit()
        self.session.refresh(goal)
        return goal

    def record_monthly_savings(self, year: int, month: int) -> int:
        with write_lock(self.session):
            goals = self.session.scalars(
                select(SavingsGoal).where(SavingsGoal.is_active.is_(True))
            ).all()
            for goal in goals:
                if YearMonth.of(goal.start_date) > YearMonth(year, month):
                    continue
                self.balances.record_monthly_savings(goal, year, month)
            self.session.commit()
        return len(goals)

    def withdraw(self, goal_id: int, data: WithdrawalIn) -> Decimal:
        """Record a withdrawal and return the remaining goal balance."""
        with write_lock(self.session):
            goal = self.get(goal_id)
            withdrawal = SavingsGoalWithdrawal(
                goal_id=goal.id,
                amount=data.amount,
                withdrawn_on=data.withdrawn_on,
                note=data.note,
            )
            goal.withdrawals.append(withdrawal)
            if goal.balance is None:
                period = YearMonth.of(data.withdrawn_on)
                self.balances.recalculate_balance(
                    goal,
                    self._empty_balance(goal, period),
                    period.year,
                    period.month,
                )
                remaining = goal.balance.balance
            else:
                remaining = self.balances.process_withdrawal(withdrawal, goal.balance)
            self.session.commit()
        logger.info(f"goal_withdrawal: goal_id={goal_id} remaining={remaining}")
        return remaining

    def recalculate(
        self,
        goal_id: int,
        year: int,
        month: int,
        start_year: Optional[int] = None,
        start_month: Optional[int] = None,
    ) -> SavingsGoalBalance:
        with write_lock(self.session):
            goal = self.get(goal_id)
            balance = goal.balance or self._empty_balance(goal, YearMonth(year, month))
            self.balances.recalculate_balance(
                goal, balance, year, month, start_year, start_month
            )
            self.session.commit()
        return balance

    def _empty_balance(self, goal: SavingsGoal, period: YearMonth) -> SavingsGoalBalance:
        balance = SavingsGoalBalance(
            goal_id=goal.id,
            total_saved_amount=Decimal("0"),
            total_withdrawn_amount=Decimal("0"),
            last_updated_year=period.year,
            last_updated_month=period.month,
        )
        goal.balance = balance
        self.session.flush()
        return balance


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        return list(self.session.scalars(select(Category).order_by(Category.name)).all())

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(func.lower(Category.name) == data.name.strip().lower())
        )
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(name=data.name.strip())
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, data: TransactionIn) -> Transaction:
        if data.category_id is not None and not self.session.get(
            Category, data.category_id
        ):
            raise CategoryNotFound()
        txn = Transaction(
            title=data.title.strip(),
            amount=data.amount,
            date=data.date,
            category_id=data.category_id,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        """Delete a transaction; occurrences it settled keep their data but lose the link."""
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise TransactionNotFound()
        with write_lock(self.session):
            self.session.execute(
                update(Occurrence)
                .where(Occurrence.transaction_id == transaction_id)
                .values(transaction_id=None)
                .execution_options(synchronize_session="fetch")
            )
            self.session.delete(txn)
            self.session.commit()


class CustomHolidayService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[CustomHoliday]:
        stmt = select(CustomHoliday).order_by(CustomHoliday.date, CustomHoliday.name)
        return list(self.session.scalars(stmt).all())

    def create(self, data: CustomHolidayIn) -> CustomHoliday:
        existing = self.session.scalar(
            select(CustomHoliday).where(
                CustomHoliday.date == data.date,
                CustomHoliday.name == data.name.strip(),
            )
        )
        if existing:
            raise ValueError("Holiday already exists")
        holiday = CustomHoliday(
            date=data.date, name=data.name.strip(), is_recurring=data.is_recurring
        )
        self.session.add(holiday)
        self.session.commit()
        invalidate_holiday_caches()
        self.session.refresh(holiday)
        return holiday

    def delete(self, holiday_id: int) -> None:
        holiday = self.session.get(CustomHoliday, holiday_id)
        if not holiday:
            raise ValueError("Holiday not found")
        self.session.delete(holiday)
        self.session.commit()
        invalidate_holiday_caches()
