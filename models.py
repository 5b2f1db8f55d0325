import json
import datetime as dt
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from database import Base
from patterns import AnyPattern, pattern_from_dict, pattern_to_dict
from periods import YearMonth


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SavingStrategy(str, Enum):
    disabled = "disabled"
    evenly_distributed = "evenly_distributed"
    custom_monthly = "custom_monthly"


class OccurrenceStatus(str, Enum):
    planned = "planned"
    saving = "saving"
    completed = "completed"
    cancelled = "cancelled"


LOCKED_STATUSES = frozenset({OccurrenceStatus.completed, OccurrenceStatus.cancelled})


class DateAdjustmentPolicy(str, Enum):
    none = "none"
    move_to_previous_business_day = "move_to_previous_business_day"
    move_to_next_business_day = "move_to_next_business_day"


class Money(TypeDecorator):
    """Exact decimal stored as canonical text so no backend rounds it."""

    impl = String(40)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(Decimal(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class PatternType(TypeDecorator):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return json.dumps(pattern_to_dict(value), sort_keys=True)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return pattern_from_dict(json.loads(value))


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))

    __table_args__ = (Index("ix_transactions_date", "date"),)

    @property
    def absolute_amount(self) -> Decimal:
        return abs(self.amount)


class ObligationDefinition(Base, TimestampMixin):
    __tablename__ = "obligation_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    recurrence_interval_months: Mapped[int] = mapped_column(Integer, nullable=False)
    first_occurrence_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    lead_time_months: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    saving_strategy: Mapped[SavingStrategy] = mapped_column(
        SAEnum(SavingStrategy),
        nullable=False,
        default=SavingStrategy.evenly_distributed,
    )
    custom_monthly_saving_amount: Mapped[Optional[Decimal]] = mapped_column(Money)
    date_adjustment_policy: Mapped[DateAdjustmentPolicy] = mapped_column(
        SAEnum(DateAdjustmentPolicy),
        nullable=False,
        default=DateAdjustmentPolicy.none,
    )
    day_pattern: Mapped[Optional[AnyPattern]] = mapped_column(PatternType)

    occurrences: Mapped[list["Occurrence"]] = relationship(
        "Occurrence",
        cascade="all, delete-orphan",
        order_by="Occurrence.scheduled_date",
    )
    balance: Mapped[Optional["SavingBalance"]] = relationship(
        "SavingBalance",
        cascade="all, delete-orphan",
        uselist=False,
    )
    category: Mapped[Optional["Category"]] = relationship("Category")

    @property
    def monthly_saving_amount(self) -> Decimal:
        if self.saving_strategy == SavingStrategy.disabled:
            return Decimal("0")
        if self.saving_strategy == SavingStrategy.custom_monthly:
            return self.custom_monthly_saving_amount or Decimal("0")
        if self.recurrence_interval_months <= 0:
            return Decimal("0")
        return Decimal(self.amount) / Decimal(self.recurrence_interval_months)

    @property
    def recurrence_description(self) -> str:
        interval = self.recurrence_interval_months
        if interval <= 0:
            return "not set"
        years, months = divmod(interval, 12)
        parts = []
        if years:
            parts.append(f"{years} year" + ("s" if years > 1 else ""))
        if months:
            parts.append(f"{months} month" + ("s" if months > 1 else ""))
        return " ".join(parts)

    def next_occurrence_date(self, today: dt.date) -> dt.date:
        dates = [o.scheduled_date for o in self.occurrences]
        upcoming = [d for d in dates if d >= today]
        if upcoming:
            return min(upcoming)
        if dates:
            return min(dates)
        return self.first_occurrence_date

    def set_occurrences(self, occurrences: list["Occurrence"]) -> None:
        """Replace the owned occurrences, always in scheduled-date order."""
        self.occurrences = sorted(occurrences, key=lambda o: (o.scheduled_date, o.id or 0))

    def validate(self) -> list[str]:
        errors: list[str] = []
        if not (self.name or "").strip():
            errors.append("Name is required")
        if self.amount is None or self.amount <= 0:
            errors.append("Amount must be greater than zero")
        if (self.recurrence_interval_months or 0) <= 0:
            errors.append("Recurrence interval must be at least one month")
        if (self.lead_time_months or 0) < 0:
            errors.append("Lead time cannot be negative")
        if self.saving_strategy == SavingStrategy.custom_monthly:
            if self.custom_monthly_saving_amount is None:
                errors.append("Custom monthly saving amount is required")
            elif self.custom_monthly_saving_amount <= 0:
                errors.append("Custom monthly saving amount must be greater than zero")
        elif self.custom_monthly_saving_amount is not None:
            errors.append(
                "Custom monthly saving amount is only allowed with the custom strategy"
            )
        if self.end_date is not None and self.end_date < self.first_occurrence_date:
            errors.append("End date must not be before the first occurrence")
        return errors


class Occurrence(Base, TimestampMixin):
    __tablename__ = "occurrences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    definition_id: Mapped[int] = mapped_column(
        ForeignKey("obligation_definitions.id", ondelete="CASCADE"), nullable=False
    )
    scheduled_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    expected_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[OccurrenceStatus] = mapped_column(
        SAEnum(OccurrenceStatus), nullable=False, default=OccurrenceStatus.planned
    )
    actual_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    actual_amount: Mapped[Optional[Decimal]] = mapped_column(Money)
    transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL")
    )

    __table_args__ = (
        Index("ix_occurrences_definition_date", "definition_id", "scheduled_date"),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == OccurrenceStatus.completed

    @property
    def is_locked(self) -> bool:
        return self.status in LOCKED_STATUSES

    def is_overdue(self, today: dt.date) -> bool:
        return not self.is_completed and self.scheduled_date < today

    @property
    def remaining_amount(self) -> Decimal:
        if self.actual_amount is None:
            return self.expected_amount
        return max(Decimal("0"), self.expected_amount - self.actual_amount)

    def validate(self, actual_date_tolerance_days: int = 90) -> list[str]:
        errors: list[str] = []
        if self.expected_amount is None or self.expected_amount <= 0:
            errors.append("Expected amount must be greater than zero")
        if self.status == OccurrenceStatus.completed:
            if self.actual_amount is None:
                errors.append("Completed occurrences need an actual amount")
            if self.actual_date is None:
                errors.append("Completed occurrences need an actual date")
        if self.actual_amount is not None and self.actual_amount <= 0:
            errors.append("Actual amount must be greater than zero")
        if self.actual_date is not None:
            drift = (self.actual_date - self.scheduled_date).days
            if abs(drift) > actual_date_tolerance_days:
                errors.append(
                    f"Actual date is {drift} days away from the scheduled date"
                )
        return errors


class SavingBalance(Base, TimestampMixin):
    __tablename__ = "saving_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    definition_id: Mapped[int] = mapped_column(
        ForeignKey("obligation_definitions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    total_saved_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )
    total_paid_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )
    last_updated_year: Mapped[int] = mapped_column(Integer, nullable=False)
    last_updated_month: Mapped[int] = mapped_column(Integer, nullable=False)

    @property
    def balance(self) -> Decimal:
        return self.total_saved_amount - self.total_paid_amount

    @property
    def is_insufficient(self) -> bool:
        return self.balance < 0

    @property
    def last_updated(self) -> YearMonth:
        return YearMonth(self.last_updated_year, self.last_updated_month)


class SavingsGoal(Base, TimestampMixin):
    __tablename__ = "savings_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_amount: Mapped[Optional[Decimal]] = mapped_column(Money)
    monthly_saving_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    target_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))

    withdrawals: Mapped[list["SavingsGoalWithdrawal"]] = relationship(
        "SavingsGoalWithdrawal",
        cascade="all, delete-orphan",
        order_by="SavingsGoalWithdrawal.withdrawn_on",
    )
    balance: Mapped[Optional["SavingsGoalBalance"]] = relationship(
        "SavingsGoalBalance",
        cascade="all, delete-orphan",
        uselist=False,
    )

    def validate(self) -> list[str]:
        errors: list[str] = []
        if not (self.name or "").strip():
            errors.append("Name is required")
        if self.monthly_saving_amount is None or self.monthly_saving_amount < 0:
            errors.append("Monthly saving amount cannot be negative")
        if self.target_amount is not None and self.target_amount < 0:
            errors.append("Target amount cannot be negative")
        if self.target_date is not None and self.target_date < self.start_date:
            errors.append("Target date must not be before the start date")
        return errors


class SavingsGoalWithdrawal(Base, TimestampMixin):
    __tablename__ = "savings_goal_withdrawals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    goal_id: Mapped[int] = mapped_column(
        ForeignKey("savings_goals.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    withdrawn_on: Mapped[dt.date] = mapped_column(Date, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)


class SavingsGoalBalance(Base, TimestampMixin):
    __tablename__ = "savings_goal_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    goal_id: Mapped[int] = mapped_column(
        ForeignKey("savings_goals.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    total_saved_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )
    total_withdrawn_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )
    last_updated_year: Mapped[int] = mapped_column(Integer, nullable=False)
    last_updated_month: Mapped[int] = mapped_column(Integer, nullable=False)

    @property
    def balance(self) -> Decimal:
        return self.total_saved_amount - self.total_withdrawn_amount


class CustomHoliday(Base, TimestampMixin):
    __tablename__ = "custom_holidays"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("date", "name", name="uq_custom_holiday_date_name"),
    )


