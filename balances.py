import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from models import (
    ObligationDefinition,
    Occurrence,
    OccurrenceStatus,
    SavingBalance,
    SavingsGoal,
    SavingsGoalBalance,
    SavingsGoalWithdrawal,
    utcnow,
)
from periods import YearMonth, months_elapsed

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class DifferenceKind(str, Enum):
    overpaid = "overpaid"
    underpaid = "underpaid"
    exact = "exact"


@dataclass(frozen=True)
class PaymentDifference:
    expected: Decimal
    actual: Decimal
    difference: Decimal
    kind: DifferenceKind

    @classmethod
    def between(cls, expected: Decimal, actual: Decimal) -> "PaymentDifference":
        if actual > expected:
            kind = DifferenceKind.overpaid
        elif actual < expected:
            kind = DifferenceKind.underpaid
        else:
            kind = DifferenceKind.exact
        return cls(
            expected=expected, actual=actual, difference=actual - expected, kind=kind
        )


@dataclass(frozen=True)
class BalanceCacheKey:
    owner_id: Optional[int]
    balance_id: Optional[int]
    year: int
    month: int
    start_year: Optional[int]
    start_month: Optional[int]
    owner_version: int
    balance_version: int


@dataclass(frozen=True)
class BalanceSnapshot:
    total_saved_amount: Decimal
    total_out_amount: Decimal
    last_updated_year: int
    last_updated_month: int


@dataclass(frozen=True)
class CacheMetrics:
    hits: int
    misses: int
    invalidations: int


class BalanceCache:
    """Memoised balance recomputations, shared between threads.

    One lock guards the snapshot map and the counters.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshots: dict[BalanceCacheKey, BalanceSnapshot] = {}
        self._hits = 0
        self._misses = 0
        self._invalidations = 0

    def snapshot(self, key: BalanceCacheKey) -> Optional[BalanceSnapshot]:
        with self._lock:
            value = self._snapshots.get(key)
            if value is None:
                self._misses += 1
            else:
                self._hits += 1
            return value

    def store(self, key: BalanceCacheKey, snapshot: BalanceSnapshot) -> None:
        with self._lock:
            self._snapshots[key] = snapshot

    def invalidate(self, balance_id: Optional[int] = None) -> None:
        with self._lock:
            if balance_id is None:
                self._snapshots.clear()
            else:
                self._snapshots = {
                    key: value
                    for key, value in self._snapshots.items()
                    if key.balance_id != balance_id
                }
            self._invalidations += 1
        logger.debug(f"balance_cache_invalidated: balance_id={balance_id}")

    def metrics(self) -> CacheMetrics:
        with self._lock:
            return CacheMetrics(
                hits=self._hits,
                misses=self._misses,
                invalidations=self._invalidations,
            )


def _timestamp(value: Optional[datetime]) -> float:
    return value.timestamp() if value is not None else 0.0


def definition_version(definition: ObligationDefinition) -> int:
    occurrences = definition.occurrences
    latest = max((o.updated_at for o in occurrences if o.updated_at), default=None)
    return hash(
        (
            definition.id,
            _timestamp(definition.updated_at),
            len(occurrences),
            _timestamp(latest),
        )
    )


def goal_version(goal: SavingsGoal) -> int:
    withdrawals = goal.withdrawals
    latest = max((w.updated_at for w in withdrawals if w.updated_at), default=None)
    return hash(
        (goal.id, _timestamp(goal.updated_at), len(withdrawals), _timestamp(latest))
    )


def _balance_version(balance_id: Optional[int]) -> int:
    return hash(("balance", balance_id))


def _start_period(
    start_year: Optional[int], start_month: Optional[int], fallback: YearMonth
) -> YearMonth:
    if start_year is not None and start_month is not None:
        return YearMonth(start_year, start_month)
    return fallback


class BalanceService:
    """Monthly accrual, payments and full recomputation of obligation balances."""

    def __init__(self, cache: Optional[BalanceCache] = None) -> None:
        self.cache = cache or BalanceCache()

    def cache_metrics(self) -> CacheMetrics:
        return self.cache.metrics()

    def invalidate_cache(self, balance_id: Optional[int] = None) -> None:
        self.cache.invalidate(balance_id)

    def record_monthly_savings(
        self, definition: ObligationDefinition, year: int, month: int
    ) -> SavingBalance:
        """Add one month of savings; a second call for the same month is a no-op."""
        monthly = definition.monthly_saving_amount
        balance = definition.balance
        if balance is None:
            balance = SavingBalance(
                definition_id=definition.id,
                total_saved_amount=monthly,
                total_paid_amount=ZERO,
                last_updated_year=year,
                last_updated_month=month,
            )
            definition.balance = balance
            self.cache.invalidate(balance.id)
            return balance

        if balance.last_updated_year == year and balance.last_updated_month == month:
            return balance

        balance.total_saved_amount = balance.total_saved_amount + monthly
        balance.last_updated_year = year
        balance.last_updated_month = month
        balance.updated_at = utcnow()
        self.cache.invalidate(balance.id)
        return balance

    def process_payment(
        self, occurrence: Occurrence, balance: SavingBalance
    ) -> PaymentDifference:
        if occurrence.actual_amount is None:
            return PaymentDifference.between(occurrence.expected_amount, ZERO)
        difference = PaymentDifference.between(
            occurrence.expected_amount, occurrence.actual_amount
        )
        balance.total_paid_amount = balance.total_paid_amount + occurrence.actual_amount
        balance.updated_at = utcnow()
        self.cache.invalidate(balance.id)
        return difference

    def recalculate_balance(
        self,
        definition: ObligationDefinition,
        balance: SavingBalance,
        year: int,
        month: int,
        start_year: Optional[int] = None,
        start_month: Optional[int] = None,
    ) -> SavingBalance:
        """Rebuild ``balance`` from the definition's full history.

        Saved is one monthly amount for every month from the start period through
        ``year``/``month`` inclusive; paid is the sum of completed actual amounts.
        Without an explicit start the month the definition was created is used.
        """
        key = BalanceCacheKey(
            owner_id=definition.id,
            balance_id=balance.id,
            year=year,
            month=month,
            start_year=start_year,
            start_month=start_month,
            owner_version=definition_version(definition),
            balance_version=_balance_version(balance.id),
        )
        snapshot = self.cache.snapshot(key)
        if snapshot is None:
            fallback = (
                YearMonth.of(definition.created_at)
                if definition.created_at is not None
                else YearMonth.of(definition.first_occurrence_date)
            )
            start = _start_period(start_year, start_month, fallback)
            elapsed = months_elapsed(start, YearMonth(year, month))
            total_paid = sum(
                (
                    o.actual_amount or ZERO
                    for o in definition.occurrences
                    if o.status == OccurrenceStatus.completed
                ),
                ZERO,
            )
            snapshot = BalanceSnapshot(
                total_saved_amount=definition.monthly_saving_amount * elapsed,
                total_out_amount=total_paid,
                last_updated_year=year,
                last_updated_month=month,
            )
            self.cache.store(key, snapshot)

        balance.total_saved_amount = snapshot.total_saved_amount
        balance.total_paid_amount = snapshot.total_out_amount
        balance.last_updated_year = snapshot.last_updated_year
        balance.last_updated_month = snapshot.last_updated_month
        balance.updated_at = utcnow()
        return balance


class SavingsGoalBalanceService:
    def __init__(self, cache: Optional[BalanceCache] = None) -> None:
        self.cache = cache or BalanceCache()

    def cache_metrics(self) -> CacheMetrics:
        return self.cache.metrics()

    def record_monthly_savings(
        self, goal: SavingsGoal, year: int, month: int
    ) -> SavingsGoalBalance:
        balance = goal.balance
        if balance is None:
            balance = SavingsGoalBalance(
                goal_id=goal.id,
                total_saved_amount=goal.monthly_saving_amount,
                total_withdrawn_amount=ZERO,
                last_updated_year=year,
                last_updated_month=month,
            )
            goal.balance = balance
            self.cache.invalidate(balance.id)
            return balance

        if balance.last_updated_year == year and balance.last_updated_month == month:
            return balance

        balance.total_saved_amount = balance.total_saved_amount + goal.monthly_saving_amount
        balance.last_updated_year = year
        balance.last_updated_month = month
        balance.updated_at = utcnow()
        self.cache.invalidate(balance.id)
        return balance

    def process_withdrawal(
        self, withdrawal: SavingsGoalWithdrawal, balance: SavingsGoalBalance
    ) -> Decimal:
        """Book ``withdrawal`` against ``balance`` and return what is left."""
        balance.total_withdrawn_amount = balance.total_withdrawn_amount + withdrawal.amount
        balance.updated_at = utcnow()
        self.cache.invalidate(balance.id)
        return balance.balance

    def recalculate_balance(
        self,
        goal: SavingsGoal,
        balance: SavingsGoalBalance,
        year: int,
        month: int,
        start_year: Optional[int] = None,
        start_month: Optional[int] = None,
    ) -> SavingsGoalBalance:
        key = BalanceCacheKey(
            owner_id=goal.id,
            balance_id=balance.id,
            year=year,
            month=month,
            start_year=start_year,
            start_month=start_month,
            owner_version=goal_version(goal),
            balance_version=_balance_version(balance.id),
        )
        snapshot = self.cache.snapshot(key)
        if snapshot is None:
            start = _start_period(start_year, start_month, YearMonth.of(goal.start_date))
            elapsed = months_elapsed(start, YearMonth(year, month))
            total_withdrawn = sum((w.amount for w in goal.withdrawals), ZERO)
            snapshot = BalanceSnapshot(
                total_saved_amount=goal.monthly_saving_amount * elapsed,
                total_out_amount=total_withdrawn,
                last_updated_year=year,
                last_updated_month=month,
            )
            self.cache.store(key, snapshot)

        balance.total_saved_amount = snapshot.total_saved_amount
        balance.total_withdrawn_amount = snapshot.total_out_amount
        balance.last_updated_year = snapshot.last_updated_year
        balance.last_updated_month = snapshot.last_updated_month
        balance.updated_at = utcnow()
        return balance
