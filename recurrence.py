import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from business_days import BusinessDayCalculator
from config import get_settings
from models import (
    DateAdjustmentPolicy,
    ObligationDefinition,
    Occurrence,
    OccurrenceStatus,
)
from patterns import resolve
from periods import YearMonth, add_months, month_start

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 600
DEFAULT_HORIZON_MONTHS = 36
# A pattern that does not exist in a month (Fixed(31) in April) moves on to the
# next period; give up after a year of misses.
MAX_PATTERN_SKIPS = 12


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


@dataclass(frozen=True)
class ScheduleTarget:
    scheduled_date: date
    expected_amount: Decimal


class LockedOccurrence:
    """Read-only view of a completed or cancelled occurrence."""

    __slots__ = ("_occurrence",)

    def __init__(self, occurrence: Occurrence) -> None:
        if not occurrence.is_locked:
            raise ValueError(f"Occurrence {occurrence.id} is not locked")
        self._occurrence = occurrence

    @property
    def id(self) -> Optional[int]:
        return self._occurrence.id

    @property
    def scheduled_date(self) -> date:
        return self._occurrence.scheduled_date

    @property
    def expected_amount(self) -> Decimal:
        return self._occurrence.expected_amount

    @property
    def status(self) -> OccurrenceStatus:
        return self._occurrence.status

    @property
    def actual_date(self) -> Optional[date]:
        return self._occurrence.actual_date

    @property
    def actual_amount(self) -> Optional[Decimal]:
        return self._occurrence.actual_amount

    @property
    def transaction_id(self) -> Optional[int]:
        return self._occurrence.transaction_id

    def __repr__(self) -> str:
        return f"LockedOccurrence(id={self.id}, scheduled_date={self.scheduled_date})"


class EditableOccurrence:
    """Planned or saving occurrence that synchronization may re-target.

    Changes are staged first and only written to the row by ``commit``, so a plan
    can be inspected completely before anything is applied.
    """

    def __init__(self, occurrence: Occurrence) -> None:
        if occurrence.is_locked:
            raise ValueError(f"Occurrence {occurrence.id} is locked")
        self._occurrence = occurrence
        self._pending: dict[str, object] = {}

    @property
    def id(self) -> Optional[int]:
        return self._occurrence.id

    @property
    def scheduled_date(self) -> date:
        return self._pending.get("scheduled_date", self._occurrence.scheduled_date)

    @property
    def status(self) -> OccurrenceStatus:
        return self._pending.get("status", self._occurrence.status)

    @property
    def is_dirty(self) -> bool:
        return bool(self._pending)

    def stage(self, target: ScheduleTarget, status: OccurrenceStatus) -> bool:
        current = self._occurrence
        if current.expected_amount != target.expected_amount:
            self._pending["expected_amount"] = target.expected_amount
        if current.scheduled_date != target.scheduled_date:
            self._pending["scheduled_date"] = target.scheduled_date
        if current.status != status:
            self._pending["status"] = status
        return self.is_dirty

    def commit(self) -> Occurrence:
        for name, value in self._pending.items():
            setattr(self._occurrence, name, value)
        self._pending.clear()
        return self._occurrence

    @property
    def occurrence(self) -> Occurrence:
        return self._occurrence


@dataclass
class SynchronizationPlan:
    reference_date: date
    created: list[Occurrence] = field(default_factory=list)
    updated: list[EditableOccurrence] = field(default_factory=list)
    removed: list[Occurrence] = field(default_factory=list)
    locked: list[LockedOccurrence] = field(default_factory=list)
    matched: list[EditableOccurrence] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.created or self.updated or self.removed)

    @property
    def occurrences(self) -> list[Occurrence]:
        """Canonical occurrence set once the plan is applied, in date order."""
        entries: list[tuple[date, int, Occurrence]] = []
        for editable in self.matched:
            entries.append((editable.scheduled_date, editable.id or 0, editable.occurrence))
        for occurrence in self.created:
            entries.append((occurrence.scheduled_date, 0, occurrence))
        for view in self.locked:
            entries.append((view.scheduled_date, view.id or 0, view._occurrence))
        entries.sort(key=lambda entry: (entry[0], entry[1]))
        return [entry[2] for entry in entries]

    def apply(self, definition: ObligationDefinition) -> None:
        """Write the whole plan onto ``definition`` in one step.

        Removed occurrences drop out of the owned collection and are deleted as
        orphans when the session flushes.
        """
        final = self.occurrences
        for editable in self.updated:
            editable.commit()
        definition.set_occurrences(final)


class ScheduleEngine:
    def __init__(self, business_days: Optional[BusinessDayCalculator] = None) -> None:
        self.business_days = business_days or BusinessDayCalculator()

    def adjust_for_business_day(
        self, value: date, policy: DateAdjustmentPolicy
    ) -> date:
        if policy == DateAdjustmentPolicy.none:
            return value
        if self.business_days.is_business_day(value):
            return value
        if policy == DateAdjustmentPolicy.move_to_previous_business_day:
            return self.business_days.previous_business_day(value) or value
        return self.business_days.next_business_day(value) or value

    def next_occurrence(
        self,
        current: date,
        definition: ObligationDefinition,
        period: Optional[YearMonth] = None,
    ) -> Optional[date]:
        step = self._advance(current, period or YearMonth.of(current), definition)
        return step[0] if step is not None else None

    def _advance(
        self, current: date, period: YearMonth, definition: ObligationDefinition
    ) -> Optional[tuple[date, YearMonth]]:
        """Next date after ``current`` and the month it was resolved for.

        ``period`` is the month ``current`` belongs to in the schedule. A pattern
        may resolve outside its month (``EndOfMonthMinus(29)`` in February lands
        on Jan 30), so the month cursor moves on its own and every result must be
        strictly later than ``current``.
        """
        interval = definition.recurrence_interval_months
        pattern = definition.day_pattern
        if pattern is None:
            nxt = add_months(
                current, interval, desired_day=definition.first_occurrence_date.day
            )
            return nxt, YearMonth.of(nxt)
        month = period
        for _ in range(MAX_PATTERN_SKIPS):
            month = month.shift(interval)
            resolved = resolve(pattern, month.year, month.month, self.business_days)
            if resolved is not None and resolved > current:
                return resolved, month
        return None

    def seed_date(self, definition: ObligationDefinition) -> date:
        first = definition.first_occurrence_date
        completed = [
            o.scheduled_date
            for o in definition.occurrences
            if o.status == OccurrenceStatus.completed
        ]
        if not completed:
            return first
        # The start date was moved before the settled history: regenerate the gap.
        earliest_locked = min(
            o.scheduled_date for o in definition.occurrences if o.is_locked
        )
        if first < earliest_locked:
            return first
        return self.next_occurrence(max(completed), definition) or first

    def generate_targets(
        self,
        definition: ObligationDefinition,
        seed: date,
        reference_date: date,
        horizon_months: int,
    ) -> list[ScheduleTarget]:
        if definition.recurrence_interval_months <= 0:
            return []

        first = definition.first_occurrence_date
        current = max(seed, first)
        reference_start = month_start(reference_date)
        generation_start = min(month_start(first), reference_start)

        period = YearMonth.of(current)
        iterations = 0
        while current < generation_start and iterations < MAX_ITERATIONS:
            step = self._advance(current, period, definition)
            if step is None:
                break
            current, period = step
            iterations += 1

        horizon_end = add_months(reference_start, max(0, horizon_months))
        effective_end = horizon_end
        if definition.end_date is not None:
            effective_end = min(horizon_end, definition.end_date)
        end_boundary = max(effective_end, current)

        policy = definition.date_adjustment_policy
        targets: list[ScheduleTarget] = []
        cursor: Optional[date] = current
        while cursor is not None and cursor <= end_boundary and iterations < MAX_ITERATIONS:
            if definition.end_date is not None and cursor > definition.end_date:
                break
            targets.append(
                ScheduleTarget(
                    scheduled_date=self.adjust_for_business_day(cursor, policy),
                    expected_amount=definition.amount,
                )
            )
            step = self._advance(cursor, period, definition)
            cursor, period = step if step is not None else (None, period)
            iterations += 1

        if iterations >= MAX_ITERATIONS:
            logger.warning(
                f"schedule_iteration_cap: definition_id={definition.id} "
                f"limit={MAX_ITERATIONS}"
            )

        if not targets:
            targets.append(
                ScheduleTarget(
                    scheduled_date=self.adjust_for_business_day(current, policy),
                    expected_amount=definition.amount,
                )
            )
        return targets

    def synchronization_plan(
        self,
        definition: ObligationDefinition,
        reference_date: date,
        horizon_months: int = DEFAULT_HORIZON_MONTHS,
    ) -> SynchronizationPlan:
        """Diff the targets implied by ``definition`` against its occurrences.

        Nothing is mutated here; ``SynchronizationPlan.apply`` writes the result.
        Locked occurrences are only ever seen through ``LockedOccurrence``.
        """
        locked = [LockedOccurrence(o) for o in definition.occurrences if o.is_locked]
        editable = [
            EditableOccurrence(o) for o in definition.occurrences if not o.is_locked
        ]
        plan = SynchronizationPlan(reference_date=reference_date, locked=locked)

        targets = self.generate_targets(
            definition, self.seed_date(definition), reference_date, horizon_months
        )
        if not targets:
            plan.matched = editable
            return plan

        locked_days = {view.scheduled_date for view in locked}
        pending: list[ScheduleTarget] = []
        seen: set[date] = set()
        for target in targets:
            if target.scheduled_date in locked_days or target.scheduled_date in seen:
                continue
            seen.add(target.scheduled_date)
            pending.append(target)

        saving_day = self._saving_day(editable, pending)
        pool = list(editable)
        for target in pending:
            status = (
                OccurrenceStatus.saving
                if target.scheduled_date == saving_day
                else OccurrenceStatus.planned
            )
            match = next(
                (e for e in pool if e.scheduled_date == target.scheduled_date), None
            )
            if match is not None:
                pool.remove(match)
                if match.stage(target, status):
                    plan.updated.append(match)
                plan.matched.append(match)
                continue
            plan.created.append(
                Occurrence(
                    definition_id=definition.id,
                    scheduled_date=target.scheduled_date,
                    expected_amount=target.expected_amount,
                    status=status,
                )
            )

        plan.removed = [e.occurrence for e in pool]
        return plan

    @staticmethod
    def _saving_day(
        editable: list[EditableOccurrence], targets: list[ScheduleTarget]
    ) -> Optional[date]:
        """Day of the single occurrence that accumulates savings.

        The earliest open occurrence that survives this synchronization, or the
        first new target when none does.
        """
        target_days = {t.scheduled_date for t in targets}
        surviving = [e.scheduled_date for e in editable if e.scheduled_date in target_days]
        if surviving:
            return min(surviving)
        if targets:
            return targets[0].scheduled_date
        return None
