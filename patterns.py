from __future__ import annotations

from datetime import date, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from periods import month_end

if TYPE_CHECKING:  # pragma: no cover
    from business_days import BusinessDayCalculator


class Weekday(str, Enum):
    monday = "monday"
    tuesday = "tuesday"
    wednesday = "wednesday"
    thursday = "thursday"
    friday = "friday"
    saturday = "saturday"
    sunday = "sunday"

    @property
    def index(self) -> int:
        """Same numbering as ``date.weekday()`` (Monday is 0)."""
        return list(Weekday).index(self)


class _Pattern(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class Fixed(_Pattern):
    kind: Literal["fixed"] = "fixed"
    day: int = Field(..., ge=1, le=31)


class EndOfMonth(_Pattern):
    kind: Literal["end_of_month"] = "end_of_month"


class EndOfMonthMinus(_Pattern):
    kind: Literal["end_of_month_minus"] = "end_of_month_minus"
    days: int = Field(..., ge=0, le=30)


class NthWeekday(_Pattern):
    kind: Literal["nth_weekday"] = "nth_weekday"
    week: int = Field(..., ge=1, le=5)
    weekday: Weekday


class LastWeekday(_Pattern):
    kind: Literal["last_weekday"] = "last_weekday"
    weekday: Weekday


class FirstBusinessDay(_Pattern):
    kind: Literal["first_business_day"] = "first_business_day"


class LastBusinessDay(_Pattern):
    kind: Literal["last_business_day"] = "last_business_day"


class NthBusinessDay(_Pattern):
    kind: Literal["nth_business_day"] = "nth_business_day"
    n: int = Field(..., ge=1, le=23)


class LastBusinessDayMinus(_Pattern):
    kind: Literal["last_business_day_minus"] = "last_business_day_minus"
    days: int = Field(..., ge=0, le=22)


AnyPattern = Union[
        Fixed,
        EndOfMonth,
        EndOfMonthMinus,
        NthWeekday,
        LastWeekday,
        FirstBusinessDay,
        LastBusinessDay,
        NthBusinessDay,
        LastBusinessDayMinus,
]

DayOfMonthPattern = Annotated[AnyPattern, Field(discriminator="kind")]

PATTERN_ADAPTER: TypeAdapter[DayOfMonthPattern] = TypeAdapter(DayOfMonthPattern)


def pattern_to_dict(pattern: DayOfMonthPattern) -> dict[str, Any]:
    return pattern.model_dump(mode="json")


def pattern_from_dict(data: dict[str, Any]) -> DayOfMonthPattern:
    return PATTERN_ADAPTER.validate_python(data)


def resolve(
    pattern: DayOfMonthPattern,
    year: int,
    month: int,
    business_days: BusinessDayCalculator,
) -> Optional[date]:
    """Resolve ``pattern`` to a concrete day of ``year``/``month``.

    Pure: the same inputs always produce the same date, which the schedule
    synchronization relies on to stay idempotent. Returns ``None`` when the month
    has no such day (``Fixed(day=31)`` in April, a fifth Monday that does not exist,
    or a business-day search that runs past its cap).
    """
    if isinstance(pattern, Fixed):
        if pattern.day > month_end(year, month).day:
            return None
        return date(year, month, pattern.day)
    if isinstance(pattern, EndOfMonth):
        return month_end(year, month)
    if isinstance(pattern, EndOfMonthMinus):
        return month_end(year, month) - timedelta(days=pattern.days)
    if isinstance(pattern, NthWeekday):
        return _nth_weekday(year, month, pattern.week, pattern.weekday)
    if isinstance(pattern, LastWeekday):
        return _last_weekday(year, month, pattern.weekday)
    if isinstance(pattern, FirstBusinessDay):
        return business_days.first_business_day(year, month)
    if isinstance(pattern, LastBusinessDay):
        return business_days.last_business_day(year, month)
    if isinstance(pattern, NthBusinessDay):
        return business_days.nth_business_day(pattern.n, year, month)
    if isinstance(pattern, LastBusinessDayMinus):
        return business_days.last_business_day_minus(pattern.days, year, month)
    raise TypeError(f"Unsupported day-of-month pattern: {pattern!r}")


def _nth_weekday(year: int, month: int, week: int, weekday: Weekday) -> Optional[date]:
    first = date(year, month, 1)
    offset = (weekday.index - first.weekday()) % 7
    candidate = first + timedelta(days=offset + 7 * (week - 1))
    if candidate.month != month:
        return None
    return candidate


def _last_weekday(year: int, month: int, weekday: Weekday) -> Optional[date]:
    current = month_end(year, month) + date.resolution
    for _ in range(7):
        current -= date.resolution
        if current.weekday() == weekday.index:
            return current
    return None


def describe(pattern: Optional[DayOfMonthPattern]) -> str:
    if pattern is None:
        return "same day each period"
    if isinstance(pattern, Fixed):
        return f"day {pattern.day}"
    if isinstance(pattern, EndOfMonth):
        return "end of month"
    if isinstance(pattern, EndOfMonthMinus):
        return f"{pattern.days} days before month end"
    if isinstance(pattern, NthWeekday):
        return f"week {pattern.week} {pattern.weekday.value}"
    if isinstance(pattern, LastWeekday):
        return f"last {pattern.weekday.value}"
    if isinstance(pattern, FirstBusinessDay):
        return "first business day"
    if isinstance(pattern, LastBusinessDay):
        return "last business day"
    if isinstance(pattern, NthBusinessDay):
        return f"business day {pattern.n}"
    if isinstance(pattern, LastBusinessDayMinus):
        return f"{pattern.days} business days before the last business day"
    raise TypeError(f"Unsupported day-of-month pattern: {pattern!r}")
