from dataclasses import dataclass
from datetime import date
from typing import Optional


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def month_start(value: date) -> date:
    return value.replace(day=1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    """Shift ``base`` by whole months, clamping the day to the target month length.

    ``desired_day`` keeps a day-of-month anchor across short months, so that
    Jan 31 -> Feb 29 -> Mar 31 instead of drifting to the 29th.
    """
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = desired_day if desired_day is not None else base.day
    return date(year, month, min(day, days_in_month(year, month)))


@dataclass(frozen=True, order=True)
class YearMonth:
    year: int
    month: int

    @classmethod
    def of(cls, value: date) -> "YearMonth":
        return cls(value.year, value.month)

    @property
    def index(self) -> int:
        return self.year * 12 + (self.month - 1)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return month_end(self.year, self.month)

    def shift(self, months: int) -> "YearMonth":
        shifted = add_months(self.start, months)
        return YearMonth(shifted.year, shifted.month)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def months_elapsed(start: YearMonth, end: YearMonth) -> int:
    """Inclusive month count from ``start`` to ``end``, floored at zero."""
    return max(0, end.index - start.index + 1)
