from __future__ import annotations

import logging
import threading
from datetime import date, timedelta
from typing import Iterable, Optional, Protocol, Sequence

from sqlalchemy import extract, or_, select
from sqlalchemy.orm import Session

from models import CustomHoliday
from periods import days_in_month, month_end

logger = logging.getLogger(__name__)

MAX_SEARCH_DAYS = 10
MAX_MONTH_DAYS = 31

_holiday_revision = 0
_holiday_revision_guard = threading.Lock()


def holiday_revision() -> int:
    return _holiday_revision


def invalidate_holiday_caches() -> None:
    """Make every calculator reload its holidays on the next lookup.

    Called after custom holidays are written so long-lived calculators do not
    keep serving the set they memoised before the change.
    """
    global _holiday_revision
    with _holiday_revision_guard:
        _holiday_revision += 1
        revision = _holiday_revision
    logger.debug(f"holiday_caches_invalidated: revision={revision}")


class HolidayProvider(Protocol):
    def holidays(self, year: int) -> set[date]: ...


class StaticHolidayProvider:
    """Holidays given up front, e.g. from ``OBLIGATIONS_HOLIDAYS``."""

    def __init__(self, dates: Iterable[date]) -> None:
        self._dates = frozenset(dates)

    def holidays(self, year: int) -> set[date]:
        return {d for d in self._dates if d.year == year}


class CustomHolidayProvider:
    """User-defined holidays stored in the ``custom_holidays`` table.

    Recurring rows repeat on the same month and day every year; a Feb 29 row is
    skipped in non-leap years.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def holidays(self, year: int) -> set[date]:
        stmt = select(CustomHoliday).where(
            or_(
                CustomHoliday.is_recurring.is_(True),
                extract("year", CustomHoliday.date) == year,
            )
        )
        result: set[date] = set()
        for holiday in self.session.scalars(stmt):
            if not holiday.is_recurring:
                result.add(holiday.date)
                continue
            if holiday.date.day > days_in_month(year, holiday.date.month):
                continue
            result.add(date(year, holiday.date.month, holiday.date.day))
        return result


class CompositeHolidayProvider:
    def __init__(self, providers: Sequence[HolidayProvider]) -> None:
        self.providers = list(providers)

    def holidays(self, year: int) -> set[date]:
        result: set[date] = set()
        for provider in self.providers:
            result |= provider.holidays(year)
        return result


def holidays_between(provider: HolidayProvider, start: date, end: date) -> set[date]:
    result: set[date] = set()
    for year in range(start.year, end.year + 1):
        result |= provider.holidays(year)
    return {d for d in result if start <= d <= end}


class BusinessDayCalculator:
    """Weekend and holiday aware day arithmetic.

    Every search is bounded: neighbour lookups give up after ``MAX_SEARCH_DAYS``
    and return ``None``. A run of more than ten consecutive non-business days is a
    holiday data problem, not something to keep searching through.
    """

    def __init__(
        self,
        providers: Sequence[HolidayProvider] = (),
        holidays: Iterable[date] = (),
    ) -> None:
        self.providers = list(providers)
        self._fixed = frozenset(holidays)
        self._by_year: dict[int, frozenset[date]] = {}
        self._revision = holiday_revision()

    def _holidays_for(self, year: int) -> frozenset[date]:
        revision = holiday_revision()
        if revision != self._revision:
            self._by_year.clear()
            self._revision = revision
        cached = self._by_year.get(year)
        if cached is not None:
            return cached
        collected = {d for d in self._fixed if d.year == year}
        for provider in self.providers:
            collected |= provider.holidays(year)
        frozen = frozenset(collected)
        self._by_year[year] = frozen
        return frozen

    def is_business_day(self, value: date) -> bool:
        if value.weekday() >= 5:
            return False
        return value not in self._holidays_for(value.year)

    def next_business_day(self, value: date) -> Optional[date]:
        return self._search(value, timedelta(days=1))

    def previous_business_day(self, value: date) -> Optional[date]:
        return self._search(value, timedelta(days=-1))

    def _search(self, value: date, step: timedelta) -> Optional[date]:
        current = value
        for _ in range(MAX_SEARCH_DAYS):
            current = current + step
            if self.is_business_day(current):
                return current
        logger.warning(
            f"business_day_search_exhausted: from={value.isoformat()} "
            f"step={step.days} limit={MAX_SEARCH_DAYS}"
        )
        return None

    def first_business_day(self, year: int, month: int) -> Optional[date]:
        first = date(year, month, 1)
        if self.is_business_day(first):
            return first
        return self.next_business_day(first)

    def last_business_day(self, year: int, month: int) -> Optional[date]:
        last = month_end(year, month)
        if self.is_business_day(last):
            return last
        return self.previous_business_day(last)

    def nth_business_day(self, nth: int, year: int, month: int) -> Optional[date]:
        if nth <= 0:
            return None
        current = date(year, month, 1)
        count = 0
        for _ in range(MAX_MONTH_DAYS):
            if self.is_business_day(current):
                count += 1
                if count == nth:
                    return current
            current += date.resolution
            if current.month != month:
                return None
        return None

    def last_business_day_minus(
        self, days: int, year: int, month: int
    ) -> Optional[date]:
        if days < 0:
            return None
        current = self.last_business_day(year, month)
        for _ in range(days):
            if current is None:
                return None
            current = self.previous_business_day(current)
        return current
