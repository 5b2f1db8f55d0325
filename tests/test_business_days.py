from datetime import date, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from business_days import (
    BusinessDayCalculator,
    CompositeHolidayProvider,
    CustomHolidayProvider,
    StaticHolidayProvider,
    holidays_between,
    invalidate_holiday_caches,
)
from database import Base
from models import CustomHoliday


class CountingProvider:
    def __init__(self, dates) -> None:
        self.dates = set(dates)
        self.calls = 0

    def holidays(self, year: int) -> set[date]:
        self.calls += 1
        return {d for d in self.dates if d.year == year}


def test_weekends_and_holidays_are_not_business_days() -> None:
    calc = BusinessDayCalculator(holidays=[date(2025, 3, 17)])
    assert not calc.is_business_day(date(2025, 3, 15))  # Saturday
    assert not calc.is_business_day(date(2025, 3, 16))  # Sunday
    assert not calc.is_business_day(date(2025, 3, 17))
    assert calc.is_business_day(date(2025, 3, 18))


def test_neighbour_search_skips_holidays() -> None:
    calc = BusinessDayCalculator(holidays=[date(2025, 3, 17)])
    assert calc.next_business_day(date(2025, 3, 14)) == date(2025, 3, 18)
    assert calc.previous_business_day(date(2025, 3, 18)) == date(2025, 3, 14)


def test_neighbour_search_gives_up_after_ten_days() -> None:
    start = date(2025, 3, 14)
    blocked = [start + timedelta(days=offset) for offset in range(1, 20)]
    calc = BusinessDayCalculator(holidays=blocked)
    assert calc.next_business_day(start) is None


def test_month_anchored_lookups() -> None:
    calc = BusinessDayCalculator()
    assert calc.first_business_day(2025, 3) == date(2025, 3, 3)
    assert calc.last_business_day(2025, 5) == date(2025, 5, 30)
    assert calc.nth_business_day(0, 2025, 3) is None
    assert calc.nth_business_day(1, 2025, 3) == date(2025, 3, 3)
    assert calc.last_business_day_minus(-1, 2025, 5) is None
    assert calc.last_business_day_minus(0, 2025, 5) == date(2025, 5, 30)


def test_providers_compose_by_union() -> None:
    first = StaticHolidayProvider([date(2025, 1, 1)])
    second = StaticHolidayProvider([date(2025, 12, 25), date(2024, 12, 25)])
    composite = CompositeHolidayProvider([first, second])
    assert composite.holidays(2025) == {date(2025, 1, 1), date(2025, 12, 25)}

    calc = BusinessDayCalculator(providers=[first, second])
    assert not calc.is_business_day(date(2025, 1, 1))
    assert not calc.is_business_day(date(2025, 12, 25))
    assert calc.is_business_day(date(2024, 1, 1))


def test_holiday_sets_are_fetched_once_per_year() -> None:
    provider = CountingProvider([date(2025, 5, 1)])
    calc = BusinessDayCalculator(providers=[provider])
    calc.is_business_day(date(2025, 5, 1))
    calc.is_business_day(date(2025, 5, 2))
    calc.is_business_day(date(2026, 5, 1))
    assert provider.calls == 2


def test_invalidation_reloads_memoised_holidays() -> None:
    provider = CountingProvider([date(2025, 5, 1)])
    calc = BusinessDayCalculator(providers=[provider])
    assert calc.is_business_day(date(2025, 5, 2))

    provider.dates.add(date(2025, 5, 2))
    assert calc.is_business_day(date(2025, 5, 2))

    invalidate_holiday_caches()
    assert not calc.is_business_day(date(2025, 5, 2))
    assert provider.calls == 2


def test_holidays_between_spans_years() -> None:
    provider = StaticHolidayProvider(
        [date(2024, 12, 25), date(2025, 1, 1), date(2025, 6, 1)]
    )
    assert holidays_between(provider, date(2024, 12, 1), date(2025, 1, 31)) == {
        date(2024, 12, 25),
        date(2025, 1, 1),
    }


def test_custom_holidays_expand_recurring_rows() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        session.add_all(
            [
                CustomHoliday(date=date(2020, 12, 25), name="Christmas", is_recurring=True),
                CustomHoliday(date=date(2024, 2, 29), name="Leap", is_recurring=True),
                CustomHoliday(date=date(2025, 3, 17), name="Company day"),
                CustomHoliday(date=date(2026, 3, 16), name="Company day"),
            ]
        )
        session.commit()

        provider = CustomHolidayProvider(session)
        assert provider.holidays(2025) == {date(2025, 12, 25), date(2025, 3, 17)}
        assert date(2028, 2, 29) in provider.holidays(2028)
