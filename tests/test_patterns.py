from datetime import date

import pytest

from business_days import BusinessDayCalculator
from patterns import (
    EndOfMonth,
    EndOfMonthMinus,
    FirstBusinessDay,
    Fixed,
    LastBusinessDay,
    LastBusinessDayMinus,
    LastWeekday,
    NthBusinessDay,
    NthWeekday,
    Weekday,
    describe,
    pattern_from_dict,
    pattern_to_dict,
    resolve,
)

CALC = BusinessDayCalculator()


def test_fixed_day_missing_from_short_month() -> None:
    assert resolve(Fixed(day=31), 2025, 4, CALC) is None
    assert resolve(Fixed(day=15), 2025, 4, CALC) == date(2025, 4, 15)


def test_end_of_month_handles_leap_years() -> None:
    assert resolve(EndOfMonth(), 2024, 2, CALC) == date(2024, 2, 29)
    assert resolve(EndOfMonth(), 2025, 2, CALC) == date(2025, 2, 28)
    assert resolve(EndOfMonthMinus(days=3), 2025, 2, CALC) == date(2025, 2, 25)


def test_nth_weekday() -> None:
    assert resolve(NthWeekday(week=2, weekday=Weekday.tuesday), 2025, 4, CALC) == date(
        2025, 4, 8
    )
    # February 2025 has only four Mondays.
    assert resolve(NthWeekday(week=5, weekday=Weekday.monday), 2025, 2, CALC) is None


def test_last_weekday() -> None:
    assert resolve(LastWeekday(weekday=Weekday.friday), 2025, 1, CALC) == date(
        2025, 1, 31
    )
    assert resolve(LastWeekday(weekday=Weekday.monday), 2025, 1, CALC) == date(
        2025, 1, 27
    )


def test_business_day_variants() -> None:
    assert resolve(FirstBusinessDay(), 2025, 3, CALC) == date(2025, 3, 3)
    assert resolve(LastBusinessDay(), 2025, 5, CALC) == date(2025, 5, 30)
    assert resolve(NthBusinessDay(n=3), 2025, 3, CALC) == date(2025, 3, 5)
    assert resolve(NthBusinessDay(n=23), 2025, 2, CALC) is None
    assert resolve(LastBusinessDayMinus(days=2), 2025, 5, CALC) == date(2025, 5, 28)


def test_business_day_variants_respect_holidays() -> None:
    calc = BusinessDayCalculator(holidays=[date(2025, 3, 3)])
    assert resolve(FirstBusinessDay(), 2025, 3, calc) == date(2025, 3, 4)


@pytest.mark.parametrize(
    "pattern",
    [
        Fixed(day=10),
        EndOfMonth(),
        EndOfMonthMinus(days=5),
        NthWeekday(week=3, weekday=Weekday.wednesday),
        LastWeekday(weekday=Weekday.sunday),
        FirstBusinessDay(),
        LastBusinessDay(),
        NthBusinessDay(n=7),
        LastBusinessDayMinus(days=4),
    ],
)
def test_resolution_is_pure(pattern) -> None:
    calc = BusinessDayCalculator(holidays=[date(2025, 6, 9)])
    assert resolve(pattern, 2025, 6, calc) == resolve(pattern, 2025, 6, calc)


def test_unknown_pattern_type_is_rejected() -> None:
    with pytest.raises(TypeError):
        resolve(object(), 2025, 1, CALC)


def test_pattern_json_codec() -> None:
    pattern = NthWeekday(week=1, weekday=Weekday.monday)
    data = pattern_to_dict(pattern)
    assert data == {"kind": "nth_weekday", "week": 1, "weekday": "monday"}
    assert pattern_from_dict(data) == pattern
    assert pattern_from_dict({"kind": "end_of_month"}) == EndOfMonth()


def test_describe() -> None:
    assert describe(None) == "same day each period"
    assert describe(Fixed(day=3)) == "day 3"
    assert describe(LastWeekday(weekday=Weekday.friday)) == "last friday"
