from datetime import date

from periods import YearMonth, add_months, days_in_month, month_end, months_elapsed


def test_add_months_clamps_and_keeps_anchor() -> None:
    assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
    assert add_months(date(2025, 2, 28), 1, desired_day=31) == date(2025, 3, 31)
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2025, 1, 15), -13) == date(2023, 12, 15)


def test_month_helpers() -> None:
    assert days_in_month(2024, 2) == 29
    assert month_end(2025, 12) == date(2025, 12, 31)
    assert YearMonth(2025, 11).shift(3) == YearMonth(2026, 2)
    assert str(YearMonth.of(date(2025, 3, 9))) == "2025-03"


def test_months_elapsed_is_inclusive_and_floored() -> None:
    assert months_elapsed(YearMonth(2025, 1), YearMonth(2025, 6)) == 6
    assert months_elapsed(YearMonth(2024, 11), YearMonth(2025, 2)) == 4
    assert months_elapsed(YearMonth(2025, 6), YearMonth(2025, 1)) == 0
