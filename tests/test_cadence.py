"""Board period arithmetic: normalize, derive end, step forward, display names."""

from datetime import date

import pytest

from closeboard.boards.cadence import (
    derive_period_end,
    fiscal_quarter,
    next_period_start,
    normalize_period_start,
    period_board_name,
)
from closeboard.models.entities import BoardCadence

pytestmark = [pytest.mark.fast]


@pytest.mark.parametrize(
    "cadence, day, expected",
    [
        (BoardCadence.daily, date(2026, 1, 14), date(2026, 1, 14)),
        (BoardCadence.weekly, date(2026, 1, 14), date(2026, 1, 12)),
        (BoardCadence.monthly, date(2026, 1, 14), date(2026, 1, 1)),
        (BoardCadence.quarterly, date(2026, 5, 20), date(2026, 4, 1)),
        (BoardCadence.year_end, date(2026, 5, 20), date(2026, 1, 1)),
        ("monthly", date(2026, 2, 28), date(2026, 2, 1)),
    ],
)
def test_normalize_period_start(cadence, day, expected):
    assert normalize_period_start(cadence, day) == expected


def test_normalize_ad_hoc_and_missing_values_return_none():
    assert normalize_period_start(BoardCadence.ad_hoc, date(2026, 1, 14)) is None
    assert normalize_period_start(None, date(2026, 1, 14)) is None
    assert normalize_period_start(BoardCadence.monthly, None) is None


def test_fiscal_quarter_and_year_follow_fiscal_start_month():
    """With a July fiscal year, Feb 2026 is in Q3 of the year starting Jul 2025."""
    assert normalize_period_start(BoardCadence.quarterly, date(2026, 2, 10), 7) == date(2026, 1, 1)
    assert normalize_period_start(BoardCadence.year_end, date(2026, 2, 10), 7) == date(2025, 7, 1)
    assert fiscal_quarter(date(2026, 2, 10), 7) == 3
    assert fiscal_quarter(date(2026, 8, 1), 7) == 1


@pytest.mark.parametrize(
    "cadence, start, expected",
    [
        (BoardCadence.daily, date(2026, 1, 14), date(2026, 1, 14)),
        (BoardCadence.weekly, date(2026, 1, 12), date(2026, 1, 18)),
        (BoardCadence.monthly, date(2026, 2, 1), date(2026, 2, 28)),
        (BoardCadence.monthly, date(2024, 2, 1), date(2024, 2, 29)),
        (BoardCadence.quarterly, date(2026, 10, 1), date(2026, 12, 31)),
        (BoardCadence.year_end, date(2026, 1, 1), date(2026, 12, 31)),
    ],
)
def test_derive_period_end(cadence, start, expected):
    assert derive_period_end(cadence, start) == expected


def test_derive_period_end_ad_hoc_is_none():
    assert derive_period_end(BoardCadence.ad_hoc, date(2026, 1, 1)) is None


def test_next_period_start_monthly_rolls_year():
    assert next_period_start(BoardCadence.monthly, date(2026, 12, 1)) == date(2027, 1, 1)


def test_next_period_start_quarterly_and_year_end():
    assert next_period_start(BoardCadence.quarterly, date(2026, 10, 1)) == date(2027, 1, 1)
    assert next_period_start(BoardCadence.year_end, date(2026, 1, 1)) == date(2027, 1, 1)


def test_next_period_start_weekly_from_midweek_date():
    assert next_period_start(BoardCadence.weekly, date(2026, 1, 14)) == date(2026, 1, 19)


def test_next_period_start_daily_skips_weekend():
    friday = date(2026, 1, 16)
    assert next_period_start(BoardCadence.daily, friday) == date(2026, 1, 19)
    assert next_period_start(BoardCadence.daily, friday, skip_weekends=False) == date(2026, 1, 17)
    assert next_period_start(BoardCadence.daily, date(2026, 1, 14)) == date(2026, 1, 15)


def test_next_period_start_ad_hoc_is_none():
    assert next_period_start(BoardCadence.ad_hoc, date(2026, 1, 1)) is None
    assert next_period_start(BoardCadence.monthly, None) is None


@pytest.mark.parametrize(
    "cadence, start, expected",
    [
        (BoardCadence.daily, date(2026, 1, 5), "Jan 5, 2026"),
        (BoardCadence.weekly, date(2026, 1, 5), "Week of Jan 5, 2026"),
        (BoardCadence.monthly, date(2026, 1, 1), "January 2026"),
        (BoardCadence.quarterly, date(2026, 4, 1), "Q2 2026"),
        (BoardCadence.year_end, date(2026, 1, 1), "Year-End 2026"),
    ],
)
def test_period_board_name(cadence, start, expected):
    assert period_board_name(cadence, start) == expected
