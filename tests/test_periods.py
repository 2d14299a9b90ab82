"""Report period keys: parsing cell values, stepping back, comparison periods."""

from datetime import date, datetime, timezone

import pytest

from closeboard.core.periods import (
    get_available_periods,
    get_periods_from_rows,
    is_valid_period_key,
    label_for_period_key,
    period_key_from_value,
    previous_period_key,
    resolve_compare_period,
    same_period_last_year_key,
)

pytestmark = [pytest.mark.fast]


@pytest.mark.parametrize(
    "value, cadence, expected",
    [
        ("2026-01-15", "monthly", "2026-01"),
        ("2026-01-15T23:00:00Z", "daily", "2026-01-15"),
        ("2026-03", "quarterly", "2026-Q1"),
        ("Jan-26", "monthly", "2026-01"),
        ("September 2025", "monthly", "2025-09"),
        ("Sept 2025", "monthly", "2025-09"),
        ("Q3 2025", "quarterly", "2025-Q3"),
        ("2Q26", "quarterly", "2026-Q2"),
        ("FY26", "annual", "2026"),
        ("1/15/26", "daily", "2026-01-15"),
        ("Jan 15, 2026", "daily", "2026-01-15"),
        ("15 Jan 2026", "daily", "2026-01-15"),
        (date(2026, 5, 4), "quarterly", "2026-Q2"),
        (datetime(2026, 5, 4, 12, tzinfo=timezone.utc), "annual", "2026"),
        (1767225600000, "daily", "2026-01-01"),
        ("2026-Q4", "quarterly", "2026-Q4"),
    ],
)
def test_period_key_from_value(value, cadence, expected):
    assert period_key_from_value(value, cadence) == expected


@pytest.mark.parametrize("value", [None, "", "not a date", True, "2/30/26", "Smarch 2026"])
def test_period_key_from_value_unreadable(value):
    assert period_key_from_value(value, "daily") is None
    assert period_key_from_value(value, "monthly") is None


def test_is_valid_period_key():
    assert is_valid_period_key("2026-02-28", "daily")
    assert not is_valid_period_key("2026-02-30", "daily")
    assert not is_valid_period_key("2026-13", "monthly")
    assert is_valid_period_key("2026-Q4", "quarterly")
    assert not is_valid_period_key("2026", "weekly")


def test_previous_period_key_rolls_over_boundaries():
    assert previous_period_key("2026-03-01", "daily") == "2026-02-28"
    assert previous_period_key("2026-01", "monthly") == "2025-12"
    assert previous_period_key("2026-Q1", "quarterly") == "2025-Q4"
    assert previous_period_key("2026", "annual") == "2025"


def test_same_period_last_year_maps_leap_day():
    assert same_period_last_year_key("2024-02-29") == "2023-02-28"
    assert same_period_last_year_key("2026-Q2") == "2025-Q2"
    assert same_period_last_year_key("2026-07") == "2025-07"
    with pytest.raises(ValueError):
        same_period_last_year_key("July")


def test_resolve_compare_period():
    assert resolve_compare_period("2026-01", "monthly", "mom") == "2025-12"
    assert resolve_compare_period("2026-01", "monthly", "yoy") == "2025-01"
    assert resolve_compare_period("2026-01", "monthly", "none") is None


def test_labels_and_available_periods():
    assert label_for_period_key("2026-01-05", "daily") == "Jan 5, 2026"
    assert label_for_period_key("2026-02", "monthly") == "February 2026"
    assert label_for_period_key("2026-Q3", "quarterly") == "Q3 2026"
    periods = get_available_periods("monthly", count=3, today=date(2026, 2, 10))
    assert periods == [
        {"key": "2026-02", "label": "February 2026"},
        {"key": "2026-01", "label": "January 2026"},
        {"key": "2025-12", "label": "December 2025"},
    ]


def test_periods_from_rows_distinct_newest_first():
    rows = [{"d": "2026-01-03"}, {"d": "2026-02-02T10:00:00Z"}, {"d": "garbage"}, {"d": "2026-01-28"}, {}]
    assert get_periods_from_rows(rows, "d", "monthly") == [
        {"key": "2026-02", "label": "February 2026"},
        {"key": "2026-01", "label": "January 2026"},
    ]
