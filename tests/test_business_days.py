"""Business-day calendar and period-aware send-time scheduling."""

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

import pytest

from closeboard.core.business_days import (
    ScheduleConfig,
    add_business_days,
    compute_from_config,
    compute_scheduled_date,
    is_business_day,
    next_business_day,
    parse_send_time,
    previous_business_day,
    validate_schedule_config,
)

pytestmark = [pytest.mark.fast]

SATURDAY = date(2026, 1, 17)
FRIDAY = date(2026, 1, 16)
MONDAY = date(2026, 1, 19)


def test_weekend_rolls():
    assert not is_business_day(SATURDAY)
    assert next_business_day(SATURDAY) == MONDAY
    assert previous_business_day(SATURDAY) == FRIDAY
    assert next_business_day(FRIDAY) == FRIDAY


def test_add_business_days_skips_weekends_both_directions():
    assert add_business_days(FRIDAY, 1) == MONDAY
    assert add_business_days(MONDAY, -1) == FRIDAY
    assert add_business_days(FRIDAY, 5) == date(2026, 1, 23)
    assert add_business_days(SATURDAY, 0) == SATURDAY


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("14:30", time(14, 30)),
        ("00", time(0, 0)),
        ("7:05", time(7, 5)),
        ("25:00", time(9, 0)),
        ("10:75", time(10, 0)),
        ("abc", time(9, 0)),
        (None, time(9, 0)),
    ],
)
def test_parse_send_time(raw, expected):
    assert parse_send_time(raw) == expected


def test_compute_scheduled_date_weekend_rule():
    """Month end Jan 31 2026 is a Saturday."""
    month_end = date(2026, 1, 31)
    previous = compute_scheduled_date(month_end, 0, "previous", "09:00")
    following = compute_scheduled_date(month_end, 0, "next", "09:00")
    assert previous == datetime(2026, 1, 30, 9, 0, tzinfo=timezone.utc)
    assert following == datetime(2026, 2, 2, 9, 0, tzinfo=timezone.utc)


def test_compute_scheduled_date_offset_counts_business_days():
    scheduled = compute_scheduled_date(date(2026, 1, 30), 2, "previous", "08:15")
    assert scheduled == datetime(2026, 2, 3, 8, 15, tzinfo=timezone.utc)


def test_compute_from_config_uses_anchor_and_timezone():
    config = {"mode": "period_aware", "anchor": "period_start", "offset_days": 1, "send_time": "10:00"}
    scheduled = compute_from_config(config, date(2026, 2, 1), date(2026, 2, 28), "America/New_York")
    assert scheduled == datetime(2026, 2, 2, 10, 0, tzinfo=ZoneInfo("America/New_York"))


def test_compute_from_config_ad_hoc_and_missing_anchor():
    assert compute_from_config(ScheduleConfig(), date(2026, 1, 1), date(2026, 1, 31)) is None
    assert compute_from_config(None, date(2026, 1, 1), None) is None
    assert compute_from_config({"mode": "period_aware", "anchor": "period_end"}, date(2026, 1, 1), None) is None


def test_validate_schedule_config():
    assert validate_schedule_config({"mode": "ad_hoc"}) == []
    assert validate_schedule_config("nope") == ["Schedule config must be an object"]
    errors = validate_schedule_config(
        {"mode": "period_aware", "anchor": "middle", "offset_days": 1.5, "weekend_rule": "skip", "send_time": "9am"}
    )
    assert len(errors) == 4
    assert validate_schedule_config({"mode": "sometimes"}) == ["mode must be 'ad_hoc' or 'period_aware'"]
