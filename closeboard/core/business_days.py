"""Business-day calendar (weekends only) and period-aware send-time scheduling."""

import logging
import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Literal
from zoneinfo import ZoneInfo

from pydantic import BaseModel

_log = logging.getLogger(__name__)

DEFAULT_SEND_TIME = "09:00"
_SEND_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


class ScheduleConfig(BaseModel):
    """When a request should go out, relative to its board's period."""

    model_config = {"extra": "ignore"}

    mode: Literal["ad_hoc", "period_aware"] = "ad_hoc"
    anchor: Literal["period_start", "period_end"] = "period_end"
    offset_days: int = 0
    weekend_rule: Literal["previous", "next"] = "previous"
    send_time: str = DEFAULT_SEND_TIME


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def is_business_day(day: date) -> bool:
    return not is_weekend(day)


def next_business_day(day: date) -> date:
    """Return day itself when it is a business day, else the following Monday."""
    while is_weekend(day):
        day = day + timedelta(days=1)
    return day


def previous_business_day(day: date) -> date:
    """Return day itself when it is a business day, else the preceding Friday."""
    while is_weekend(day):
        day = day - timedelta(days=1)
    return day


def add_business_days(day: date, days: int) -> date:
    """
    Move `days` business days from `day`. Negative values move backwards.
    The starting day is not counted; weekend days are stepped over without counting.
    """
    step = timedelta(days=1 if days >= 0 else -1)
    remaining = abs(days)
    while remaining > 0:
        day = day + step
        if is_business_day(day):
            remaining -= 1
    return day


def parse_send_time(value: str | None) -> time:
    """Parse "HH:mm". Unparseable hours fall back to 9, unparseable minutes to 0."""
    hours_str, _, minutes_str = (value or "").partition(":")
    try:
        hours = int(hours_str)
    except ValueError:
        hours = 9
    try:
        minutes = int(minutes_str)
    except ValueError:
        minutes = 0
    if not 0 <= hours <= 23:
        hours = 9
    if not 0 <= minutes <= 59:
        minutes = 0
    return time(hours, minutes)


def compute_scheduled_date(
    anchor: date,
    offset_days: int,
    weekend_rule: str,
    send_time: str,
    tz: tzinfo | None = None,
) -> datetime:
    """
    Shift anchor by offset_days business days, roll a weekend result according to
    weekend_rule ("next" or "previous"), and attach send_time in tz (UTC by default).
    """
    day = anchor
    if offset_days:
        day = add_business_days(day, offset_days)
    if is_weekend(day):
        day = next_business_day(day) if weekend_rule == "next" else previous_business_day(day)
    return datetime.combine(day, parse_send_time(send_time), tzinfo=tz or timezone.utc)


def compute_from_config(
    config: ScheduleConfig | dict[str, Any] | None,
    period_start: date | None,
    period_end: date | None,
    tz_name: str = "UTC",
) -> datetime | None:
    """Resolve a period-aware schedule to a concrete send time; None for ad hoc or a missing anchor."""
    if config is None:
        return None
    if isinstance(config, dict):
        config = ScheduleConfig.model_validate(config)
    if config.mode != "period_aware":
        return None
    anchor = period_start if config.anchor == "period_start" else period_end
    if anchor is None:
        _log.warning("Cannot compute scheduled date: %s is not set", config.anchor)
        return None
    return compute_scheduled_date(
        anchor,
        config.offset_days,
        config.weekend_rule,
        config.send_time or DEFAULT_SEND_TIME,
        tz=ZoneInfo(tz_name),
    )


def validate_schedule_config(config: Any) -> list[str]:
    """Return human-readable problems with a raw schedule config; empty when valid."""
    errors: list[str] = []
    if not isinstance(config, dict):
        return ["Schedule config must be an object"]
    mode = config.get("mode")
    if mode not in ("ad_hoc", "period_aware"):
        errors.append("mode must be 'ad_hoc' or 'period_aware'")
    if mode == "period_aware":
        anchor = config.get("anchor")
        if anchor and anchor not in ("period_start", "period_end"):
            errors.append("anchor must be 'period_start' or 'period_end'")
        offset = config.get("offset_days")
        if offset is not None and (isinstance(offset, bool) or not isinstance(offset, int)):
            errors.append("offset_days must be a whole number")
        rule = config.get("weekend_rule")
        if rule and rule not in ("previous", "next"):
            errors.append("weekend_rule must be 'previous' or 'next'")
        send_time = config.get("send_time")
        if send_time and not _SEND_TIME_RE.match(str(send_time)):
            errors.append("send_time must be in HH:mm format (24-hour)")
    return errors
