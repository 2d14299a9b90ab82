"""Board period arithmetic: normalize a period start, derive its end, step to the next period."""

from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from closeboard.models.entities import BoardCadence

_MONTHS_PER_PERIOD = {
    BoardCadence.monthly: 1,
    BoardCadence.quarterly: 3,
    BoardCadence.year_end: 12,
}


def _cadence(value: BoardCadence | str) -> BoardCadence:
    return value if isinstance(value, BoardCadence) else BoardCadence(value)


def _fiscal_block_start(day: date, block_months: int, fiscal_year_start_month: int) -> date:
    """First day of the block (quarter or year) that contains day, counting from the fiscal start month."""
    months_from_fiscal_start = (day.month - fiscal_year_start_month) % 12
    offset = (months_from_fiscal_start // block_months) * block_months
    start = date(day.year, fiscal_year_start_month, 1) + relativedelta(months=offset)
    if start > day:
        start -= relativedelta(years=1)
    return start


def fiscal_quarter(day: date, fiscal_year_start_month: int = 1) -> int:
    """1-based fiscal quarter of a date."""
    return (day.month - fiscal_year_start_month) % 12 // 3 + 1


def normalize_period_start(
    cadence: BoardCadence | str | None,
    day: date | None,
    fiscal_year_start_month: int = 1,
) -> date | None:
    """Snap a date to the start of its period. Weeks start Monday; ad_hoc has no period."""
    if cadence is None or day is None:
        return None
    cadence = _cadence(cadence)
    if cadence == BoardCadence.daily:
        return day
    if cadence == BoardCadence.weekly:
        return day - timedelta(days=day.weekday())
    if cadence == BoardCadence.monthly:
        return day.replace(day=1)
    if cadence == BoardCadence.quarterly:
        return _fiscal_block_start(day, 3, fiscal_year_start_month)
    if cadence == BoardCadence.year_end:
        return _fiscal_block_start(day, 12, fiscal_year_start_month)
    return None


def derive_period_end(
    cadence: BoardCadence | str | None,
    period_start: date | None,
    fiscal_year_start_month: int = 1,
) -> date | None:
    """Last day of the period containing period_start."""
    start = normalize_period_start(cadence, period_start, fiscal_year_start_month)
    if start is None:
        return None
    cadence = _cadence(cadence)
    if cadence == BoardCadence.daily:
        return start
    if cadence == BoardCadence.weekly:
        return start + timedelta(days=6)
    return start + relativedelta(months=_MONTHS_PER_PERIOD[cadence]) - timedelta(days=1)


def next_period_start(
    cadence: BoardCadence | str | None,
    period_start: date | None,
    skip_weekends: bool = True,
    fiscal_year_start_month: int = 1,
) -> date | None:
    """
    Start of the period after the one containing period_start.
    Daily boards jump from Friday (or a weekend) to Monday when skip_weekends is set.
    """
    if cadence is None or period_start is None:
        return None
    cadence = _cadence(cadence)
    if cadence == BoardCadence.ad_hoc:
        return None
    if cadence == BoardCadence.daily:
        nxt = period_start + timedelta(days=1)
        if skip_weekends and nxt.weekday() >= 5:
            nxt += timedelta(days=7 - nxt.weekday())
        return nxt
    start = normalize_period_start(cadence, period_start, fiscal_year_start_month)
    assert start is not None
    if cadence == BoardCadence.weekly:
        return start + timedelta(weeks=1)
    return start + relativedelta(months=_MONTHS_PER_PERIOD[cadence])


def _format_day(day: date) -> str:
    return f"{day.strftime('%b')} {day.day}, {day.year}"


def period_board_name(
    cadence: BoardCadence | str,
    period_start: date,
    fiscal_year_start_month: int = 1,
) -> str:
    """Display name for a period board, e.g. 'January 2026', 'Q1 2026', 'Week of Jan 5, 2026'."""
    cadence = _cadence(cadence)
    if cadence == BoardCadence.daily:
        return _format_day(period_start)
    if cadence == BoardCadence.weekly:
        return f"Week of {_format_day(period_start)}"
    if cadence == BoardCadence.monthly:
        return f"{period_start.strftime('%B')} {period_start.year}"
    if cadence == BoardCadence.quarterly:
        return f"Q{fiscal_quarter(period_start, fiscal_year_start_month)} {period_start.year}"
    if cadence == BoardCadence.year_end:
        return f"Year-End {period_start.year}"
    return ""
