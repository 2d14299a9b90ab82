"""Report period keys: derive, validate, step and label periods for daily/monthly/quarterly/annual cadences.

Keys are sortable strings: daily "2026-01-15", monthly "2026-01", quarterly "2026-Q1", annual "2026".
"""

import calendar
import re
from datetime import date, datetime, timezone
from typing import Any, Literal

ReportCadence = Literal["daily", "monthly", "quarterly", "annual"]
CompareMode = Literal["none", "mom", "yoy"]

REPORT_CADENCES: tuple[str, ...] = ("daily", "monthly", "quarterly", "annual")

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

MONTH_LOOKUP: dict[str, int] = {name.lower(): i + 1 for i, name in enumerate(MONTH_NAMES)}
MONTH_LOOKUP.update(
    {name[:3].lower(): i + 1 for i, name in enumerate(MONTH_NAMES)}
)
MONTH_LOOKUP["sept"] = 9

_KEY_PATTERNS = {
    "daily": re.compile(r"^\d{4}-\d{2}-\d{2}$"),
    "monthly": re.compile(r"^\d{4}-(0[1-9]|1[0-2])$"),
    "quarterly": re.compile(r"^\d{4}-Q[1-4]$"),
    "annual": re.compile(r"^\d{4}$"),
}

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_YEAR_MONTH = re.compile(r"^(\d{4})-(\d{2})$")

_MONTH_YEAR = re.compile(r"^([a-z]+)(?:-|\s+)(\d{2}|\d{4})$", re.IGNORECASE)
_QUARTER_FIRST = re.compile(r"^Q([1-4])(?:-|\s+)(\d{2}|\d{4})$", re.IGNORECASE)
_QUARTER_NUMBER_FIRST = re.compile(r"^([1-4])Q\s*(\d{2}|\d{4})$", re.IGNORECASE)
_FISCAL_YEAR = re.compile(r"^FY\s*(\d{2}|\d{4})$", re.IGNORECASE)
_SHORT_YEAR = re.compile(r"^(\d{2})$")
_NUMERIC_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2}|\d{4})$")
_MONTH_DAY_YEAR = re.compile(r"^([a-z]+)\s+(\d{1,2}),?\s*(\d{4})$", re.IGNORECASE)
_DAY_MONTH_YEAR = re.compile(r"^(\d{1,2})\s+([a-z]+)\s+(\d{4})$", re.IGNORECASE)


def _year(raw: str) -> int:
    """Two-digit years are read as 20YY."""
    value = int(raw)
    return 2000 + value if len(raw) == 2 else value


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def period_key_from_date(value: date, cadence: str) -> str:
    if cadence == "daily":
        return f"{value.year}-{value.month:02d}-{value.day:02d}"
    if cadence == "monthly":
        return f"{value.year}-{value.month:02d}"
    if cadence == "quarterly":
        return f"{value.year}-Q{(value.month - 1) // 3 + 1}"
    if cadence == "annual":
        return f"{value.year}"
    raise ValueError(f"Unknown report cadence: {cadence}")


def is_valid_period_key(key: str, cadence: str) -> bool:
    pattern = _KEY_PATTERNS.get(cadence)
    if pattern is None or not pattern.match(key):
        return False
    if cadence == "daily":
        year, month, day = (int(p) for p in key.split("-"))
        return _safe_date(year, month, day) is not None
    return True


def _parse_iso(value: str) -> date | None:
    if "T" in value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    m = _ISO_DATE.match(value)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    return None


def _parse_monthly(value: str) -> str | None:
    m = _MONTH_YEAR.match(value)
    if m:
        month = MONTH_LOOKUP.get(m.group(1).lower())
        if month:
            return f"{_year(m.group(2))}-{month:02d}"
    return None


def _parse_quarterly(value: str) -> str | None:
    for pattern in (_QUARTER_FIRST, _QUARTER_NUMBER_FIRST):
        m = pattern.match(value)
        if m:
            return f"{_year(m.group(2))}-Q{int(m.group(1))}"
    return None


def _parse_annual(value: str) -> str | None:
    m = _FISCAL_YEAR.match(value)
    if m:
        return f"{_year(m.group(1))}"
    m = _SHORT_YEAR.match(value)
    if m:
        return f"{2000 + int(m.group(1))}"
    return None


def _parse_daily(value: str) -> str | None:
    parsed: date | None = None
    m = _NUMERIC_DATE.match(value)
    if m:
        parsed = _safe_date(_year(m.group(3)), int(m.group(1)), int(m.group(2)))
    if parsed is None:
        m = _MONTH_DAY_YEAR.match(value)
        if m and MONTH_LOOKUP.get(m.group(1).lower()):
            parsed = _safe_date(int(m.group(3)), MONTH_LOOKUP[m.group(1).lower()], int(m.group(2)))
    if parsed is None:
        m = _DAY_MONTH_YEAR.match(value)
        if m and MONTH_LOOKUP.get(m.group(2).lower()):
            parsed = _safe_date(int(m.group(3)), MONTH_LOOKUP[m.group(2).lower()], int(m.group(1)))
    return period_key_from_date(parsed, "daily") if parsed else None


_FRIENDLY_PARSERS = {
    "daily": _parse_daily,
    "monthly": _parse_monthly,
    "quarterly": _parse_quarterly,
    "annual": _parse_annual,
}


def period_key_from_value(value: Any, cadence: str) -> str | None:
    """
    Map a cell value to the period key it falls in, or None when it cannot be read as a date.

    Accepts period keys, ISO dates and datetimes, "YYYY-MM", date/datetime objects, epoch
    milliseconds, and the friendly spellings common in spreadsheets for the given cadence
    ("Jan-26", "January 2026", "Q1 2026", "1Q26", "FY26", "1/15/26", "Jan 15, 2026", "15 Jan 2026").
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return period_key_from_date(value.date(), cadence)
    if isinstance(value, date):
        return period_key_from_date(value, cadence)
    if isinstance(value, (int, float)):
        try:
            moment = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
        return period_key_from_date(moment.date(), cadence)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    if is_valid_period_key(text, cadence):
        return text
    iso = _parse_iso(text)
    if iso is not None:
        return period_key_from_date(iso, cadence)
    m = _YEAR_MONTH.match(text)
    if m and 1 <= int(m.group(2)) <= 12:
        return period_key_from_date(date(int(m.group(1)), int(m.group(2)), 1), cadence)
    parser = _FRIENDLY_PARSERS.get(cadence)
    return parser(text) if parser else None


def previous_period_key(key: str, cadence: str) -> str:
    if cadence == "daily":
        year, month, day = (int(p) for p in key.split("-"))
        return period_key_from_date(date.fromordinal(date(year, month, day).toordinal() - 1), "daily")
    if cadence == "monthly":
        year, month = (int(p) for p in key.split("-"))
        return f"{year - 1}-12" if month == 1 else f"{year}-{month - 1:02d}"
    if cadence == "quarterly":
        m = re.match(r"^(\d{4})-Q([1-4])$", key)
        if not m:
            raise ValueError(f"Invalid quarterly period key: {key}")
        year, quarter = int(m.group(1)), int(m.group(2))
        return f"{year - 1}-Q4" if quarter == 1 else f"{year}-Q{quarter - 1}"
    if cadence == "annual":
        return f"{int(key) - 1}"
    raise ValueError(f"Unknown report cadence: {cadence}")


def same_period_last_year_key(key: str) -> str:
    """Same period one year earlier. Feb 29 maps to Feb 28 of the prior year."""
    if re.match(r"^\d{4}-\d{2}-\d{2}$", key):
        year, month, day = (int(p) for p in key.split("-"))
        day = min(day, calendar.monthrange(year - 1, month)[1])
        return f"{year - 1}-{month:02d}-{day:02d}"
    if re.match(r"^\d{4}(-Q[1-4]|-\d{2})?$", key):
        return f"{int(key[:4]) - 1}{key[4:]}"
    raise ValueError(f"Invalid period key format: {key}")


def label_for_period_key(key: str, cadence: str) -> str:
    if cadence == "daily":
        year, month, day = (int(p) for p in key.split("-"))
        return f"{MONTH_NAMES[month - 1][:3]} {day}, {year}"
    if cadence == "monthly":
        year, month = (int(p) for p in key.split("-"))
        return f"{MONTH_NAMES[month - 1]} {year}"
    if cadence == "quarterly":
        m = re.match(r"^(\d{4})-(Q[1-4])$", key)
        return f"{m.group(2)} {m.group(1)}" if m else key
    return key


def get_available_periods(cadence: str, count: int = 24, today: date | None = None) -> list[dict[str, str]]:
    """The `count` most recent periods ending with the one containing today, newest first."""
    key = period_key_from_date(today or date.today(), cadence)
    periods = []
    for _ in range(count):
        periods.append({"key": key, "label": label_for_period_key(key, cadence)})
        key = previous_period_key(key, cadence)
    return periods


def get_periods_from_rows(rows: list[dict[str, Any]], date_column_key: str, cadence: str) -> list[dict[str, str]]:
    """Distinct periods present in rows (newest first); unparseable dates are ignored."""
    keys = {
        key
        for key in (period_key_from_value(row.get(date_column_key), cadence) for row in rows)
        if key is not None
    }
    return [{"key": k, "label": label_for_period_key(k, cadence)} for k in sorted(keys, reverse=True)]


def resolve_compare_period(current_key: str, cadence: str, compare_mode: str) -> str | None:
    if compare_mode == "mom":
        return previous_period_key(current_key, cadence)
    if compare_mode == "yoy":
        return same_period_last_year_key(current_key)
    return None
