"""
Date and time normalization for extracted values.

The extractor reports dates as DD/MM/YYYY and times as HH:MM, but model
output drifts: single-digit parts, American month-first order, ISO dates.
Values that cannot be repaired are dropped so the caller falls back to the
current local date/time.
"""

import re
from datetime import date, datetime
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/Bogota"

_SLASH_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_TIME = re.compile(r"^(\d{1,2}):(\d{2})$")

MIN_YEAR = 2000
MAX_YEAR = 2100


def _calendar_date(year: int, month: int, day: int) -> date | None:
    if not MIN_YEAR <= year <= MAX_YEAR:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def validate_and_fix_date(value: str | None) -> str | None:
    """
    Normalize an extracted date to DD/MM/YYYY.

    Day-first order is assumed. A month-first date is swapped only when the
    day-first reading is impossible and the swapped one is valid.

    Examples:
        >>> validate_and_fix_date("3/7/2024")
        '03/07/2024'
        >>> validate_and_fix_date("12/25/2024")
        '25/12/2024'
        >>> validate_and_fix_date("2024-11-23")
        '23/11/2024'
        >>> validate_and_fix_date("31/02/2024") is None
        True
    """
    if not value:
        return None
    text = value.strip()

    match = _SLASH_DATE.match(text)
    if match:
        first, second, year = (int(g) for g in match.groups())
        parsed = _calendar_date(year, second, first)
        if parsed is None and second > 12:
            parsed = _calendar_date(year, first, second)
        return parsed.strftime("%d/%m/%Y") if parsed else None

    match = _ISO_DATE.match(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
        parsed = _calendar_date(year, month, day)
        return parsed.strftime("%d/%m/%Y") if parsed else None

    return None


def validate_and_fix_time(value: str | None) -> str | None:
    """Normalize an extracted time to zero-padded HH:MM (24-hour)."""
    if not value:
        return None
    match = _TIME.match(value.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return f"{hours:02d}:{minutes:02d}"


def convert_date_format(ddmmyyyy: str) -> str:
    """Convert DD/MM/YYYY to YYYY-MM-DD."""
    day, month, year = ddmmyyyy.split("/")
    return f"{year}-{month}-{day}"


def format_date_for_display(yyyymmdd: str) -> str:
    """Convert YYYY-MM-DD to DD/MM/YYYY."""
    year, month, day = yyyymmdd.split("-")
    return f"{day}/{month}/{year}"


def current_local_times(tz_name: str = DEFAULT_TIMEZONE, now: datetime | None = None) -> tuple[str, str]:
    """Current (YYYY-MM-DD, HH:MM) in the given timezone."""
    current = (now or datetime.now(ZoneInfo(tz_name))).astimezone(ZoneInfo(tz_name))
    return current.strftime("%Y-%m-%d"), current.strftime("%H:%M")


def resolve_date_time(
    original_date: str | None,
    original_time: str | None,
    tz_name: str = DEFAULT_TIMEZONE,
    now: datetime | None = None,
) -> tuple[str, str]:
    """
    Final (YYYY-MM-DD, HH:MM) for a transaction.

    Each part falls back to the current local value independently.
    """
    today, current_time = current_local_times(tz_name, now)

    fixed_date = validate_and_fix_date(original_date)
    fixed_time = validate_and_fix_time(original_time)

    return (
        convert_date_format(fixed_date) if fixed_date else today,
        fixed_time or current_time,
    )
