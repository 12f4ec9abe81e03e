"""
Datetime utilities for consistent timezone handling across the application.

All instants are handled as timezone-aware UTC datetimes. Business
availability is expressed as wall-clock "HH:MM" strings in the business's IANA
timezone and is converted to instants here, in one place.

DST policy: wall-clock times are attached with ``fold=0``. A time that does not
exist (spring-forward gap) resolves using the offset in force before the
transition, which lands it after the gap by the gap's length. A time that exists
twice (fall-back overlap) resolves to its first occurrence.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def get_zone(tz_name: str) -> ZoneInfo:
    """
    Resolve an IANA timezone name.

    Raises:
        ValueError: If the timezone is unknown
    """
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {tz_name}") from e


def is_valid_timezone(tz_name: str) -> bool:
    try:
        get_zone(tz_name)
        return True
    except ValueError:
        return False


def parse_wall_clock(value: str) -> time:
    """
    Parse a wall-clock "HH:MM" string.

    Raises:
        ValueError: If the string is not a valid 24-hour time
    """
    try:
        hour_str, minute_str = value.strip().split(":")
        return time(int(hour_str), int(minute_str))
    except (AttributeError, ValueError) as e:
        raise ValueError(f"Invalid wall-clock time (expected HH:MM): {value!r}") from e


def local_wall_clock_to_instant(day: date, wall_clock: str, tz_name: str) -> datetime:
    """
    Interpret a wall-clock time on a business-local date as an absolute instant.

    Args:
        day: Calendar date in the business timezone
        wall_clock: Time of day as "HH:MM"
        tz_name: IANA timezone of the business

    Returns:
        Aware UTC datetime for that local moment (see module docstring for DST)

    Raises:
        ValueError: If the time string or timezone is invalid
    """
    local = datetime.combine(day, parse_wall_clock(wall_clock), tzinfo=get_zone(tz_name))
    return local.astimezone(timezone.utc)


def instant_to_local_display(instant: datetime, tz_name: str) -> str:
    """
    Format an instant as "h:mm AM/PM" in the given timezone.

    For display only; never used in conflict logic.
    """
    local_datetime = ensure_utc(instant).astimezone(get_zone(tz_name))
    hour = local_datetime.hour
    minute = local_datetime.minute
    period = "AM" if hour < 12 else "PM"
    hour_12 = hour % 12
    if hour_12 == 0:
        hour_12 = 12
    return f"{hour_12}:{minute:02d} {period}"


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware UTC.

    Naive values are assumed to already be UTC (this is how SQLite hands them back).
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_instant(dt_str: str) -> datetime:
    """
    Parse an ISO-8601 timestamp that carries an offset (or "Z") into UTC.

    Raises:
        ValueError: If the string is malformed or has no offset
    """
    try:
        dt = datetime.fromisoformat(dt_str.strip().replace("Z", "+00:00"))
    except (AttributeError, ValueError) as e:
        raise ValueError(f"Invalid datetime string format: {dt_str}") from e
    if dt.tzinfo is None:
        raise ValueError(f"Datetime must include a timezone offset: {dt_str}")
    return dt.astimezone(timezone.utc)


def parse_date_string(date_str: str) -> date:
    """
    Parse a date string in YYYY-MM-DD or YYYY/MM/DD format.

    Automatically normalizes single-digit months/days.

    Args:
        date_str: Date string in YYYY-MM-DD or YYYY/MM/DD format

    Returns:
        Date object

    Raises:
        ValueError: If date string cannot be parsed
    """
    if not date_str or not date_str.strip():
        raise ValueError("Date string cannot be empty")

    date_str = date_str.strip()

    if '/' in date_str:
        parts = date_str.split('/')
    elif '-' in date_str:
        parts = date_str.split('-')
    else:
        raise ValueError(f"Invalid date format (expected YYYY-MM-DD or YYYY/MM/DD): {date_str}")

    if len(parts) != 3:
        raise ValueError(f"Invalid date format (expected YYYY-MM-DD or YYYY/MM/DD): {date_str}")

    normalized = f"{parts[0].zfill(4)}-{parts[1].zfill(2)}-{parts[2].zfill(2)}"

    try:
        return datetime.strptime(normalized, '%Y-%m-%d').date()
    except ValueError as e:
        raise ValueError(f"Invalid date format (expected YYYY-MM-DD or YYYY/MM/DD): {date_str}") from e


def local_today(tz_name: str) -> date:
    """Current calendar date in the given timezone."""
    return utc_now().astimezone(get_zone(tz_name)).date()


def local_day_bounds(day: date, tz_name: str) -> Tuple[datetime, datetime]:
    """
    UTC instants bounding a business-local calendar day: [midnight, next midnight).

    The span is 23 or 25 hours on DST transition days.
    """
    zone = get_zone(tz_name)
    start = datetime.combine(day, time(0, 0), tzinfo=zone).astimezone(timezone.utc)
    end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=zone).astimezone(timezone.utc)
    return start, end


def local_date_of(instant: datetime, tz_name: str) -> date:
    """Business-local calendar date on which an instant falls."""
    return ensure_utc(instant).astimezone(get_zone(tz_name)).date()


def date_range(start: date, end: date) -> list[date]:
    """Inclusive list of dates from start to end (empty if end < start)."""
    days = (end - start).days
    return [start + timedelta(days=offset) for offset in range(days + 1)]


def to_iso_utc(dt: datetime) -> str:
    """Format an instant as RFC 3339 with a Z suffix."""
    iso_str = ensure_utc(dt).isoformat()
    if iso_str.endswith('+00:00'):
        return iso_str[:-6] + 'Z'
    return iso_str
