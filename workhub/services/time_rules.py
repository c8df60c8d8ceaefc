"""
Time rules for tracked work.
Timezone conversions, minute rounding and locale-flexible hour parsing.

All instants are handled as timezone-aware UTC; calendar dates are derived in
the configured local timezone. Durations are always the difference of two UTC
instants, so daylight-saving transitions never skew them.
"""
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

import pytz

from ..config import settings


def _tz(timezone_str: Optional[str]):
    try:
        return pytz.timezone(timezone_str or settings.tz_default)
    except pytz.UnknownTimeZoneError:
        return pytz.UTC


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes (as read back from SQLite) are taken to be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def local_to_utc(local_datetime: datetime, timezone_str: Optional[str] = None) -> datetime:
    """
    Convert local datetime to UTC.

    Args:
        local_datetime: Local datetime (naive, or aware in any zone)
        timezone_str: Timezone string (defaults to TZ_DEFAULT)

    Returns:
        UTC datetime (timezone-aware)
    """
    tz = _tz(timezone_str)
    if local_datetime.tzinfo is None:
        local_dt = tz.localize(local_datetime)
    else:
        local_dt = local_datetime.astimezone(tz)
    return local_dt.astimezone(pytz.UTC)


def utc_to_local(utc_datetime: datetime, timezone_str: Optional[str] = None) -> datetime:
    return as_utc(utc_datetime).astimezone(_tz(timezone_str))


def local_date(utc_datetime: datetime, timezone_str: Optional[str] = None) -> date:
    """Calendar day of an instant in the local timezone."""
    return utc_to_local(utc_datetime, timezone_str).date()


def local_midnight_utc(day: date, timezone_str: Optional[str] = None) -> datetime:
    """Midnight of ``day`` in the local timezone, expressed in UTC."""
    return local_to_utc(datetime.combine(day, time.min), timezone_str)


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, rounded half up, never negative."""
    seconds = (as_utc(end) - as_utc(start)).total_seconds()
    if seconds <= 0:
        return 0
    return _round_half_up(Decimal(str(seconds)) / Decimal(60))


def elapsed_minutes(start: datetime, now: datetime) -> int:
    """Running time of an open entry, floored so it never runs ahead of the clock."""
    seconds = (as_utc(now) - as_utc(start)).total_seconds()
    return max(0, int(seconds // 60))


def parse_hours(value: Union[str, int, float, Decimal, None]) -> Decimal:
    """
    Parse an hour amount accepting either comma or period as decimal separator.

    Raises:
        ValueError: empty, unparsable, non-finite or negative input
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError("hours required")
    if isinstance(value, bool):
        raise ValueError("invalid hours")
    raw = value.strip().replace(",", ".") if isinstance(value, str) else str(value)
    try:
        hours = Decimal(raw)
    except InvalidOperation:
        raise ValueError("invalid hours")
    if not hours.is_finite() or hours < 0:
        raise ValueError("invalid hours")
    return hours


def hours_to_minutes(hours: Decimal) -> int:
    return _round_half_up(hours * 60)
