from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from familyhub.core.settings import get_settings

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Naive UTC now, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def get_local_timezone() -> ZoneInfo:
    try:
        return ZoneInfo(get_settings().locale.timezone)
    except ZoneInfoNotFoundError:
        return ZoneInfo("UTC")


def to_local(dt: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """
    Converts a datetime to the household timezone.
    Assumes naive datetimes are UTC.
    """
    if tz is None:
        tz = get_local_timezone()

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(tz)


def format_time(dt: datetime, tz: Optional[ZoneInfo] = None) -> str:
    """
    Returns HH:MM in local time.
    """
    return to_local(dt, tz).strftime("%H:%M")


def format_day(dt: datetime, tz: Optional[ZoneInfo] = None) -> str:
    """
    Returns e.g. 'Tue 14 Jan' in local time.
    """
    local_dt = to_local(dt, tz)
    return f"{local_dt.strftime('%a')} {local_dt.day} {local_dt.strftime('%b')}"


def parse_iso(value: str) -> Optional[datetime]:
    """Parses ISO-8601 strings (with 'Z' or offsets) into naive UTC."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_naive_utc(dt)


def local_day_start(dt: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """Naive UTC instant of local midnight on the day ``dt`` falls on locally."""
    local_dt = to_local(dt, tz)
    midnight = datetime.combine(local_dt.date(), datetime.min.time(), tzinfo=local_dt.tzinfo)
    return to_naive_utc(midnight)
