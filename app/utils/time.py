"""
Time utilities for civil-date and UTC handling.

The reading plan is keyed by calendar date in a fixed civil timezone
(Asia/Jakarta by default), never the server's local time. Persisted
timestamps are naive UTC.
"""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo
from typing import Optional

DEFAULT_TIMEZONE = "Asia/Jakarta"


def get_zone(tz_name: Optional[str] = None) -> ZoneInfo:
    """Resolve a timezone name, falling back to the default zone."""
    return ZoneInfo(tz_name or DEFAULT_TIMEZONE)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_current_time_local(tz_name: Optional[str] = None) -> datetime:
    """Get the current time in the given civil timezone."""
    return datetime.now(get_zone(tz_name))


def to_local(dt: datetime, tz_name: Optional[str] = None) -> datetime:
    """
    Convert a datetime to the civil timezone.

    Args:
        dt: Datetime to convert; naive values are taken as UTC

    Returns:
        Datetime in the civil timezone
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(get_zone(tz_name))


def today_local(tz_name: Optional[str] = None, now: Optional[datetime] = None) -> date:
    """
    Calendar date in the civil timezone.

    Args:
        tz_name: Timezone name, e.g. "Asia/Jakarta"
        now: Reference instant; naive values are taken as UTC

    Returns:
        The civil date at that instant
    """
    if now is None:
        return get_current_time_local(tz_name).date()
    return to_local(now, tz_name).date()
