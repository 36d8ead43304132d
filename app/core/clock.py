"""
Server-time helpers.

Every lockout and expiry comparison goes through `utcnow()` so all
arithmetic is done on timezone-aware UTC values.  Some backends (SQLite)
hand back naive datetimes; `ensure_utc` normalises those before they are
compared.
"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_utc_day(moment: datetime) -> datetime:
    """Midnight (UTC) of the day containing `moment`."""
    moment = ensure_utc(moment)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def add_hours_clamped(start: datetime, hours: int, max_hours: int) -> datetime:
    """`start + hours`, never past `max_hours` and never past datetime.max."""
    bounded = max(0, min(hours, max_hours))
    try:
        return start + timedelta(hours=bounded)
    except OverflowError:
        return datetime.max.replace(tzinfo=timezone.utc)
