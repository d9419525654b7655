"""
Timezone utilities for mediatrack.
Provides consistent UTC datetime handling.
"""
from datetime import date, datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone info.
    Replacement for deprecated datetime.utcnow().
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is UTC and timezone-aware.
    Naive datetimes (SQLite hands them back that way) are assumed to be UTC already.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_iso_utc(dt: Optional[datetime]) -> str:
    """
    Format datetime as ISO string in UTC.
    Returns empty string if datetime is None.
    """
    utc_dt = ensure_utc(dt)
    if utc_dt is None:
        return ""
    return utc_dt.isoformat()


def parse_release_date(value: Optional[str]) -> Optional[date]:
    """Parse a TMDB YYYY-MM-DD date; empty or malformed values become None."""
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None
