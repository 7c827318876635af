"""
Datetime utility functions for handling timezone-aware datetimes.
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Return the current datetime in UTC timezone.

    All wall-clock reads in the session engine go through this function so
    tests can freeze or advance time by patching it.

    Returns:
        A timezone-aware datetime object representing the current time in UTC.
    """
    return datetime.now(timezone.utc)


def ensure_timezone_aware(dt: Optional[datetime]) -> datetime:
    """
    Ensure a datetime object is timezone-aware (UTC).
    SQLite returns timezone-naive datetimes even when stored as timezone-aware.

    Args:
        dt: The datetime to ensure is timezone-aware

    Returns:
        A timezone-aware datetime object in UTC

    Raises:
        ValueError: If dt is None
    """
    if dt is None:
        raise ValueError("datetime cannot be None")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def elapsed_seconds(since: datetime, now: Optional[datetime] = None) -> int:
    """
    Whole seconds elapsed between ``since`` and ``now`` (defaults to utc_now()).

    Never negative: a ``since`` in the future yields 0.
    """
    current = now or utc_now()
    delta = current - ensure_timezone_aware(since)
    return max(0, int(delta.total_seconds()))
