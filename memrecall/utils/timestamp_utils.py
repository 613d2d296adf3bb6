"""
Timestamp utilities for consistent time handling across the system.
"""

import time
from datetime import datetime, timezone
from typing import Optional, Union

SECONDS_PER_DAY = 86400.0


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC.

    Args:
        value: datetime to normalize

    Returns:
        Timezone-aware UTC datetime
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_datetime(timestamp: Optional[Union[int, float, str, datetime]] = None) -> datetime:
    """Convert a timestamp to a UTC datetime object.

    Args:
        timestamp: Unix seconds, ISO-8601 string or datetime (uses current time if None)

    Returns:
        Timezone-aware UTC datetime
    """
    if timestamp is None:
        timestamp = time.time()
    if isinstance(timestamp, datetime):
        return ensure_utc(timestamp)
    if isinstance(timestamp, str):
        if timestamp.strip().lstrip('-').isdigit():
            return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
        return ensure_utc(datetime.fromisoformat(timestamp.replace('Z', '+00:00')))
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def days_since(moment: datetime, now: Optional[datetime] = None) -> float:
    """Fractional days elapsed from moment to now, never negative.

    Args:
        moment: Earlier point in time
        now: Reference time (current UTC time if None)

    Returns:
        Elapsed days; timestamps in the future count as 0
    """
    now = ensure_utc(now) if now is not None else utc_now()
    elapsed = (now - ensure_utc(moment)).total_seconds() / SECONDS_PER_DAY
    return max(elapsed, 0.0)
