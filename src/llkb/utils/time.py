"""Time utilities for LLKB.

Provides timezone-aware datetime helpers. Every timestamp LLKB persists is
UTC; naive values read from older files are interpreted as UTC.
"""

from datetime import UTC, datetime

SECONDS_PER_DAY = 86400.0


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime.

    Returns:
        datetime: Current UTC time with tzinfo=UTC
    """
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime, or convert an aware one to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def days_between(start: datetime, end: datetime) -> float:
    """Absolute number of days between two datetimes, fractional.

    Args:
        start: First point in time.
        end: Second point in time.

    Returns:
        Non-negative day count (order of arguments does not matter).
    """
    delta = ensure_utc(end) - ensure_utc(start)
    return abs(delta.total_seconds()) / SECONDS_PER_DAY
