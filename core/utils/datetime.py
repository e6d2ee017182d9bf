"""Datetime utilities for pipeline timing calculations.

All persisted timestamps are naive UTC; helpers here produce and consume that
representation.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400


def utcnow() -> datetime:
    """Get current datetime in UTC, without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to naive UTC.

    Aware values are converted; naive values are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: str) -> Optional[datetime]:
    """
    Parse an ISO-8601 date or datetime string.

    Args:
        value: String such as "2025-01-31" or "2025-01-31T10:00:00Z"

    Returns:
        Naive UTC datetime, or None if the string is not a valid date
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return to_naive_utc(parsed)


def hours_between(start: datetime, end: datetime) -> float:
    """
    Calculate number of hours between two datetimes.

    Args:
        start: Start datetime
        end: End datetime

    Returns:
        Number of hours (can be fractional or negative)
    """
    return (end - start).total_seconds() / SECONDS_PER_HOUR


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days between two datetimes."""
    return (end - start).total_seconds() / SECONDS_PER_DAY


def whole_days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed between two datetimes, floored."""
    return int((end - start).total_seconds() // SECONDS_PER_DAY)


def local_day_bounds(reference: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """
    Start of the current server-local calendar day and the start of the next,
    both expressed as naive UTC.
    """
    local_now = (reference or datetime.now(timezone.utc)).astimezone()
    start_local = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return to_naive_utc(start_local), to_naive_utc(start_local + timedelta(days=1))


def local_week_bounds(reference: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """
    Start of the current server-local calendar week (weeks start on Sunday)
    and the start of the following week, both expressed as naive UTC.
    """
    local_now = (reference or datetime.now(timezone.utc)).astimezone()
    start_of_today = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    # Python weekdays run Monday=0..Sunday=6
    days_since_sunday = (start_of_today.weekday() + 1) % 7
    start_local = start_of_today - timedelta(days=days_since_sunday)
    return to_naive_utc(start_local), to_naive_utc(start_local + timedelta(days=7))


def local_month_start(reference: Optional[datetime] = None) -> datetime:
    """First instant of the current server-local calendar month, as naive UTC."""
    local_now = (reference or datetime.now(timezone.utc)).astimezone()
    start_local = local_now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return to_naive_utc(start_local)
