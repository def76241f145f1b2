"""Helpers for UTC timestamps and the calendar windows used by rollups.

All stored timestamps are naive UTC, matching the ``DateTime`` columns.
"""

from datetime import UTC, date, datetime, time, timedelta


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


def start_of_day(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min)


def day_window(reference: datetime) -> tuple[datetime, datetime]:
    """Return ``[yesterday 00:00, today 00:00)`` relative to ``reference``."""
    end = start_of_day(reference)
    return end - timedelta(days=1), end


def week_window(reference: datetime) -> tuple[datetime, datetime]:
    """Return the Sunday-to-Saturday week that ended before ``reference``'s week.

    The window is half open: ``[sunday 00:00, next sunday 00:00)``.
    """
    last_week = start_of_day(reference) - timedelta(days=7)
    # isoweekday: Monday=1 .. Sunday=7
    start = last_week - timedelta(days=last_week.isoweekday() % 7)
    return start, start + timedelta(days=7)


def month_window(reference: datetime) -> tuple[datetime, datetime]:
    """Return the previous calendar month as ``[first 00:00, next first 00:00)``."""
    end = start_of_day(reference.replace(day=1))
    start = (end - timedelta(days=1)).replace(day=1)
    return start, end
