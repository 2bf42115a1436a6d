from datetime import date, datetime, time, timedelta, timezone
from typing import List, Tuple

from .models import TimeWindow, Weekday


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the engine's default clock."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def weekday_of(day: date) -> Weekday:
    """Maps a date to its Weekday enum member (date.weekday() is 0 for Monday)."""
    return list(Weekday)[day.weekday()]


def dates_touched(window: TimeWindow) -> List[date]:
    """
    Returns every calendar date the half-open window [start, end) intersects.

    A window ending exactly at midnight does not touch the following date.

    Args:
        window (TimeWindow): The window to inspect.

    Returns:
        List[date]: Dates in ascending order, at least one entry.
    """
    last_instant = window.end
    if window.end.time() == time(0, 0):
        last_instant = window.end - timedelta(microseconds=1)

    days = []
    current = window.start.date()
    while current <= last_instant.date():
        days.append(current)
        current += timedelta(days=1)
    return days


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Half-open bounds of a calendar date."""
    start = datetime.combine(day, time(0, 0))
    return start, start + timedelta(days=1)


def windows_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval overlap; touching endpoints do not overlap."""
    return a_start < b_end and b_start < a_end
