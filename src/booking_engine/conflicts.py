from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional

from .models import Booking, BookingStatus, ConflictResult, TimeWindow
from .state_machine import is_terminal
from .utils import dates_touched, day_bounds, windows_overlap

# Statuses that use up one of a provider's daily booking slots.
DAY_CAP_STATUSES = frozenset({BookingStatus.SCHEDULED, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS})


def relevant_bookings(
    provider_id: int,
    existing_bookings: Iterable[Booking],
    exclude_booking_id: Optional[int] = None,
) -> List[Booking]:
    """
    Filters bookings down to the live ones held by a provider.

    Args:
        provider_id (int): The provider being checked.
        existing_bookings (Iterable[Booking]): Candidate bookings, possibly for other providers.
        exclude_booking_id (Optional[int]): A booking to ignore, e.g. the one being assigned.

    Returns:
        List[Booking]: Non-terminal bookings assigned to provider_id.
    """
    return [
        booking for booking in existing_bookings
        if booking.provider_id == provider_id
        and booking.id != exclude_booking_id
        and not is_terminal(booking.status)
    ]


def bookings_per_day(bookings: Iterable[Booking], days: Iterable[date]) -> Dict[date, int]:
    """Counts, per date, the bookings in DAY_CAP_STATUSES whose window intersects that date."""
    counts: Dict[date, int] = defaultdict(int)
    days = list(days)
    for booking in bookings:
        if booking.status not in DAY_CAP_STATUSES:
            continue
        for day in days:
            day_start, day_end = day_bounds(day)
            if windows_overlap(booking.window.start, booking.window.end, day_start, day_end):
                counts[day] += 1
    return dict(counts)


def check_conflict(
    provider_id: int,
    proposed_window: TimeWindow,
    existing_bookings: Iterable[Booking],
    max_bookings_per_day: int,
    exclude_booking_id: Optional[int] = None,
) -> ConflictResult:
    """
    Checks a proposed window against a provider's existing bookings.

    Overlap is tested first, then the per-day cap on every date the proposed
    window touches. Nothing is mutated.

    Args:
        provider_id (int): The provider being booked.
        proposed_window (TimeWindow): The window to place.
        existing_bookings (Iterable[Booking]): Bookings to test against.
        max_bookings_per_day (int): The provider's daily cap.
        exclude_booking_id (Optional[int]): A booking to leave out of the check.

    Returns:
        ConflictResult: NO_CONFLICT, OVERLAPPING_BOOKING or DAY_FULL.
    """
    bookings = relevant_bookings(provider_id, existing_bookings, exclude_booking_id)

    for booking in bookings:
        if windows_overlap(proposed_window.start, proposed_window.end, booking.window.start, booking.window.end):
            return ConflictResult.OVERLAPPING_BOOKING

    counts = bookings_per_day(bookings, dates_touched(proposed_window))
    if any(count >= max_bookings_per_day for count in counts.values()):
        return ConflictResult.DAY_FULL

    return ConflictResult.NO_CONFLICT
