"""
Provider availability module.

Decides whether a proposed booking window fits a provider's AvailabilityPolicy:
- the window must not start in the past or inside the minimum notice period
- it must start within the advance-booking window
- every calendar date it touches must be a working day and not blocked,
  either as a one-off date or by a recurring block
- it must sit fully inside the working hours of a single day

Existing bookings are not considered here, see conflicts.py.
"""

import logging
from datetime import datetime, timedelta

from .models import AvailabilityCheck, AvailabilityPolicy, AvailabilityResult, TimeWindow
from .utils import dates_touched, weekday_of

logger = logging.getLogger(__name__)


def evaluate(policy: AvailabilityPolicy, window: TimeWindow, now: datetime) -> AvailabilityCheck:
    """
    Evaluates a proposed window against an availability policy.

    Rules are checked in a fixed order and the first failing rule wins, so the
    same inputs always yield the same result. Never raises for an unavailable
    window; being unavailable is an ordinary outcome.

    Args:
        policy (AvailabilityPolicy): The provider's availability rules.
        window (TimeWindow): The proposed booking window.
        now (datetime): The current time, injected by the caller.

    Returns:
        AvailabilityCheck: The result code, a human-readable reason and
            whether the window is available.
    """
    if window.start < now:
        return _result(AvailabilityResult.PAST_DATE, f"Window starts in the past ({window.start:%Y-%m-%d %H:%M})")

    notice = timedelta(hours=policy.minimum_notice_hours)
    if window.start < now + notice:
        return _result(
            AvailabilityResult.INSUFFICIENT_NOTICE,
            f"Bookings need at least {policy.minimum_notice_hours} hours notice"
        )

    horizon = now + timedelta(days=policy.advance_booking_days)
    if window.start > horizon:
        return _result(
            AvailabilityResult.OUT_OF_WINDOW,
            f"Bookings can only be made up to {policy.advance_booking_days} days in advance"
        )

    days = dates_touched(window)

    working_days = set(policy.working_days)
    for day in days:
        weekday = weekday_of(day)
        if weekday not in working_days:
            return _result(AvailabilityResult.NON_WORKING_DAY, f"{weekday.value.capitalize()} {day} is not a working day")

    blocked = {b.date: b.reason for b in policy.blocked_dates}
    for day in days:
        if day in blocked:
            return _result(AvailabilityResult.BLOCKED, f"{day} is blocked: {blocked[day]}")
        for block in policy.recurring_blocks:
            if block.matches(day):
                return _result(
                    AvailabilityResult.BLOCKED,
                    f"{day} is blocked ({block.pattern.value}): {block.reason}"
                )

    hours = policy.working_hours
    # A window ending at midnight has end.date() on the next day: never inside hours.
    spans_days = window.end.date() != window.start.date()
    if spans_days or window.start.time() < hours.start or window.end.time() > hours.end:
        return _result(
            AvailabilityResult.OUTSIDE_HOURS,
            f"Window must fall within working hours {hours.start:%H:%M}-{hours.end:%H:%M}"
        )

    return _result(AvailabilityResult.AVAILABLE, "Provider is available for this window")


def _result(result: AvailabilityResult, reason: str) -> AvailabilityCheck:
    logger.debug(f"Availability evaluated: {result.value} ({reason})")
    return AvailabilityCheck(
        result=result,
        reason=reason,
        available=result == AvailabilityResult.AVAILABLE
    )
