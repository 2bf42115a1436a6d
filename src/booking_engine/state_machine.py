"""
Status state machines for providers and bookings.

Each state space has exactly one transition table. Callers validate a move with
transition(), or use apply_transition() to validate, update the record and
append its history entry in one step.
"""

import logging
from datetime import datetime
from typing import Dict, FrozenSet, Mapping, Optional, TypeVar, Union

from .models import Booking, BookingStatus, ProviderProfile, ProviderStatus, StatusHistoryEntry

logger = logging.getLogger(__name__)

S = TypeVar('S', ProviderStatus, BookingStatus)


PROVIDER_TRANSITIONS: Dict[ProviderStatus, FrozenSet[ProviderStatus]] = {
    ProviderStatus.PENDING: frozenset({ProviderStatus.ACTIVE, ProviderStatus.SUSPENDED, ProviderStatus.INACTIVE}),
    ProviderStatus.ACTIVE: frozenset({ProviderStatus.SUSPENDED, ProviderStatus.INACTIVE, ProviderStatus.BLACKLISTED}),
    ProviderStatus.SUSPENDED: frozenset({ProviderStatus.ACTIVE, ProviderStatus.INACTIVE, ProviderStatus.BLACKLISTED}),
    ProviderStatus.INACTIVE: frozenset({ProviderStatus.ACTIVE, ProviderStatus.SUSPENDED}),
    # Single probation exit
    ProviderStatus.BLACKLISTED: frozenset({ProviderStatus.INACTIVE}),
}

BOOKING_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.SCHEDULED: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED, BookingStatus.DELAYED}),
    BookingStatus.DELAYED: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

PROVIDER_INITIAL_STATUS = ProviderStatus.PENDING
BOOKING_INITIAL_STATUS = BookingStatus.SCHEDULED


class InvalidTransition(Exception):
    """Raised when a requested status change is not in the transition table."""

    def __init__(self, from_state, to_state):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid status transition from {_value(from_state)} to {_value(to_state)}")


def transition(current: S, requested: S, allowed_transitions: Mapping[S, FrozenSet[S]]) -> S:
    """
    Validates a single status change against a transition table.

    Args:
        current: The record's current status.
        requested: The status the caller wants to move to.
        allowed_transitions: The authoritative table for this state space.

    Returns:
        The new status (equal to requested).

    Raises:
        InvalidTransition: If (current, requested) is not in the table.
    """
    if requested not in allowed_transitions.get(current, frozenset()):
        raise InvalidTransition(current, requested)
    return requested


def is_terminal(status: BookingStatus) -> bool:
    return not BOOKING_TRANSITIONS[status]


def apply_transition(
    record: Union[ProviderProfile, Booking],
    requested: S,
    actor_id: str,
    now: datetime,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> StatusHistoryEntry:
    """
    Moves a provider or booking to a new status and appends its history entry.

    Nothing on the record changes if the transition is rejected.

    Returns:
        StatusHistoryEntry: The entry that was appended.
    """
    table = PROVIDER_TRANSITIONS if isinstance(record, ProviderProfile) else BOOKING_TRANSITIONS
    new_status = transition(record.status, requested, table)

    entry = StatusHistoryEntry(
        status=new_status.value,
        timestamp=now,
        actor_id=actor_id,
        reason=reason,
        notes=notes
    )
    record.status = new_status
    record.status_history.append(entry)
    logger.info(f"{type(record).__name__} {record.id} transitioned to {new_status.value} by {actor_id}")
    return entry


def transition_table(allowed_transitions: Mapping[S, FrozenSet[S]]) -> Dict[str, list]:
    """Serialisable copy of a table, targets sorted for stable output."""
    return {
        state.value: sorted(target.value for target in targets)
        for state, targets in allowed_transitions.items()
    }


def _value(state) -> str:
    return getattr(state, 'value', str(state))
