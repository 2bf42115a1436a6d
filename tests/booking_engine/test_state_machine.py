import itertools
from datetime import datetime

import pytest

from booking_engine.models import (
    Booking, BookingStatus, ProviderKind, ProviderProfile, ProviderStatus, TimeWindow,
)
from booking_engine.state_machine import (
    BOOKING_TRANSITIONS, PROVIDER_TRANSITIONS, InvalidTransition, apply_transition, is_terminal, transition,
    transition_table,
)

NOW = datetime(2026, 10, 22, 8, 0)

PROVIDER_ALLOWED = {
    (ProviderStatus.PENDING, ProviderStatus.ACTIVE),
    (ProviderStatus.PENDING, ProviderStatus.SUSPENDED),
    (ProviderStatus.PENDING, ProviderStatus.INACTIVE),
    (ProviderStatus.ACTIVE, ProviderStatus.SUSPENDED),
    (ProviderStatus.ACTIVE, ProviderStatus.INACTIVE),
    (ProviderStatus.ACTIVE, ProviderStatus.BLACKLISTED),
    (ProviderStatus.SUSPENDED, ProviderStatus.ACTIVE),
    (ProviderStatus.SUSPENDED, ProviderStatus.INACTIVE),
    (ProviderStatus.SUSPENDED, ProviderStatus.BLACKLISTED),
    (ProviderStatus.INACTIVE, ProviderStatus.ACTIVE),
    (ProviderStatus.INACTIVE, ProviderStatus.SUSPENDED),
    (ProviderStatus.BLACKLISTED, ProviderStatus.INACTIVE),
}

BOOKING_ALLOWED = {
    (BookingStatus.SCHEDULED, BookingStatus.CONFIRMED),
    (BookingStatus.SCHEDULED, BookingStatus.CANCELLED),
    (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS),
    (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    (BookingStatus.CONFIRMED, BookingStatus.DELAYED),
    (BookingStatus.DELAYED, BookingStatus.IN_PROGRESS),
    (BookingStatus.DELAYED, BookingStatus.CANCELLED),
    (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED),
    (BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED),
}


def make_provider(status=ProviderStatus.PENDING):
    return ProviderProfile(id=1, owner_user_id="user-1", kind=ProviderKind.GUIDE, status=status)


def make_booking(status=BookingStatus.SCHEDULED):
    window = TimeWindow(start=datetime(2026, 10, 26, 10, 0), end=datetime(2026, 10, 26, 11, 0))
    return Booking(id=1, requester_id="customer-1", status=status, window=window)


@pytest.mark.parametrize("current,requested", list(itertools.product(ProviderStatus, ProviderStatus)))
def test_provider_transitions(current, requested):
    if (current, requested) in PROVIDER_ALLOWED:
        assert transition(current, requested, PROVIDER_TRANSITIONS) == requested
    else:
        with pytest.raises(InvalidTransition):
            transition(current, requested, PROVIDER_TRANSITIONS)


@pytest.mark.parametrize("current,requested", list(itertools.product(BookingStatus, BookingStatus)))
def test_booking_transitions(current, requested):
    if (current, requested) in BOOKING_ALLOWED:
        assert transition(current, requested, BOOKING_TRANSITIONS) == requested
    else:
        with pytest.raises(InvalidTransition):
            transition(current, requested, BOOKING_TRANSITIONS)


def test_suspended_provider_can_be_reactivated():
    provider = make_provider(ProviderStatus.SUSPENDED)

    entry = apply_transition(provider, ProviderStatus.ACTIVE, "admin-1", NOW, reason="Appeal accepted")

    assert provider.status == ProviderStatus.ACTIVE
    assert provider.status_history == [entry]


def test_pending_cannot_be_blacklisted():
    provider = make_provider(ProviderStatus.PENDING)

    with pytest.raises(InvalidTransition):
        apply_transition(provider, ProviderStatus.BLACKLISTED, "admin-1", NOW)

    assert provider.status == ProviderStatus.PENDING
    assert provider.status_history == []


def test_blacklisted_cannot_reactivate_directly():
    provider = make_provider(ProviderStatus.BLACKLISTED)

    with pytest.raises(InvalidTransition) as exc_info:
        apply_transition(provider, ProviderStatus.ACTIVE, "admin-1", NOW)

    assert exc_info.value.from_state == ProviderStatus.BLACKLISTED
    assert exc_info.value.to_state == ProviderStatus.ACTIVE
    assert "blacklisted" in str(exc_info.value) and "active" in str(exc_info.value)
    assert provider.status == ProviderStatus.BLACKLISTED
    assert provider.status_history == []


def test_blacklisted_probation_path():
    provider = make_provider(ProviderStatus.BLACKLISTED)

    apply_transition(provider, ProviderStatus.INACTIVE, "admin-1", NOW, reason="Probation")
    apply_transition(provider, ProviderStatus.ACTIVE, "admin-1", NOW, reason="Reinstated")

    assert provider.status == ProviderStatus.ACTIVE
    assert [entry.status for entry in provider.status_history] == ["inactive", "active"]


def test_history_grows_by_one_per_transition():
    booking = make_booking()
    path = [BookingStatus.CONFIRMED, BookingStatus.DELAYED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED]

    for index, status in enumerate(path, start=1):
        entry = apply_transition(booking, status, "staff-1", NOW, notes=f"step {index}")
        assert len(booking.status_history) == index
        assert booking.status_history[-1] == entry
        assert entry.status == status.value
        assert entry.actor_id == "staff-1"
        assert entry.timestamp == NOW


def test_rejected_transition_leaves_history_untouched():
    booking = make_booking(BookingStatus.CONFIRMED)
    apply_transition(booking, BookingStatus.IN_PROGRESS, "driver-1", NOW)

    with pytest.raises(InvalidTransition):
        apply_transition(booking, BookingStatus.SCHEDULED, "driver-1", NOW)

    assert booking.status == BookingStatus.IN_PROGRESS
    assert len(booking.status_history) == 1


@pytest.mark.parametrize("status", [BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW])
def test_terminal_booking_statuses(status):
    assert is_terminal(status)
    for requested in BookingStatus:
        with pytest.raises(InvalidTransition):
            transition(status, requested, BOOKING_TRANSITIONS)


@pytest.mark.parametrize("status", [
    BookingStatus.SCHEDULED, BookingStatus.CONFIRMED, BookingStatus.DELAYED, BookingStatus.IN_PROGRESS,
])
def test_live_booking_statuses(status):
    assert not is_terminal(status)


def test_no_show_is_not_reachable():
    assert all(BookingStatus.NO_SHOW not in targets for targets in BOOKING_TRANSITIONS.values())


def test_transition_table_is_serialisable():
    table = transition_table(PROVIDER_TRANSITIONS)

    assert table["blacklisted"] == ["inactive"]
    assert table["pending"] == ["active", "inactive", "suspended"]
    assert set(table) == {status.value for status in ProviderStatus}
    assert transition_table(BOOKING_TRANSITIONS)["completed"] == []
