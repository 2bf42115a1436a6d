"""
Assignment service.

Orchestrates availability, conflict and eligibility checks, commits provider
assignments and is the only writer of provider/booking status, booking
provider references and status history.

Every assignment runs under a per-booking and a per-provider lock, taken in
that order, and inside one database transaction. Two requests for the same
provider and overlapping windows can never both succeed, and two requests for
the same booking run one after the other. Both rows are also selected FOR
UPDATE, which extends the guarantee across processes on databases that
honour it.
"""

import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import repository
from .availability import evaluate
from .conflicts import check_conflict
from .db import models as db_models
from .eligibility import explain, is_assignable, serves_location
from .models import (
    AssignmentOutcome, AssignmentReason, AvailabilityCheck, AvailabilityPolicy, Booking, BookingStatus,
    ConflictResult, Location, ProviderKind, ProviderProfile, ProviderStatus, ServiceArea, StatusHistoryEntry,
    TimeWindow, Verification,
)
from .repository import DuplicateProvider
from .state_machine import BOOKING_INITIAL_STATUS, PROVIDER_INITIAL_STATUS, InvalidTransition, apply_transition
from .utils import utcnow

logger = logging.getLogger(__name__)

ASSIGNABLE_BOOKING_STATUSES = (BookingStatus.SCHEDULED, BookingStatus.CONFIRMED)

CONFLICT_MESSAGES = {
    ConflictResult.OVERLAPPING_BOOKING: "Provider already has a booking overlapping this window",
    ConflictResult.DAY_FULL: "Provider has reached the maximum number of bookings for this day",
}


class LockTimeout(Exception):
    """Raised when a provider or booking lock could not be acquired in time."""

    def __init__(self, record_type: str, record_id: int):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(f"Timed out waiting for {record_type.lower()} {record_id}; retry the request")


class RecordLocks:
    """
    Registry of one mutex per record id.

    Entries are held weakly, so a lock disappears once no thread holds or
    references it and the registry does not grow with every id ever seen.
    """

    def __init__(self, record_type: str):
        self.record_type = record_type
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def get(self, record_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(record_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[record_id] = lock
            return lock

    @contextmanager
    def hold(self, record_id: int, timeout: float):
        lock = self.get(record_id)
        if not lock.acquire(timeout=timeout):
            raise LockTimeout(self.record_type, record_id)
        try:
            yield
        finally:
            lock.release()


# Shared by every AssignmentService in the process. Booking locks are always
# taken before provider locks.
BOOKING_LOCKS = RecordLocks("Booking")
PROVIDER_LOCKS = RecordLocks("Provider")


class AssignmentService:
    """
    Answers "can provider X take booking Y" and performs the assignment.

    Args:
        db: The SQLAlchemy session; the service commits or rolls it back.
        clock: Returns the current time; injected so results are deterministic.
        locks: Per-provider lock registry, defaults to the process-wide one.
        booking_locks: Per-booking lock registry, defaults to the process-wide one.
        lock_timeout: Seconds to wait for a lock before giving up.
        record_provider_assignments: Also append an entry to the provider's
            history on every successful assignment.
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        locks: Optional[RecordLocks] = None,
        booking_locks: Optional[RecordLocks] = None,
        lock_timeout: float = 5.0,
        record_provider_assignments: bool = False,
    ):
        self.db = db
        self.clock = clock
        self.locks = locks or PROVIDER_LOCKS
        self.booking_locks = booking_locks or BOOKING_LOCKS
        self.lock_timeout = lock_timeout
        self.record_provider_assignments = record_provider_assignments

    # --- Queries ---

    def get_provider(self, provider_id: int) -> ProviderProfile:
        return repository.provider_to_domain(repository.fetch_provider(self.db, provider_id), include_history=True)

    def get_booking(self, booking_id: int) -> Booking:
        return repository.booking_to_domain(repository.fetch_booking(self.db, booking_id), include_history=True)

    def provider_history(self, provider_id: int) -> List[StatusHistoryEntry]:
        return self.get_provider(provider_id).status_history

    def booking_history(self, booking_id: int) -> List[StatusHistoryEntry]:
        return self.get_booking(booking_id).status_history

    def check_availability(self, provider_id: int, window: TimeWindow) -> AvailabilityCheck:
        """
        Evaluates the provider's policy for a window, then its existing bookings.

        Raises:
            RecordNotFound: If the provider does not exist.
        """
        provider = repository.provider_to_domain(repository.fetch_provider(self.db, provider_id))
        return self._evaluate_window(provider, window, self.clock())

    def find_available_providers(
        self,
        kind: Optional[ProviderKind],
        window: TimeWindow,
        location: Optional[Location] = None,
    ) -> List[ProviderProfile]:
        """
        Lists providers that could be assigned to a booking for this window.

        A provider qualifies when it is assignable, serves the location and the
        window is available and conflict free.
        """
        now = self.clock()
        available = []
        for row in repository.fetch_providers(self.db, kind):
            provider = repository.provider_to_domain(row)
            if not is_assignable(provider) or not serves_location(provider, location):
                continue
            if self._evaluate_window(provider, window, now).available:
                available.append(provider)
        return available

    # --- Registration ---

    def register_provider(
        self,
        owner_user_id: str,
        kind: ProviderKind,
        actor_id: str,
        verification: Optional[Verification] = None,
        policy: Optional[AvailabilityPolicy] = None,
        service_areas: Optional[List[ServiceArea]] = None,
    ) -> ProviderProfile:
        """
        Creates a pending provider profile with its first history entry.

        Raises:
            DuplicateProvider: If the user already has a profile of this kind.
        """
        if repository.find_provider_for_owner(self.db, owner_user_id, kind) is not None:
            raise DuplicateProvider(owner_user_id, kind)

        row = db_models.Provider(owner_user_id=owner_user_id, kind=kind, status=PROVIDER_INITIAL_STATUS)
        repository.apply_verification(row, verification or Verification())
        repository.apply_policy(self.db, row, policy or AvailabilityPolicy())
        repository.apply_service_areas(row, service_areas or [])
        self.db.add(row)

        entry = StatusHistoryEntry(
            status=PROVIDER_INITIAL_STATUS.value,
            timestamp=self.clock(),
            actor_id=actor_id,
            notes="Provider registration submitted"
        )
        repository.add_provider_history(self.db, row, entry)

        try:
            self.db.commit()
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same owner and kind
            self.db.rollback()
            raise DuplicateProvider(owner_user_id, kind) from exc

        logger.info(f"Registered {kind.value} provider {row.id} for user {owner_user_id}")
        return self.get_provider(row.id)

    def create_booking(
        self,
        requester_id: str,
        window: TimeWindow,
        actor_id: str,
        location: Optional[Location] = None,
        notes: Optional[str] = None,
    ) -> Booking:
        """Creates an unassigned booking in the initial status."""
        row = db_models.Booking(
            requester_id=requester_id,
            status=BOOKING_INITIAL_STATUS,
            start_time=window.start,
            end_time=window.end,
            city=location.city if location else None,
            district=location.district if location else None,
            notes=notes
        )
        self.db.add(row)
        entry = StatusHistoryEntry(
            status=BOOKING_INITIAL_STATUS.value,
            timestamp=self.clock(),
            actor_id=actor_id,
            notes="Booking created"
        )
        repository.add_booking_history(self.db, row, entry)
        self.db.commit()

        logger.info(f"Created booking {row.id} for requester {requester_id}")
        return self.get_booking(row.id)

    def update_verification(self, provider_id: int, verification: Verification) -> ProviderProfile:
        with self.locks.hold(provider_id, self.lock_timeout):
            row = repository.fetch_provider(self.db, provider_id, for_update=True)
            repository.apply_verification(row, verification)
            self.db.commit()
        return self.get_provider(provider_id)

    def update_policy(
        self,
        provider_id: int,
        policy: AvailabilityPolicy,
        service_areas: Optional[List[ServiceArea]] = None,
    ) -> ProviderProfile:
        """Replaces a provider's availability policy and, if given, its service areas."""
        with self.locks.hold(provider_id, self.lock_timeout):
            row = repository.fetch_provider(self.db, provider_id, for_update=True)
            repository.apply_policy(self.db, row, policy)
            if service_areas is not None:
                repository.apply_service_areas(row, service_areas)
            self.db.commit()
        return self.get_provider(provider_id)

    # --- Status changes ---

    def change_provider_status(
        self,
        provider_id: int,
        requested: ProviderStatus,
        actor_id: str,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ProviderStatus:
        """
        Moves a provider to a new status and records it in the history.

        Raises:
            RecordNotFound: If the provider does not exist.
            InvalidTransition: If the move is not in the provider table.
            LockTimeout: If the provider is busy with another assignment.
        """
        with self.locks.hold(provider_id, self.lock_timeout):
            self.db.expire_all()
            row = repository.fetch_provider(self.db, provider_id, for_update=True)
            profile = repository.provider_to_domain(row)
            try:
                entry = apply_transition(profile, requested, actor_id, self.clock(), reason, notes)
            except InvalidTransition as exc:
                self.db.rollback()
                logger.warning(f"Rejected status change for provider {provider_id}: {exc}")
                raise

            row.status = profile.status
            repository.add_provider_history(self.db, row, entry)
            self.db.commit()
            return profile.status

    def change_booking_status(
        self,
        booking_id: int,
        requested: BookingStatus,
        actor_id: str,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BookingStatus:
        """
        Moves a booking to a new status and records it in the history.

        Runs under the booking's lock and then the assigned provider's lock,
        so it cannot interleave with an assignment of this booking or for
        that provider.

        Raises:
            RecordNotFound: If the booking does not exist.
            InvalidTransition: If the move is not in the booking table.
            LockTimeout: If the booking or provider is busy with another assignment.
        """
        with self.booking_locks.hold(booking_id, self.lock_timeout):
            # provider_id cannot change while the booking lock is held
            self.db.expire_all()
            provider_id = repository.fetch_booking(self.db, booking_id).provider_id
            if provider_id is None:
                return self._change_booking_status(booking_id, requested, actor_id, reason, notes)
            with self.locks.hold(provider_id, self.lock_timeout):
                return self._change_booking_status(booking_id, requested, actor_id, reason, notes)

    def _change_booking_status(self, booking_id, requested, actor_id, reason, notes) -> BookingStatus:
        self.db.expire_all()
        row = repository.fetch_booking(self.db, booking_id)
        booking = repository.booking_to_domain(row)
        try:
            entry = apply_transition(booking, requested, actor_id, self.clock(), reason, notes)
        except InvalidTransition as exc:
            self.db.rollback()
            logger.warning(f"Rejected status change for booking {booking_id}: {exc}")
            raise

        row.status = booking.status
        repository.add_booking_history(self.db, row, entry)
        self.db.commit()
        return booking.status

    # --- Assignment ---

    def assign(self, booking_id: int, provider_id: int, actor_id: str, notes: Optional[str] = None) -> AssignmentOutcome:
        """
        Assigns a provider to a booking if every check passes.

        Checks run in order (availability, conflicts, eligibility, service
        area) and the first failure is reported with its reason code. On any
        failure neither record changes. Re-assigning a confirmed booking to the
        provider it already has is a successful no-op.

        Raises:
            RecordNotFound: If the booking or provider does not exist.
        """
        try:
            with self.booking_locks.hold(booking_id, self.lock_timeout), \
                    self.locks.hold(provider_id, self.lock_timeout):
                try:
                    outcome = self._assign_locked(booking_id, provider_id, actor_id, notes)
                except Exception:
                    self.db.rollback()
                    raise
                if outcome.success and not outcome.already_assigned:
                    self.db.commit()
                else:
                    self.db.rollback()
                return outcome
        except LockTimeout as exc:
            logger.warning(
                f"Assignment of booking {booking_id} to provider {provider_id} timed out "
                f"waiting for {exc.record_type.lower()} lock"
            )
            return AssignmentOutcome(
                success=False,
                reason=AssignmentReason.RETRY,
                message=str(exc),
                booking_id=booking_id,
                provider_id=provider_id
            )

    def _assign_locked(self, booking_id: int, provider_id: int, actor_id: str, notes: Optional[str]) -> AssignmentOutcome:
        self.db.expire_all()
        booking_row = repository.fetch_booking(self.db, booking_id, for_update=True)
        provider_row = repository.fetch_provider(self.db, provider_id, for_update=True)
        booking = repository.booking_to_domain(booking_row)
        provider = repository.provider_to_domain(provider_row)

        def rejected(reason: AssignmentReason, message: str, unmet: Optional[List[str]] = None) -> AssignmentOutcome:
            logger.info(f"Assignment of booking {booking_id} to provider {provider_id} rejected: {reason.value}")
            return AssignmentOutcome(
                success=False,
                reason=reason,
                message=message,
                booking_id=booking_id,
                provider_id=provider_id,
                booking_status=booking.status,
                unmet_conditions=unmet or []
            )

        if booking.provider_id == provider_id and booking.status == BookingStatus.CONFIRMED:
            return AssignmentOutcome(
                success=True,
                reason=AssignmentReason.ASSIGNED,
                message="Provider is already assigned to this booking",
                booking_id=booking_id,
                provider_id=provider_id,
                booking_status=booking.status,
                already_assigned=True
            )

        if booking.status not in ASSIGNABLE_BOOKING_STATUSES:
            return rejected(
                AssignmentReason.BOOKING_NOT_ASSIGNABLE,
                f"Booking in status {booking.status.value} cannot be assigned"
            )

        now = self.clock()
        policy = provider.availability_policy

        # 1. Availability
        availability = evaluate(policy, booking.window, now)
        if not availability.available:
            return rejected(AssignmentReason(availability.result.value), availability.reason)

        # 2. Conflicts
        existing = [repository.booking_to_domain(row) for row in repository.fetch_live_bookings(self.db, provider_id)]
        conflict = check_conflict(provider_id, booking.window, existing, policy.max_bookings_per_day, exclude_booking_id=booking_id)
        if conflict != ConflictResult.NO_CONFLICT:
            return rejected(AssignmentReason(conflict.value), CONFLICT_MESSAGES[conflict])

        # 3. Eligibility
        unmet = explain(provider)
        if unmet:
            return rejected(
                AssignmentReason.PROVIDER_NOT_ELIGIBLE,
                f"Provider is not eligible for assignment: {', '.join(unmet)}",
                unmet
            )

        # 4. Service area
        if not serves_location(provider, booking.location):
            return rejected(AssignmentReason.OUTSIDE_SERVICE_AREA, "Booking location is outside the provider's service areas")

        # Commit
        previous_provider = booking.provider_id
        if booking.status == BookingStatus.SCHEDULED:
            entry = apply_transition(booking, BookingStatus.CONFIRMED, actor_id, now, reason="Provider assigned", notes=notes)
        else:
            entry = StatusHistoryEntry(
                status=BookingStatus.CONFIRMED.value,
                timestamp=now,
                actor_id=actor_id,
                reason="Provider reassigned" if previous_provider is not None else "Provider assigned",
                notes=notes
            )
            booking.status_history.append(entry)

        booking_row.provider_id = provider_id
        booking_row.status = booking.status
        repository.add_booking_history(self.db, booking_row, entry)

        if self.record_provider_assignments:
            repository.add_provider_history(self.db, provider_row, StatusHistoryEntry(
                status=provider.status.value,
                timestamp=now,
                actor_id=actor_id,
                reason=f"Assigned to booking {booking_id}",
                notes=notes
            ))

        self.db.flush()
        logger.info(f"Assigned provider {provider_id} to booking {booking_id} (previous provider: {previous_provider})")
        return AssignmentOutcome(
            success=True,
            reason=AssignmentReason.ASSIGNED,
            message="Provider assigned to booking",
            booking_id=booking_id,
            provider_id=provider_id,
            booking_status=booking.status
        )

    # --- Helpers ---

    def _evaluate_window(self, provider: ProviderProfile, window: TimeWindow, now: datetime) -> AvailabilityCheck:
        policy = provider.availability_policy
        availability = evaluate(policy, window, now)
        if not availability.available:
            return availability

        existing = [repository.booking_to_domain(row) for row in repository.fetch_live_bookings(self.db, provider.id)]
        conflict = check_conflict(provider.id, window, existing, policy.max_bookings_per_day)
        if conflict != ConflictResult.NO_CONFLICT:
            return AvailabilityCheck(result=conflict, reason=CONFLICT_MESSAGES[conflict], available=False)
        return availability
