"""
Database access for providers and bookings.

Converts between SQLAlchemy rows and the engine's pydantic models. Status,
provider assignment and history rows are written only by AssignmentService.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .db import models as db_models
from .models import (
    AvailabilityPolicy, BlockedDate, Booking, BookingStatus, Location, ProviderKind, ProviderProfile,
    RecurringBlock, ServiceArea, StatusHistoryEntry, TimeWindow, Verification, WorkingHours,
)


class RecordNotFound(LookupError):
    """Raised when a provider or booking id does not exist."""

    def __init__(self, record_type: str, record_id: int):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(f"{record_type} with ID {record_id} not found")


class DuplicateProvider(ValueError):
    """Raised when a user already has a profile of the requested kind."""

    def __init__(self, owner_user_id: str, kind: ProviderKind):
        self.owner_user_id = owner_user_id
        self.kind = kind
        super().__init__(f"User {owner_user_id} is already registered as a {kind.value}")


LIVE_BOOKING_STATUSES = (
    BookingStatus.SCHEDULED, BookingStatus.CONFIRMED, BookingStatus.DELAYED, BookingStatus.IN_PROGRESS
)


# --- Queries ---

def fetch_provider(db: Session, provider_id: int, for_update: bool = False) -> db_models.Provider:
    """
    Fetches a provider row with its policy and history relationships loaded.

    Args:
        db: The SQLAlchemy database session.
        provider_id: The provider's ID.
        for_update: Lock the row until the transaction ends (ignored by SQLite).

    Raises:
        RecordNotFound: If no such provider exists.
    """
    stmt = (
        select(db_models.Provider)
        .where(db_models.Provider.id == provider_id)
        .options(
            selectinload(db_models.Provider.blocked_dates),
            selectinload(db_models.Provider.service_areas),
            selectinload(db_models.Provider.status_history),
        )
    )
    if for_update:
        stmt = stmt.with_for_update()
    provider = db.execute(stmt).scalars().first()
    if provider is None:
        raise RecordNotFound("Provider", provider_id)
    return provider


def fetch_booking(db: Session, booking_id: int, for_update: bool = False) -> db_models.Booking:
    """Fetches a booking row with its history loaded, raising RecordNotFound if missing."""
    stmt = (
        select(db_models.Booking)
        .where(db_models.Booking.id == booking_id)
        .options(selectinload(db_models.Booking.status_history))
    )
    if for_update:
        stmt = stmt.with_for_update()
    booking = db.execute(stmt).scalars().first()
    if booking is None:
        raise RecordNotFound("Booking", booking_id)
    return booking


def fetch_live_bookings(db: Session, provider_id: int) -> List[db_models.Booking]:
    """All non-terminal bookings currently assigned to a provider."""
    stmt = (
        select(db_models.Booking)
        .where(
            db_models.Booking.provider_id == provider_id,
            db_models.Booking.status.in_(LIVE_BOOKING_STATUSES),
        )
        .order_by(db_models.Booking.start_time)
    )
    return list(db.execute(stmt).scalars().all())


def fetch_providers(db: Session, kind: Optional[ProviderKind] = None) -> List[db_models.Provider]:
    stmt = select(db_models.Provider).options(
        selectinload(db_models.Provider.blocked_dates),
        selectinload(db_models.Provider.service_areas),
    )
    if kind is not None:
        stmt = stmt.where(db_models.Provider.kind == kind)
    return list(db.execute(stmt.order_by(db_models.Provider.id)).scalars().all())


def find_provider_for_owner(db: Session, owner_user_id: str, kind: ProviderKind) -> Optional[db_models.Provider]:
    stmt = select(db_models.Provider).where(
        db_models.Provider.owner_user_id == owner_user_id,
        db_models.Provider.kind == kind,
    )
    return db.execute(stmt).scalars().first()


# --- Conversion Functions (DB row -> Engine model) ---

def _history_to_domain(row) -> StatusHistoryEntry:
    return StatusHistoryEntry(
        status=row.status,
        timestamp=row.timestamp,
        actor_id=row.actor_id,
        reason=row.reason,
        notes=row.notes
    )


def policy_to_domain(provider: db_models.Provider) -> AvailabilityPolicy:
    return AvailabilityPolicy(
        working_days=provider.working_days,
        working_hours=WorkingHours(start=provider.working_hours_start, end=provider.working_hours_end),
        blocked_dates=[BlockedDate(date=b.date, reason=b.reason) for b in provider.blocked_dates],
        recurring_blocks=[RecurringBlock.model_validate(b) for b in provider.recurring_blocks or []],
        max_bookings_per_day=provider.max_bookings_per_day,
        advance_booking_days=provider.advance_booking_days,
        minimum_notice_hours=provider.minimum_notice_hours
    )


def provider_to_domain(provider: db_models.Provider, include_history: bool = False) -> ProviderProfile:
    """Converts a Provider row to a ProviderProfile."""
    history = []
    if include_history:
        history = [_history_to_domain(row) for row in provider.status_history]

    return ProviderProfile(
        id=provider.id,
        owner_user_id=provider.owner_user_id,
        kind=provider.kind,
        status=provider.status,
        verification=Verification(
            identity=provider.identity_verified,
            license=provider.license_verified,
            background_check=provider.background_check_passed,
            insurance=provider.insurance_verified,
            credential=provider.credential_verified
        ),
        availability_policy=policy_to_domain(provider),
        service_areas=[
            ServiceArea(city=a.city, district=a.district, radius_km=a.radius_km, is_active=a.is_active)
            for a in provider.service_areas
        ],
        status_history=history
    )


def booking_to_domain(booking: db_models.Booking, include_history: bool = False) -> Booking:
    """Converts a Booking row to the engine's Booking model."""
    location = None
    if booking.city and booking.district:
        location = Location(city=booking.city, district=booking.district)

    history = []
    if include_history:
        history = [_history_to_domain(row) for row in booking.status_history]

    return Booking(
        id=booking.id,
        provider_id=booking.provider_id,
        requester_id=booking.requester_id,
        status=booking.status,
        window=TimeWindow(start=booking.start_time, end=booking.end_time),
        location=location,
        notes=booking.notes,
        status_history=history
    )


# --- Writers (Engine model -> DB row) ---

def apply_verification(provider: db_models.Provider, verification: Verification) -> None:
    provider.identity_verified = verification.identity
    provider.license_verified = verification.license
    provider.background_check_passed = verification.background_check
    provider.insurance_verified = verification.insurance
    provider.credential_verified = verification.credential


def apply_policy(db: Session, provider: db_models.Provider, policy: AvailabilityPolicy) -> None:
    """Replaces a provider's policy columns and blocked dates."""
    provider.working_days = [day.value for day in policy.working_days]
    provider.working_hours_start = policy.working_hours.start
    provider.working_hours_end = policy.working_hours.end
    provider.max_bookings_per_day = policy.max_bookings_per_day
    provider.advance_booking_days = policy.advance_booking_days
    provider.minimum_notice_hours = policy.minimum_notice_hours
    provider.recurring_blocks = [block.model_dump(mode="json") for block in policy.recurring_blocks]

    # Old rows must be deleted before re-inserting a date they already held
    provider.blocked_dates.clear()
    if provider.id is not None:
        db.flush()
    provider.blocked_dates.extend(
        db_models.ProviderBlockedDate(date=b.date, reason=b.reason) for b in policy.blocked_dates
    )


def apply_service_areas(provider: db_models.Provider, areas: List[ServiceArea]) -> None:
    provider.service_areas = [
        db_models.ProviderServiceArea(
            city=a.city, district=a.district, radius_km=a.radius_km, is_active=a.is_active
        )
        for a in areas
    ]


def add_provider_history(db: Session, provider: db_models.Provider, entry: StatusHistoryEntry) -> None:
    row = db_models.ProviderStatusHistory(
        status=entry.status,
        timestamp=entry.timestamp,
        actor_id=entry.actor_id,
        reason=entry.reason,
        notes=entry.notes
    )
    provider.status_history.append(row)
    db.add(row)


def add_booking_history(db: Session, booking: db_models.Booking, entry: StatusHistoryEntry) -> None:
    row = db_models.BookingStatusHistory(
        status=entry.status,
        timestamp=entry.timestamp,
        actor_id=entry.actor_id,
        reason=entry.reason,
        notes=entry.notes
    )
    booking.status_history.append(row)
    db.add(row)
