"""Shared fixtures for engine tests."""

from datetime import datetime, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from booking_engine.assignment import AssignmentService, RecordLocks
from booking_engine.db.database import Base
from booking_engine.db import models as db_models  # noqa: F401  registers tables
from booking_engine.models import (
    AvailabilityPolicy, ProviderKind, ProviderProfile, ProviderStatus, Verification, Weekday, WorkingHours,
)

# Thursday 22 October 2026, 08:00
FIXED_NOW = datetime(2026, 10, 22, 8, 0)

WEEKDAYS = [Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY, Weekday.FRIDAY]


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def weekday_policy() -> AvailabilityPolicy:
    """Mon-Fri, 09:00-17:00, three bookings a day, thirty days ahead."""
    return AvailabilityPolicy(
        working_days=WEEKDAYS,
        working_hours=WorkingHours(start=time(9, 0), end=time(17, 0)),
        blocked_dates=[],
        max_bookings_per_day=3,
        advance_booking_days=30
    )


@pytest.fixture
def fully_verified() -> Verification:
    return Verification(identity=True, license=True, background_check=True, insurance=True, credential=True)


@pytest.fixture
def active_driver(weekday_policy, fully_verified) -> ProviderProfile:
    return ProviderProfile(
        id=1,
        owner_user_id="user-1",
        kind=ProviderKind.DRIVER,
        status=ProviderStatus.ACTIVE,
        verification=fully_verified,
        availability_policy=weekday_policy
    )


# --- Database fixtures ---

@pytest.fixture
def db_engine():
    """A fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def service(db_session, now) -> AssignmentService:
    return AssignmentService(
        db_session, clock=lambda: now, locks=RecordLocks("Provider"), booking_locks=RecordLocks("Booking"), lock_timeout=0.2
    )


@pytest.fixture
def make_active_provider(service, weekday_policy, fully_verified):
    """Registers a provider and takes it through verification to active."""
    counter = {"n": 0}

    def _make(kind=ProviderKind.DRIVER, policy=None, service_areas=None, verification=None):
        counter["n"] += 1
        provider = service.register_provider(
            owner_user_id=f"owner-{counter['n']}",
            kind=kind,
            actor_id="staff-1",
            verification=verification or fully_verified,
            policy=policy or weekday_policy,
            service_areas=service_areas
        )
        service.change_provider_status(provider.id, ProviderStatus.ACTIVE, "staff-1", reason="Documents verified")
        return service.get_provider(provider.id)

    return _make
