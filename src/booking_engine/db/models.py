from datetime import time

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, Enum, Float, ForeignKey, Integer, String, Text, Time,
    UniqueConstraint, func,
)
from sqlalchemy.orm import relationship

from booking_engine.db.database import Base
from booking_engine.models import BookingStatus, ProviderKind, ProviderStatus


class Provider(Base):
    """SQLAlchemy model for a guide, driver or vehicle profile."""
    __tablename__ = "providers"
    __table_args__ = (
        UniqueConstraint("owner_user_id", "kind", name="uq_provider_owner_kind"),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(String, nullable=False, index=True)
    kind = Column(Enum(ProviderKind), nullable=False)
    status = Column(Enum(ProviderStatus), nullable=False, default=ProviderStatus.PENDING, index=True)

    # Verification flags
    identity_verified = Column(Boolean, default=False, nullable=False)
    license_verified = Column(Boolean, default=False, nullable=False)
    background_check_passed = Column(Boolean, default=False, nullable=False)
    insurance_verified = Column(Boolean, default=False, nullable=False)
    credential_verified = Column(Boolean, default=False, nullable=False)

    # Availability policy
    working_days = Column(JSON, nullable=False)  # list of lowercase weekday names
    working_hours_start = Column(Time, nullable=False, default=time(9, 0))
    working_hours_end = Column(Time, nullable=False, default=time(17, 0))
    max_bookings_per_day = Column(Integer, nullable=False, default=3)
    advance_booking_days = Column(Integer, nullable=False, default=30)
    minimum_notice_hours = Column(Integer, nullable=False, default=0)
    recurring_blocks = Column(JSON, nullable=False, default=list)  # serialised RecurringBlock dicts

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    blocked_dates = relationship(
        "ProviderBlockedDate", back_populates="provider",
        order_by="ProviderBlockedDate.date", cascade="all, delete-orphan"
    )
    service_areas = relationship(
        "ProviderServiceArea", back_populates="provider",
        order_by="ProviderServiceArea.id", cascade="all, delete-orphan"
    )
    status_history = relationship(
        "ProviderStatusHistory", back_populates="provider",
        order_by="ProviderStatusHistory.id"
    )
    bookings = relationship("Booking", back_populates="provider")


class ProviderBlockedDate(Base):
    """SQLAlchemy model for a one-off date a provider cannot be booked."""
    __tablename__ = "provider_blocked_dates"
    __table_args__ = (
        UniqueConstraint("provider_id", "date", name="uq_blocked_date_per_provider"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    date = Column(Date, nullable=False)
    reason = Column(String, nullable=False, default="Not available")

    provider = relationship("Provider", back_populates="blocked_dates")


class ProviderServiceArea(Base):
    """SQLAlchemy model for a city/district a provider serves."""
    __tablename__ = "provider_service_areas"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    city = Column(String, nullable=False)
    district = Column(String, nullable=False)
    radius_km = Column(Float, nullable=False, default=50)
    is_active = Column(Boolean, nullable=False, default=True)

    provider = relationship("Provider", back_populates="service_areas")


class ProviderStatusHistory(Base):
    """Append-only status history row for a provider."""
    __tablename__ = "provider_status_history"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False, index=True)
    status = Column(String, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    actor_id = Column(String, nullable=False)
    reason = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    provider = relationship("Provider", back_populates="status_history")


class Booking(Base):
    """SQLAlchemy model for a trip or tour booking."""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=True, index=True)
    requester_id = Column(String, nullable=False)
    status = Column(Enum(BookingStatus), nullable=False, default=BookingStatus.SCHEDULED, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    city = Column(String, nullable=True)
    district = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    provider = relationship("Provider", back_populates="bookings")
    status_history = relationship(
        "BookingStatusHistory", back_populates="booking",
        order_by="BookingStatusHistory.id"
    )


class BookingStatusHistory(Base):
    """Append-only status history row for a booking."""
    __tablename__ = "booking_status_history"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    status = Column(String, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    actor_id = Column(String, nullable=False)
    reason = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    booking = relationship("Booking", back_populates="status_history")
