from booking_engine.db.database import Base, engine, get_db, SessionLocal
from booking_engine.db.models import (
    Provider, ProviderBlockedDate, ProviderServiceArea, ProviderStatusHistory, Booking, BookingStatusHistory
)

__all__ = [
    'Base',
    'Provider',
    'ProviderBlockedDate',
    'ProviderServiceArea',
    'ProviderStatusHistory',
    'Booking',
    'BookingStatusHistory',
    'engine',
    'get_db',
    'SessionLocal'
]
