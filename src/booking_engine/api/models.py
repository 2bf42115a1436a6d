from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional, Union
from datetime import datetime

from ..models import (
    AssignmentReason, AvailabilityPolicy, AvailabilityResult, BookingStatus, ConflictResult, Location, ProviderKind,
    ProviderStatus, ServiceArea, Verification,
)


# --- API Response Models ---

class HistoryEntryResponse(BaseModel):
    """API response model for one status history entry."""
    status: str
    timestamp: datetime
    actor_id: str
    reason: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "status": "active",
            "timestamp": "2026-10-19T08:30:00",
            "actor_id": "staff-17",
            "reason": "Documents verified",
            "notes": None
        }
    })

class ProviderResponse(BaseModel):
    """API response model for a provider profile."""
    id: int
    owner_user_id: str
    kind: ProviderKind
    status: ProviderStatus
    verification: Verification
    availability_policy: AvailabilityPolicy
    service_areas: List[ServiceArea] = Field(default_factory=list)
    assignable: bool
    unmet_conditions: List[str] = Field(default_factory=list)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": 1,
            "owner_user_id": "user-42",
            "kind": "driver",
            "status": "active",
            "verification": {
                "identity": True,
                "license": True,
                "background_check": False,
                "insurance": True,
                "credential": True
            },
            "availability_policy": {
                "working_days": ["monday", "tuesday", "wednesday", "thursday", "friday"],
                "working_hours": {"start": "09:00:00", "end": "17:00:00"},
                "blocked_dates": [{"date": "2026-12-25", "reason": "Holiday"}],
                "recurring_blocks": [{"pattern": "weekly", "weekdays": ["sunday"], "reason": "Day off"}],
                "max_bookings_per_day": 3,
                "advance_booking_days": 30,
                "minimum_notice_hours": 0
            },
            "service_areas": [{"city": "Kandy", "district": "Kandy", "radius_km": 50, "is_active": True}],
            "assignable": False,
            "unmet_conditions": ["background_check"]
        }
    })

class BookingResponse(BaseModel):
    """API response model for a booking."""
    id: int
    provider_id: Optional[int] = None
    requester_id: str
    status: BookingStatus
    start: datetime
    end: datetime
    location: Optional[Location] = None
    notes: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": 7,
            "provider_id": 1,
            "requester_id": "user-9",
            "status": "confirmed",
            "start": "2026-10-26T10:00:00",
            "end": "2026-10-26T11:00:00",
            "location": {"city": "Kandy", "district": "Kandy"},
            "notes": "Airport pickup"
        }
    })

class AvailabilityResponse(BaseModel):
    """API response model for an availability check."""
    provider_id: int
    start: datetime
    end: datetime
    result: Union[AvailabilityResult, ConflictResult]
    reason: str
    available: bool

class AssignmentResponse(BaseModel):
    """API response model for an assignment attempt, successful or not."""
    success: bool
    reason: AssignmentReason
    message: str
    booking_id: int
    provider_id: int
    booking_status: Optional[BookingStatus] = None
    already_assigned: bool = False
    unmet_conditions: List[str] = Field(default_factory=list)

class StatusChangeResponse(BaseModel):
    id: int
    status: str
    message: str

class TransitionTablesResponse(BaseModel):
    """The public transition tables; callers should only offer these moves."""
    provider: Dict[str, List[str]]
    booking: Dict[str, List[str]]


# --- API Request Models ---

class ProviderRegistrationRequest(BaseModel):
    """Request model for registering a provider profile. Owner defaults to the acting user."""
    kind: ProviderKind
    owner_user_id: Optional[str] = None
    verification: Verification = Field(default_factory=Verification)
    availability_policy: AvailabilityPolicy = Field(default_factory=AvailabilityPolicy)
    service_areas: List[ServiceArea] = Field(default_factory=list)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "kind": "guide",
            "availability_policy": {
                "working_days": ["monday", "tuesday", "wednesday", "thursday", "friday"],
                "working_hours": {"start": "09:00", "end": "17:00"},
                "max_bookings_per_day": 3,
                "advance_booking_days": 30
            },
            "service_areas": [{"city": "Galle", "district": "Galle"}]
        }
    })

class BookingCreateRequest(BaseModel):
    """Request model for creating a booking. Requester defaults to the acting user."""
    start: datetime
    end: datetime
    requester_id: Optional[str] = None
    location: Optional[Location] = None
    notes: Optional[str] = None

class AssignmentRequest(BaseModel):
    """Request model for assigning a provider to a booking."""
    provider_id: int
    notes: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"provider_id": 1, "notes": "Regular driver for this client"}
    })

class ProviderStatusRequest(BaseModel):
    status: ProviderStatus
    reason: Optional[str] = None
    notes: Optional[str] = None

class BookingStatusRequest(BaseModel):
    status: BookingStatus
    reason: Optional[str] = None
    notes: Optional[str] = None

class PolicyUpdateRequest(BaseModel):
    """Replaces the availability policy; service areas are left alone when omitted."""
    availability_policy: AvailabilityPolicy
    service_areas: Optional[List[ServiceArea]] = None
