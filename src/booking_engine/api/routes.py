import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Body, Query, status as http_status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..assignment import AssignmentService, LockTimeout
from ..db.database import get_db
from ..eligibility import explain
from ..models import Booking, Location, ProviderKind, ProviderProfile, StatusHistoryEntry, TimeWindow, Verification
from ..repository import DuplicateProvider, RecordNotFound
from ..state_machine import BOOKING_TRANSITIONS, PROVIDER_TRANSITIONS, InvalidTransition, transition_table

from .models import (
    AssignmentRequest, AssignmentResponse, AvailabilityResponse, BookingCreateRequest, BookingResponse,
    BookingStatusRequest, HistoryEntryResponse, PolicyUpdateRequest, ProviderRegistrationRequest,
    ProviderResponse, ProviderStatusRequest, StatusChangeResponse, TransitionTablesResponse,
)
from .deps import Actor, get_actor, get_api_key, get_settings, require_staff

logger = logging.getLogger(__name__)

router = APIRouter()

# Raised deliberately by the engine; mapped to responses by the handlers in main.py
ENGINE_ERRORS = (HTTPException, RecordNotFound, DuplicateProvider, InvalidTransition, LockTimeout)


def get_assignment_service(
    db: Session = Depends(get_db),
    settings: Dict[str, Any] = Depends(get_settings),
) -> AssignmentService:
    return AssignmentService(
        db,
        lock_timeout=settings["assignment_lock_timeout"],
        record_provider_assignments=settings["record_provider_assignments"],
    )


def build_window(start: datetime, end: datetime) -> TimeWindow:
    """Validates a start/end pair, turning a malformed window into a 422."""
    try:
        return TimeWindow(start=start, end=end)
    except ValidationError as e:
        raise HTTPException(
            status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[{"loc": ["query", "window", *map(str, err["loc"])], "msg": err["msg"]} for err in e.errors()]
        )


def convert_provider_to_response(provider: ProviderProfile) -> ProviderResponse:
    unmet = explain(provider)
    return ProviderResponse(
        id=provider.id,
        owner_user_id=provider.owner_user_id,
        kind=provider.kind,
        status=provider.status,
        verification=provider.verification,
        availability_policy=provider.availability_policy,
        service_areas=provider.service_areas,
        assignable=not unmet,
        unmet_conditions=unmet
    )


def convert_booking_to_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        provider_id=booking.provider_id,
        requester_id=booking.requester_id,
        status=booking.status,
        start=booking.window.start,
        end=booking.window.end,
        location=booking.location,
        notes=booking.notes
    )


def convert_history_to_response(history: List[StatusHistoryEntry]) -> List[HistoryEntryResponse]:
    return [HistoryEntryResponse(**entry.model_dump()) for entry in history]


# --- Reference data ---

@router.get("/transitions", response_model=TransitionTablesResponse, tags=["status"])
async def get_transition_tables(api_key: dict = Depends(get_api_key)):
    """The authoritative provider and booking transition tables."""
    return TransitionTablesResponse(
        provider=transition_table(PROVIDER_TRANSITIONS),
        booking=transition_table(BOOKING_TRANSITIONS)
    )


# --- Providers ---

@router.post("/providers", response_model=ProviderResponse, status_code=http_status.HTTP_201_CREATED, tags=["providers"])
def register_provider(
    registration: ProviderRegistrationRequest = Body(...),
    actor: Actor = Depends(get_actor),
    service: AssignmentService = Depends(get_assignment_service)
):
    """
    Register a guide, driver or vehicle profile in the pending status.
    """
    try:
        provider = service.register_provider(
            owner_user_id=registration.owner_user_id or actor.id,
            kind=registration.kind,
            actor_id=actor.id,
            verification=registration.verification,
            policy=registration.availability_policy,
            service_areas=registration.service_areas
        )
        return convert_provider_to_response(provider)
    except ENGINE_ERRORS:
        raise
    except Exception as e:
        logger.exception(f"Error registering provider: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to register provider: {str(e)}"
        )


@router.get("/providers/available", response_model=List[ProviderResponse], tags=["providers"])
def get_available_providers(
    start: datetime = Query(..., description="Window start"),
    end: datetime = Query(..., description="Window end"),
    kind: Optional[ProviderKind] = Query(None, description="Only providers of this kind"),
    city: Optional[str] = Query(None, description="Booking city, checked against service areas"),
    district: Optional[str] = Query(None, description="Booking district, checked against service areas"),
    actor: Actor = Depends(get_actor),
    service: AssignmentService = Depends(get_assignment_service)
):
    """
    List providers that are assignable, serve the location and are free for the window.
    """
    window = build_window(start, end)
    location = Location(city=city, district=district) if city and district else None
    try:
        providers = service.find_available_providers(kind, window, location)
        return [convert_provider_to_response(provider) for provider in providers]
    except ENGINE_ERRORS:
        raise
    except Exception as e:
        logger.exception(f"Error searching available providers: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to search available providers: {str(e)}"
        )


@router.get("/providers/{provider_id}", response_model=ProviderResponse, tags=["providers"])
def get_provider(
    provider_id: int = Path(..., description="The ID of the provider"),
    actor: Actor = Depends(get_actor),
    service: AssignmentService = Depends(get_assignment_service)
):
    try:
        return convert_provider_to_response(service.get_provider(provider_id))
    except ENGINE_ERRORS:
        raise
    except Exception as e:
        logger.exception(f"Error fetching provider {provider_id}: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch provider: {str(e)}"
        )


@router.get("/providers/{provider_id}/availability", response_model=AvailabilityResponse, tags=["providers"])
def get_provider_availability(
    provider_id: int = Path(..., description="The ID of the provider"),
    start: datetime = Query(..., description="Proposed window start"),
    end: datetime = Query(..., description="Proposed window end"),
    actor: Actor = Depends(get_actor),
    service: AssignmentService = Depends(get_assignment_service)
):
    """
    Check whether a provider can be booked for a window.

    Unavailability is a normal answer and is returned with status 200.
    """
    window = build_window(start, end)
    try:
        check = service.check_availability(provider_id, window)
        return AvailabilityResponse(
            provider_id=provider_id,
            start=window.start,
            end=window.end,
            result=check.result,
            reason=check.reason,
            available=check.available
        )
    except ENGINE_ERRORS:
        raise
    except Exception as e:
        logger.exception(f"Error checking availability for provider {provider_id}: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to check availability: {str(e)}"
        )


@router.patch("/providers/{provider_id}/status", response_model=StatusChangeResponse, tags=["providers"])
def update_provider_status(
    provider_id: int = Path(..., description="The ID of the provider"),
    status_data: ProviderStatusRequest = Body(...),
    actor: Actor = Depends(require_staff),
    service: AssignmentService = Depends(get_assignment_service)
):
    """
    Move a provider through its lifecycle (pending, active, suspended, inactive, blacklisted).
    """
    try:
        new_status = service.change_provider_status(
            provider_id, status_data.status, actor.id, status_data.reason, status_data.notes
        )
        return StatusChangeResponse(
            id=provider_id,
            status=new_status.value,
            message=f"Provider status updated to {new_status.value}"
        )
    except ENGINE_ERRORS:
        raise
    except Exception as e:
        logger.exception(f"Error updating status of provider {provider_id}: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update provider status: {str(e)}"
        )


@router.patch("/providers/{provider_id}/verification", response_model=ProviderResponse, tags=["providers"])
def update_provider_verification(
    provider_id: int = Path(..., description="The ID of the provider"),
    verification: Verification = Body(...),
    actor: Actor = Depends(require_staff),
    service: AssignmentService = Depends(get_assignment_service)
):
    try:
        provider = service.update_verification(provider_id, verification)
        logger.info(f"Verification of provider {provider_id} updated by {actor.id}")
        return convert_provider_to_response(provider)
    except ENGINE_ERRORS:
        raise
    except Exception as e:
        logger.exception(f"Error updating verification of provider {provider_id}: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update verification: {str(e)}"
        )


@router.put("/providers/{provider_id}/availability-policy", response_model=ProviderResponse, tags=["providers"])
def update_provider_policy(
    provider_id: int = Path(..., description="The ID of the provider"),
    policy_data: PolicyUpdateRequest = Body(...),
    actor: Actor = Depends(require_staff),
    service: AssignmentService = Depends(get_assignment_service)
):
    try:
        provider = service.update_policy(provider_id, policy_data.availability_policy, policy_data.service_areas)
        logger.info(f"Availability policy of provider {provider_id} replaced by {actor.id}")
        return convert_provider_to_response(provider)
    except ENGINE_ERRORS:
        raise
    except Exception as e:
        logger.exception(f"Error replacing availability policy of provider {provider_id}: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update availability policy: {str(e)}"
        )


@router.get("/providers/{provider_id}/history", response_model=List[HistoryEntryResponse], tags=["providers"])
def get_provider_history(
    provider_id: int = Path(..., description="The ID of the provider"),
    actor: Actor = Depends(get_actor),
    service: AssignmentService = Depends(get_assignment_service)
):
    """Ordered status history, oldest first."""
    try:
        return convert_history_to_response(service.provider_history(provider_id))
    except ENGINE_ERRORS:
        raise
    except Exception as e:
        logger.exception(f"Error fetching history of provider {provider_id}: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch provider history: {str(e)}"
        )


# --- Bookings ---

@router.post("/bookings", response_model=BookingResponse, status_code=http_status.HTTP_201_CREATED, tags=["bookings"])
def create_booking(
    booking_data: BookingCreateRequest = Body(...),
    actor: Actor = Depends(get_actor),
    service: AssignmentService = Depends(get_assignment_service)
):
    window = build_window(booking_data.start, booking_data.end)
    try:
        booking = service.create_booking(
            requester_id=booking_data.requester_id or actor.id,
            window=window,
            actor_id=actor.id,
            location=booking_data.location,
            notes=booking_data.notes
        )
        return convert_booking_to_response(booking)
    except ENGINE_ERRORS:
        raise
    except Exception as e:
        logger.exception(f"Error creating booking: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create booking: {str(e)}"
        )


@router.get("/bookings/{booking_id}", response_model=BookingResponse, tags=["bookings"])
def get_booking(
    booking_id: int = Path(..., description="The ID of the booking"),
    actor: Actor = Depends(get_actor),
    service: AssignmentService = Depends(get_assignment_service)
):
    try:
        return convert_booking_to_response(service.get_booking(booking_id))
    except ENGINE_ERRORS:
        raise
    except Exception as e:
        logger.exception(f"Error fetching booking {booking_id}: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch booking: {str(e)}"
        )


@router.post("/bookings/{booking_id}/assignment", response_model=AssignmentResponse, tags=["bookings"])
def assign_provider(
    booking_id: int = Path(..., description="The ID of the booking"),
    assignment_data: AssignmentRequest = Body(...),
    actor: Actor = Depends(get_actor),
    service: AssignmentService = Depends(get_assignment_service)
):
    """
    Assign a provider to a booking.

    A rejected assignment is answered with 409 and the reason code, so the
    caller can tell the operator exactly what to fix.
    """
    try:
        outcome = service.assign(booking_id, assignment_data.provider_id, actor.id, assignment_data.notes)
    except ENGINE_ERRORS:
        raise
    except Exception as e:
        logger.exception(f"Error assigning provider {assignment_data.provider_id} to booking {booking_id}: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to assign provider: {str(e)}"
        )

    response = AssignmentResponse(**outcome.model_dump())
    if not outcome.success:
        return JSONResponse(status_code=http_status.HTTP_409_CONFLICT, content=response.model_dump(mode="json"))
    return response


@router.patch("/bookings/{booking_id}/status", response_model=StatusChangeResponse, tags=["bookings"])
def update_booking_status(
    booking_id: int = Path(..., description="The ID of the booking"),
    status_data: BookingStatusRequest = Body(...),
    actor: Actor = Depends(get_actor),
    service: AssignmentService = Depends(get_assignment_service)
):
    """
    Confirm, start, delay, complete or cancel a booking.
    """
    try:
        new_status = service.change_booking_status(
            booking_id, status_data.status, actor.id, status_data.reason, status_data.notes
        )
        return StatusChangeResponse(
            id=booking_id,
            status=new_status.value,
            message=f"Booking status updated to {new_status.value}"
        )
    except ENGINE_ERRORS:
        raise
    except Exception as e:
        logger.exception(f"Error updating status of booking {booking_id}: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update booking status: {str(e)}"
        )


@router.get("/bookings/{booking_id}/history", response_model=List[HistoryEntryResponse], tags=["bookings"])
def get_booking_history(
    booking_id: int = Path(..., description="The ID of the booking"),
    actor: Actor = Depends(get_actor),
    service: AssignmentService = Depends(get_assignment_service)
):
    """Ordered status history, oldest first."""
    try:
        return convert_history_to_response(service.booking_history(booking_id))
    except ENGINE_ERRORS:
        raise
    except Exception as e:
        logger.exception(f"Error fetching history of booking {booking_id}: {e}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch booking history: {str(e)}"
        )
