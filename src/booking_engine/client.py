"""
HTTP client for the booking engine API.

Operator tooling and calendar previews use this instead of re-implementing
availability rules, so every caller gets the answer the backend would give.
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from dotenv import load_dotenv

from .api.models import (
    AssignmentResponse, AvailabilityResponse, BookingResponse, HistoryEntryResponse, ProviderResponse,
    StatusChangeResponse,
)
from .models import BookingStatus, ProviderKind, ProviderStatus

logger = logging.getLogger(__name__)

# Load environment variables for API configuration
load_dotenv()
API_BASE_URL = os.getenv("BOOKING_ENGINE_API_BASE_URL", "http://localhost:8000/api/v1")
API_KEY = os.getenv("BOOKING_ENGINE_API_KEY")

# --- HTTP Client Setup ---
# Set timeout to avoid hanging indefinitely
TIMEOUT = httpx.Timeout(10.0, connect=5.0)
_client = httpx.Client(base_url=API_BASE_URL, timeout=TIMEOUT)


class BookingEngineError(Exception):
    """Raised when the API answers with an error status."""

    def __init__(self, status_code: int, detail: Any):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"API returned an error: {status_code} - {detail}")


def _get_headers(actor_id: str, actor_role: Optional[str] = None) -> Dict[str, str]:
    """Returns authentication and actor headers for API requests."""
    headers = {"X-Actor-Id": actor_id}
    if actor_role:
        headers["X-Actor-Role"] = actor_role
    if not API_KEY:
        logger.warning("BOOKING_ENGINE_API_KEY environment variable not set.")
    else:
        headers["api-key"] = API_KEY
    return headers


def _make_request(
    method: str,
    endpoint: str,
    actor_id: str,
    actor_role: Optional[str] = None,
    expected_errors: tuple = (),
    **kwargs,
) -> httpx.Response:
    """
    Helper function to make API requests with error handling.

    Responses whose status is in expected_errors are returned instead of raised.
    """
    try:
        response = _client.request(method, endpoint, headers=_get_headers(actor_id, actor_role), **kwargs)
    except httpx.RequestError as exc:
        logger.error(f"An error occurred while requesting {exc.request.url!r}: {exc}")
        raise ConnectionError(f"API request failed: {exc}") from exc

    if response.is_error and response.status_code not in expected_errors:
        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        logger.error(f"Error response {response.status_code} while requesting {endpoint}: {detail}")
        raise BookingEngineError(response.status_code, detail)
    return response


# --- Availability ---

def check_availability(provider_id: int, start: datetime, end: datetime, actor_id: str) -> AvailabilityResponse:
    """Asks the engine whether a provider can be booked for a window."""
    params = {"start": start.isoformat(), "end": end.isoformat()}
    response = _make_request("GET", f"/providers/{provider_id}/availability", actor_id, params=params)
    return AvailabilityResponse(**response.json())


def is_available(provider_id: int, start: datetime, end: datetime, actor_id: str) -> bool:
    """
    Convenience wrapper for calendar previews.

    Returns False when the engine cannot be reached, so a preview never shows
    a slot as free without the backend confirming it.
    """
    try:
        return check_availability(provider_id, start, end, actor_id).available
    except (BookingEngineError, ConnectionError) as e:
        logger.warning(f"Availability preview for provider {provider_id} failed: {e}")
        return False


def find_available_providers(
    start: datetime,
    end: datetime,
    actor_id: str,
    kind: Optional[ProviderKind] = None,
    city: Optional[str] = None,
    district: Optional[str] = None,
) -> List[ProviderResponse]:
    params = {"start": start.isoformat(), "end": end.isoformat()}
    if kind is not None:
        params["kind"] = kind.value
    if city and district:
        params["city"] = city
        params["district"] = district
    response = _make_request("GET", "/providers/available", actor_id, params=params)
    return [ProviderResponse(**provider) for provider in response.json()]


# --- Assignment ---

def assign_provider(booking_id: int, provider_id: int, actor_id: str, notes: Optional[str] = None) -> AssignmentResponse:
    """
    Requests an assignment. A rejection (409) is returned as an unsuccessful
    AssignmentResponse carrying the reason code, not raised.
    """
    payload = {"provider_id": provider_id}
    if notes:
        payload["notes"] = notes
    response = _make_request(
        "POST", f"/bookings/{booking_id}/assignment", actor_id,
        expected_errors=(httpx.codes.CONFLICT,), json=payload
    )
    return AssignmentResponse(**response.json())


# --- Status ---

def update_provider_status(
    provider_id: int,
    status: ProviderStatus,
    actor_id: str,
    actor_role: str,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> StatusChangeResponse:
    payload = {"status": status.value, "reason": reason, "notes": notes}
    response = _make_request("PATCH", f"/providers/{provider_id}/status", actor_id, actor_role, json=payload)
    return StatusChangeResponse(**response.json())


def update_booking_status(
    booking_id: int,
    status: BookingStatus,
    actor_id: str,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> StatusChangeResponse:
    payload = {"status": status.value, "reason": reason, "notes": notes}
    response = _make_request("PATCH", f"/bookings/{booking_id}/status", actor_id, json=payload)
    return StatusChangeResponse(**response.json())


def fetch_booking(booking_id: int, actor_id: str) -> Optional[BookingResponse]:
    """Fetches a booking, or None if it does not exist."""
    response = _make_request("GET", f"/bookings/{booking_id}", actor_id, expected_errors=(httpx.codes.NOT_FOUND,))
    if response.status_code == httpx.codes.NOT_FOUND:
        return None
    return BookingResponse(**response.json())


def fetch_provider_history(provider_id: int, actor_id: str) -> List[HistoryEntryResponse]:
    response = _make_request("GET", f"/providers/{provider_id}/history", actor_id)
    return [HistoryEntryResponse(**entry) for entry in response.json()]
