import pytest
import httpx
from unittest.mock import patch
from datetime import datetime

from booking_engine import client
from booking_engine.api.models import AssignmentResponse, AvailabilityResponse
from booking_engine.models import AssignmentReason, BookingStatus, ProviderKind, ProviderStatus

START = datetime(2026, 10, 26, 10, 0)
END = datetime(2026, 10, 26, 11, 0)


def make_response(status_code, payload, method="GET", url="http://testserver/api/v1/"):
    return httpx.Response(status_code, json=payload, request=httpx.Request(method, url))


@pytest.fixture
def mock_client():
    """Replaces the module's httpx.Client."""
    with patch("booking_engine.client._client") as mock:
        yield mock


@pytest.fixture
def availability_json():
    return {
        "provider_id": 1,
        "start": START.isoformat(),
        "end": END.isoformat(),
        "result": "NON_WORKING_DAY",
        "reason": "Saturday 2026-10-24 is not a working day",
        "available": False
    }


# --- _make_request ---

def test_make_request_sends_actor_headers(mock_client):
    mock_client.request.return_value = make_response(200, {})

    with patch("booking_engine.client.API_KEY", "secret"):
        client._make_request("GET", "/transitions", "staff-1", "staff")

    _, kwargs = mock_client.request.call_args
    assert kwargs["headers"] == {"X-Actor-Id": "staff-1", "X-Actor-Role": "staff", "api-key": "secret"}


def test_make_request_raises_on_error_status(mock_client):
    mock_client.request.return_value = make_response(404, {"detail": "Provider with ID 9 not found"})

    with pytest.raises(client.BookingEngineError) as exc_info:
        client._make_request("GET", "/providers/9", "staff-1")

    assert exc_info.value.status_code == 404
    assert exc_info.value.detail == "Provider with ID 9 not found"


def test_make_request_connection_error(mock_client):
    request = httpx.Request("GET", "http://testserver/api/v1/providers/1")
    mock_client.request.side_effect = httpx.ConnectError("refused", request=request)

    with pytest.raises(ConnectionError):
        client._make_request("GET", "/providers/1", "staff-1")


# --- Availability ---

def test_check_availability(mock_client, availability_json):
    mock_client.request.return_value = make_response(200, availability_json)

    result = client.check_availability(1, START, END, "customer-1")

    assert isinstance(result, AvailabilityResponse)
    assert result.result == "NON_WORKING_DAY"
    args, kwargs = mock_client.request.call_args
    assert args == ("GET", "/providers/1/availability")
    assert kwargs["params"] == {"start": "2026-10-26T10:00:00", "end": "2026-10-26T11:00:00"}


def test_is_available_false_when_backend_unreachable(mock_client):
    request = httpx.Request("GET", "http://testserver/api/v1/providers/1/availability")
    mock_client.request.side_effect = httpx.ConnectError("refused", request=request)

    assert client.is_available(1, START, END, "customer-1") is False


def test_is_available(mock_client, availability_json):
    availability_json.update({"result": "AVAILABLE", "reason": "ok", "available": True})
    mock_client.request.return_value = make_response(200, availability_json)

    assert client.is_available(1, START, END, "customer-1") is True


def test_find_available_providers_params(mock_client):
    mock_client.request.return_value = make_response(200, [])

    assert client.find_available_providers(START, END, "customer-1", kind=ProviderKind.GUIDE, city="Kandy") == []

    _, kwargs = mock_client.request.call_args
    # District missing, so no location filter is sent
    assert kwargs["params"] == {"start": START.isoformat(), "end": END.isoformat(), "kind": "guide"}


# --- Assignment ---

def test_assign_provider_rejection_is_returned(mock_client):
    mock_client.request.return_value = make_response(409, {
        "success": False,
        "reason": "DAY_FULL",
        "message": "Provider has reached the maximum number of bookings for this day",
        "booking_id": 7,
        "provider_id": 1,
        "booking_status": "scheduled",
        "already_assigned": False,
        "unmet_conditions": []
    }, method="POST")

    outcome = client.assign_provider(7, 1, "dispatcher-1")

    assert isinstance(outcome, AssignmentResponse)
    assert not outcome.success
    assert outcome.reason == AssignmentReason.DAY_FULL
    _, kwargs = mock_client.request.call_args
    assert kwargs["json"] == {"provider_id": 1}


def test_assign_provider_not_found_raises(mock_client):
    mock_client.request.return_value = make_response(404, {"detail": "Booking with ID 7 not found"}, method="POST")

    with pytest.raises(client.BookingEngineError):
        client.assign_provider(7, 1, "dispatcher-1")


# --- Status ---

def test_update_provider_status(mock_client):
    mock_client.request.return_value = make_response(
        200, {"id": 1, "status": "suspended", "message": "Provider status updated to suspended"}, method="PATCH"
    )

    result = client.update_provider_status(1, ProviderStatus.SUSPENDED, "admin-1", "admin", reason="Complaint")

    assert result.status == "suspended"
    args, kwargs = mock_client.request.call_args
    assert args == ("PATCH", "/providers/1/status")
    assert kwargs["json"] == {"status": "suspended", "reason": "Complaint", "notes": None}
    assert kwargs["headers"]["X-Actor-Role"] == "admin"


def test_update_booking_status_invalid_transition(mock_client):
    mock_client.request.return_value = make_response(
        409, {"detail": "Invalid status transition from completed to cancelled"}, method="PATCH"
    )

    with pytest.raises(client.BookingEngineError) as exc_info:
        client.update_booking_status(7, BookingStatus.CANCELLED, "customer-1")

    assert exc_info.value.status_code == 409


def test_fetch_booking_missing_returns_none(mock_client):
    mock_client.request.return_value = make_response(404, {"detail": "Booking with ID 7 not found"})

    assert client.fetch_booking(7, "customer-1") is None


def test_fetch_provider_history(mock_client):
    mock_client.request.return_value = make_response(200, [
        {"status": "pending", "timestamp": "2026-10-19T08:00:00", "actor_id": "user-1"},
        {"status": "active", "timestamp": "2026-10-20T09:00:00", "actor_id": "staff-1", "reason": "Verified"},
    ])

    history = client.fetch_provider_history(1, "staff-1")

    assert [entry.status for entry in history] == ["pending", "active"]
    assert history[1].reason == "Verified"
