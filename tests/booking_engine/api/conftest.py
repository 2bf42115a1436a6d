"""Shared fixtures for API tests."""

import pytest
from fastapi.testclient import TestClient

from booking_engine.api.main import create_app
from booking_engine.api.deps import get_settings
from booking_engine.api.routes import get_assignment_service
from booking_engine.db.database import get_db


# --- Test API Key Fixture ---
@pytest.fixture
def test_api_key():
    """Valid API key for testing."""
    return "test-api-key"


@pytest.fixture
def test_settings(test_api_key):
    return {
        "database_url": "sqlite://",
        "api_keys": [test_api_key],
        "assignment_lock_timeout": 0.2,
        "record_provider_assignments": False,
        "log_level": "INFO",
    }


@pytest.fixture
def client(test_settings, db_session, service):
    """
    TestClient wired to the per-test database and the fixed-clock AssignmentService.
    """
    def override_get_db():
        yield db_session

    app = create_app()
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_assignment_service] = lambda: service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides = {}


@pytest.fixture
def staff_headers(test_api_key):
    return {"api-key": test_api_key, "X-Actor-Id": "staff-1", "X-Actor-Role": "staff"}


@pytest.fixture
def customer_headers(test_api_key):
    return {"api-key": test_api_key, "X-Actor-Id": "customer-1"}


@pytest.fixture
def registration_payload():
    return {
        "kind": "driver",
        "owner_user_id": "driver-user-1",
        "verification": {
            "identity": True,
            "license": True,
            "background_check": True,
            "insurance": True,
            "credential": True
        },
        "availability_policy": {
            "working_days": ["monday", "tuesday", "wednesday", "thursday", "friday"],
            "working_hours": {"start": "09:00", "end": "17:00"},
            "max_bookings_per_day": 3,
            "advance_booking_days": 30
        },
        "service_areas": [{"city": "Kandy", "district": "Kandy"}]
    }


@pytest.fixture
def active_provider_id(client, staff_headers, registration_payload):
    """Registers the driver and activates it through the API."""
    response = client.post("/api/v1/providers", json=registration_payload, headers=staff_headers)
    assert response.status_code == 201
    provider_id = response.json()["id"]

    response = client.patch(
        f"/api/v1/providers/{provider_id}/status",
        json={"status": "active", "reason": "Documents verified"},
        headers=staff_headers
    )
    assert response.status_code == 200
    return provider_id


@pytest.fixture
def create_booking(client, customer_headers):
    def _create(start, end, location=None):
        payload = {"start": start, "end": end}
        if location:
            payload["location"] = location
        response = client.post("/api/v1/bookings", json=payload, headers=customer_headers)
        assert response.status_code == 201
        return response.json()["id"]
    return _create
