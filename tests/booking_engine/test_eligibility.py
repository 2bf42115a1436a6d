import pytest

from booking_engine.eligibility import explain, is_assignable, serves_location
from booking_engine.models import (
    Location, ProviderKind, ProviderProfile, ProviderStatus, ServiceArea, Verification,
)


def test_fully_verified_active_provider_is_assignable(active_driver):
    assert explain(active_driver) == []
    assert is_assignable(active_driver)


def test_missing_background_check_is_reported(active_driver):
    provider = active_driver.model_copy(update={
        "verification": active_driver.verification.model_copy(update={"background_check": False})
    })

    assert explain(provider) == ["background_check"]
    assert not is_assignable(provider)


@pytest.mark.parametrize("status", [
    ProviderStatus.PENDING, ProviderStatus.SUSPENDED, ProviderStatus.INACTIVE, ProviderStatus.BLACKLISTED,
])
def test_only_active_providers_are_assignable(active_driver, status):
    provider = active_driver.model_copy(update={"status": status})
    assert explain(provider) == ["status"]


def test_status_listed_before_missing_flags():
    provider = ProviderProfile(id=3, owner_user_id="user-3", kind=ProviderKind.GUIDE)
    assert explain(provider) == ["status", "identity", "license", "background_check", "insurance", "credential"]


def test_vehicle_does_not_need_background_check():
    vehicle = ProviderProfile(
        id=4,
        owner_user_id="fleet-1",
        kind=ProviderKind.VEHICLE,
        status=ProviderStatus.ACTIVE,
        verification=Verification(identity=True, license=True, insurance=True, credential=True)
    )
    assert is_assignable(vehicle)


def test_vehicle_still_needs_insurance():
    vehicle = ProviderProfile(
        id=4,
        owner_user_id="fleet-1",
        kind=ProviderKind.VEHICLE,
        status=ProviderStatus.ACTIVE,
        verification=Verification(identity=True, license=True, credential=True)
    )
    assert explain(vehicle) == ["insurance"]


# --- Service areas ---

def test_no_service_areas_serves_everywhere(active_driver):
    assert serves_location(active_driver, Location(city="Kandy", district="Kandy"))


def test_booking_without_location_always_passes(active_driver):
    provider = active_driver.model_copy(update={"service_areas": [ServiceArea(city="Galle", district="Galle")]})
    assert serves_location(provider, None)


def test_matching_area_ignores_case_and_whitespace(active_driver):
    provider = active_driver.model_copy(update={"service_areas": [ServiceArea(city="Galle", district="Galle")]})
    assert serves_location(provider, Location(city=" galle ", district="GALLE"))
    assert not serves_location(provider, Location(city="Kandy", district="Kandy"))


def test_inactive_area_does_not_count(active_driver):
    provider = active_driver.model_copy(update={
        "service_areas": [ServiceArea(city="Galle", district="Galle", is_active=False)]
    })
    assert not serves_location(provider, Location(city="Galle", district="Galle"))
