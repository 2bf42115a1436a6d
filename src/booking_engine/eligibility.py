from typing import Dict, List, Optional, Tuple

from .models import Location, ProviderKind, ProviderProfile, ProviderStatus, VerificationFlag

# A vehicle has no background check of its own.
REQUIRED_VERIFICATIONS: Dict[ProviderKind, Tuple[VerificationFlag, ...]] = {
    ProviderKind.GUIDE: tuple(VerificationFlag),
    ProviderKind.DRIVER: tuple(VerificationFlag),
    ProviderKind.VEHICLE: (
        VerificationFlag.IDENTITY,
        VerificationFlag.LICENSE,
        VerificationFlag.INSURANCE,
        VerificationFlag.CREDENTIAL,
    ),
}

STATUS_CONDITION = 'status'


def explain(provider: ProviderProfile) -> List[str]:
    """
    Lists the conditions that keep a provider from being assigned.

    Returns 'status' when the provider is not active, followed by the name of
    every verification flag its kind requires but which is not set. An empty
    list means the provider is assignable.
    """
    unmet = []
    if provider.status != ProviderStatus.ACTIVE:
        unmet.append(STATUS_CONDITION)
    for flag in REQUIRED_VERIFICATIONS[provider.kind]:
        if not provider.verification.is_set(flag):
            unmet.append(flag.value)
    return unmet


def is_assignable(provider: ProviderProfile) -> bool:
    return not explain(provider)


def serves_location(provider: ProviderProfile, location: Optional[Location]) -> bool:
    """
    Checks the optional geographic gate.

    Providers without service areas, and bookings without a location, always
    pass. Otherwise city and district must match an active area, ignoring case
    and surrounding whitespace.
    """
    if not provider.service_areas or location is None:
        return True

    city = location.city.strip().casefold()
    district = location.district.strip().casefold()
    return any(
        area.is_active
        and area.city.strip().casefold() == city
        and area.district.strip().casefold() == district
        for area in provider.service_areas
    )
