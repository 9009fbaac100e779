"""
Carrier Profile API Routes

Admin management of carrier accounts. Secrets are write-only: responses
only say whether a secret is stored.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, status

from bookstore.api.deps import get_current_owner_id, get_shipping_services
from bookstore.core.exceptions import CarrierAuthError, ProfileNotFoundError
from bookstore.models.carrier_profile import CarrierCode, CarrierProfile
from bookstore.services.credential_store import TOKEN_BOUND_FIELDS
from bookstore.services.encryption import decrypt_secret, mask_secret
from bookstore.services.shipping_service import ShippingServices
from bookstore.schemas.shipping import (
    CarrierProfileCreate,
    CarrierProfileResponse,
    CarrierProfileUpdate,
    CredentialTestResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/carrier-profiles", tags=["carrier-profiles"])


def profile_to_response(profile: CarrierProfile) -> CarrierProfileResponse:
    return CarrierProfileResponse(
        id=profile.id,
        carrier=profile.carrier,
        label=profile.label,
        login_id=profile.login_id,
        api_client_id=profile.api_client_id,
        customer_code=profile.customer_code,
        area_code=profile.area_code,
        pickup_location=profile.pickup_location,
        consignor_name=profile.consignor_name,
        consignor_city=profile.consignor_city,
        consignor_pincode=profile.consignor_pincode,
        default_weight=profile.default_weight,
        default_length=profile.default_length,
        default_breadth=profile.default_breadth,
        default_height=profile.default_height,
        is_default=bool(profile.is_default),
        is_active=bool(profile.is_active),
        has_password=bool(profile.password_encrypted),
        has_license_key=bool(profile.license_key_encrypted),
        has_api_secret=bool(profile.api_secret_encrypted),
        license_key_hint=mask_secret(decrypt_secret(profile.license_key_encrypted)) or None,
        token_expires_at=profile.auth_token_expires_at,
        created_at=profile.created_at,
    )


async def _owned_profile(services: ShippingServices, profile_id: int, owner_id: int) -> CarrierProfile:
    profile = await services.credential_store.get_profile(profile_id)
    if profile.owner_id != owner_id:
        # Do not reveal other owners' profiles
        raise ProfileNotFoundError(f"Carrier profile {profile_id} not found")
    return profile


@router.get("", response_model=List[CarrierProfileResponse])
async def list_profiles(
    carrier: Optional[CarrierCode] = None,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    profiles = await services.credential_store.list_profiles(owner_id, carrier)
    return [profile_to_response(p) for p in profiles]


@router.post("", response_model=CarrierProfileResponse, status_code=status.HTTP_201_CREATED)
async def create_profile(
    data: CarrierProfileCreate,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    """Create a profile. The first profile for a carrier becomes the default."""
    fields = data.model_dump(exclude={"carrier"}, exclude_none=True)
    profile = await services.credential_store.create_profile(owner_id, data.carrier, fields)
    return profile_to_response(profile)


@router.get("/{profile_id}", response_model=CarrierProfileResponse)
async def get_profile(
    profile_id: int,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    return profile_to_response(await _owned_profile(services, profile_id, owner_id))


@router.patch("/{profile_id}", response_model=CarrierProfileResponse)
async def update_profile(
    profile_id: int,
    data: CarrierProfileUpdate,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    """Update a profile; credential changes force a fresh carrier login."""
    await _owned_profile(services, profile_id, owner_id)
    fields = data.model_dump(exclude_unset=True)
    profile = await services.credential_store.update_profile(profile_id, fields)

    if TOKEN_BOUND_FIELDS & set(fields):
        await services.token_manager.invalidate(profile.carrier, profile)
    return profile_to_response(profile)


@router.post("/{profile_id}/default", response_model=CarrierProfileResponse)
async def set_default_profile(
    profile_id: int,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    await _owned_profile(services, profile_id, owner_id)
    return profile_to_response(await services.credential_store.set_default(profile_id))


@router.delete("/{profile_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_profile(
    profile_id: int,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    profile = await _owned_profile(services, profile_id, owner_id)
    await services.token_manager.invalidate(profile.carrier, profile)
    await services.credential_store.delete_profile(profile_id)


@router.post("/{profile_id}/test", response_model=CredentialTestResponse)
async def test_profile_credentials(
    profile_id: int,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    """Log in with the stored credentials without touching the token cache."""
    profile = await _owned_profile(services, profile_id, owner_id)
    try:
        token = await services.token_manager.test_credentials(profile.carrier, profile)
    except CarrierAuthError as e:
        logger.warning(f"Credential test failed for profile {profile_id}: {e.message}")
        return CredentialTestResponse(ok=False, carrier=profile.carrier, message=e.message)
    return CredentialTestResponse(ok=True, carrier=profile.carrier, expires_at=token.expires_at)


@router.post("/{profile_id}/refresh-token", response_model=CredentialTestResponse)
async def refresh_profile_token(
    profile_id: int,
    owner_id: int = Depends(get_current_owner_id),
    services: ShippingServices = Depends(get_shipping_services),
):
    profile = await _owned_profile(services, profile_id, owner_id)
    token = await services.token_manager.refresh(profile.carrier, profile)
    return CredentialTestResponse(ok=True, carrier=profile.carrier, expires_at=token.expires_at)
