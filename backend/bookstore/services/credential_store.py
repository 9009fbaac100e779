"""
Carrier credential store

Owns CarrierProfile rows: lookup of the profile a shipment should use,
admin-side profile management, and the encrypted persisted session token.
Every method opens its own session so callers running many orders at once
never share a transaction.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookstore.core.exceptions import ProfileNotFoundError
from bookstore.models.carrier_profile import CarrierProfile, CarrierCode
from bookstore.services.encryption import encrypt_secret, decrypt_secret

logger = logging.getLogger(__name__)

# Plaintext field name -> encrypted column
SECRET_FIELDS = {
    "password": "password_encrypted",
    "license_key": "license_key_encrypted",
    "tracking_key": "tracking_key_encrypted",
    "api_secret": "api_secret_encrypted",
}

# Changing any of these means the persisted session token no longer matches
TOKEN_BOUND_FIELDS = {"login_id", "password", "api_client_id", "api_secret"}

PLAIN_FIELDS = {
    "label", "login_id", "api_client_id", "customer_code", "area_code",
    "pickup_location", "consignor_name", "consignor_phone", "consignor_email",
    "consignor_address", "consignor_address2", "consignor_city",
    "consignor_state", "consignor_pincode", "default_weight", "default_length",
    "default_breadth", "default_height", "is_active",
}


class CredentialStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ==================== Secrets ====================

    @staticmethod
    def encrypt(secret: Optional[str]) -> str:
        return encrypt_secret(secret)

    @staticmethod
    def decrypt(secret: Optional[str]) -> str:
        return decrypt_secret(secret)

    def secret(self, profile: CarrierProfile, name: str) -> str:
        """Decrypted value of one of the SECRET_FIELDS."""
        return decrypt_secret(getattr(profile, SECRET_FIELDS[name]))

    # ==================== Lookup ====================

    async def get_profile(self, profile_id: int) -> CarrierProfile:
        async with self._session_factory() as session:
            profile = await session.get(CarrierProfile, profile_id)
            if profile is None:
                raise ProfileNotFoundError(f"Carrier profile {profile_id} not found")
            session.expunge(profile)
            return profile

    async def list_profiles(
        self,
        owner_id: Optional[int],
        carrier: Optional[CarrierCode] = None,
    ) -> List[CarrierProfile]:
        async with self._session_factory() as session:
            query = select(CarrierProfile).where(CarrierProfile.owner_id == owner_id)
            if carrier is not None:
                query = query.where(CarrierProfile.carrier == carrier)
            result = await session.execute(query.order_by(CarrierProfile.id))
            profiles = list(result.scalars().all())
            for profile in profiles:
                session.expunge(profile)
            return profiles

    async def get_active_profile(
        self,
        owner_id: Optional[int],
        carrier: CarrierCode,
        profile_id: Optional[int] = None,
    ) -> CarrierProfile:
        """
        Resolve the profile to book with.

        An explicit profile id wins, then the owner's default profile, then
        any active profile for the carrier.
        """
        if profile_id is not None:
            profile = await self.get_profile(profile_id)
            if profile.carrier != carrier:
                raise ProfileNotFoundError(
                    f"Carrier profile {profile_id} is not a {carrier.value} profile"
                )
            return profile

        profiles = [p for p in await self.list_profiles(owner_id, carrier) if p.is_active]
        for profile in profiles:
            if profile.is_default:
                return profile
        if profiles:
            return profiles[0]

        raise ProfileNotFoundError(
            f"No active {carrier.value} profile configured",
            details={"owner_id": owner_id, "carrier": carrier.value},
        )

    # ==================== Management ====================

    async def create_profile(
        self,
        owner_id: Optional[int],
        carrier: CarrierCode,
        data: Dict[str, Any],
    ) -> CarrierProfile:
        """Create a profile; the owner's first profile for a carrier becomes default."""
        async with self._session_factory() as session:
            profile = CarrierProfile(owner_id=owner_id, carrier=carrier)
            self._apply_fields(profile, data)

            existing = await session.execute(
                select(CarrierProfile.id).where(
                    CarrierProfile.owner_id == owner_id,
                    CarrierProfile.carrier == carrier,
                )
            )
            make_default = data.get("is_default") or existing.first() is None
            if make_default:
                await self._clear_defaults(session, owner_id, carrier)
                profile.is_default = True
                profile.is_active = True

            session.add(profile)
            await session.commit()
            await session.refresh(profile)
            session.expunge(profile)

        logger.info(f"Created {carrier.value} profile {profile.id} ({profile.label})")
        return profile

    async def update_profile(self, profile_id: int, data: Dict[str, Any]) -> CarrierProfile:
        """Update a profile. Credential changes drop the persisted session token."""
        async with self._session_factory() as session:
            profile = await session.get(CarrierProfile, profile_id)
            if profile is None:
                raise ProfileNotFoundError(f"Carrier profile {profile_id} not found")

            changed = self._apply_fields(profile, data)
            if changed & TOKEN_BOUND_FIELDS:
                profile.auth_token_encrypted = None
                profile.auth_token_expires_at = None
                logger.info(f"Credentials changed on profile {profile_id}; token invalidated")

            if data.get("is_default"):
                await self._clear_defaults(session, profile.owner_id, profile.carrier, keep=profile.id)
                profile.is_default = True
                profile.is_active = True

            await session.commit()
            await session.refresh(profile)
            session.expunge(profile)
            return profile

    async def set_default(self, profile_id: int) -> CarrierProfile:
        """Make one profile the default, clearing the flag on its siblings."""
        async with self._session_factory() as session:
            profile = await session.get(CarrierProfile, profile_id)
            if profile is None:
                raise ProfileNotFoundError(f"Carrier profile {profile_id} not found")

            await self._clear_defaults(session, profile.owner_id, profile.carrier, keep=profile.id)
            profile.is_default = True
            profile.is_active = True

            await session.commit()
            await session.refresh(profile)
            session.expunge(profile)

        logger.info(f"Profile {profile_id} is now the default {profile.carrier.value} profile")
        return profile

    async def delete_profile(self, profile_id: int) -> None:
        """Delete a profile. Booked shipments keep their profile_snapshot."""
        async with self._session_factory() as session:
            profile = await session.get(CarrierProfile, profile_id)
            if profile is None:
                raise ProfileNotFoundError(f"Carrier profile {profile_id} not found")
            await session.delete(profile)
            await session.commit()
        logger.info(f"Deleted carrier profile {profile_id}")

    # ==================== Session token ====================

    async def save_token(self, profile_id: int, token: str, expires_at: datetime) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(CarrierProfile)
                .where(CarrierProfile.id == profile_id)
                .values(
                    auth_token_encrypted=encrypt_secret(token),
                    auth_token_expires_at=expires_at,
                )
            )
            await session.commit()

    async def clear_token(self, profile_id: int) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(CarrierProfile)
                .where(CarrierProfile.id == profile_id)
                .values(auth_token_encrypted=None, auth_token_expires_at=None)
            )
            await session.commit()

    async def load_token(self, profile_id: int) -> Optional[tuple]:
        """(token, expires_at) persisted for the profile, or None."""
        profile = await self.get_profile(profile_id)
        if not profile.auth_token_encrypted or not profile.auth_token_expires_at:
            return None
        try:
            token = decrypt_secret(profile.auth_token_encrypted)
        except ValueError:
            logger.warning(f"Persisted token for profile {profile_id} is unreadable, a fresh login is needed")
            return None
        return token, profile.auth_token_expires_at

    # ==================== Helpers ====================

    @staticmethod
    async def _clear_defaults(
        session: AsyncSession,
        owner_id: Optional[int],
        carrier: CarrierCode,
        keep: Optional[int] = None,
    ) -> None:
        stmt = update(CarrierProfile).where(
            CarrierProfile.owner_id == owner_id,
            CarrierProfile.carrier == carrier,
        )
        if keep is not None:
            stmt = stmt.where(CarrierProfile.id != keep)
        await session.execute(stmt.values(is_default=False))

    @staticmethod
    def _apply_fields(profile: CarrierProfile, data: Dict[str, Any]) -> set:
        changed = set()
        for key, value in data.items():
            if key in SECRET_FIELDS:
                # Empty secret on update means "keep the stored one"
                if value:
                    setattr(profile, SECRET_FIELDS[key], encrypt_secret(value))
                    changed.add(key)
            elif key in PLAIN_FIELDS:
                if getattr(profile, key) != value:
                    setattr(profile, key, value)
                    changed.add(key)
        return changed
