"""
Carrier token manager

Hands out a usable bearer credential per (carrier, profile). Two protocols
sit behind the same get_token/invalidate interface:

- Blue Dart: client id/secret exchanged for a JWT valid ~24h, cached in
  process only.
- Shiprocket: email/password exchanged for a token valid ~10 days, persisted
  on the carrier profile so it survives restarts.

A token is usable only while now < expires_at - buffer. Concurrent callers
that find no usable token wait on one lock per (carrier, profile) and share
the single refresh the first caller performs.
"""
import asyncio
import logging
import weakref
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from bookstore.core.exceptions import CarrierAuthError
from bookstore.models.carrier_profile import CarrierCode, CarrierProfile
from bookstore.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass
class AuthToken:
    token: str
    expires_at: datetime
    carrier: CarrierCode

    def is_valid(self, buffer: timedelta, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return bool(self.token) and now < _utc(self.expires_at) - buffer


class CarrierAuthenticator(ABC):
    """Performs one carrier's login exchange."""

    carrier: CarrierCode
    buffer: timedelta
    # Persisted tokens are stored on the profile row
    persistent: bool = False

    @abstractmethod
    async def login(self, profile: CarrierProfile) -> AuthToken:
        """Exchange profile credentials for a fresh token. Raises CarrierAuthError."""


class TokenManager:
    def __init__(
        self,
        credential_store: CredentialStore,
        authenticators: Dict[CarrierCode, CarrierAuthenticator],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.credential_store = credential_store
        self.authenticators = authenticators
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._cache: Dict[Tuple[CarrierCode, int], AuthToken] = {}
        # Entries disappear once no caller holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[Tuple[CarrierCode, int], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _authenticator(self, carrier: CarrierCode) -> CarrierAuthenticator:
        authenticator = self.authenticators.get(carrier)
        if authenticator is None:
            raise CarrierAuthError(f"No authenticator registered for {carrier.value}")
        return authenticator

    def _lock(self, key: Tuple[CarrierCode, int]) -> asyncio.Lock:
        # No await between lookup and insert, so this cannot race
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def cached(self, carrier: CarrierCode, profile: CarrierProfile) -> Optional[AuthToken]:
        return self._cache.get((carrier, profile.id))

    async def get_token(self, carrier: CarrierCode, profile: CarrierProfile) -> str:
        """Return a usable token, logging in only when the cached one is stale."""
        authenticator = self._authenticator(carrier)
        key = (carrier, profile.id)

        cached = self._cache.get(key)
        if cached and cached.is_valid(authenticator.buffer, self._clock()):
            return cached.token

        async with self._lock(key):
            # Another caller may have refreshed while we waited
            cached = self._cache.get(key)
            if cached and cached.is_valid(authenticator.buffer, self._clock()):
                return cached.token

            if authenticator.persistent:
                stored = await self.credential_store.load_token(profile.id)
                if stored:
                    token = AuthToken(token=stored[0], expires_at=_utc(stored[1]), carrier=carrier)
                    if token.is_valid(authenticator.buffer, self._clock()):
                        self._cache[key] = token
                        return token.token

            logger.info(f"Refreshing {carrier.value} token for profile {profile.id}")
            token = await authenticator.login(profile)
            self._cache[key] = token
            if authenticator.persistent:
                await self.credential_store.save_token(profile.id, token.token, token.expires_at)
            return token.token

    async def invalidate(
        self,
        carrier: CarrierCode,
        profile: CarrierProfile,
        stale_token: Optional[str] = None,
    ) -> None:
        """
        Drop the cached (and persisted) token so the next get_token logs in.

        When stale_token is given and the cache already holds a different
        token, another caller refreshed in the meantime and nothing is dropped.
        """
        authenticator = self._authenticator(carrier)
        key = (carrier, profile.id)
        async with self._lock(key):
            current = self._cache.get(key)
            if stale_token and current and current.token != stale_token:
                return
            self._cache.pop(key, None)
            if authenticator.persistent:
                await self.credential_store.clear_token(profile.id)
        logger.info(f"Invalidated {carrier.value} token for profile {profile.id}")

    async def refresh(self, carrier: CarrierCode, profile: CarrierProfile) -> AuthToken:
        await self.invalidate(carrier, profile)
        await self.get_token(carrier, profile)
        return self._cache[(carrier, profile.id)]

    async def test_credentials(self, carrier: CarrierCode, profile: CarrierProfile) -> AuthToken:
        """Fresh login that is not cached or persisted."""
        return await self._authenticator(carrier).login(profile)
