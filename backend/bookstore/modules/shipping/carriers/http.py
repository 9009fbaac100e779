"""
Carrier HTTP transport

Wraps httpx.AsyncClient with the retry policy shared by every carrier:

- 5xx or transport timeout: retry up to max_retries times, sleeping
  base_delay * 2**attempt between tries (1s, 2s, 4s by default).
- 401: invalidate the token, log in again and repeat the call once. This
  extra call does not count against max_retries.
- any other 4xx: raised immediately as CarrierBusinessError with the
  carrier's own message.
- 2xx whose body reports a carrier-side outage (per-carrier
  transient_check): retried like a 5xx.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from bookstore.core.exceptions import (
    CarrierAuthError,
    CarrierBusinessError,
    TransientCarrierError,
)
from bookstore.models.carrier_profile import CarrierCode, CarrierProfile
from bookstore.modules.shipping.carriers.base import NormalizedResponse
from bookstore.services.encryption import sanitize_for_logging
from bookstore.services.token_manager import TokenManager

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0
    exponential_base: float = 2.0

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (self.exponential_base ** attempt)


def parse_body(response: httpx.Response) -> Any:
    """JSON body if there is one, else {"raw": text}."""
    if not response.content:
        return {}
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError):
        return {"raw": response.text[:500]}


class CarrierHTTPClient:
    def __init__(
        self,
        carrier: CarrierCode,
        base_url: str,
        token_manager: TokenManager,
        normalizer: Callable[[Any, int], NormalizedResponse],
        auth_headers: Callable[[str], Dict[str, str]],
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        transient_check: Optional[Callable[[httpx.Response], Optional[str]]] = None,
    ):
        self.carrier = carrier
        self.base_url = base_url.rstrip("/")
        self.token_manager = token_manager
        self.normalizer = normalizer
        self.auth_headers = auth_headers
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep
        self.transient_check = transient_check
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        path: str,
        profile: CarrierProfile,
        operation: str,
        json_body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Send one logical carrier call and return the 2xx response.

        Raises TransientCarrierError once retries are exhausted,
        CarrierAuthError if the carrier still answers 401 after a fresh
        login, and CarrierBusinessError for other 4xx answers.
        """
        client = await self._get_client()
        cfg = self.retry_config
        attempt = 0
        reauthenticated = False

        while True:
            token = await self.token_manager.get_token(self.carrier, profile)
            request_headers = dict(headers or {})
            request_headers.update(self.auth_headers(token))

            try:
                response = await client.request(
                    method,
                    path,
                    json=json_body,
                    params=params,
                    headers=request_headers,
                )
            except httpx.TransportError as e:
                failure = f"{type(e).__name__}: {e}"
            else:
                status = response.status_code
                if status < 400:
                    reason = self.transient_check(response) if self.transient_check else None
                    if reason is None:
                        return response
                    failure = reason
                elif status == 401:
                    if reauthenticated:
                        raise CarrierAuthError(
                            f"{self.carrier.value} rejected freshly issued credentials during {operation}",
                            details={"operation": operation, "profile_id": profile.id},
                        )
                    logger.warning(
                        f"{self.carrier.value} {operation}: 401, refreshing token for profile {profile.id}"
                    )
                    reauthenticated = True
                    await self.token_manager.invalidate(self.carrier, profile, stale_token=token)
                    continue
                elif status < 500:
                    body = parse_body(response)
                    normalized = self.normalizer(body, status)
                    logger.error(
                        f"{self.carrier.value} {operation} rejected ({status}): "
                        f"{sanitize_for_logging(str(normalized.message))}"
                    )
                    raise CarrierBusinessError(
                        normalized.message or f"{operation} failed",
                        carrier_code=normalized.code,
                        raw=body,
                        details={"operation": operation, "status_code": status},
                    )
                else:
                    failure = f"HTTP {status}"

            if attempt >= cfg.max_retries:
                logger.error(
                    f"{self.carrier.value} {operation} failed after {attempt + 1} attempts: {failure}"
                )
                raise TransientCarrierError(
                    f"{self.carrier.value} {operation} unavailable: {failure}",
                    details={"operation": operation, "attempts": attempt + 1},
                )

            delay = cfg.delay_for(attempt)
            attempt += 1
            logger.warning(
                f"{self.carrier.value} {operation} attempt {attempt} failed ({failure}), "
                f"retrying in {delay:.1f}s"
            )
            await self._sleep(delay)
