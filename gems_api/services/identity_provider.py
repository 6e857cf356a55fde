# Verifies refresh/id credentials against the external identity provider.
# Transport failures and timeouts are reported as UpstreamUnavailable so the
# caller can tell "retry later" apart from "not a valid credential".

import logging
from typing import Optional, Protocol

import httpx
from pydantic import ValidationError

from gems_api.core.config import settings
from gems_api.core.errors import UpstreamUnavailable
from gems_api.models.dto import IdentityClaims
from gems_api.utils.lazy import LazyResource

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    async def verify(self, credential: str) -> Optional[IdentityClaims]: ...


class HttpIdentityProvider:
    """
    Token introspection over HTTP.

    Expects `POST <url>` with `{"token": ...}` to answer
    `{"active": true, "uid": ..., "email_verified": ...}` for a live credential.
    A 400/401/403 or `"active": false` means the credential is not valid.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = settings.IDENTITY_PROVIDER_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or settings.IDENTITY_PROVIDER_URL
        if not self.url:
            raise ValueError("IDENTITY_PROVIDER_URL is not set in the environment")
        self.api_key = api_key if api_key is not None else settings.IDENTITY_PROVIDER_API_KEY
        self._client = LazyResource(
            "identity_provider_http",
            lambda: httpx.AsyncClient(timeout=timeout, transport=transport),
        )

    async def verify(self, credential: str) -> Optional[IdentityClaims]:
        if not credential:
            return None
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        client = await self._client.get()
        try:
            response = await client.post(self.url, json={"token": credential}, headers=headers)
        except httpx.TimeoutException:
            logger.error("Identity provider verification timed out.")
            raise UpstreamUnavailable("identity_provider")
        except httpx.TransportError as e:
            logger.error(f"Identity provider unreachable: {e}")
            raise UpstreamUnavailable("identity_provider")

        if response.status_code in (400, 401, 403):
            return None
        if response.status_code >= 500:
            logger.error(f"Identity provider returned {response.status_code}")
            raise UpstreamUnavailable("identity_provider")
        if response.status_code != 200:
            logger.warning(f"Unexpected identity provider status {response.status_code}")
            return None

        try:
            body = response.json()
        except ValueError:
            logger.error("Identity provider returned a non-JSON body")
            raise UpstreamUnavailable("identity_provider")

        if not isinstance(body, dict) or not body.get("active"):
            return None
        try:
            return IdentityClaims.model_validate(body)
        except ValidationError:
            logger.warning("Identity provider response missing uid")
            return None

    async def aclose(self) -> None:
        await self._client.aclose()


class UnconfiguredIdentityProvider:
    """Stand-in used when no provider URL is configured; every call is a 503."""

    async def verify(self, credential: str) -> Optional[IdentityClaims]:
        logger.warning("Identity provider called but IDENTITY_PROVIDER_URL is not configured.")
        raise UpstreamUnavailable("identity_provider", retry_after_seconds=None)

    async def aclose(self) -> None:
        return None
