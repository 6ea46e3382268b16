"""Bearer token cache for the Guesty client-credentials grant."""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from guesty_sync.config import Settings
from guesty_sync.errors import AuthError
from guesty_sync.logging import get_logger

logger = get_logger(__name__)

_TOKEN_PATH = "oauth2/token"


@dataclass(frozen=True)
class AccessToken:
    """A bearer token and the monotonic time after which it is not reused."""

    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenCache:
    """Issues a valid access token, refreshing it from the identity endpoint.

    Two concurrent refreshes are not prevented; the worst case is one
    redundant token request.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            settings: Credentials, base URL, and TTL settings.
            client: Shared HTTP client. One is created lazily if not provided.
            clock: Monotonic time source in seconds (injectable for tests).
        """
        self._settings = settings
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._token: AccessToken | None = None

    @property
    def token_url(self) -> str:
        return f"{self._settings.api_base_url}{_TOKEN_PATH}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.token_timeout_seconds)
        return self._client

    def invalidate(self) -> None:
        """Forget the cached token so the next call refreshes it."""
        if self._token is not None:
            logger.info("token_invalidated")
        self._token = None

    async def get_token(self) -> str:
        """Return a cached token, or request a new one.

        Raises:
            AuthError: If credentials are missing or the identity endpoint fails.
                Nothing is cached on failure.
        """
        now = self._clock()
        if self._token is not None and self._token.is_valid(now):
            return self._token.value

        token = await self._request_token()
        self._token = token
        return token.value

    async def _request_token(self) -> AccessToken:
        if not self._settings.has_credentials:
            raise AuthError("Guesty client ID and secret are not configured")

        client = self._get_client()
        try:
            response = await client.post(
                self.token_url,
                data={
                    "client_id": self._settings.client_id,
                    "client_secret": self._settings.client_secret.get_secret_value(),
                    "grant_type": "client_credentials",
                },
                headers={"Accept": "application/json"},
                timeout=self._settings.token_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.warning("token_request_failed", error=str(e))
            raise AuthError(f"Token request failed: {e}") from e

        if not response.is_success:
            logger.warning("token_request_rejected", status=response.status_code)
            raise AuthError(f"Token request returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise AuthError("Token response is not valid JSON") from e

        if not isinstance(body, dict):
            raise AuthError("Token response is not a JSON object")

        access_token = body.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            raise AuthError("Token response has no access_token")

        ttl = self._cache_ttl(body.get("expires_in"))
        logger.info("token_refreshed", ttl_seconds=ttl)
        return AccessToken(value=access_token.strip(), expires_at=self._clock() + ttl)

    def _cache_ttl(self, expires_in: Any) -> float:
        """Cache lifetime: provider lifetime minus the guard window."""
        try:
            lifetime = float(expires_in)
        except (TypeError, ValueError):
            return float(self._settings.token_fallback_ttl_seconds)
        if not math.isfinite(lifetime) or lifetime <= 0:
            return float(self._settings.token_fallback_ttl_seconds)
        # Very short-lived tokens still get cached for half their lifetime
        return max(lifetime - self._settings.token_guard_seconds, lifetime / 2)

    async def close(self) -> None:
        """Close the HTTP client if this cache created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
