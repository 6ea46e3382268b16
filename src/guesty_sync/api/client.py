"""Guesty listings API client."""

from typing import Any

import httpx

from guesty_sync.config import Settings
from guesty_sync.errors import FetchError
from guesty_sync.logging import get_logger

logger = get_logger(__name__)

_LISTINGS_PATH = "listings"


class GuestyClient:
    """Fetches the full listing catalog with a bearer token."""

    def __init__(self, settings: Settings, *, client: httpx.AsyncClient | None = None) -> None:
        """Initialize the client.

        Args:
            settings: Base URL and request timeout.
            client: Shared HTTP client. One is created lazily if not provided.
        """
        self._settings = settings
        self._client = client
        self._owns_client = client is None

    @property
    def listings_url(self) -> str:
        return f"{self._settings.api_base_url}{_LISTINGS_PATH}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.request_timeout_seconds)
        return self._client

    async def fetch_listings(self, token: str) -> list[Any]:
        """Fetch every listing item in one request.

        An empty list means the provider reports zero listings. Any failure
        raises instead, so callers can tell the two apart.

        Args:
            token: Bearer token from the token cache.

        Returns:
            Raw ``items`` from the response body, unvalidated.

        Raises:
            FetchError: On transport errors, non-2xx status, an undecodable
                body, or a body without an ``items`` list.
        """
        client = self._get_client()
        try:
            response = await client.get(
                self.listings_url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
                timeout=self._settings.request_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.warning("listings_request_failed", error=str(e))
            raise FetchError(f"Listings request failed: {e}") from e

        if not response.is_success:
            logger.warning("listings_request_rejected", status=response.status_code)
            raise FetchError(
                f"Listings request returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise FetchError(
                "Listings response is not valid JSON", status_code=response.status_code
            ) from e

        if not isinstance(body, dict):
            raise FetchError(
                "Listings response is not a JSON object", status_code=response.status_code
            )

        items = body.get("items")
        if not isinstance(items, list):
            raise FetchError(
                "Listings response has no items list", status_code=response.status_code
            )

        logger.info("listings_fetched", count=len(items))
        return items

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
