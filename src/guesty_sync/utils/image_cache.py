"""Disk-based cache for listing featured images."""

import hashlib
import re
from pathlib import Path
from typing import Final

import httpx

from guesty_sync.errors import AssetCacheError
from guesty_sync.logging import get_logger

logger = get_logger(__name__)

_IMAGE_CACHE_DIR: Final = "image_cache"

_DOWNLOAD_TIMEOUT: Final = 30.0

_MAX_IMAGE_BYTES: Final = 20 * 1024 * 1024

_REJECTED_EXTENSIONS: Final = (".pdf", ".svg", ".html", ".js", ".css", ".json", ".xml")


def is_valid_image_url(url: str) -> bool:
    """Check if URL points to a supported image format.

    Rejects known non-image extensions (.pdf, .svg). Extension-less URLs
    pass through since CDNs commonly serve images without extensions.

    Args:
        url: Image URL to check.

    Returns:
        True if the URL is not a known non-image format.
    """
    path = url.split("?")[0].lower()
    return not path.endswith(_REJECTED_EXTENSIONS)


def safe_dir_name(external_id: str) -> str:
    """Convert a listing ID to a filesystem-safe directory name.

    E.g. "5f1a/b:2" -> "5f1a_b_2"
    """
    return re.sub(r"[^a-zA-Z0-9_-]", "_", external_id)


def get_cache_dir(data_dir: str, external_id: str) -> Path:
    """Return the cache directory for a listing's images."""
    return Path(data_dir) / _IMAGE_CACHE_DIR / safe_dir_name(external_id)


def url_to_filename(url: str, image_type: str = "featured") -> str:
    """Deterministic filename from URL using MD5 hash prefix.

    E.g. "featured_a1b2c3d4.jpg"
    """
    url_hash = hashlib.md5(url.encode()).hexdigest()[:8]
    path = url.split("?")[0].lower()
    ext = "jpg"
    for candidate in (".png", ".webp", ".gif", ".jpeg", ".jpg"):
        if path.endswith(candidate):
            ext = candidate.lstrip(".")
            break
    return f"{image_type}_{url_hash}.{ext}"


def image_ref_for(external_id: str, url: str) -> str:
    """Asset reference (path relative to the data dir) for a listing image."""
    return f"{_IMAGE_CACHE_DIR}/{safe_dir_name(external_id)}/{url_to_filename(url)}"


def resolve_image_ref(data_dir: str, ref: str) -> Path | None:
    """Map an asset reference back to a file inside the cache, or None.

    References that escape the cache directory are rejected.
    """
    cache_root = (Path(data_dir) / _IMAGE_CACHE_DIR).resolve()
    path = (Path(data_dir) / ref).resolve()
    if not path.is_relative_to(cache_root):
        return None
    return path if path.is_file() else None


def save_image_bytes(path: Path, data: bytes) -> None:
    """Write image bytes to disk, creating parent dirs as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


class ImageCache:
    """Downloads listing photos into the on-disk cache."""

    def __init__(
        self,
        data_dir: str,
        *,
        client: httpx.AsyncClient | None = None,
        max_bytes: int = _MAX_IMAGE_BYTES,
    ) -> None:
        """Initialize the cache.

        Args:
            data_dir: Base data directory; images go under ``image_cache/``.
            client: Shared HTTP client. One is created lazily if not provided.
            max_bytes: Largest image accepted. Downloads stop once it is exceeded.
        """
        self._data_dir = data_dir
        self._max_bytes = max_bytes
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=_DOWNLOAD_TIMEOUT, follow_redirects=True)
        return self._client

    async def cache_image(self, url: str, external_id: str) -> str:
        """Download ``url`` and return its asset reference.

        A file already cached for the same URL is reused without a download.

        Raises:
            AssetCacheError: If the download fails, the response is not an
                image, or the file cannot be written.
        """
        if not is_valid_image_url(url):
            raise AssetCacheError(f"Not an image URL: {url}")

        ref = image_ref_for(external_id, url)
        path = get_cache_dir(self._data_dir, external_id) / url_to_filename(url)
        if path.is_file():
            logger.debug("image_cache_hit", external_id=external_id, ref=ref)
            return ref

        client = self._get_client()
        try:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                content_type = response.headers.get("content-type", "")
                if content_type and not content_type.lower().startswith("image/"):
                    raise AssetCacheError(f"Unexpected content type {content_type!r} for {url}")
                declared = response.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > self._max_bytes:
                    raise AssetCacheError(f"Image too large for {url}")

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self._max_bytes:
                        raise AssetCacheError(f"Image too large for {url}")
        except httpx.HTTPError as e:
            raise AssetCacheError(f"Image download failed for {url}: {e}") from e

        if not body:
            raise AssetCacheError(f"Empty image body for {url}")

        try:
            save_image_bytes(path, bytes(body))
        except OSError as e:
            raise AssetCacheError(f"Could not write image for {url}: {e}") from e

        logger.debug("image_cached", external_id=external_id, ref=ref, size=len(body))
        return ref

    async def close(self) -> None:
        """Close the HTTP client if this cache created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
