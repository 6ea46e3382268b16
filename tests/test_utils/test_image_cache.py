"""Tests for image cache utilities."""

from collections.abc import AsyncIterator
from pathlib import Path

import httpx
import pytest
import respx

from guesty_sync.errors import AssetCacheError
from guesty_sync.utils.image_cache import (
    ImageCache,
    get_cache_dir,
    image_ref_for,
    is_valid_image_url,
    resolve_image_ref,
    safe_dir_name,
    save_image_bytes,
    url_to_filename,
)

IMAGE_URL = "https://img.example.com/listing/1.jpg"
JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg"


class TestSafeDirName:
    def test_special_chars_replaced(self) -> None:
        assert safe_dir_name("5f1a/b:2") == "5f1a_b_2"

    def test_no_special_chars(self) -> None:
        assert safe_dir_name("64f0c2a9e1") == "64f0c2a9e1"

    def test_path_traversal_neutralized(self) -> None:
        assert "/" not in safe_dir_name("../../etc")


class TestGetCacheDir:
    def test_returns_expected_path(self) -> None:
        assert get_cache_dir("/data", "A:1") == Path("/data/image_cache/A_1")


class TestUrlToFilename:
    def test_featured_prefix(self) -> None:
        name = url_to_filename("https://example.com/img.png")
        assert name.startswith("featured_")
        assert name.endswith(".png")

    def test_no_extension_defaults_to_jpg(self) -> None:
        assert url_to_filename("https://example.com/image").endswith(".jpg")

    def test_query_string_ignored_for_extension(self) -> None:
        assert url_to_filename("https://example.com/a.webp?w=800").endswith(".webp")

    def test_deterministic(self) -> None:
        assert url_to_filename(IMAGE_URL) == url_to_filename(IMAGE_URL)

    def test_different_urls_different_names(self) -> None:
        assert url_to_filename("https://example.com/a.jpg") != url_to_filename(
            "https://example.com/b.jpg"
        )


class TestIsValidImageUrl:
    @pytest.mark.parametrize(
        "url",
        ["https://a.example.com/x.jpg", "https://a.example.com/x.webp", "https://cdn/x?id=1"],
    )
    def test_valid(self, url: str) -> None:
        assert is_valid_image_url(url)

    @pytest.mark.parametrize(
        "url", ["https://a.example.com/x.pdf", "https://a.example.com/x.SVG"]
    )
    def test_rejected(self, url: str) -> None:
        assert not is_valid_image_url(url)


class TestResolveImageRef:
    def test_existing_file(self, tmp_path: Path) -> None:
        ref = image_ref_for("A", IMAGE_URL)
        save_image_bytes(tmp_path / ref, JPEG_BYTES)
        assert resolve_image_ref(str(tmp_path), ref) == (tmp_path / ref).resolve()

    def test_missing_file(self, tmp_path: Path) -> None:
        assert resolve_image_ref(str(tmp_path), image_ref_for("A", IMAGE_URL)) is None

    def test_traversal_rejected(self, tmp_path: Path) -> None:
        (tmp_path / "secret.txt").write_text("secret")
        assert resolve_image_ref(str(tmp_path), "image_cache/../secret.txt") is None


class TestImageCache:
    @respx.mock
    async def test_downloads_and_returns_ref(self, tmp_path: Path) -> None:
        respx.get(IMAGE_URL).mock(
            return_value=httpx.Response(
                200, content=JPEG_BYTES, headers={"content-type": "image/jpeg"}
            )
        )
        cache = ImageCache(str(tmp_path))

        ref = await cache.cache_image(IMAGE_URL, "A")

        assert ref == image_ref_for("A", IMAGE_URL)
        assert (tmp_path / ref).read_bytes() == JPEG_BYTES
        await cache.close()

    @respx.mock
    async def test_cached_file_reused(self, tmp_path: Path) -> None:
        route = respx.get(IMAGE_URL).mock(
            return_value=httpx.Response(
                200, content=JPEG_BYTES, headers={"content-type": "image/jpeg"}
            )
        )
        cache = ImageCache(str(tmp_path))

        first = await cache.cache_image(IMAGE_URL, "A")
        second = await cache.cache_image(IMAGE_URL, "A")

        assert first == second
        assert route.call_count == 1
        await cache.close()

    @respx.mock
    async def test_http_error_raises(self, tmp_path: Path) -> None:
        respx.get(IMAGE_URL).mock(return_value=httpx.Response(404))
        cache = ImageCache(str(tmp_path))

        with pytest.raises(AssetCacheError):
            await cache.cache_image(IMAGE_URL, "A")
        assert not get_cache_dir(str(tmp_path), "A").exists()
        await cache.close()

    @respx.mock
    async def test_non_image_content_rejected(self, tmp_path: Path) -> None:
        respx.get(IMAGE_URL).mock(
            return_value=httpx.Response(
                200, content=b"<html></html>", headers={"content-type": "text/html"}
            )
        )
        cache = ImageCache(str(tmp_path))

        with pytest.raises(AssetCacheError, match="content type"):
            await cache.cache_image(IMAGE_URL, "A")
        await cache.close()

    @respx.mock
    async def test_empty_body_rejected(self, tmp_path: Path) -> None:
        respx.get(IMAGE_URL).mock(
            return_value=httpx.Response(200, content=b"", headers={"content-type": "image/jpeg"})
        )
        cache = ImageCache(str(tmp_path))

        with pytest.raises(AssetCacheError, match="Empty"):
            await cache.cache_image(IMAGE_URL, "A")
        await cache.close()

    async def test_non_image_url_rejected(self, tmp_path: Path) -> None:
        cache = ImageCache(str(tmp_path))
        with pytest.raises(AssetCacheError):
            await cache.cache_image("https://img.example.com/brochure.pdf", "A")

    @respx.mock
    async def test_transport_error_raises(self, tmp_path: Path) -> None:
        respx.get(IMAGE_URL).mock(side_effect=httpx.ConnectError("refused"))
        cache = ImageCache(str(tmp_path))

        with pytest.raises(AssetCacheError):
            await cache.cache_image(IMAGE_URL, "A")
        await cache.close()

    @respx.mock
    async def test_declared_oversize_rejected(self, tmp_path: Path) -> None:
        respx.get(IMAGE_URL).mock(
            return_value=httpx.Response(
                200, content=b"\xff" * 100, headers={"content-type": "image/jpeg"}
            )
        )
        cache = ImageCache(str(tmp_path), max_bytes=10)

        with pytest.raises(AssetCacheError, match="too large"):
            await cache.cache_image(IMAGE_URL, "A")
        assert not get_cache_dir(str(tmp_path), "A").exists()
        await cache.close()

    async def test_chunked_oversize_rejected(self, tmp_path: Path) -> None:
        async def body() -> AsyncIterator[bytes]:
            for _ in range(10):
                yield b"\xff" * 10

        def handler(request: httpx.Request) -> httpx.Response:
            # No Content-Length, so the limit is enforced while reading
            return httpx.Response(200, content=body(), headers={"content-type": "image/jpeg"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        cache = ImageCache(str(tmp_path), client=client, max_bytes=25)

        with pytest.raises(AssetCacheError, match="too large"):
            await cache.cache_image(IMAGE_URL, "A")
        assert not get_cache_dir(str(tmp_path), "A").exists()
        await client.aclose()
