"""Shared pytest fixtures."""

import os
import sys
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import pytest
import structlog
from hypothesis import HealthCheck, settings

from guesty_sync.config import Settings
from guesty_sync.errors import AssetCacheError
from guesty_sync.models import PropertyRecord, RecordStatus, RemoteProperty


def pytest_configure(config: pytest.Config) -> None:
    """Force line-buffered stdout when piped."""
    if hasattr(sys.stdout, "reconfigure") and not sys.stdout.isatty():
        sys.stdout.reconfigure(line_buffering=True)
    if hasattr(sys.stderr, "reconfigure") and not sys.stderr.isatty():
        sys.stderr.reconfigure(line_buffering=True)


# Hypothesis settings profiles for different environments
settings.register_profile("fast", max_examples=10)
settings.register_profile(
    "ci",
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))


@pytest.fixture(autouse=True)
def _isolate_structlog(monkeypatch: pytest.MonkeyPatch) -> None:
    """Give each test fresh structlog config and logger proxies.

    Cached loggers otherwise keep a reference to a previous test's captured
    (and since closed) stderr stream.
    """
    structlog.reset_defaults()
    for name, module in list(sys.modules.items()):
        if not name.startswith("guesty_sync"):
            continue
        proxy = getattr(module, "logger", None)
        if isinstance(proxy, structlog._config.BoundLoggerLazyProxy):
            monkeypatch.setattr(module, "logger", structlog.get_logger(*proxy._logger_factory_args))


@pytest.fixture(autouse=True)
def _isolate_settings_from_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent the local .env file from leaking into test Settings instances."""
    monkeypatch.setattr(
        Settings,
        "model_config",
        {**Settings.model_config, "env_file": None},
    )


class InMemoryPropertyStore:
    """PropertyStore fake backed by a dict, with write counters."""

    def __init__(self, *, failing_image_urls: set[str] | None = None) -> None:
        self.records: dict[int, PropertyRecord] = {}
        self.writes: list[tuple[str, str]] = []
        self.cached_images: list[tuple[str, str]] = []
        self.failing_image_urls = failing_image_urls or set()
        self._next_id = 1

    async def find_by_external_id(self, external_id: str) -> PropertyRecord | None:
        for record in self.records.values():
            if record.external_id == external_id:
                return record
        return None

    async def create(
        self,
        external_id: str,
        fields: Mapping[str, Any],
        *,
        featured_image_ref: str | None = None,
    ) -> PropertyRecord:
        if await self.find_by_external_id(external_id) is not None:
            msg = f"Duplicate external_id {external_id}"
            raise ValueError(msg)
        record = PropertyRecord(
            local_id=self._next_id,
            external_id=external_id,
            featured_image_ref=featured_image_ref,
            **fields,
        )
        self.records[record.local_id] = record
        self._next_id += 1
        self.writes.append(("create", external_id))
        return record

    async def update(self, local_id: int, fields: Mapping[str, Any]) -> None:
        record = self.records[local_id]
        self.records[local_id] = record.model_copy(
            update={**fields, "updated_at": datetime.now(UTC)}
        )
        self.writes.append(("update", record.external_id))

    async def reactivate(self, local_id: int, fields: Mapping[str, Any]) -> None:
        record = self.records[local_id]
        self.records[local_id] = record.model_copy(
            update={
                **fields,
                "status": RecordStatus.ACTIVE,
                "retired_at": None,
                "updated_at": datetime.now(UTC),
            }
        )
        self.writes.append(("reactivate", record.external_id))

    async def retire(self, local_id: int) -> None:
        record = self.records[local_id]
        now = datetime.now(UTC)
        self.records[local_id] = record.model_copy(
            update={"status": RecordStatus.RETIRED, "retired_at": now, "updated_at": now}
        )
        self.writes.append(("retire", record.external_id))

    async def list_active(self) -> list[PropertyRecord]:
        return [r for r in self.records.values() if r.is_active]

    async def cache_image(self, url: str, external_id: str) -> str:
        if url in self.failing_image_urls:
            raise AssetCacheError(f"Image download failed for {url}")
        self.cached_images.append((url, external_id))
        return f"image_cache/{external_id}/featured.jpg"

    def by_external_id(self, external_id: str) -> PropertyRecord:
        for record in self.records.values():
            if record.external_id == external_id:
                return record
        raise KeyError(external_id)


@pytest.fixture
def memory_store() -> InMemoryPropertyStore:
    return InMemoryPropertyStore()


def _make_remote_property(external_id: str = "A", **overrides: Any) -> RemoteProperty:
    """Build a RemoteProperty with sensible defaults."""
    values: dict[str, Any] = {
        "external_id": external_id,
        "title": f"Listing {external_id}",
        "description": "<p>Sea view</p>",
        "external_booking_url": f"https://book.example.com/{external_id}",
        "bedrooms": 2,
        "bathrooms": 1,
        "photo_urls": (f"https://img.example.com/{external_id}/1.jpg",),
    }
    values.update(overrides)
    return RemoteProperty(**values)


@pytest.fixture
def make_remote() -> Callable[..., RemoteProperty]:
    """Factory for RemoteProperty values."""
    return _make_remote_property


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        client_id="client-123",
        client_secret="secret-456",
        api_base_url="https://api.test.guesty.com/api/v2",
        database_path=":memory:",
    )
