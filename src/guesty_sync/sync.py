"""Sync cycle runner: token → fetch → sanitize → reconcile."""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx

from guesty_sync.api import GuestyClient, TokenCache
from guesty_sync.config import Settings
from guesty_sync.db.base import PropertyStore
from guesty_sync.errors import AuthError, FetchError
from guesty_sync.logging import get_logger
from guesty_sync.models import DroppedEntry, SyncReport, SyncStatus
from guesty_sync.reconcile import ReconciliationEngine, SyncPlan
from guesty_sync.sanitizer import clean

logger = get_logger(__name__)


class SyncRunRecorder(Protocol):
    """Persists one row per sync cycle."""

    async def create_sync_run(self) -> int: ...

    async def complete_sync_run(
        self,
        run_id: int,
        status: str,
        *,
        counts: dict[str, int] | None = None,
        error_message: str | None = None,
    ) -> None: ...


@dataclass
class SyncPreview:
    """What a sync cycle would do, computed without writing."""

    plan: SyncPlan
    drops: list[DroppedEntry] = field(default_factory=list)


class SyncRunner:
    """Runs sync cycles, one at a time.

    A cycle that starts while another is in progress is skipped rather than
    queued, so every retirement is based on that cycle's own fetch.
    """

    def __init__(
        self,
        settings: Settings,
        store: PropertyStore,
        *,
        token_cache: TokenCache,
        catalog: GuestyClient,
        run_recorder: SyncRunRecorder | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            settings: Application settings.
            store: Local record store.
            token_cache: Issues bearer tokens.
            catalog: Fetches the remote listings.
            run_recorder: Optional sync run history (the SQLite store).
            http_client: HTTP client shared by token cache and catalog,
                closed by ``close()``.
        """
        self._settings = settings
        self._store = store
        self._tokens = token_cache
        self._catalog = catalog
        self._runs = run_recorder
        self._http_client = http_client
        self._engine = ReconciliationEngine(store)
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: PropertyStore,
        *,
        run_recorder: SyncRunRecorder | None = None,
    ) -> "SyncRunner":
        """Build a runner whose API clients share one HTTP connection pool."""
        http_client = httpx.AsyncClient(timeout=settings.request_timeout_seconds)
        return cls(
            settings,
            store,
            token_cache=TokenCache(settings, client=http_client),
            catalog=GuestyClient(settings, client=http_client),
            run_recorder=run_recorder,
            http_client=http_client,
        )

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_sync_cycle(self) -> SyncReport:
        """Run one full sync cycle.

        Token and fetch failures abort the cycle before any store write and
        are returned as a failed report. Storage errors are recorded and
        re-raised.

        Returns:
            The cycle's report; status ``skipped`` if a cycle was already running.
        """
        if self._lock.locked():
            logger.warning("sync_cycle_skipped", reason="already_running")
            return SyncReport(status=SyncStatus.SKIPPED, finished_at=datetime.now(UTC))

        async with self._lock:
            return await self._run_cycle()

    async def _run_cycle(self) -> SyncReport:
        run_id = await self._runs.create_sync_run() if self._runs is not None else None
        logger.info("sync_cycle_started", run_id=run_id)
        report = SyncReport(run_id=run_id)

        try:
            await self._sync(report)
        except (AuthError, FetchError) as e:
            report.status = SyncStatus.FAILED
            report.error = str(e)
            logger.error(
                "sync_cycle_failed",
                run_id=run_id,
                error_type=type(e).__name__,
                error=str(e),
            )
        except Exception as e:
            # Writes made before the failure stay counted in the run row
            report.status = SyncStatus.FAILED
            report.error = str(e)
            report.finished_at = datetime.now(UTC)
            logger.error("sync_cycle_crashed", run_id=run_id, exc_info=True, **report.as_counts())
            await self._finish_run(run_id, report)
            raise

        report.finished_at = datetime.now(UTC)
        await self._finish_run(run_id, report)

        if report.status == SyncStatus.SUCCESS:
            logger.info(
                "sync_cycle_complete",
                run_id=run_id,
                created=report.created,
                updated=report.updated,
                unchanged=report.unchanged,
                reactivated=report.reactivated,
                retired=report.retired,
                skipped=report.skipped,
                errors=len(report.errors),
            )
        return report

    async def _fetch(self) -> list[Any]:
        token = await self._tokens.get_token()
        try:
            return await self._catalog.fetch_listings(token)
        except FetchError as e:
            if e.status_code == 401:
                # Token was revoked or expired early; refresh on the next cycle
                self._tokens.invalidate()
            raise

    async def _sync(self, report: SyncReport) -> None:
        raw_items = await self._fetch()
        result = clean(raw_items, max_photos=self._settings.max_photos)
        await self._engine.apply(result.properties, drops=result.drops, report=report)

    async def preview(self) -> SyncPreview:
        """Fetch and plan without writing to the store.

        Raises:
            AuthError: If no token can be obtained.
            FetchError: If the listings cannot be fetched.
        """
        raw_items = await self._fetch()
        result = clean(raw_items, max_photos=self._settings.max_photos)
        plan = await self._engine.plan(result.properties)
        return SyncPreview(plan=plan, drops=result.drops)

    async def _finish_run(self, run_id: int | None, report: SyncReport) -> None:
        if self._runs is None or run_id is None:
            return
        await self._runs.complete_sync_run(
            run_id,
            report.status.value,
            counts=report.as_counts(),
            error_message=report.error,
        )

    async def close(self) -> None:
        """Close the API clients."""
        await self._tokens.close()
        await self._catalog.close()
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
