"""FastAPI application factory with background sync scheduler."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from guesty_sync.config import Settings
from guesty_sync.db import SqlitePropertyStore
from guesty_sync.logging import configure_logging, get_logger
from guesty_sync.sync import SyncRunner
from guesty_sync.utils.image_cache import ImageCache

logger = get_logger(__name__)

SYNC_INITIAL_DELAY_SECONDS = 30


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


async def _sync_loop(
    runner: SyncRunner,
    interval_minutes: int,
    *,
    initial_delay: float = SYNC_INITIAL_DELAY_SECONDS,
) -> None:
    """Run sync cycles on a recurring schedule."""
    # Initial delay so the web server can become responsive first
    logger.info("sync_scheduler_initial_delay", seconds=initial_delay)
    await asyncio.sleep(initial_delay)

    while True:
        logger.info("sync_scheduler_running")
        try:
            await runner.run_sync_cycle()
        except Exception:
            logger.error("sync_scheduler_error", exc_info=True)
        logger.info("sync_scheduler_sleeping", minutes=interval_minutes)
        await asyncio.sleep(interval_minutes * 60)


def create_app(
    settings: Settings | None = None,
    *,
    run_sync: bool = True,
    json_logs: bool = False,
    log_level: int = logging.INFO,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Application settings. Loaded from env if not provided.
        run_sync: Whether to start the background sync scheduler.
        json_logs: Render log lines as JSON.
        log_level: Minimum log level.
    """
    if settings is None:
        settings = Settings()

    configure_logging(json_output=json_logs, level=log_level)

    image_cache = ImageCache(settings.data_dir)
    store = SqlitePropertyStore(settings.database_path, image_cache=image_cache)
    runner = SyncRunner.from_settings(settings, store, run_recorder=store)
    sync_task: asyncio.Task[None] | None = None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        nonlocal sync_task
        await store.initialize()
        app.state.storage = store
        app.state.settings = settings
        app.state.runner = runner

        if run_sync:
            sync_task = asyncio.create_task(_sync_loop(runner, settings.sync_interval_minutes))
            logger.info("web_server_started", sync_interval=settings.sync_interval_minutes)
        else:
            logger.info("web_server_started", sync="disabled")

        yield

        # Shutdown
        if sync_task:
            sync_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sync_task
        await runner.close()
        await image_cache.close()
        await store.close()
        logger.info("web_server_stopped")

    app = FastAPI(title="Guesty Sync", lifespan=lifespan)

    app.add_middleware(SecurityHeadersMiddleware)

    from guesty_sync.web.routes import router

    app.include_router(router)

    return app
