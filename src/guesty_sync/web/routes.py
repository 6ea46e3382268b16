"""Public listings page and operational endpoints."""

from pathlib import Path

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates

from guesty_sync.db import SqlitePropertyStore
from guesty_sync.logging import get_logger
from guesty_sync.utils.image_cache import resolve_image_ref

logger = get_logger(__name__)

router = APIRouter()
templates = Jinja2Templates(directory=Path(__file__).parent / "templates")

_MAX_RUNS = 100


def _get_storage(request: Request) -> SqlitePropertyStore:
    return request.app.state.storage  # type: ignore[no-any-return]


def _get_data_dir(request: Request) -> str:
    return request.app.state.settings.data_dir  # type: ignore[no-any-return]


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint with the outcome of the last finished sync."""
    last_run = await _get_storage(request).get_last_sync_run()
    return JSONResponse({"status": "ok", "last_sync": last_run})


@router.get("/", response_class=HTMLResponse)
async def listings(request: Request) -> HTMLResponse:
    """Grid of active properties with outbound booking links."""
    storage = _get_storage(request)
    records = await storage.list_active()
    return templates.TemplateResponse(
        request,
        "listings.html",
        {"properties": records, "base_url": request.app.state.settings.web_base_url},
    )


@router.get("/images/{local_id}")
async def featured_image(request: Request, local_id: int) -> FileResponse:
    """Serve the cached featured image of a property."""
    storage = _get_storage(request)
    record = await storage.get_record(local_id)
    if record is None or not record.is_active or not record.featured_image_ref:
        raise HTTPException(status_code=404, detail="Image not found")

    path = resolve_image_ref(_get_data_dir(request), record.featured_image_ref)
    if path is None:
        logger.warning("featured_image_missing", local_id=local_id)
        raise HTTPException(status_code=404, detail="Image not found")
    return FileResponse(path)


@router.get("/api/sync-runs")
async def sync_runs(request: Request, limit: int = 20) -> JSONResponse:
    """Recent sync runs, newest first."""
    limit = max(1, min(_MAX_RUNS, limit))
    storage = _get_storage(request)
    runs = await storage.get_recent_sync_runs(limit)
    counts = await storage.count_by_status()
    return JSONResponse({"runs": runs, "records": counts})
