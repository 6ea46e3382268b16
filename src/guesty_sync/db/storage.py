"""SQLite storage for synced property records."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite

from guesty_sync.db.row_mappers import SyncRunItem, mutable_values, row_to_record
from guesty_sync.db.sync_runs import SyncRunRepository
from guesty_sync.errors import AssetCacheError
from guesty_sync.logging import get_logger
from guesty_sync.models import MUTABLE_FIELDS, PropertyRecord, RecordStatus

if TYPE_CHECKING:
    from guesty_sync.utils.image_cache import ImageCache

logger = get_logger(__name__)

_SET_MUTABLE = ", ".join(f"{name} = ?" for name in MUTABLE_FIELDS)


class SqlitePropertyStore:
    """SQLite-based store for property records and sync runs."""

    def __init__(self, db_path: str, *, image_cache: ImageCache | None = None) -> None:
        """Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
            image_cache: Downloads featured images. Without one,
                ``cache_image`` always fails with AssetCacheError.
        """
        self.db_path = db_path
        self._image_cache = image_cache
        self._conn: aiosqlite.Connection | None = None
        self._ensure_directory()
        self._runs = SyncRunRepository(self._get_connection)

    def _ensure_directory(self) -> None:
        """Ensure the directory for the database exists."""
        if self.db_path != ":memory:":
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self._conn = await aiosqlite.connect(self.db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA busy_timeout=5000")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
        return self._conn

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def initialize(self) -> None:
        """Initialize the database schema."""
        conn = await self._get_connection()
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS properties (
                local_id INTEGER PRIMARY KEY AUTOINCREMENT,
                external_id TEXT NOT NULL UNIQUE,
                title TEXT NOT NULL DEFAULT '',
                description TEXT NOT NULL DEFAULT '',
                external_booking_url TEXT,
                bedrooms INTEGER NOT NULL DEFAULT 0,
                bathrooms INTEGER NOT NULL DEFAULT 0,
                featured_image_ref TEXT,
                status TEXT NOT NULL DEFAULT 'active',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                retired_at TEXT
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_properties_status
            ON properties(status)
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS sync_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                status TEXT NOT NULL DEFAULT 'running',
                created_count INTEGER DEFAULT 0,
                updated_count INTEGER DEFAULT 0,
                unchanged_count INTEGER DEFAULT 0,
                reactivated_count INTEGER DEFAULT 0,
                retired_count INTEGER DEFAULT 0,
                skipped_count INTEGER DEFAULT 0,
                error_count INTEGER DEFAULT 0,
                error_message TEXT,
                duration_seconds REAL
            )
        """)
        await conn.commit()

    # ------------------------------------------------------------------
    # PropertyStore interface
    # ------------------------------------------------------------------

    async def find_by_external_id(self, external_id: str) -> PropertyRecord | None:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM properties WHERE external_id = ?",
            (external_id,),
        )
        row = await cursor.fetchone()
        return row_to_record(row) if row else None

    async def create(
        self,
        external_id: str,
        fields: Mapping[str, Any],
        *,
        featured_image_ref: str | None = None,
    ) -> PropertyRecord:
        values = mutable_values(fields)
        now = datetime.now(UTC).isoformat()
        conn = await self._get_connection()
        cursor = await conn.execute(
            f"""
            INSERT INTO properties (
                external_id, {", ".join(MUTABLE_FIELDS)},
                featured_image_ref, status, created_at, updated_at
            )
            VALUES (?, {", ".join("?" for _ in MUTABLE_FIELDS)}, ?, ?, ?, ?)
            """,
            (external_id, *values, featured_image_ref, RecordStatus.ACTIVE.value, now, now),
        )
        await conn.commit()
        local_id = cursor.lastrowid
        logger.debug("record_inserted", external_id=external_id, local_id=local_id)
        record = await self.get_record(local_id)  # type: ignore[arg-type]
        if record is None:  # pragma: no cover
            msg = f"Inserted record {external_id} could not be read back"
            raise RuntimeError(msg)
        return record

    async def update(self, local_id: int, fields: Mapping[str, Any]) -> None:
        values = mutable_values(fields)
        conn = await self._get_connection()
        await conn.execute(
            f"UPDATE properties SET {_SET_MUTABLE}, updated_at = ? WHERE local_id = ?",
            (*values, datetime.now(UTC).isoformat(), local_id),
        )
        await conn.commit()

    async def reactivate(self, local_id: int, fields: Mapping[str, Any]) -> None:
        values = mutable_values(fields)
        conn = await self._get_connection()
        await conn.execute(
            f"""
            UPDATE properties
            SET {_SET_MUTABLE}, status = ?, retired_at = NULL, updated_at = ?
            WHERE local_id = ?
            """,
            (*values, RecordStatus.ACTIVE.value, datetime.now(UTC).isoformat(), local_id),
        )
        await conn.commit()

    async def retire(self, local_id: int) -> None:
        now = datetime.now(UTC).isoformat()
        conn = await self._get_connection()
        await conn.execute(
            """
            UPDATE properties
            SET status = ?, retired_at = ?, updated_at = ?
            WHERE local_id = ? AND status = ?
            """,
            (RecordStatus.RETIRED.value, now, now, local_id, RecordStatus.ACTIVE.value),
        )
        await conn.commit()

    async def list_active(self) -> list[PropertyRecord]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM properties WHERE status = ? ORDER BY title COLLATE NOCASE, local_id",
            (RecordStatus.ACTIVE.value,),
        )
        rows = await cursor.fetchall()
        return [row_to_record(row) for row in rows]

    async def cache_image(self, url: str, external_id: str) -> str:
        if self._image_cache is None:
            raise AssetCacheError("No image cache configured")
        return await self._image_cache.cache_image(url, external_id)

    # ------------------------------------------------------------------
    # Read helpers for the display layer
    # ------------------------------------------------------------------

    async def get_record(self, local_id: int) -> PropertyRecord | None:
        """Return a record by local ID in any status."""
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM properties WHERE local_id = ?", (local_id,))
        row = await cursor.fetchone()
        return row_to_record(row) if row else None

    async def count_by_status(self) -> dict[str, int]:
        """Number of records per status."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT status, COUNT(*) AS n FROM properties GROUP BY status"
        )
        rows = await cursor.fetchall()
        counts = {status.value: 0 for status in RecordStatus}
        counts.update({row["status"]: row["n"] for row in rows})
        return counts

    # ------------------------------------------------------------------
    # Sync run tracking (delegated)
    # ------------------------------------------------------------------

    async def create_sync_run(self) -> int:
        return await self._runs.create_sync_run()

    async def complete_sync_run(
        self,
        run_id: int,
        status: str,
        *,
        counts: dict[str, int] | None = None,
        error_message: str | None = None,
    ) -> None:
        await self._runs.complete_sync_run(
            run_id, status, counts=counts, error_message=error_message
        )

    async def get_recent_sync_runs(self, limit: int = 20) -> list[SyncRunItem]:
        return await self._runs.get_recent_sync_runs(limit)

    async def get_last_sync_run(self) -> SyncRunItem | None:
        return await self._runs.get_last_sync_run()
