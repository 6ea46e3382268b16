"""Sync run repository: one row per sync cycle for observability."""

from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any, Final

import aiosqlite

from guesty_sync.db.row_mappers import SyncRunItem
from guesty_sync.logging import get_logger

logger = get_logger(__name__)

_COUNT_COLUMNS: Final = frozenset(
    {
        "created_count",
        "updated_count",
        "unchanged_count",
        "reactivated_count",
        "retired_count",
        "skipped_count",
        "error_count",
    }
)


class SyncRunRepository:
    """Database operations for sync run tracking."""

    def __init__(
        self, get_connection: Callable[[], Coroutine[Any, Any, aiosqlite.Connection]]
    ) -> None:
        self._get_connection = get_connection

    async def create_sync_run(self) -> int:
        """Create a new sync run record.

        Returns:
            The ID of the new run.
        """
        conn = await self._get_connection()
        cursor = await conn.execute(
            "INSERT INTO sync_runs (started_at, status) VALUES (?, 'running')",
            (datetime.now(UTC).isoformat(),),
        )
        await conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def complete_sync_run(
        self,
        run_id: int,
        status: str,
        *,
        counts: dict[str, int] | None = None,
        error_message: str | None = None,
    ) -> None:
        """Mark a sync run as finished.

        Args:
            run_id: The sync run ID.
            status: Final status ('success' or 'failed').
            counts: Column name/value pairs (e.g. created_count=3).
            error_message: Error message if status is 'failed'.
        """
        counts = counts or {}
        unknown = set(counts) - _COUNT_COLUMNS
        if unknown:
            msg = f"Unknown sync run columns: {sorted(unknown)}"
            raise ValueError(msg)

        conn = await self._get_connection()
        now = datetime.now(UTC).isoformat()
        cursor = await conn.execute("SELECT started_at FROM sync_runs WHERE id = ?", (run_id,))
        row = await cursor.fetchone()
        duration = None
        if row:
            started = datetime.fromisoformat(row["started_at"])
            duration = (datetime.fromisoformat(now) - started).total_seconds()

        set_clauses = ["completed_at = ?", "status = ?", "error_message = ?", "duration_seconds = ?"]
        values: list[Any] = [now, status, error_message, duration]
        for column, value in counts.items():
            set_clauses.append(f"{column} = ?")
            values.append(value)
        values.append(run_id)

        await conn.execute(
            f"UPDATE sync_runs SET {', '.join(set_clauses)} WHERE id = ?",
            values,
        )
        await conn.commit()

    async def get_recent_sync_runs(self, limit: int = 20) -> list[SyncRunItem]:
        """Most recent sync runs, newest first."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?",
            (limit,),
        )
        rows = await cursor.fetchall()
        return [SyncRunItem(**dict(row)) for row in rows]  # type: ignore[typeddict-item]

    async def get_last_sync_run(self) -> SyncRunItem | None:
        """The most recent finished sync run, or None."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT * FROM sync_runs
            WHERE status IN ('success', 'failed')
            ORDER BY id DESC LIMIT 1
            """
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return SyncRunItem(**dict(row))  # type: ignore[typeddict-item]
