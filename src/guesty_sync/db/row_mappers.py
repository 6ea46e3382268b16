"""Row-mapping utilities for the SQLite store."""

from collections.abc import Mapping
from datetime import datetime
from typing import Any, TypedDict

import aiosqlite

from guesty_sync.models import MUTABLE_FIELDS, PropertyRecord, RecordStatus


class SyncRunItem(TypedDict, total=False):
    """Shape of dicts returned by the sync run queries."""

    id: int
    started_at: str
    completed_at: str | None
    status: str
    created_count: int
    updated_count: int
    unchanged_count: int
    reactivated_count: int
    retired_count: int
    skipped_count: int
    error_count: int
    error_message: str | None
    duration_seconds: float | None


def row_to_record(row: aiosqlite.Row) -> PropertyRecord:
    """Convert a row from the properties table to a PropertyRecord."""
    retired_at = datetime.fromisoformat(row["retired_at"]) if row["retired_at"] else None
    return PropertyRecord(
        local_id=row["local_id"],
        external_id=row["external_id"],
        title=row["title"],
        description=row["description"],
        external_booking_url=row["external_booking_url"],
        bedrooms=row["bedrooms"],
        bathrooms=row["bathrooms"],
        featured_image_ref=row["featured_image_ref"],
        status=RecordStatus(row["status"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        retired_at=retired_at,
    )


def mutable_values(fields: Mapping[str, Any]) -> list[Any]:
    """Values for MUTABLE_FIELDS in column order.

    Raises:
        ValueError: If ``fields`` has unknown keys or misses a mutable field.
    """
    unknown = set(fields) - set(MUTABLE_FIELDS)
    if unknown:
        msg = f"Unknown record fields: {sorted(unknown)}"
        raise ValueError(msg)
    missing = [name for name in MUTABLE_FIELDS if name not in fields]
    if missing:
        msg = f"Missing record fields: {missing}"
        raise ValueError(msg)
    return [fields[name] for name in MUTABLE_FIELDS]
