"""Database storage for synced property records."""

from guesty_sync.db.base import PropertyStore
from guesty_sync.db.row_mappers import SyncRunItem
from guesty_sync.db.storage import SqlitePropertyStore

__all__ = ["PropertyStore", "SqlitePropertyStore", "SyncRunItem"]
