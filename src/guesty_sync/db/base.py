"""Storage interface used by the reconciliation engine."""

from collections.abc import Mapping
from typing import Any, Protocol

from guesty_sync.models import PropertyRecord


class PropertyStore(Protocol):
    """Persistence of property records keyed by external ID.

    ``fields`` mappings carry the mutable record fields (see
    ``guesty_sync.models.MUTABLE_FIELDS``). Each write must be atomic for a
    single record.
    """

    async def find_by_external_id(self, external_id: str) -> PropertyRecord | None:
        """Return the record for ``external_id`` in any status, or None."""
        ...

    async def create(
        self,
        external_id: str,
        fields: Mapping[str, Any],
        *,
        featured_image_ref: str | None = None,
    ) -> PropertyRecord:
        """Insert a new active record."""
        ...

    async def update(self, local_id: int, fields: Mapping[str, Any]) -> None:
        """Overwrite the mutable fields of a record."""
        ...

    async def reactivate(self, local_id: int, fields: Mapping[str, Any]) -> None:
        """Overwrite the mutable fields of a retired record and make it active."""
        ...

    async def retire(self, local_id: int) -> None:
        """Mark a record retired. Never deletes it."""
        ...

    async def list_active(self) -> list[PropertyRecord]:
        """All active records."""
        ...

    async def cache_image(self, url: str, external_id: str) -> str:
        """Cache a remote image locally and return its asset reference.

        Raises:
            AssetCacheError: If the image cannot be cached.
        """
        ...
