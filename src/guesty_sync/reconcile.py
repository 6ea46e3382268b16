"""Reconcile a sanitized remote catalog against the local store.

Planning is read-only: each remote property is matched to the stored record
with the same external ID, and every active record missing from the snapshot
is scheduled for retirement. Applying the plan performs one atomic store write
per changed record; unchanged records are not written.

Featured images are cached only when a record is first created. Updates and
reactivations never re-derive them, even if the remote photos changed.
"""

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from guesty_sync.db.base import PropertyStore
from guesty_sync.errors import AssetCacheError
from guesty_sync.logging import get_logger
from guesty_sync.models import (
    DroppedEntry,
    PropertyRecord,
    RemoteProperty,
    SyncReport,
)

logger = get_logger(__name__)


class ActionKind(str, Enum):
    """What the engine does with one record."""

    CREATE = "create"
    UPDATE = "update"
    UNCHANGED = "unchanged"
    REACTIVATE = "reactivate"
    RETIRE = "retire"


@dataclass(frozen=True)
class PlannedAction:
    """One planned store operation."""

    kind: ActionKind
    external_id: str
    local_id: int | None = None
    remote: RemoteProperty | None = None


@dataclass
class SyncPlan:
    """The minimal set of operations that aligns the store with a snapshot."""

    actions: list[PlannedAction] = field(default_factory=list)

    def count(self, kind: ActionKind) -> int:
        return sum(1 for action in self.actions if action.kind == kind)

    def of_kind(self, kind: ActionKind) -> list[PlannedAction]:
        return [action for action in self.actions if action.kind == kind]

    def summary(self) -> dict[str, int]:
        counts = Counter(action.kind.value for action in self.actions)
        return {kind.value: counts.get(kind.value, 0) for kind in ActionKind}


def _plan_for(remote: RemoteProperty, existing: PropertyRecord | None) -> PlannedAction:
    if existing is None:
        return PlannedAction(ActionKind.CREATE, remote.external_id, remote=remote)
    if not existing.is_active:
        return PlannedAction(
            ActionKind.REACTIVATE, remote.external_id, local_id=existing.local_id, remote=remote
        )
    if existing.mutable_fields() == remote.mutable_fields():
        return PlannedAction(
            ActionKind.UNCHANGED, remote.external_id, local_id=existing.local_id, remote=remote
        )
    return PlannedAction(
        ActionKind.UPDATE, remote.external_id, local_id=existing.local_id, remote=remote
    )


class ReconciliationEngine:
    """Computes and applies create/update/reactivate/retire operations."""

    def __init__(self, store: PropertyStore) -> None:
        self._store = store

    async def plan(self, properties: Sequence[RemoteProperty]) -> SyncPlan:
        """Compute the operations for a snapshot without writing anything.

        If an external ID occurs more than once, the first occurrence is used.
        """
        plan = SyncPlan()
        remote_ids: set[str] = set()

        for remote in properties:
            if remote.external_id in remote_ids:
                logger.warning("duplicate_remote_id_ignored", external_id=remote.external_id)
                continue
            remote_ids.add(remote.external_id)
            existing = await self._store.find_by_external_id(remote.external_id)
            plan.actions.append(_plan_for(remote, existing))

        for record in await self._store.list_active():
            if record.external_id not in remote_ids:
                plan.actions.append(
                    PlannedAction(ActionKind.RETIRE, record.external_id, local_id=record.local_id)
                )

        return plan

    async def apply(
        self,
        properties: Sequence[RemoteProperty],
        *,
        drops: Iterable[DroppedEntry] = (),
        report: SyncReport | None = None,
    ) -> SyncReport:
        """Align the store with a complete, successfully fetched snapshot.

        Only call this with the result of a successful fetch: every active
        record absent from ``properties`` is retired.

        Args:
            properties: Sanitized remote properties.
            drops: Entries the sanitizer excluded, carried into the report.
            report: Report to fill in. Pass one to keep the counts of writes
                already made if a store operation raises part-way through.

        Returns:
            SyncReport with per-kind counts and image-cache sub-errors.
        """
        if report is None:
            report = SyncReport()
        report.drops.extend(drops)
        plan = await self.plan(properties)

        for action in plan.actions:
            await self._execute(action, report)

        return report

    async def _execute(self, action: PlannedAction, report: SyncReport) -> None:
        if action.kind == ActionKind.UNCHANGED:
            report.unchanged += 1
            return

        if action.kind == ActionKind.CREATE:
            assert action.remote is not None
            await self._create(action.remote, report)
            report.created += 1
            return

        # Remaining kinds all target an existing record
        assert action.local_id is not None
        if action.kind == ActionKind.RETIRE:
            await self._store.retire(action.local_id)
            report.retired += 1
            logger.info("record_retired", external_id=action.external_id, local_id=action.local_id)
            return

        assert action.remote is not None
        if action.kind == ActionKind.REACTIVATE:
            await self._store.reactivate(action.local_id, action.remote.mutable_fields())
            report.reactivated += 1
            logger.info(
                "record_reactivated", external_id=action.external_id, local_id=action.local_id
            )
        else:
            await self._store.update(action.local_id, action.remote.mutable_fields())
            report.updated += 1
            logger.info("record_updated", external_id=action.external_id, local_id=action.local_id)

    async def _create(self, remote: RemoteProperty, report: SyncReport) -> None:
        featured_image_ref: str | None = None
        photo_url = remote.primary_photo_url
        if photo_url is not None:
            try:
                featured_image_ref = await self._store.cache_image(photo_url, remote.external_id)
            except AssetCacheError as e:
                report.errors.append(f"{remote.external_id}: {e}")
                logger.warning(
                    "featured_image_failed",
                    external_id=remote.external_id,
                    url=photo_url,
                    error=str(e),
                )

        record = await self._store.create(
            remote.external_id,
            remote.mutable_fields(),
            featured_image_ref=featured_image_ref,
        )
        logger.info(
            "record_created",
            external_id=remote.external_id,
            local_id=record.local_id,
            has_image=featured_image_ref is not None,
        )
