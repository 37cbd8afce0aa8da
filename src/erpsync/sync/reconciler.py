"""Mapping reconciliation: find mappings whose remote record is gone.

Remote ids are checked in chunks with an ``id in [...]`` search. Orphans
are reported and, with ``fix=True``, their mappings are removed so the
next push creates a fresh remote record.
"""

from __future__ import annotations

import structlog
from pydantic import BaseModel, Field

from src.erpsync.remote.client import RemoteClient
from src.erpsync.sync.entity_map import EntityMapStore
from src.erpsync.sync.errors import RemoteError

logger = structlog.get_logger(__name__)

BATCH_SIZE = 200


class OrphanedMapping(BaseModel):
    local_id: str
    remote_id: int


class ReconcileReport(BaseModel):
    module: str
    entity_type: str
    checked: int = 0
    orphaned: list[OrphanedMapping] = Field(default_factory=list)
    fixed: int = 0
    error: str | None = None


class Reconciler:
    """Compares the entity map against the remote system.

    Args:
        entity_map: Mapping store.
        remote: Remote ERP client.
        batch_size: Remote ids per existence query.
    """

    def __init__(self, entity_map: EntityMapStore, remote: RemoteClient, batch_size: int = BATCH_SIZE) -> None:
        self._entity_map = entity_map
        self._remote = remote
        self._batch_size = batch_size if batch_size > 0 else BATCH_SIZE

    async def reconcile(
        self,
        module: str,
        entity_type: str,
        remote_model: str,
        fix: bool = False,
    ) -> ReconcileReport:
        """Report (and optionally remove) mappings pointing at missing remote records.

        A remote failure aborts the check; nothing is removed in that case.
        """
        mappings = await self._entity_map.list_mappings(module, entity_type)
        report = ReconcileReport(module=module, entity_type=entity_type, checked=len(mappings))
        if not mappings:
            return report

        by_remote = {m.remote_id: m.local_id for m in mappings}
        remote_ids = list(by_remote)
        existing: set[int] = set()
        try:
            for start in range(0, len(remote_ids), self._batch_size):
                chunk = remote_ids[start : start + self._batch_size]
                found = await self._remote.search(remote_model, [("id", "in", chunk)])
                existing.update(int(i) for i in found)
        except RemoteError as exc:
            logger.error(
                "reconcile.remote_query_failed",
                module=module,
                entity_type=entity_type,
                error=str(exc),
            )
            report.error = str(exc)
            return report

        report.orphaned = [
            OrphanedMapping(local_id=local_id, remote_id=remote_id)
            for remote_id, local_id in by_remote.items()
            if remote_id not in existing
        ]

        if fix:
            for orphan in report.orphaned:
                if await self._entity_map.delete(module, entity_type, orphan.local_id):
                    report.fixed += 1

        logger.info(
            "reconcile.complete",
            module=module,
            entity_type=entity_type,
            checked=report.checked,
            orphaned=len(report.orphaned),
            fixed=report.fixed,
        )
        return report
