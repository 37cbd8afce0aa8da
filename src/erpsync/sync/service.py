"""Caller-facing sync API.

Host code (event handlers, webhooks, admin tools) talks to SyncService
instead of the queue and mapping store directly.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.erpsync.core import context
from src.erpsync.sync.entity_map import EntityMapStore
from src.erpsync.sync.queue import SyncQueue
from src.erpsync.sync.schemas import LocalId, SyncAction, SyncDirection

logger = structlog.get_logger(__name__)


class SyncService:
    """Facade over the queue and entity map.

    Args:
        queue: Job queue.
        entity_map: Mapping store.
        push_delay_seconds: Debounce applied to push jobs so a burst of
            saves on the same entity collapses into one job.
    """

    def __init__(self, queue: SyncQueue, entity_map: EntityMapStore, push_delay_seconds: float = 5) -> None:
        self._queue = queue
        self._entity_map = entity_map
        self._push_delay = push_delay_seconds

    async def enqueue_push(
        self,
        module: str,
        entity_type: str,
        action: SyncAction | str,
        local_id: LocalId,
        remote_id: int | None = None,
        priority: int = 5,
    ) -> int | None:
        """Queue a local change for the remote system.

        Returns the job id, or None when the module is currently applying a
        remote change (the write is an echo of a pull).
        """
        if context.is_applying_remote_change(module):
            logger.debug(
                "sync_service.push_suppressed",
                module=module,
                entity_type=entity_type,
                local_id=str(local_id),
            )
            return None
        return await self._queue.enqueue(
            module,
            entity_type,
            action,
            local_id=local_id,
            remote_id=remote_id,
            direction=SyncDirection.push,
            priority=priority,
            delay_seconds=self._push_delay,
        )

    async def enqueue_pull(
        self,
        module: str,
        entity_type: str,
        action: SyncAction | str,
        remote_id: int,
        local_id: LocalId | None = None,
        payload: dict[str, Any] | None = None,
        priority: int = 5,
    ) -> int:
        """Queue a remote change for the local system."""
        return await self._queue.enqueue(
            module,
            entity_type,
            action,
            local_id=local_id,
            remote_id=remote_id,
            direction=SyncDirection.pull,
            payload=payload,
            priority=priority,
        )

    async def get_mapping(self, module: str, entity_type: str, local_id: LocalId) -> int | None:
        """Remote id for a local entity, or None if it was never synced."""
        return await self._entity_map.get_remote_id(module, entity_type, local_id)

    @staticmethod
    def is_applying_remote_change(module: str | None = None) -> bool:
        return context.is_applying_remote_change(module)
