"""Sync engine: applies one queued job in either direction.

Push (local -> remote):
- delete: unlink the mapped remote record and drop the mapping; a record
  that is already gone counts as success
- create/update: load and map local data, then under the per-entity push
  lock re-check the mapping (it wins over the job's action and carried id),
  write, adopt a deduplicated match, or create; finally upsert the mapping
- a deduplicated match already mapped to another local entity is a
  permanent conflict and is left untouched

Pull (remote -> local):
- gated by the module's should_pull() policy
- runs inside the re-entrancy scope so local event sources stay quiet
- delete: remove the local entity and its mapping
- create/update: use the webhook payload or read the remote record, map it,
  save locally, and upsert the mapping

All outcomes are returned as SyncResult; exceptions are classified into
transient/permanent and never escape process_job().
"""

from __future__ import annotations

from typing import Any

import structlog

from src.erpsync.core.context import applying_remote_change
from src.erpsync.modules.base import SyncModule
from src.erpsync.modules.registry import ModuleRegistry
from src.erpsync.remote.client import RemoteClient
from src.erpsync.sync.entity_map import EntityMapStore
from src.erpsync.sync.errors import (
    ErrorType,
    MappingConflictError,
    RemoteNotFoundError,
    RemoteValidationError,
    UnknownModuleError,
    classify_exception,
)
from src.erpsync.sync.keys import local_data_hash
from src.erpsync.sync.locks import PushLockManager
from src.erpsync.sync.schemas import (
    LocalId,
    SyncAction,
    SyncDirection,
    SyncJob,
    SyncResult,
    normalize_local_id,
)

logger = structlog.get_logger(__name__)


class SyncEngine:
    """Executes push and pull jobs against the remote client.

    Args:
        registry: Resolves job module ids to booted modules.
        remote: Remote ERP client.
        entity_map: Mapping store.
        locks: Per-entity push locks. Defaults to in-process locking.
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        remote: RemoteClient,
        entity_map: EntityMapStore,
        locks: PushLockManager | None = None,
    ) -> None:
        self._registry = registry
        self._remote = remote
        self._entity_map = entity_map
        self._locks = locks or PushLockManager()

    async def process_job(self, job: SyncJob) -> SyncResult:
        """Dispatch ``job`` to its module. Never raises."""
        module = self._registry.get_booted(job.module)
        if module is None:
            logger.warning("sync.module_unavailable", job_id=job.id, module=job.module)
            return SyncResult.fail(
                f"Module {job.module!r} is not booted", UnknownModuleError.error_type
            )

        if job.direction == SyncDirection.push:
            if not module.direction.pushes:
                return SyncResult.skip(f"Push disabled for {module.id}")
            return await self.push(module, job.entity_type, job.action, job.local_id, job.remote_id)
        return await self.pull(
            module, job.entity_type, job.action, job.remote_id, job.local_id, job.payload
        )

    # ── Push ────────────────────────────────────────────────────────────────

    async def push(
        self,
        module: SyncModule,
        entity_type: str,
        action: SyncAction | str,
        local_id: LocalId | None,
        remote_id: int | None = None,
    ) -> SyncResult:
        """Apply one local change to the remote system."""
        action = SyncAction(action)
        key = normalize_local_id(local_id)
        try:
            if action == SyncAction.delete:
                return await self._push_delete(module, entity_type, key, remote_id)
            return await self._push_upsert(module, entity_type, key, remote_id)
        except Exception as exc:
            return self._failure("push", module.id, entity_type, action, key, exc)

    async def _push_delete(
        self, module: SyncModule, entity_type: str, key: str, remote_id: int | None
    ) -> SyncResult:
        remote_model = module.get_remote_model(entity_type)
        target = remote_id or (
            await self._entity_map.get_remote_id(module.id, entity_type, key) if key else None
        )
        if not target:
            return SyncResult.skip("No remote record to delete")

        try:
            await self._remote.unlink(remote_model, [target])
        except RemoteNotFoundError:
            logger.info(
                "sync.push_delete_already_gone",
                module=module.id,
                entity_type=entity_type,
                remote_id=target,
            )

        if key:
            await self._entity_map.delete(module.id, entity_type, key)
        else:
            await self._entity_map.delete_by_remote_id(module.id, entity_type, target)
        logger.info(
            "sync.push_complete",
            module=module.id,
            entity_type=entity_type,
            action="delete",
            local_id=key,
            remote_id=target,
        )
        return SyncResult.ok("Deleted", entity_id=target)

    async def _push_upsert(
        self, module: SyncModule, entity_type: str, key: str, remote_id: int | None
    ) -> SyncResult:
        remote_model = module.get_remote_model(entity_type)
        if not key:
            return SyncResult.fail("Push job has no local id", ErrorType.permanent)

        data = await module.load_local_data(entity_type, key)
        if not data:
            logger.info("sync.push_local_missing", module=module.id, entity_type=entity_type, local_id=key)
            return SyncResult.skip("Local entity not found")

        values = await module.map_to_remote(entity_type, data)
        if not values:
            return SyncResult.fail("No data to push", ErrorType.permanent)

        async with self._locks.hold(module.id, entity_type, key):
            try:
                target, operation = await self._write_or_create(
                    module, entity_type, key, remote_model, remote_id, values
                )
            except MappingConflictError as exc:
                return SyncResult.fail(str(exc), ErrorType.permanent, entity_id=exc.remote_id)
            except RemoteValidationError as exc:
                logger.error(
                    "sync.push_rejected",
                    module=module.id,
                    entity_type=entity_type,
                    local_id=key,
                    values=values,
                    error=str(exc),
                )
                raise

            try:
                await self._entity_map.upsert(
                    module.id, entity_type, key, target, remote_model, local_data_hash(data)
                )
            except MappingConflictError as exc:
                return SyncResult.fail(str(exc), ErrorType.permanent, entity_id=target)
            except Exception as exc:
                logger.error(
                    "sync.mapping_save_failed",
                    module=module.id,
                    entity_type=entity_type,
                    local_id=key,
                    remote_id=target,
                    operation=operation,
                    error=str(exc),
                )
                return SyncResult.fail(
                    f"Mapping save failed after remote {operation}: {exc}",
                    ErrorType.transient,
                    entity_id=target,
                )

        logger.info(
            "sync.push_complete",
            module=module.id,
            entity_type=entity_type,
            action=operation,
            local_id=key,
            remote_id=target,
        )
        return SyncResult.ok(operation, entity_id=target)

    async def _write_or_create(
        self,
        module: SyncModule,
        entity_type: str,
        key: str,
        remote_model: str,
        carried_id: int | None,
        values: dict[str, Any],
    ) -> tuple[int, str]:
        """Resolve the remote target under the push lock and write to it."""
        mapped = await self._entity_map.get_remote_id(module.id, entity_type, key)
        target = mapped or carried_id
        if target:
            try:
                await self._remote.write(remote_model, [target], values)
                return target, "update"
            except RemoteNotFoundError:
                logger.warning(
                    "sync.push_remote_missing",
                    module=module.id,
                    entity_type=entity_type,
                    local_id=key,
                    remote_id=target,
                )
                if mapped:
                    await self._entity_map.delete(module.id, entity_type, key)

        domain = module.get_dedup_domain(entity_type, values)
        if domain:
            found = await self._remote.search(remote_model, domain, limit=1)
            if found:
                target = found[0]
                owner = await self._entity_map.get_local_id(module.id, entity_type, target)
                if owner is not None and owner != key:
                    logger.error(
                        "sync.push_dedup_conflict",
                        module=module.id,
                        entity_type=entity_type,
                        local_id=key,
                        remote_id=target,
                        existing_local_id=owner,
                    )
                    raise MappingConflictError(module.id, entity_type, key, target, owner)
                await self._remote.write(remote_model, [target], values)
                logger.info(
                    "sync.push_dedup_adopted",
                    module=module.id,
                    entity_type=entity_type,
                    local_id=key,
                    remote_id=target,
                )
                return target, "adopt"

        return await self._remote.create(remote_model, values), "create"

    # ── Pull ────────────────────────────────────────────────────────────────

    async def pull(
        self,
        module: SyncModule,
        entity_type: str,
        action: SyncAction | str,
        remote_id: int | None,
        local_id: LocalId | None = None,
        payload: dict[str, Any] | None = None,
    ) -> SyncResult:
        """Apply one remote change to the local system."""
        action = SyncAction(action)
        if not module.should_pull(entity_type):
            return SyncResult.skip(f"Pull disabled for {module.id}/{entity_type}")

        key = normalize_local_id(local_id)
        try:
            with applying_remote_change(module.id, entity_type) as context:
                if action == SyncAction.delete:
                    return await self._pull_delete(module, entity_type, key, remote_id, context)
                return await self._pull_upsert(module, entity_type, key, remote_id, payload, context)
        except Exception as exc:
            return self._failure("pull", module.id, entity_type, action, key or remote_id, exc)

    async def _pull_delete(self, module, entity_type, key, remote_id, context) -> SyncResult:
        if not key and remote_id:
            key = await self._entity_map.get_local_id(module.id, entity_type, remote_id) or ""
        if not key:
            return SyncResult.skip("No local entity mapped")

        await module.delete_local_data(entity_type, key, context)
        await self._entity_map.delete(module.id, entity_type, key)
        logger.info(
            "sync.pull_complete",
            module=module.id,
            entity_type=entity_type,
            action="delete",
            local_id=key,
            remote_id=remote_id,
        )
        return SyncResult.ok("Deleted", entity_id=key)

    async def _pull_upsert(self, module, entity_type, key, remote_id, payload, context) -> SyncResult:
        remote_model = module.get_remote_model(entity_type)
        if not remote_id:
            return SyncResult.fail("Pull job has no remote id", ErrorType.permanent)

        remote_data = payload
        if not remote_data:
            records = await self._remote.read(remote_model, [remote_id])
            if not records:
                return SyncResult.fail("Remote record not found during pull", ErrorType.permanent)
            remote_data = records[0]

        data = await module.map_from_remote(entity_type, remote_data)
        if not data:
            return SyncResult.fail("No data to pull", ErrorType.permanent)

        if not key:
            key = await self._entity_map.get_local_id(module.id, entity_type, remote_id) or ""

        saved = normalize_local_id(
            await module.save_local_data(entity_type, data, key or None, context)
        )
        if not saved:
            return SyncResult.fail("Failed to save local data during pull", ErrorType.permanent)

        await self._entity_map.upsert(
            module.id, entity_type, saved, remote_id, remote_model, local_data_hash(data)
        )
        logger.info(
            "sync.pull_complete",
            module=module.id,
            entity_type=entity_type,
            action="create" if not key else "update",
            local_id=saved,
            remote_id=remote_id,
        )
        return SyncResult.ok("Saved", entity_id=saved)

    # ── Failures ────────────────────────────────────────────────────────────

    @staticmethod
    def _failure(
        direction: str,
        module_id: str,
        entity_type: str,
        action: SyncAction,
        entity: Any,
        exc: Exception,
    ) -> SyncResult:
        error_type = classify_exception(exc)
        log = logger.error if error_type == ErrorType.permanent else logger.warning
        log(
            f"sync.{direction}_failed",
            module=module_id,
            entity_type=entity_type,
            action=action.value,
            entity=entity,
            error=str(exc),
            error_class=type(exc).__name__,
            error_type=error_type.value,
        )
        return SyncResult.fail(str(exc) or type(exc).__name__, error_type)
