"""Entity map store -- persisted local id <-> remote id correspondence.

Provides EntityMapStore with the session_factory callable pattern. Every
read goes to the database, so a lookup always reflects the latest upsert
or delete made by any worker.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.erpsync.core.database import SessionFactory
from src.erpsync.sync.errors import MappingConflictError, SyncError
from src.erpsync.sync.models import EntityMapModel, utcnow
from src.erpsync.sync.schemas import EntityMappingRead, LocalId, normalize_local_id

logger = structlog.get_logger(__name__)

_UPSERT_ATTEMPTS = 3


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _model_to_mapping(model: EntityMapModel) -> EntityMappingRead:
    """Convert EntityMapModel to EntityMappingRead schema."""
    return EntityMappingRead(
        module=model.module,
        entity_type=model.entity_type,
        local_id=model.local_id,
        remote_id=model.remote_id,
        remote_model=model.remote_model or "",
        sync_hash=model.sync_hash or "",
        created_at=as_utc(model.created_at),
        last_synced_at=as_utc(model.last_synced_at),
    )


class EntityMapStore:
    """Async repository for the entity_map table.

    Args:
        session_factory: Callable yielding AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    # ── Lookups ─────────────────────────────────────────────────────────────

    async def get_remote_id(self, module: str, entity_type: str, local_id: LocalId) -> int | None:
        """Remote id mapped to ``local_id``, or None."""
        mapping = await self.get_mapping(module, entity_type, local_id)
        return mapping.remote_id if mapping else None

    async def get_local_id(self, module: str, entity_type: str, remote_id: int) -> str | None:
        """Local id mapped to ``remote_id``, or None."""
        async for session in self._session_factory():
            stmt = select(EntityMapModel.local_id).where(
                EntityMapModel.module == module,
                EntityMapModel.entity_type == entity_type,
                EntityMapModel.remote_id == remote_id,
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def get_mapping(
        self, module: str, entity_type: str, local_id: LocalId
    ) -> EntityMappingRead | None:
        """Full mapping row for ``local_id``, or None."""
        key = normalize_local_id(local_id)
        if not key:
            return None
        async for session in self._session_factory():
            model = await self._find_by_local(session, module, entity_type, key)
            return _model_to_mapping(model) if model else None

    async def get_remote_ids_batch(
        self, module: str, entity_type: str, local_ids: Iterable[LocalId]
    ) -> dict[str, int]:
        """Resolve many local ids in one query. Unmapped ids are omitted."""
        keys = [k for k in (normalize_local_id(i) for i in local_ids) if k]
        if not keys:
            return {}
        async for session in self._session_factory():
            stmt = select(EntityMapModel.local_id, EntityMapModel.remote_id).where(
                EntityMapModel.module == module,
                EntityMapModel.entity_type == entity_type,
                EntityMapModel.local_id.in_(keys),
            )
            result = await session.execute(stmt)
            return {row.local_id: row.remote_id for row in result}

    async def list_mappings(
        self,
        module: str,
        entity_type: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[EntityMappingRead]:
        """List mappings ordered by id."""
        async for session in self._session_factory():
            stmt = (
                select(EntityMapModel)
                .where(
                    EntityMapModel.module == module,
                    EntityMapModel.entity_type == entity_type,
                )
                .order_by(EntityMapModel.id)
                .offset(offset)
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            result = await session.execute(stmt)
            return [_model_to_mapping(m) for m in result.scalars().all()]

    # ── Writes ──────────────────────────────────────────────────────────────

    async def upsert(
        self,
        module: str,
        entity_type: str,
        local_id: LocalId,
        remote_id: int,
        remote_model: str = "",
        sync_hash: str = "",
    ) -> EntityMappingRead:
        """Create or update the mapping for ``local_id``.

        Idempotent for the same pair. If another local entity already owns
        ``remote_id`` the existing mapping is kept and MappingConflictError
        is raised. Concurrent first inserts for the same local key converge:
        the loser of the unique-constraint race re-reads and updates.

        Raises:
            MappingConflictError: ``remote_id`` belongs to a different local id.
            ValueError: ``local_id`` is empty or ``remote_id`` is not positive.
        """
        key = normalize_local_id(local_id)
        if not key:
            raise ValueError("local_id must not be empty")
        if remote_id <= 0:
            raise ValueError(f"remote_id must be positive, got {remote_id}")

        for attempt in range(1, _UPSERT_ATTEMPTS + 1):
            async for session in self._session_factory():
                try:
                    return await self._upsert_once(
                        session, module, entity_type, key, remote_id, remote_model, sync_hash
                    )
                except IntegrityError:
                    await session.rollback()
                    logger.warning(
                        "entity_map.upsert_race",
                        module=module,
                        entity_type=entity_type,
                        local_id=key,
                        remote_id=remote_id,
                        attempt=attempt,
                    )

        raise SyncError(
            f"Could not save mapping {module}/{entity_type} {key} -> {remote_id} "
            f"after {_UPSERT_ATTEMPTS} attempts"
        )

    async def delete(self, module: str, entity_type: str, local_id: LocalId) -> bool:
        """Remove the mapping for ``local_id``. Returns True if a row was removed."""
        key = normalize_local_id(local_id)
        if not key:
            return False
        async for session in self._session_factory():
            stmt = delete(EntityMapModel).where(
                EntityMapModel.module == module,
                EntityMapModel.entity_type == entity_type,
                EntityMapModel.local_id == key,
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    async def delete_by_remote_id(self, module: str, entity_type: str, remote_id: int) -> bool:
        """Remove the mapping pointing at ``remote_id``."""
        async for session in self._session_factory():
            stmt = delete(EntityMapModel).where(
                EntityMapModel.module == module,
                EntityMapModel.entity_type == entity_type,
                EntityMapModel.remote_id == remote_id,
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    # ── Internals ───────────────────────────────────────────────────────────

    @staticmethod
    async def _find_by_local(
        session: AsyncSession, module: str, entity_type: str, key: str
    ) -> EntityMapModel | None:
        stmt = select(EntityMapModel).where(
            EntityMapModel.module == module,
            EntityMapModel.entity_type == entity_type,
            EntityMapModel.local_id == key,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _upsert_once(
        self,
        session: AsyncSession,
        module: str,
        entity_type: str,
        key: str,
        remote_id: int,
        remote_model: str,
        sync_hash: str,
    ) -> EntityMappingRead:
        holder_stmt = select(EntityMapModel.local_id).where(
            EntityMapModel.module == module,
            EntityMapModel.entity_type == entity_type,
            EntityMapModel.remote_id == remote_id,
        )
        holder = (await session.execute(holder_stmt)).scalar_one_or_none()
        if holder is not None and holder != key:
            logger.error(
                "entity_map.remote_id_conflict",
                module=module,
                entity_type=entity_type,
                local_id=key,
                remote_id=remote_id,
                existing_local_id=holder,
            )
            raise MappingConflictError(module, entity_type, key, remote_id, holder)

        now = utcnow()
        model = await self._find_by_local(session, module, entity_type, key)
        if model is None:
            model = EntityMapModel(
                module=module,
                entity_type=entity_type,
                local_id=key,
                remote_id=remote_id,
                remote_model=remote_model,
                sync_hash=sync_hash,
                created_at=now,
                last_synced_at=now,
            )
            session.add(model)
        else:
            if model.remote_id != remote_id:
                logger.info(
                    "entity_map.remote_id_changed",
                    module=module,
                    entity_type=entity_type,
                    local_id=key,
                    old_remote_id=model.remote_id,
                    new_remote_id=remote_id,
                )
            model.remote_id = remote_id
            if remote_model:
                model.remote_model = remote_model
            if sync_hash:
                model.sync_hash = sync_hash
            model.last_synced_at = now

        await session.commit()
        return _model_to_mapping(model)
