"""Base class and descriptor for integration modules.

A module adapts one local add-on (CRM contacts, donations, orders...) to
the sync engine. It declares its entity types, remote models and default
field mappings in a frozen ModuleDescriptor, and overrides the capability
hooks only where the defaults are not enough:

- load_local_data / save_local_data / delete_local_data: delegate to the
  host's LocalStore using the descriptor's ``local_tables``
- map_to_remote / map_from_remote: apply the field mapping, then the
  ``erpsync.map_to_remote.<module>.<entity>`` extension point
- get_dedup_domain: search domain used to adopt an existing remote record
- should_pull: policy gate for remote-originated changes

Event-source callbacks use push_entity()/push_delete(), which honour the
re-entrancy guard so a pull never echoes back as a push.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar

import structlog

from src.erpsync.core.context import SyncContext, is_applying_remote_change
from src.erpsync.core.extensions import ExtensionRegistry
from src.erpsync.modules.events import EventSource, EventSourceTable
from src.erpsync.modules.local import LocalStore
from src.erpsync.modules.settings import ModuleSettingsStore, SettingSpec
from src.erpsync.remote.client import Domain
from src.erpsync.sync.entity_map import EntityMapStore
from src.erpsync.sync.errors import UnknownEntityTypeError
from src.erpsync.sync.keys import local_data_hash
from src.erpsync.sync.queue import SyncQueue
from src.erpsync.sync.schemas import LocalId, ModuleDirection, SyncAction, SyncDirection, normalize_local_id
from src.erpsync.sync.status_mapper import StatusMapper


@dataclass(frozen=True)
class ModuleDescriptor:
    """Static description of a module. Immutable after definition."""

    id: str
    name: str
    direction: ModuleDirection = ModuleDirection.bidirectional
    remote_models: Mapping[str, str] = field(default_factory=dict)
    default_mappings: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    local_tables: Mapping[str, str] = field(default_factory=dict)
    exclusive_group: str | None = None
    exclusive_priority: int = 100  # lower wins
    required_modules: tuple[str, ...] = ()
    required_dependency: str | None = None
    settings: tuple[SettingSpec, ...] = ()


@dataclass
class ModuleServices:
    """Shared collaborators handed to every module instance."""

    local_store: LocalStore
    entity_map: EntityMapStore
    queue: SyncQueue
    settings_store: ModuleSettingsStore
    status_mapper: StatusMapper
    extensions: ExtensionRegistry
    push_delay_seconds: float = 5


class SyncModule:
    """Base integration module. Subclasses set ``descriptor``."""

    descriptor: ClassVar[ModuleDescriptor]

    def __init__(self, services: ModuleServices) -> None:
        self._services = services
        self._booted = False
        self.logger = structlog.get_logger(__name__).bind(module=self.id)

    # ── Identity ────────────────────────────────────────────────────────────

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def direction(self) -> ModuleDirection:
        return self.descriptor.direction

    @property
    def booted(self) -> bool:
        return self._booted

    @property
    def entity_types(self) -> list[str]:
        return list(self.descriptor.remote_models)

    def get_remote_model(self, entity_type: str) -> str:
        """Remote model name for ``entity_type``.

        Raises:
            UnknownEntityTypeError: The module does not declare ``entity_type``.
        """
        try:
            return self.descriptor.remote_models[entity_type]
        except KeyError:
            raise UnknownEntityTypeError(
                f"Module {self.id!r} has no entity type {entity_type!r}"
            ) from None

    # ── Settings ────────────────────────────────────────────────────────────

    def get_settings(self) -> dict[str, Any]:
        return self._services.settings_store.get_settings(self.id, self.descriptor.settings)

    def should_sync(self, setting_key: str) -> bool:
        """Whether an outbound event should be queued right now.

        False while this module is applying a remote change, or when the
        named setting is off.
        """
        if is_applying_remote_change(self.id):
            return False
        return bool(self.get_settings().get(setting_key, False))

    def should_pull(self, entity_type: str) -> bool:
        """Policy gate for remote-originated changes.

        Push-only modules never pull. A declared ``pull_<entity_type>``
        setting can switch pulls off per entity type.
        """
        if not self.direction.pulls:
            return False
        return bool(self.get_settings().get(f"pull_{entity_type}", True))

    # ── Field mapping ───────────────────────────────────────────────────────

    def get_field_mapping(self, entity_type: str) -> dict[str, str]:
        """Local field -> remote field, after the mapping extension point."""
        default = dict(self.descriptor.default_mappings.get(entity_type, {}))
        return self._services.extensions.apply(
            f"erpsync.field_mapping.{self.id}.{entity_type}", default
        )

    def resolve_status(self, value: Any, static_map: Mapping[Any, Any], field_name: str, default: Any) -> Any:
        return self._services.status_mapper.resolve(
            value, static_map, f"erpsync.status_map.{self.id}.{field_name}", default
        )

    def reverse_status(self, value: Any, static_map: Mapping[Any, Any], field_name: str, default: Any) -> Any:
        return self._services.status_mapper.reverse(
            value, static_map, f"erpsync.status_map.{self.id}.{field_name}", default
        )

    # ── Capability hooks ────────────────────────────────────────────────────

    async def load_local_data(self, entity_type: str, local_id: str) -> dict[str, Any]:
        """Fields of the local entity; empty when it no longer exists."""
        data = await self._services.local_store.load(self._local_table(entity_type), local_id)
        return dict(data or {})

    async def save_local_data(
        self,
        entity_type: str,
        data: dict[str, Any],
        local_id: str | None,
        context: SyncContext,
    ) -> str | int | None:
        """Create or update the local entity. Returns its id, falsy on failure."""
        return await self._services.local_store.save(
            self._local_table(entity_type), data, local_id, context
        )

    async def delete_local_data(self, entity_type: str, local_id: str, context: SyncContext) -> bool:
        return await self._services.local_store.delete(
            self._local_table(entity_type), local_id, context
        )

    async def map_to_remote(self, entity_type: str, data: dict[str, Any]) -> dict[str, Any]:
        """Translate local fields to remote values using the field mapping."""
        values = {
            remote_field: data[local_field]
            for local_field, remote_field in self.get_field_mapping(entity_type).items()
            if local_field in data
        }
        return self._services.extensions.apply(
            f"erpsync.map_to_remote.{self.id}.{entity_type}", values, data
        )

    async def map_from_remote(self, entity_type: str, remote_data: dict[str, Any]) -> dict[str, Any]:
        """Translate remote values back to local fields."""
        data = {
            local_field: remote_data[remote_field]
            for local_field, remote_field in self.get_field_mapping(entity_type).items()
            if remote_field in remote_data
        }
        return self._services.extensions.apply(
            f"erpsync.map_from_remote.{self.id}.{entity_type}", data, remote_data
        )

    def get_dedup_domain(self, entity_type: str, values: dict[str, Any]) -> Domain:
        """Domain identifying an existing remote record for ``values``.

        Empty means no deduplication: the engine creates a new record.
        """
        return []

    def get_event_sources(self) -> list[EventSource]:
        """Subscriptions registered at boot."""
        return []

    # ── Lifecycle ───────────────────────────────────────────────────────────

    def boot(self, table: EventSourceTable) -> int:
        """Register event sources whose gating setting is on. Returns the count."""
        settings = self.get_settings()
        registered = 0
        for source in self.get_event_sources():
            if source.setting_key is not None and not settings.get(source.setting_key, False):
                continue
            table.register(self.id, source.event, source.callback)
            registered += 1
        self._booted = True
        self.logger.info("module.booted", event_sources=registered)
        return registered

    def shutdown(self, table: EventSourceTable) -> None:
        table.unregister_module(self.id)
        self._booted = False

    # ── Outbound helpers for event callbacks ────────────────────────────────

    async def get_mapping(self, entity_type: str, local_id: LocalId) -> int | None:
        return await self._services.entity_map.get_remote_id(self.id, entity_type, local_id)

    async def push_entity(self, entity_type: str, local_id: LocalId, priority: int = 5) -> int | None:
        """Queue a create or update for a locally changed entity.

        Returns the job id, or None when suppressed by the re-entrancy guard.
        """
        if is_applying_remote_change(self.id):
            return None
        remote_id = await self.get_mapping(entity_type, local_id)
        action = SyncAction.update if remote_id else SyncAction.create
        return await self._services.queue.enqueue(
            self.id,
            entity_type,
            action,
            local_id=local_id,
            remote_id=remote_id,
            direction=SyncDirection.push,
            priority=priority,
            delay_seconds=self._services.push_delay_seconds,
        )

    async def push_delete(self, entity_type: str, local_id: LocalId) -> int | None:
        """Queue a remote delete for a locally deleted entity, if it was ever synced."""
        if is_applying_remote_change(self.id):
            return None
        remote_id = await self.get_mapping(entity_type, local_id)
        if not remote_id:
            return None
        return await self._services.queue.enqueue(
            self.id,
            entity_type,
            SyncAction.delete,
            local_id=local_id,
            remote_id=remote_id,
            direction=SyncDirection.push,
        )

    async def poll_entity_changes(
        self,
        entity_type: str,
        items: list[dict[str, Any]],
        id_field: str = "id",
        detect_deletions: bool = True,
    ) -> dict[str, int]:
        """Diff a snapshot of local items against the mapping hashes.

        For add-ons that offer no change events. Unmapped items are queued
        for create, items whose hash changed for update. When ``items`` is
        the complete set and ``detect_deletions`` is on, mapped entities
        missing from the snapshot are queued for delete.
        """
        counts = {"create": 0, "update": 0, "delete": 0}
        existing = {
            m.local_id: m
            for m in await self._services.entity_map.list_mappings(self.id, entity_type)
        }
        seen: set[str] = set()
        queue = self._services.queue

        for item in items:
            local_id = normalize_local_id(item.get(id_field))
            if not local_id:
                continue
            seen.add(local_id)
            mapping = existing.get(local_id)
            if mapping is None:
                await queue.enqueue(self.id, entity_type, SyncAction.create, local_id=local_id)
                counts["create"] += 1
            elif mapping.sync_hash != local_data_hash(item, id_field):
                await queue.enqueue(
                    self.id, entity_type, SyncAction.update,
                    local_id=local_id, remote_id=mapping.remote_id,
                )
                counts["update"] += 1

        if detect_deletions:
            for local_id, mapping in existing.items():
                if local_id not in seen:
                    await queue.enqueue(
                        self.id, entity_type, SyncAction.delete,
                        local_id=local_id, remote_id=mapping.remote_id,
                    )
                    counts["delete"] += 1

        if any(counts.values()):
            self.logger.info("module.poll_changes_queued", entity_type=entity_type, **counts)
        return counts

    # ── Internals ───────────────────────────────────────────────────────────

    def _local_table(self, entity_type: str) -> str:
        return self.descriptor.local_tables.get(entity_type, entity_type)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r} booted={self._booted}>"
