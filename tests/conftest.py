"""Shared fixtures for the sync test suite.

Provides:
- File-backed SQLite (aiosqlite) engine with the sync tables created
- EntityMapStore / SyncQueue bound to it
- FakeLocalStore and FakeRemoteClient test doubles
- ItemModule: a minimal bidirectional module ("x" / "item" -> "x.item")
- A booted ModuleRegistry and SyncEngine wired to the fakes
"""

from __future__ import annotations

import itertools
from collections.abc import Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

import src.erpsync.sync.models  # noqa: F401  (registers tables on SyncBase)
from src.erpsync.core.context import SyncContext
from src.erpsync.core.database import SyncBase, make_session_factory
from src.erpsync.core.extensions import ExtensionRegistry
from src.erpsync.modules.base import ModuleDescriptor, ModuleServices, SyncModule
from src.erpsync.modules.events import EventSource, EventSourceTable
from src.erpsync.modules.local import LocalStore
from src.erpsync.modules.registry import ModuleRegistry
from src.erpsync.modules.settings import ModuleSettingsStore, SettingSpec
from src.erpsync.remote.client import Domain, RemoteClient
from src.erpsync.sync.engine import SyncEngine
from src.erpsync.sync.entity_map import EntityMapStore
from src.erpsync.sync.errors import RemoteNotFoundError
from src.erpsync.sync.queue import SyncQueue
from src.erpsync.sync.status_mapper import StatusMapper


# ── Test Doubles ─────────────────────────────────────────────────────────────


class FakeLocalStore(LocalStore):
    """Dict-backed LocalStore. ``on_save`` runs inside save(), like a host hook."""

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, dict[str, Any]]] = {}
        self.contexts: list[SyncContext] = []
        self.on_save: Callable[[str, str], Awaitable[None]] | None = None
        self._ids = itertools.count(1000)

    def put(self, table: str, local_id: Any, data: dict[str, Any]) -> None:
        self.tables.setdefault(table, {})[str(local_id)] = dict(data)

    async def load(self, table: str, local_id: str) -> dict[str, Any] | None:
        record = self.tables.get(table, {}).get(str(local_id))
        return dict(record) if record is not None else None

    async def save(
        self, table: str, data: dict[str, Any], local_id: str | None, context: SyncContext
    ) -> str | int | None:
        self.contexts.append(context)
        key = str(local_id) if local_id else str(next(self._ids))
        self.tables.setdefault(table, {}).setdefault(key, {}).update(data)
        if self.on_save is not None:
            await self.on_save(table, key)
        return key

    async def delete(self, table: str, local_id: str, context: SyncContext) -> bool:
        self.contexts.append(context)
        return self.tables.get(table, {}).pop(str(local_id), None) is not None


class FakeRemoteClient(RemoteClient):
    """In-memory remote. Ids start at 900; ``errors`` injects one-shot failures."""

    def __init__(self, first_id: int = 900) -> None:
        self.records: dict[str, dict[int, dict[str, Any]]] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.errors: dict[str, Exception] = {}
        self._ids = itertools.count(first_id)

    def seed(self, model: str, record_id: int, values: dict[str, Any]) -> None:
        self.records.setdefault(model, {})[record_id] = dict(values)

    def _maybe_fail(self, method: str) -> None:
        error = self.errors.pop(method, None)
        if error is not None:
            raise error

    async def create(self, model: str, values: dict[str, Any]) -> int:
        self.calls.append(("create", model, values))
        self._maybe_fail("create")
        record_id = next(self._ids)
        self.records.setdefault(model, {})[record_id] = dict(values)
        return record_id

    async def write(self, model: str, ids: list[int], values: dict[str, Any]) -> bool:
        self.calls.append(("write", model, (ids, values)))
        self._maybe_fail("write")
        table = self.records.setdefault(model, {})
        missing = [i for i in ids if i not in table]
        if missing:
            raise RemoteNotFoundError(f"Record {missing} does not exist")
        for record_id in ids:
            table[record_id].update(values)
        return True

    async def unlink(self, model: str, ids: list[int]) -> bool:
        self.calls.append(("unlink", model, ids))
        self._maybe_fail("unlink")
        table = self.records.setdefault(model, {})
        missing = [i for i in ids if i not in table]
        if missing:
            raise RemoteNotFoundError(f"Record {missing} does not exist")
        for record_id in ids:
            del table[record_id]
        return True

    async def read(self, model: str, ids: list[int], fields: list[str] | None = None) -> list[dict[str, Any]]:
        self.calls.append(("read", model, ids))
        self._maybe_fail("read")
        table = self.records.get(model, {})
        return [{"id": i, **table[i]} for i in ids if i in table]

    async def search(
        self, model: str, domain: Domain, limit: int | None = None, offset: int = 0
    ) -> list[int]:
        self.calls.append(("search", model, domain))
        self._maybe_fail("search")
        matches = []
        for record_id, values in sorted(self.records.get(model, {}).items()):
            row = {"id": record_id, **values}
            if all(_matches(row, f, op, v) for f, op, v in domain):
                matches.append(record_id)
        matches = matches[offset:]
        return matches[:limit] if limit is not None else matches

    def count(self, method: str) -> int:
        return sum(1 for c in self.calls if c[0] == method)


def _matches(row: dict[str, Any], field: str, op: str, value: Any) -> bool:
    if op == "=":
        return row.get(field) == value
    if op == "in":
        return row.get(field) in value
    raise AssertionError(f"Unsupported domain operator in fake: {op}")


class ItemModule(SyncModule):
    """Minimal bidirectional module used across engine and worker tests."""

    descriptor = ModuleDescriptor(
        id="x",
        name="Items",
        remote_models={"item": "x.item"},
        default_mappings={"item": {"name": "name", "ref": "ref"}},
        local_tables={"item": "items"},
        settings=(SettingSpec("sync_items", True),),
    )

    def get_event_sources(self) -> list[EventSource]:
        return [EventSource("item.saved", self.on_item_saved, "sync_items")]

    async def on_item_saved(self, item_id: Any, **_: Any) -> None:
        if self.should_sync("sync_items"):
            await self.push_entity("item", item_id)

    def get_dedup_domain(self, entity_type: str, values: dict[str, Any]) -> Domain:
        if values.get("ref"):
            return [("ref", "=", values["ref"])]
        return []


# ── Database ─────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    # NullPool: every session gets its own connection and transaction
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SyncBase.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def entity_map(session_factory) -> EntityMapStore:
    return EntityMapStore(session_factory)


@pytest.fixture
def queue(session_factory) -> SyncQueue:
    return SyncQueue(session_factory, max_retries=3, retry_base_seconds=60)


# ── Module wiring ────────────────────────────────────────────────────────────


@pytest.fixture
def local_store() -> FakeLocalStore:
    return FakeLocalStore()


@pytest.fixture
def remote() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def extensions() -> ExtensionRegistry:
    return ExtensionRegistry()


@pytest.fixture
def settings_store() -> ModuleSettingsStore:
    return ModuleSettingsStore(enabled={"x"})


@pytest.fixture
def services(local_store, entity_map, queue, settings_store, extensions) -> ModuleServices:
    return ModuleServices(
        local_store=local_store,
        entity_map=entity_map,
        queue=queue,
        settings_store=settings_store,
        status_mapper=StatusMapper(extensions),
        extensions=extensions,
        push_delay_seconds=0,
    )


@pytest.fixture
def event_table() -> EventSourceTable:
    return EventSourceTable()


@pytest.fixture
def registry(services, event_table, settings_store) -> ModuleRegistry:
    reg = ModuleRegistry(event_table, settings_store)
    reg.register(ItemModule(services))
    reg.boot_all()
    return reg


@pytest.fixture
def item_module(registry) -> ItemModule:
    return registry.get_booted("x")


@pytest.fixture
def engine(registry, remote, entity_map) -> SyncEngine:
    return SyncEngine(registry, remote, entity_map)
