"""Sync runtime assembly.

build_runtime() wires the queue, entity map, clients, modules, engine and
worker from Settings. The API lifespan and the admin CLI both use it so
they run against identically configured components.
"""

from __future__ import annotations

from dataclasses import dataclass

from src.erpsync.config import Settings
from src.erpsync.core.database import get_engine, make_session_factory
from src.erpsync.core.extensions import get_extension_registry
from src.erpsync.core.redis import get_redis_pool
from src.erpsync.modules.base import ModuleServices
from src.erpsync.modules.catalog import create_module_registry
from src.erpsync.modules.events import EventSourceTable
from src.erpsync.modules.http_store import HttpLocalStore
from src.erpsync.modules.registry import ModuleRegistry, set_module_registry
from src.erpsync.modules.settings import ModuleSettingsStore
from src.erpsync.remote.jsonrpc import OdooJsonRpcClient
from src.erpsync.sync.circuit_breaker import CircuitBreaker
from src.erpsync.sync.engine import SyncEngine
from src.erpsync.sync.entity_map import EntityMapStore
from src.erpsync.sync.locks import PushLockManager
from src.erpsync.sync.queue import SyncQueue
from src.erpsync.sync.reconciler import Reconciler
from src.erpsync.sync.service import SyncService
from src.erpsync.sync.status_mapper import StatusMapper
from src.erpsync.sync.worker import SyncWorker


@dataclass
class SyncRuntime:
    remote_client: OdooJsonRpcClient
    local_store: HttpLocalStore
    sync_queue: SyncQueue
    entity_map: EntityMapStore
    event_table: EventSourceTable
    module_registry: ModuleRegistry
    circuit_breaker: CircuitBreaker
    sync_engine: SyncEngine
    sync_worker: SyncWorker
    sync_service: SyncService
    reconciler: Reconciler

    async def close(self) -> None:
        self.module_registry.shutdown()
        set_module_registry(None)
        await self.remote_client.close()
        await self.local_store.close()


def build_runtime(settings: Settings) -> SyncRuntime:
    """Create every component and boot the eligible modules."""
    session_factory = make_session_factory(get_engine())
    extensions = get_extension_registry()

    queue = SyncQueue(
        session_factory,
        max_retries=settings.SYNC_MAX_RETRIES,
        retry_base_seconds=settings.SYNC_RETRY_BASE_SECONDS,
        claim_timeout_seconds=settings.SYNC_CLAIM_TIMEOUT_SECONDS,
    )
    entity_map = EntityMapStore(session_factory)
    remote = OdooJsonRpcClient(
        settings.REMOTE_URL,
        settings.REMOTE_DATABASE,
        settings.REMOTE_USERNAME,
        settings.REMOTE_API_KEY,
        timeout=settings.REMOTE_TIMEOUT_SECONDS,
    )
    local_store = HttpLocalStore(
        settings.LOCAL_URL,
        settings.LOCAL_API_TOKEN,
        timeout=settings.LOCAL_TIMEOUT_SECONDS,
    )

    services = ModuleServices(
        local_store=local_store,
        entity_map=entity_map,
        queue=queue,
        settings_store=ModuleSettingsStore(settings.get_enabled_modules()),
        status_mapper=StatusMapper(extensions),
        extensions=extensions,
        push_delay_seconds=settings.SYNC_PUSH_DELAY_SECONDS,
    )
    event_table = EventSourceTable()
    registry = create_module_registry(services, event_table, settings.get_installed_plugins())
    registry.boot_all()
    set_module_registry(registry)

    breaker = CircuitBreaker()
    engine = SyncEngine(
        registry,
        remote,
        entity_map,
        PushLockManager(get_redis_pool(), ttl_seconds=settings.SYNC_LOCK_TTL_SECONDS),
    )
    worker = SyncWorker(
        queue,
        engine,
        breaker,
        batch_size=settings.SYNC_BATCH_SIZE,
        job_timeout=settings.SYNC_JOB_TIMEOUT_SECONDS,
        time_limit=settings.SYNC_BATCH_TIME_LIMIT_SECONDS,
        max_iterations=settings.SYNC_MAX_BATCH_ITERATIONS,
        poll_interval=settings.SYNC_POLL_INTERVAL_SECONDS,
        dry_run=settings.SYNC_DRY_RUN,
    )

    return SyncRuntime(
        remote_client=remote,
        local_store=local_store,
        sync_queue=queue,
        entity_map=entity_map,
        event_table=event_table,
        module_registry=registry,
        circuit_breaker=breaker,
        sync_engine=engine,
        sync_worker=worker,
        sync_service=SyncService(queue, entity_map, settings.SYNC_PUSH_DELAY_SECONDS),
        reconciler=Reconciler(entity_map, remote),
    )
