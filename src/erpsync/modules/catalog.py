"""Built-in module catalogue and registry construction."""

from __future__ import annotations

from collections.abc import Iterable

from src.erpsync.modules.base import ModuleServices, SyncModule
from src.erpsync.modules.commerce import MembershipsModule, SalesModule, WooCommerceModule
from src.erpsync.modules.crm import CRMModule
from src.erpsync.modules.donations import CharitableModule, GiveWPModule
from src.erpsync.modules.events import EventSourceTable
from src.erpsync.modules.registry import ModuleRegistry

# Registration order breaks exclusivity ties
BUILTIN_MODULES: tuple[type[SyncModule], ...] = (
    CRMModule,
    GiveWPModule,
    CharitableModule,
    WooCommerceModule,
    SalesModule,
    MembershipsModule,
)


def create_module_registry(
    services: ModuleServices,
    event_table: EventSourceTable,
    installed_plugins: Iterable[str] = (),
    module_classes: Iterable[type[SyncModule]] = BUILTIN_MODULES,
) -> ModuleRegistry:
    """Instantiate and register every module class. Nothing is booted yet."""
    registry = ModuleRegistry(event_table, services.settings_store, installed_plugins)
    for module_class in module_classes:
        registry.register(module_class(services))
    return registry
