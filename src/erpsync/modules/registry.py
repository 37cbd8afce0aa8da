"""Module registry: eligibility, exclusivity arbitration, and boot order.

Boot eligibility is decided in three stages:

1. The module's required local add-on is installed and the module is
   enabled in settings. Otherwise it stays registered but dormant.
2. Every required sibling module is itself eligible (resolved to a
   fixpoint, so chains of requirements work).
3. Within an exclusivity group only the member with the lowest priority
   value boots; ties go to the module registered first.

Stages 2 and 3 are re-evaluated together until stable, so a group winner
that later loses a requirement hands the slot to the next member.

A module-level singleton is provided via get_module_registry().
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from src.erpsync.modules.base import SyncModule
from src.erpsync.modules.events import EventSourceTable
from src.erpsync.modules.settings import ModuleSettingsStore

logger = structlog.get_logger(__name__)


class ModuleRegistry:
    """Registry and lifecycle manager for integration modules.

    Args:
        event_table: Table booted modules register their event sources in.
        settings_store: Source of the per-module enabled flag.
        installed_plugins: Names of local add-ons present on this install.
    """

    def __init__(
        self,
        event_table: EventSourceTable,
        settings_store: ModuleSettingsStore,
        installed_plugins: Iterable[str] = (),
    ) -> None:
        self._event_table = event_table
        self._settings_store = settings_store
        self._installed = set(installed_plugins)
        self._modules: dict[str, SyncModule] = {}
        self._booted: dict[str, SyncModule] = {}
        self._dormant: dict[str, str] = {}

    # ── Registration ────────────────────────────────────────────────────────

    def register(self, module: SyncModule) -> None:
        """Register a module (not booted yet).

        Raises:
            ValueError: If a module with the same id is already registered.
        """
        if module.id in self._modules:
            raise ValueError(f"Module already registered: {module.id}")
        self._modules[module.id] = module
        logger.debug("module_registered", module=module.id)

    def get(self, module_id: str) -> SyncModule | None:
        """Registered module by id, booted or dormant."""
        return self._modules.get(module_id)

    def get_booted(self, module_id: str) -> SyncModule | None:
        """The booted module that owns ``module_id`` jobs, or None."""
        return self._booted.get(module_id)

    def all(self) -> list[SyncModule]:
        return list(self._modules.values())

    def is_booted(self, module_id: str) -> bool:
        return module_id in self._booted

    @property
    def booted_ids(self) -> list[str]:
        """Booted module ids, in boot order."""
        return list(self._booted)

    @property
    def dormant_reasons(self) -> dict[str, str]:
        """Why each non-booted module stayed dormant."""
        return dict(self._dormant)

    # ── Lifecycle ───────────────────────────────────────────────────────────

    def resolve_eligible(self) -> tuple[list[str], dict[str, str]]:
        """Decide which modules boot, without side effects.

        Returns:
            Tuple of (eligible ids in boot order, dormant id -> reason).
        """
        dormant: dict[str, str] = {}
        base: set[str] = set()
        for module_id, module in self._modules.items():
            dependency = module.descriptor.required_dependency
            if dependency and dependency not in self._installed:
                dormant[module_id] = f"dependency {dependency!r} is not installed"
                logger.warning("module_dependency_missing", module=module_id, dependency=dependency)
                continue
            if not self._settings_store.is_enabled(module_id):
                dormant[module_id] = "disabled in settings"
                continue
            base.add(module_id)

        losers: dict[str, str] = {}
        candidates = set(base)
        viable: set[str] = set()
        for _ in range(len(self._modules) + 1):
            required_ok = self._requirement_fixpoint(candidates, dormant)
            losers = self._exclusivity_losers(required_ok)
            viable = self._requirement_fixpoint(required_ok - set(losers), dormant)
            # A group winner that needed an excluded module frees its slot
            dropped = {
                m for m in required_ok - set(losers) - viable
                if self._modules[m].descriptor.exclusive_group
            }
            if not dropped:
                break
            candidates -= dropped

        for module_id, reason in losers.items():
            dormant[module_id] = reason
            logger.info("module_excluded", module=module_id, reason=reason)
        for module_id in base - viable:
            dormant.setdefault(module_id, "required module not booted")

        return self._boot_order(viable), dormant

    def boot_all(self) -> list[str]:
        """Boot every eligible module in dependency order. Returns booted ids."""
        order, dormant = self.resolve_eligible()
        self._dormant = dormant
        for module_id in order:
            if module_id in self._booted:
                continue
            module = self._modules[module_id]
            module.boot(self._event_table)
            self._booted[module_id] = module
        logger.info(
            "modules_booted",
            booted=list(self._booted),
            dormant=sorted(self._dormant),
        )
        return list(self._booted)

    def shutdown(self) -> None:
        """Unregister every booted module's event sources."""
        for module in reversed(list(self._booted.values())):
            module.shutdown(self._event_table)
        self._booted.clear()

    # ── Internals ───────────────────────────────────────────────────────────

    def _requirement_fixpoint(self, candidates: set[str], dormant: dict[str, str]) -> set[str]:
        viable = set(candidates)
        changed = True
        while changed:
            changed = False
            for module_id in sorted(viable):
                missing = [
                    r for r in self._modules[module_id].descriptor.required_modules
                    if r not in viable
                ]
                if missing:
                    viable.discard(module_id)
                    dormant[module_id] = f"required module(s) not booted: {', '.join(missing)}"
                    changed = True
        for module_id in viable:
            if dormant.get(module_id, "").startswith("required module"):
                del dormant[module_id]
        return viable

    def _exclusivity_losers(self, viable: set[str]) -> dict[str, str]:
        order = {module_id: i for i, module_id in enumerate(self._modules)}
        groups: dict[str, list[str]] = {}
        for module_id in viable:
            group = self._modules[module_id].descriptor.exclusive_group
            if group:
                groups.setdefault(group, []).append(module_id)

        losers: dict[str, str] = {}
        for group, members in groups.items():
            winner = min(
                members,
                key=lambda m: (self._modules[m].descriptor.exclusive_priority, order[m]),
            )
            for member in members:
                if member != winner:
                    losers[member] = f"exclusive group {group!r} won by {winner!r}"
        return losers

    def _boot_order(self, viable: set[str]) -> list[str]:
        """Topological order: required siblings first, then registration order."""
        ordered: list[str] = []
        placed: set[str] = set()
        pending = [m for m in self._modules if m in viable]
        while pending:
            progressed = False
            for module_id in list(pending):
                requires = self._modules[module_id].descriptor.required_modules
                if all(r in placed for r in requires):
                    ordered.append(module_id)
                    placed.add(module_id)
                    pending.remove(module_id)
                    progressed = True
            if not progressed:
                # Requirement cycle: boot the remainder in registration order
                logger.warning("module_requirement_cycle", modules=pending)
                ordered.extend(pending)
                break
        return ordered

    def __len__(self) -> int:
        return len(self._modules)

    def __contains__(self, module_id: str) -> bool:
        return module_id in self._modules


# ── Module-level singleton ──────────────────────────────────────────────────

_registry: ModuleRegistry | None = None


def get_module_registry() -> ModuleRegistry | None:
    """Application-wide registry, once set_module_registry() has run."""
    return _registry


def set_module_registry(registry: ModuleRegistry | None) -> None:
    global _registry
    _registry = registry
