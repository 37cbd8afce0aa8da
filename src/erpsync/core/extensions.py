"""Named extension points for overriding values at runtime.

An extension point is a string name with an ordered list of filter
callables. ``apply(name, value)`` threads ``value`` through every filter
(lowest priority first) and returns the result. Hosts use these to
substitute status maps, field mappings, or outgoing payloads without
subclassing a module.

A module-level singleton is provided via get_extension_registry().
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

Filter = Callable[..., Any]


class ExtensionRegistry:
    """Registry of filter callables keyed by extension point name."""

    def __init__(self) -> None:
        self._filters: dict[str, list[tuple[int, int, Filter]]] = {}
        self._seq = 0

    def add(self, name: str, fn: Filter, priority: int = 10) -> None:
        """Attach ``fn`` to extension point ``name``.

        Filters with equal priority run in registration order.
        """
        self._seq += 1
        entries = self._filters.setdefault(name, [])
        entries.append((priority, self._seq, fn))
        entries.sort(key=lambda e: (e[0], e[1]))

    def remove(self, name: str, fn: Filter) -> bool:
        """Detach ``fn`` from ``name``. Returns True if it was attached."""
        entries = self._filters.get(name, [])
        kept = [e for e in entries if e[2] is not fn]
        if len(kept) == len(entries):
            return False
        self._filters[name] = kept
        return True

    def has(self, name: str) -> bool:
        return bool(self._filters.get(name))

    def apply(self, name: str, value: Any, *args: Any) -> Any:
        """Pass ``value`` through every filter on ``name`` and return the result."""
        for _, _, fn in self._filters.get(name, []):
            value = fn(value, *args)
        return value

    def clear(self) -> None:
        self._filters.clear()


# ── Module-level singleton ──────────────────────────────────────────────────

_registry: ExtensionRegistry | None = None


def get_extension_registry() -> ExtensionRegistry:
    """Get or create the application-wide extension registry."""
    global _registry
    if _registry is None:
        _registry = ExtensionRegistry()
    return _registry
