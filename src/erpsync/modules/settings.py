"""Runtime module settings.

Each module declares its options as SettingSpec entries; this store holds
the enabled flag and any overridden values. Values fall back to the
declared defaults, so a freshly installed module behaves sensibly before
anyone touches its settings.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

_CASTS = {"bool": bool, "int": int, "float": float, "str": str}


@dataclass(frozen=True)
class SettingSpec:
    """One enumerated module option."""

    key: str
    default: Any
    kind: str = "bool"  # bool | int | float | str
    label: str = ""

    def coerce(self, value: Any) -> Any:
        if self.kind == "bool" and isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return _CASTS[self.kind](value)


class ModuleSettingsStore:
    """In-process store for module enablement and option overrides.

    Args:
        enabled: Module ids enabled at startup.
    """

    def __init__(self, enabled: Iterable[str] = ()) -> None:
        self._enabled: set[str] = set(enabled)
        self._values: dict[str, dict[str, Any]] = {}

    def is_enabled(self, module_id: str) -> bool:
        return module_id in self._enabled

    def enable(self, module_id: str) -> None:
        self._enabled.add(module_id)

    def disable(self, module_id: str) -> None:
        self._enabled.discard(module_id)

    def set_value(self, module_id: str, key: str, value: Any) -> None:
        self._values.setdefault(module_id, {})[key] = value
        logger.info("module_settings.updated", module=module_id, key=key, value=value)

    def get_settings(self, module_id: str, specs: Iterable[SettingSpec]) -> dict[str, Any]:
        """Declared defaults overlaid with stored values, coerced to their kinds.

        Stored values for keys the module does not declare are ignored.
        """
        stored = self._values.get(module_id, {})
        resolved: dict[str, Any] = {}
        for spec in specs:
            if spec.key not in stored:
                resolved[spec.key] = spec.default
                continue
            try:
                resolved[spec.key] = spec.coerce(stored[spec.key])
            except (TypeError, ValueError):
                logger.warning(
                    "module_settings.invalid_value",
                    module=module_id,
                    key=spec.key,
                    value=stored[spec.key],
                )
                resolved[spec.key] = spec.default
        return resolved
