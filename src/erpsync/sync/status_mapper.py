"""Status/value translation between local and remote vocabularies.

Modules keep a static table per field (e.g. local donation status ->
remote ``state``). Hosts can substitute or extend that table at runtime
through a named extension point; the table is re-read through the
extension point on every call so changes take effect immediately.
"""

from __future__ import annotations

from collections.abc import Hashable, Mapping
from typing import Any

import structlog

from src.erpsync.core.extensions import ExtensionRegistry, get_extension_registry

logger = structlog.get_logger(__name__)


class StatusMapper:
    """Resolve values through an overridable static map.

    Args:
        extensions: Registry holding the extension points. Defaults to the
            application-wide registry.
    """

    def __init__(self, extensions: ExtensionRegistry | None = None) -> None:
        self._extensions = extensions or get_extension_registry()

    def effective_map(self, static_map: Mapping[Any, Any], extension_point: str) -> dict[Any, Any]:
        """Return ``static_map`` as seen after the extension point ran."""
        mapped = self._extensions.apply(extension_point, dict(static_map))
        if not isinstance(mapped, Mapping):
            logger.warning(
                "status_mapper.invalid_override",
                extension_point=extension_point,
                returned_type=type(mapped).__name__,
            )
            return dict(static_map)
        return dict(mapped)

    def resolve(
        self,
        value: Any,
        static_map: Mapping[Any, Any],
        extension_point: str,
        default: Any,
    ) -> Any:
        """Translate ``value``; return ``default`` when the map has no entry.

        Never raises: unhashable values simply fall through to ``default``.
        """
        if not isinstance(value, Hashable):
            return default
        return self.effective_map(static_map, extension_point).get(value, default)

    def reverse(
        self,
        value: Any,
        static_map: Mapping[Any, Any],
        extension_point: str,
        default: Any,
    ) -> Any:
        """Translate a remote value back to the local vocabulary.

        When several local values map to the same remote value, the first
        one in map order wins.
        """
        if not isinstance(value, Hashable):
            return default
        for local_value, remote_value in self.effective_map(static_map, extension_point).items():
            if remote_value == value:
                return local_value
        return default
