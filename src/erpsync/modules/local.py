"""Abstract local store.

The host system (the CMS side) implements this once. Module capability
hooks delegate to it by default, addressing records by a table/collection
name declared in the module descriptor.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.erpsync.core.context import SyncContext


class LocalStore(ABC):
    """Contract for reading and writing local entities."""

    @abstractmethod
    async def load(self, table: str, local_id: str) -> dict[str, Any] | None:
        """Return the record's fields, or None if it does not exist."""
        ...

    @abstractmethod
    async def save(
        self,
        table: str,
        data: dict[str, Any],
        local_id: str | None,
        context: SyncContext,
    ) -> str | int | None:
        """Create (``local_id`` None) or update a record.

        Returns the record's id, or a falsy value on failure.
        """
        ...

    @abstractmethod
    async def delete(self, table: str, local_id: str, context: SyncContext) -> bool:
        """Delete a record. Returns False if it did not exist."""
        ...
