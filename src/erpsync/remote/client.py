"""Abstract remote ERP client.

The sync engine only needs record-level create/read/write/unlink plus a
domain-filtered search. Domains are lists of ``(field, operator, value)``
triples; relational command tuples inside ``values`` are passed through
untouched.

Implementations raise the remote error taxonomy from
``src.erpsync.sync.errors``: RemoteTransientError, RemoteValidationError,
RemoteNotFoundError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

Domain = list[tuple[str, str, Any]]


class RemoteClient(ABC):
    """Contract for a remote ERP backend."""

    @abstractmethod
    async def create(self, model: str, values: dict[str, Any]) -> int:
        """Create a record and return its id."""
        ...

    @abstractmethod
    async def write(self, model: str, ids: list[int], values: dict[str, Any]) -> bool:
        """Update records. Raises RemoteNotFoundError if a record is gone."""
        ...

    @abstractmethod
    async def unlink(self, model: str, ids: list[int]) -> bool:
        """Delete records. Raises RemoteNotFoundError if a record is gone."""
        ...

    @abstractmethod
    async def read(
        self, model: str, ids: list[int], fields: list[str] | None = None
    ) -> list[dict[str, Any]]:
        """Read records. Missing ids are absent from the result."""
        ...

    @abstractmethod
    async def search(
        self,
        model: str,
        domain: Domain,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[int]:
        """Return ids of records matching ``domain``."""
        ...

    async def close(self) -> None:
        """Release transport resources."""
        return None
