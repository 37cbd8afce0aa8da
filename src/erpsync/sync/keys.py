"""Local identity helpers: composite keys and sync hashes."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any

COMPOSITE_SEPARATOR = ":"


@dataclass(frozen=True)
class CompositeKey:
    """Local identity built from two parts (e.g. order id + line item id).

    Encodes to ``"primary:secondary"`` so it fits the text local id column
    without numeric packing or overflow limits.
    """

    primary: str
    secondary: str

    def __post_init__(self) -> None:
        for part in (self.primary, self.secondary):
            if not part or COMPOSITE_SEPARATOR in part:
                raise ValueError(
                    f"Composite key parts must be non-empty and free of {COMPOSITE_SEPARATOR!r}: "
                    f"{self.primary!r}, {self.secondary!r}"
                )

    @classmethod
    def of(cls, primary: int | str, secondary: int | str) -> CompositeKey:
        return cls(str(primary), str(secondary))

    @classmethod
    def parse(cls, encoded: str) -> CompositeKey:
        """Inverse of ``encode``.

        Raises:
            ValueError: ``encoded`` is not a composite key.
        """
        primary, sep, secondary = encoded.partition(COMPOSITE_SEPARATOR)
        if not sep:
            raise ValueError(f"Not a composite key: {encoded!r}")
        return cls(primary, secondary)

    @staticmethod
    def is_composite(local_id: str) -> bool:
        return COMPOSITE_SEPARATOR in local_id

    def encode(self) -> str:
        return f"{self.primary}{COMPOSITE_SEPARATOR}{self.secondary}"

    def __str__(self) -> str:
        return self.encode()


def compute_sync_hash(values: dict[str, Any]) -> str:
    """Stable sha256 of a field dict, used to detect unchanged records."""
    encoded = json.dumps(values, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def local_data_hash(data: dict[str, Any], id_field: str = "id") -> str:
    """Sync hash of a local record, ignoring its own id field."""
    return compute_sync_hash({k: v for k, v in data.items() if k != id_field})
