"""Helpers for remote field value shapes.

Many-to-one values come back from the remote as ``[id, "Display Name"]``
(or ``False`` when empty); one-to-many/many-to-many writes use command
tuples such as ``(0, 0, {...})`` for "create a linked record".
"""

from __future__ import annotations

from typing import Any


def many2one_to_id(value: Any) -> int | None:
    if isinstance(value, (list, tuple)) and value:
        return int(value[0])
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return None


def many2one_to_name(value: Any) -> str | None:
    if isinstance(value, (list, tuple)) and len(value) > 1:
        return str(value[1])
    return None


def create_line(values: dict[str, Any]) -> tuple[int, int, dict[str, Any]]:
    """Command tuple creating one linked record."""
    return (0, 0, values)


def clean_remote_value(value: Any) -> Any:
    """Remote ``False`` means empty for non-boolean fields."""
    return None if value is False else value
