"""Re-entrancy guard for remote-originated local writes.

While a pull job writes into the local store, the local store fires the
same events a user edit would. Those events must not enqueue a push back
to the remote. The pull path enters ``applying_remote_change(module_id)``
before touching local data; event sources check
``is_applying_remote_change()`` and bail out.

The flag lives in a ContextVar so concurrent tasks and requests each see
their own value, and is always reset on exit, including on error.
"""

from __future__ import annotations

import contextvars
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass


@dataclass(frozen=True)
class SyncContext:
    """Explicit context handed to local write hooks during a pull."""

    module_id: str
    entity_type: str = ""
    applying_remote: bool = True


_sync_context: contextvars.ContextVar[SyncContext | None] = contextvars.ContextVar(
    "sync_context", default=None
)


def current_sync_context() -> SyncContext | None:
    """Return the active pull context, or None outside a pull."""
    return _sync_context.get()


def is_applying_remote_change(module_id: str | None = None) -> bool:
    """True while a remote change is being applied locally.

    Args:
        module_id: Restrict the check to one module. None matches any module.
    """
    ctx = _sync_context.get()
    if ctx is None or not ctx.applying_remote:
        return False
    return module_id is None or ctx.module_id == module_id


@contextmanager
def applying_remote_change(module_id: str, entity_type: str = "") -> Iterator[SyncContext]:
    """Mark the current task as applying a remote change for ``module_id``."""
    ctx = SyncContext(module_id=module_id, entity_type=entity_type)
    token = _sync_context.set(ctx)
    try:
        yield ctx
    finally:
        _sync_context.reset(token)
