"""Event-source registration table.

Booted modules subscribe callbacks to local event names (``contact.saved``,
``donation.status_changed``...). The host emits those events from its own
save/delete paths. Every callback is wrapped so a crash is logged at
critical level and never propagates into the host's request.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

Callback = Callable[..., Any | Awaitable[Any]]


@dataclass(frozen=True)
class EventSource:
    """A module's declared subscription.

    ``setting_key`` names a boolean module setting; the subscription is only
    registered at boot when that setting is on.
    """

    event: str
    callback: Callback
    setting_key: str | None = None


@dataclass(frozen=True)
class _Registration:
    module_id: str
    event: str
    callback: Callback


def safe_callback(module_id: str, event: str, callback: Callback) -> Callable[..., Awaitable[None]]:
    """Wrap ``callback`` so it never raises to the event emitter."""

    async def _wrapped(*args: Any, **kwargs: Any) -> None:
        try:
            result = callback(*args, **kwargs)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.critical(
                "events.callback_crashed",
                module=module_id,
                event_name=event,
                callback=getattr(callback, "__qualname__", repr(callback)),
                exc_info=True,
            )

    return _wrapped


class EventSourceTable:
    """Explicit table of event name -> wrapped module callbacks."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[tuple[_Registration, Callable[..., Awaitable[None]]]]] = {}

    def register(self, module_id: str, event: str, callback: Callback) -> None:
        registration = _Registration(module_id=module_id, event=event, callback=callback)
        self._handlers.setdefault(event, []).append(
            (registration, safe_callback(module_id, event, callback))
        )
        logger.debug("events.registered", module=module_id, event_name=event)

    def unregister_module(self, module_id: str) -> int:
        """Drop every subscription owned by ``module_id``. Returns the count removed."""
        removed = 0
        for event in list(self._handlers):
            kept = [h for h in self._handlers[event] if h[0].module_id != module_id]
            removed += len(self._handlers[event]) - len(kept)
            if kept:
                self._handlers[event] = kept
            else:
                del self._handlers[event]
        return removed

    def subscribers(self, event: str) -> list[str]:
        """Module ids subscribed to ``event``, in registration order."""
        return [reg.module_id for reg, _ in self._handlers.get(event, [])]

    @property
    def events(self) -> list[str]:
        return sorted(self._handlers)

    async def emit(self, event: str, *args: Any, **kwargs: Any) -> int:
        """Invoke every subscriber of ``event``. Returns the number invoked."""
        handlers = list(self._handlers.get(event, []))
        for _, wrapped in handlers:
            await wrapped(*args, **kwargs)
        return len(handlers)

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return sum(len(h) for h in self._handlers.values())
