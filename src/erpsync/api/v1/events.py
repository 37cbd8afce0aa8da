"""Local change events forwarded by the host.

The host posts ``{"args": [...], "kwargs": {...}}`` to
``/api/v1/events/<event>`` whenever something a module may care about
happens (a user registered, an order changed). Subscribed module
callbacks run in the request; they only enqueue jobs. Events the host
raises while applying a pull carry ``X-Sync-Origin: <module>`` and are
dispatched with that module's re-entrancy guard set, so they never queue a
push back to the remote.
"""

from __future__ import annotations

from contextlib import nullcontext
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field

from src.erpsync.api.deps import get_event_table, verify_webhook_token
from src.erpsync.core.context import applying_remote_change
from src.erpsync.modules.events import EventSourceTable

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/events",
    tags=["events"],
    dependencies=[Depends(verify_webhook_token)],
)


class LocalEvent(BaseModel):
    args: list[Any] = Field(default_factory=list)
    kwargs: dict[str, Any] = Field(default_factory=dict)


class EventDispatched(BaseModel):
    event: str
    handlers: int


@router.post("/{event}", response_model=EventDispatched)
async def dispatch_event(
    event: str,
    body: LocalEvent,
    request: Request,
    table: EventSourceTable = Depends(get_event_table),
    x_sync_origin: str | None = Header(default=None),
) -> EventDispatched:
    # An event echoing a pull write-back names the module that wrote it
    scope = applying_remote_change(x_sync_origin) if x_sync_origin else nullcontext()
    with scope:
        handlers = await table.emit(event, *body.args, **body.kwargs)
    if not handlers:
        logger.debug("events.no_subscribers", event_name=event)
    worker = getattr(request.app.state, "sync_worker", None)
    if handlers and worker is not None:
        worker.wake()
    return EventDispatched(event=event, handlers=handlers)
