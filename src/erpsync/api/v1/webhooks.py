"""Inbound webhooks: remote-side changes queued as pull jobs.

The remote ERP (or a relay in front of it) posts one event per changed
record. Events are validated against the booted module, queued, and the
worker is nudged; the actual local write happens asynchronously.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from src.erpsync.api.deps import get_registry, get_sync_service, get_worker, verify_webhook_token
from src.erpsync.modules.registry import ModuleRegistry
from src.erpsync.sync.schemas import SyncAction
from src.erpsync.sync.service import SyncService
from src.erpsync.sync.worker import SyncWorker

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/webhooks",
    tags=["webhooks"],
    dependencies=[Depends(verify_webhook_token)],
)


class WebhookEvent(BaseModel):
    """One remote change notification."""

    entity_type: str
    action: SyncAction
    remote_id: int = Field(gt=0)
    local_id: str | None = None
    payload: dict[str, Any] | None = None
    priority: int = Field(default=5, ge=1, le=10)


class WebhookAccepted(BaseModel):
    status: str
    job_id: int | None = None
    reason: str | None = None


@router.post("/{module_id}", status_code=status.HTTP_202_ACCEPTED, response_model=WebhookAccepted)
async def receive_webhook(
    module_id: str,
    event: WebhookEvent,
    registry: ModuleRegistry = Depends(get_registry),
    service: SyncService = Depends(get_sync_service),
    worker: SyncWorker | None = Depends(get_worker),
) -> WebhookAccepted:
    """Queue a pull job for a remote change.

    Raises:
        HTTPException(404): Module unknown or not booted.
        HTTPException(422): Module has no such entity type.
    """
    module = registry.get_booted(module_id)
    if module is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Module {module_id!r} is not active",
        )
    if event.entity_type not in module.entity_types:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Module {module_id!r} has no entity type {event.entity_type!r}",
        )
    if not module.should_pull(event.entity_type):
        logger.info("webhook.pull_disabled", module=module_id, entity_type=event.entity_type)
        return WebhookAccepted(status="ignored", reason="pull disabled")

    job_id = await service.enqueue_pull(
        module_id,
        event.entity_type,
        event.action,
        event.remote_id,
        local_id=event.local_id,
        payload=event.payload,
        priority=event.priority,
    )
    logger.info(
        "webhook.queued",
        module=module_id,
        entity_type=event.entity_type,
        action=event.action.value,
        remote_id=event.remote_id,
        job_id=job_id,
    )
    if worker is not None:
        worker.wake()
    return WebhookAccepted(status="queued", job_id=job_id)
