"""FastAPI dependencies: header authentication and app.state services.

Services are built once in the application lifespan and stored on
app.state; endpoints receive them through these dependencies so tests can
swap in their own instances.
"""

from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, Request, status

from src.erpsync.config import get_settings
from src.erpsync.modules.events import EventSourceTable
from src.erpsync.modules.registry import ModuleRegistry
from src.erpsync.sync.queue import SyncQueue
from src.erpsync.sync.reconciler import Reconciler
from src.erpsync.sync.service import SyncService
from src.erpsync.sync.worker import SyncWorker


def _check_token(supplied: str | None, expected: str, name: str) -> None:
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} is not configured",
        )
    if not supplied or not hmac.compare_digest(supplied, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing token",
        )


async def verify_webhook_token(x_webhook_token: str | None = Header(default=None)) -> None:
    """Reject webhook calls without the shared WEBHOOK_TOKEN."""
    _check_token(x_webhook_token, get_settings().WEBHOOK_TOKEN, "WEBHOOK_TOKEN")


async def verify_admin_token(x_admin_token: str | None = Header(default=None)) -> None:
    """Reject queue administration calls without ADMIN_TOKEN."""
    _check_token(x_admin_token, get_settings().ADMIN_TOKEN, "ADMIN_TOKEN")


def _from_state(request: Request, attr: str, label: str):
    value = getattr(request.app.state, attr, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return value


def get_sync_service(request: Request) -> SyncService:
    return _from_state(request, "sync_service", "Sync service")


def get_sync_queue(request: Request) -> SyncQueue:
    return _from_state(request, "sync_queue", "Sync queue")


def get_registry(request: Request) -> ModuleRegistry:
    return _from_state(request, "module_registry", "Module registry")


def get_reconciler(request: Request) -> Reconciler:
    return _from_state(request, "reconciler", "Reconciler")


def get_worker(request: Request) -> SyncWorker | None:
    """The background worker, if one is running. Optional for endpoints."""
    return getattr(request.app.state, "sync_worker", None)


def get_event_table(request: Request) -> EventSourceTable:
    return _from_state(request, "event_table", "Event table")
