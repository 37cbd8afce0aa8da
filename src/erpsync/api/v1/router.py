"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.erpsync.api.v1 import events, health, modules, queue, webhooks

router = APIRouter()

router.include_router(health.router)

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(webhooks.router)
api_router.include_router(events.router)
api_router.include_router(queue.router)
api_router.include_router(modules.router)

router.include_router(api_router)
