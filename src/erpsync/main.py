"""FastAPI application factory.

Creates the app with logging middleware, Sentry, the v1 API router, and a
lifespan that assembles the sync runtime onto app.state and runs the queue
worker in the background.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import fields

import structlog
from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from src.erpsync.api.middleware.logging import LoggingMiddleware
from src.erpsync.api.v1.router import router as v1_router
from src.erpsync.config import get_settings
from src.erpsync.core.database import close_db, init_db
from src.erpsync.core.logging import configure_structlog
from src.erpsync.core.monitoring import get_metrics_response, init_sentry
from src.erpsync.core.redis import close_redis
from src.erpsync.runtime import build_runtime

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and the sync runtime; tear down on shutdown."""
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    runtime = build_runtime(settings)
    for item in fields(runtime):
        setattr(app.state, item.name, getattr(runtime, item.name))

    worker_task: asyncio.Task | None = None
    if settings.SYNC_WORKER_ENABLED:
        worker_task = asyncio.create_task(runtime.sync_worker.run())

    logger.info(
        "app.started",
        environment=settings.ENVIRONMENT.value,
        modules=runtime.module_registry.booted_ids,
        worker=settings.SYNC_WORKER_ENABLED,
        dry_run=settings.SYNC_DRY_RUN,
    )

    yield

    if worker_task is not None:
        runtime.sync_worker.stop()
        with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
            await asyncio.wait_for(worker_task, timeout=settings.SYNC_JOB_TIMEOUT_SECONDS)
    await runtime.close()
    await close_redis()
    await close_db()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="ERP Sync API",
        version="0.1.0",
        description="Bidirectional sync between a local content store and a remote ERP",
        lifespan=lifespan,
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
