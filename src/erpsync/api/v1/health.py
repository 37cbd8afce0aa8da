"""Health check endpoints.

/health is a liveness check with no dependencies. /health/ready verifies
the database and, when configured, Redis, and reports the remote circuit
breaker state.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.erpsync.config import get_settings
from src.erpsync.core.database import get_engine
from src.erpsync.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    checks: dict = {"database": "ok", "redis": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    redis = get_redis_pool()
    if redis is None:
        checks["redis"] = "disabled"
    else:
        try:
            if not await redis.ping():
                checks["redis"] = "error"
                checks["redis_error"] = "PING did not return PONG"
        except Exception as e:
            checks["redis"] = "error"
            checks["redis_error"] = str(e)

    breaker = getattr(request.app.state, "circuit_breaker", None)
    if breaker is not None:
        checks["remote_circuit"] = breaker.state.value
    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: 200 when the database (and Redis, if used) answer, else 503.

    An open circuit breaker is reported but does not fail readiness; the
    service still accepts webhooks while the remote is down.
    """
    checks = await _check_dependencies(request)
    healthy = checks["database"] == "ok" and checks["redis"] in ("ok", "disabled")
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if healthy else "degraded", "checks": checks},
    )
