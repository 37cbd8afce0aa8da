"""Prometheus metrics and Sentry integration for the sync pipeline.

Provides:
- sync job counters/histograms recorded by the worker
- queue depth gauge refreshed from queue stats
- init_sentry(): optional error reporting
- get_metrics_response(): FastAPI handler body for /metrics
"""

from __future__ import annotations

import sentry_sdk
from prometheus_client import REGISTRY, Counter, Gauge, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.responses import Response

# ── Sync Metrics ─────────────────────────────────────────────────────────────

sync_jobs_total = Counter(
    "erpsync_jobs_total",
    "Sync jobs processed",
    ["module", "direction", "outcome"],
)

sync_job_duration_seconds = Histogram(
    "erpsync_job_duration_seconds",
    "Sync job processing time in seconds",
    ["module", "direction"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

sync_queue_depth = Gauge(
    "erpsync_queue_depth",
    "Sync jobs by status",
    ["status"],
)

circuit_breaker_open = Gauge(
    "erpsync_circuit_breaker_open",
    "1 while the remote circuit breaker is open",
)


def record_job(module: str, direction: str, outcome: str, duration: float) -> None:
    """Record one processed job."""
    sync_jobs_total.labels(module=module, direction=direction, outcome=outcome).inc()
    sync_job_duration_seconds.labels(module=module, direction=direction).observe(duration)


def record_queue_stats(stats: dict[str, int]) -> None:
    """Publish per-status queue counts."""
    for status, count in stats.items():
        sync_queue_depth.labels(status=status).set(count)


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
