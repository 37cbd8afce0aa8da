"""Redis connection pool used for cross-process push locks."""

from __future__ import annotations

import redis.asyncio as aioredis

from src.erpsync.config import get_settings

# ── Module-level Redis pool (lazy init) ─────────────────────────────────────

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis | None:
    """Get or create the Redis client singleton.

    Returns None when REDIS_URL is not configured; callers fall back to
    in-process locking (single worker deployments).
    """
    global _redis_pool
    settings = get_settings()
    if not settings.REDIS_URL:
        return None
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None
