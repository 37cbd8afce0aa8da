"""Per-entity push locks.

The engine re-checks the mapping and creates the remote record while
holding the lock for (module, entity type, local id), so two workers
racing on the same entity cannot both create it. Within one process an
asyncio.Lock serialises tasks; with Redis configured a Redis lock extends
the guarantee across worker processes.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import structlog
from redis.exceptions import LockError

from src.erpsync.sync.errors import LockUnavailableError

logger = structlog.get_logger(__name__)


class PushLockManager:
    """Hands out per-entity locks.

    Args:
        redis_client: Optional Redis client for cross-process locking.
        ttl_seconds: Redis lock expiry, bounds how long a crashed worker blocks others.
        wait_seconds: How long to wait for the Redis lock before giving up.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis | None = None,
        ttl_seconds: int = 30,
        wait_seconds: float = 5.0,
    ) -> None:
        self._redis = redis_client
        self._ttl = ttl_seconds
        self._wait = wait_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @staticmethod
    def key(module: str, entity_type: str, local_id: str) -> str:
        return f"erpsync:push:{module}:{entity_type}:{local_id}"

    @asynccontextmanager
    async def hold(self, module: str, entity_type: str, local_id: str) -> AsyncIterator[None]:
        """Hold the push lock for one entity.

        Raises:
            LockUnavailableError: The Redis lock could not be acquired in time.
        """
        key = self.key(module, entity_type, local_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                if self._redis is None:
                    yield
                else:
                    async with self._distributed(key):
                        yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)

    @asynccontextmanager
    async def _distributed(self, key: str) -> AsyncIterator[None]:
        redis_lock = self._redis.lock(key, timeout=self._ttl, blocking_timeout=self._wait)
        if not await redis_lock.acquire():
            logger.warning("push_lock.timeout", key=key)
            raise LockUnavailableError(f"Push lock busy for {key}, will retry")
        try:
            yield
        finally:
            try:
                await redis_lock.release()
            except LockError:
                logger.warning("push_lock.expired_before_release", key=key, ttl=self._ttl)
