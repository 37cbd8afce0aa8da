"""Tests for per-entity push locks."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import LockError

from src.erpsync.sync.errors import LockUnavailableError
from src.erpsync.sync.locks import PushLockManager


def _make_redis(acquired: bool = True, release_error: Exception | None = None):
    redis_lock = MagicMock()
    redis_lock.acquire = AsyncMock(return_value=acquired)
    redis_lock.release = AsyncMock(side_effect=release_error)
    client = MagicMock()
    client.lock.return_value = redis_lock
    return client, redis_lock


class TestInProcess:
    async def test_same_entity_is_serialised(self):
        locks = PushLockManager()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("crm", "contact", "7"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    async def test_different_entities_do_not_block(self):
        locks = PushLockManager()

        async with locks.hold("crm", "contact", "7"):
            await asyncio.wait_for(self._enter(locks, "8"), timeout=1)

    @staticmethod
    async def _enter(locks: PushLockManager, local_id: str) -> None:
        async with locks.hold("crm", "contact", local_id):
            pass

    async def test_lock_table_is_emptied(self):
        locks = PushLockManager()

        async with locks.hold("crm", "contact", "7"):
            pass

        assert locks._locks == {}


class TestRedis:
    async def test_acquires_and_releases_redis_lock(self):
        client, redis_lock = _make_redis()
        locks = PushLockManager(client, ttl_seconds=30, wait_seconds=2)

        async with locks.hold("crm", "contact", "7"):
            redis_lock.release.assert_not_awaited()

        client.lock.assert_called_once_with("erpsync:push:crm:contact:7", timeout=30, blocking_timeout=2)
        redis_lock.release.assert_awaited_once()

    async def test_busy_lock_raises_transient_error(self):
        client, _ = _make_redis(acquired=False)
        locks = PushLockManager(client)

        with pytest.raises(LockUnavailableError):
            async with locks.hold("crm", "contact", "7"):
                pass

    async def test_expired_lock_on_release_is_tolerated(self):
        client, _ = _make_redis(release_error=LockError("not owned"))
        locks = PushLockManager(client)

        async with locks.hold("crm", "contact", "7"):
            pass
