"""Tests for SyncWorker batch processing."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from src.erpsync.sync.circuit_breaker import CircuitBreaker, CircuitState
from src.erpsync.sync.errors import RemoteTransientError, RemoteValidationError
from src.erpsync.sync.schemas import JobStatus, SyncJob, SyncResult
from src.erpsync.sync.worker import SyncWorker


class _SlowEngine:
    """Engine stand-in whose jobs never finish in time."""

    async def process_job(self, job: SyncJob) -> SyncResult:
        await asyncio.sleep(5)
        return SyncResult.ok()


def _make_worker(queue, engine, **overrides) -> SyncWorker:
    options = dict(batch_size=10, job_timeout=5.0, time_limit=30.0, max_iterations=5)
    options.update(overrides)
    return SyncWorker(queue, engine, **options)


@pytest_asyncio.fixture
async def item_job(queue, local_store) -> int:
    local_store.put("items", 42, {"name": "Widget"})
    return await queue.enqueue("x", "item", "create", local_id=42)


# ── Outcomes ─────────────────────────────────────────────────────────────────


class TestProcessQueue:
    async def test_drains_queue(self, queue, engine, item_job, entity_map):
        report = await _make_worker(queue, engine).process_queue()

        assert report.stopped_reason == "drained"
        assert report.batches == 1
        assert report.claimed == report.succeeded == 1
        assert (await queue.get_job(item_job)).status == JobStatus.succeeded
        assert await entity_map.get_remote_id("x", "item", 42) == 900

    async def test_empty_queue(self, queue, engine):
        report = await _make_worker(queue, engine).process_queue()

        assert report.stopped_reason == "drained"
        assert report.claimed == 0

    async def test_missing_local_entity_counts_as_skipped(self, queue, engine):
        await queue.enqueue("x", "item", "update", local_id=7)

        report = await _make_worker(queue, engine).process_queue()

        assert report.skipped == 1

    async def test_transient_failure_is_rescheduled(self, queue, engine, remote, item_job):
        remote.errors["create"] = RemoteTransientError("HTTP 502 from remote")

        report = await _make_worker(queue, engine).process_queue()

        assert report.retried == 1
        job = await queue.get_job(item_job)
        assert job.status == JobStatus.pending
        assert job.attempts == 1
        assert "502" in job.last_error

    async def test_permanent_failure_is_dead_lettered(self, queue, engine, remote, item_job):
        remote.errors["create"] = RemoteValidationError("Missing required field")

        report = await _make_worker(queue, engine).process_queue()

        assert report.dead == 1
        assert (await queue.get_job(item_job)).status == JobStatus.dead

    async def test_module_filter(self, queue, engine, item_job):
        report = await _make_worker(queue, engine).process_queue(module="other")

        assert report.claimed == 0
        assert (await queue.get_job(item_job)).status == JobStatus.pending

    async def test_dry_run_touches_neither_system(self, queue, engine, remote, entity_map, item_job):
        report = await _make_worker(queue, engine, dry_run=True).process_queue()

        assert report.dry_run
        assert report.succeeded == 1
        assert remote.calls == []
        assert await entity_map.get_remote_id("x", "item", 42) is None

    async def test_job_timeout_is_transient(self, queue, item_job):
        worker = _make_worker(queue, _SlowEngine(), job_timeout=0.01)

        report = await worker.process_queue()

        assert report.retried == 1
        job = await queue.get_job(item_job)
        assert job.status == JobStatus.pending
        assert "timed out" in job.last_error


# ── Pass limits ──────────────────────────────────────────────────────────────


class TestPassLimits:
    async def test_iteration_limit(self, queue, engine, local_store):
        for local_id in (1, 2):
            local_store.put("items", local_id, {"name": f"Item {local_id}"})
            await queue.enqueue("x", "item", "create", local_id=local_id)

        report = await _make_worker(queue, engine, batch_size=1, max_iterations=1).process_queue()

        assert report.stopped_reason == "iteration_limit"
        assert report.claimed == 1
        assert (await queue.stats()).pending == 1

    async def test_time_limit(self, queue, engine, item_job):
        ticks = iter([0.0, 100.0])
        worker = _make_worker(queue, engine, time_limit=30.0, clock=lambda: next(ticks))

        report = await worker.process_queue()

        assert report.stopped_reason == "time_limit"
        assert report.claimed == 0

    async def test_open_circuit_stops_pass(self, queue, engine, remote, local_store):
        breaker = CircuitBreaker(failure_threshold=1)
        for local_id in (1, 2):
            local_store.put("items", local_id, {"name": f"Item {local_id}"})
            await queue.enqueue("x", "item", "create", local_id=local_id)
        remote.errors["create"] = RemoteTransientError("connection refused")
        worker = _make_worker(queue, engine, breaker=breaker, batch_size=1)

        report = await worker.process_queue()

        assert report.stopped_reason == "circuit_open"
        assert report.claimed == 1
        assert breaker.state == CircuitState.open

    async def test_permanent_failures_do_not_trip_breaker(self, queue, engine, remote, item_job):
        breaker = CircuitBreaker(failure_threshold=1)
        remote.errors["create"] = RemoteValidationError("bad data")

        await _make_worker(queue, engine, breaker=breaker).process_queue()

        assert breaker.state == CircuitState.closed


# ── Run loop ─────────────────────────────────────────────────────────────────


class TestRunLoop:
    async def test_wake_and_stop(self, queue, engine, local_store):
        worker = _make_worker(queue, engine, poll_interval=30.0)
        task = asyncio.create_task(worker.run())
        await asyncio.sleep(0)

        local_store.put("items", 42, {"name": "Widget"})
        job_id = await queue.enqueue("x", "item", "create", local_id=42)
        worker.wake()

        async def _until_done() -> None:
            while (await queue.get_job(job_id)).status != JobStatus.succeeded:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_until_done(), timeout=2)
        worker.stop()
        await asyncio.wait_for(task, timeout=2)
        assert task.done()
