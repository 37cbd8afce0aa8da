"""Queue worker: claims batches and drives the sync engine.

One pass (process_queue) keeps claiming batches until the queue is
drained, the wall-clock budget is spent, the iteration cap is hit, or the
circuit breaker opens. Each job is bounded by a timeout; a timeout is a
transient failure like any other. Batch outcomes feed the breaker.

run() repeats passes on an interval until stop() is called.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import structlog

from src.erpsync.core.monitoring import record_job, record_queue_stats
from src.erpsync.sync.circuit_breaker import CircuitBreaker
from src.erpsync.sync.engine import SyncEngine
from src.erpsync.sync.errors import ErrorType
from src.erpsync.sync.queue import SyncQueue
from src.erpsync.sync.schemas import (
    JobStatus,
    QueueRunReport,
    SyncDirection,
    SyncJob,
    SyncResult,
)

logger = structlog.get_logger(__name__)


class SyncWorker:
    """Consumes the sync queue.

    Args:
        queue: Job queue to claim from.
        engine: Engine that executes each job.
        breaker: Remote circuit breaker.
        batch_size: Jobs claimed per batch.
        job_timeout: Seconds allowed per job.
        time_limit: Wall-clock seconds per pass.
        max_iterations: Maximum batches per pass.
        poll_interval: Seconds between passes in run().
        dry_run: Log and acknowledge jobs without touching either system.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        queue: SyncQueue,
        engine: SyncEngine,
        breaker: CircuitBreaker | None = None,
        batch_size: int = 50,
        job_timeout: float = 60.0,
        time_limit: float = 55.0,
        max_iterations: int = 20,
        poll_interval: float = 60.0,
        dry_run: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._queue = queue
        self._engine = engine
        self._breaker = breaker or CircuitBreaker()
        self._batch_size = batch_size
        self._job_timeout = job_timeout
        self._time_limit = time_limit
        self._max_iterations = max_iterations
        self._poll_interval = poll_interval
        self._dry_run = dry_run
        self._clock = clock
        self._running = False
        self._wakeup = asyncio.Event()

    async def process_queue(self, module: str | None = None) -> QueueRunReport:
        """Run one pass over the queue.

        Args:
            module: Restrict claiming to one module's jobs.

        Returns:
            QueueRunReport with per-outcome counts and why the pass stopped.
        """
        report = QueueRunReport(dry_run=self._dry_run)
        started = self._clock()

        for _ in range(self._max_iterations):
            if self._clock() - started >= self._time_limit:
                report.stopped_reason = "time_limit"
                break
            if not self._breaker.is_available():
                report.stopped_reason = "circuit_open"
                logger.warning("worker.circuit_open_skip")
                break

            jobs = await self._queue.claim_batch(self._batch_size, module)
            if not jobs:
                report.stopped_reason = "drained"
                break

            report.batches += 1
            report.claimed += len(jobs)
            transient_failures = 0
            for job in jobs:
                result = await self._process_one(job, report)
                if not result.succeeded and result.error_type != ErrorType.permanent:
                    transient_failures += 1
            self._breaker.record_batch(len(jobs) - transient_failures, transient_failures)
        else:
            report.stopped_reason = "iteration_limit"

        if report.claimed:
            logger.info("worker.pass_complete", **report.model_dump())
        return report

    async def _process_one(self, job: SyncJob, report: QueueRunReport) -> SyncResult:
        begin = time.perf_counter()

        if self._dry_run:
            logger.info(
                "worker.dry_run_job",
                job_id=job.id,
                module=job.module,
                direction=job.direction.value,
                entity_type=job.entity_type,
                action=job.action.value,
                local_id=job.local_id,
                remote_id=job.remote_id,
            )
            await self._queue.ack_success(job)
            report.succeeded += 1
            record_job(job.module, job.direction.value, "dry_run", time.perf_counter() - begin)
            return SyncResult.ok("dry run")

        try:
            result = await asyncio.wait_for(self._engine.process_job(job), timeout=self._job_timeout)
        except asyncio.TimeoutError:
            logger.warning("worker.job_timeout", job_id=job.id, timeout=self._job_timeout)
            result = SyncResult.fail(
                f"Job timed out after {self._job_timeout}s", ErrorType.transient
            )

        if result.succeeded:
            await self._queue.ack_success(job)
            outcome = "skipped" if result.skipped else "succeeded"
            if result.skipped:
                report.skipped += 1
            else:
                report.succeeded += 1
        else:
            remote_id = None
            if job.direction == SyncDirection.push and isinstance(result.entity_id, int):
                remote_id = result.entity_id
            status = await self._queue.ack_failure(
                job,
                result.message,
                result.error_type or ErrorType.transient,
                remote_id=remote_id,
            )
            outcome = "dead" if status == JobStatus.dead else "retry"
            if status == JobStatus.dead:
                report.dead += 1
            else:
                report.retried += 1

        record_job(job.module, job.direction.value, outcome, time.perf_counter() - begin)
        return result

    async def run(self) -> None:
        """Process the queue repeatedly until stop() is called."""
        self._running = True
        logger.info("worker.started", poll_interval=self._poll_interval, dry_run=self._dry_run)
        while self._running:
            try:
                await self.process_queue()
                record_queue_stats((await self._queue.stats()).model_dump())
            except Exception:
                logger.exception("worker.pass_failed")
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()
        logger.info("worker.stopped")

    def wake(self) -> None:
        """Start the next pass now instead of waiting for the interval."""
        self._wakeup.set()

    def stop(self) -> None:
        """Signal the run loop to stop after the current pass."""
        self._running = False
        self._wakeup.set()
