"""Durable sync job queue backed by the sync_jobs table.

Jobs are claimed with a conditional UPDATE (``status = 'pending'`` in the
WHERE clause) and a per-claim token, so two workers can never both own a
job. Acknowledgements only apply while the caller still holds the claim.

Retry policy: transient failures go back to pending with exponential
backoff ``2**attempts * base + jitter``; permanent failures and jobs that
exceed the retry ceiling are dead-lettered.
"""

from __future__ import annotations

import random
import uuid
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update

from src.erpsync.core.database import SessionFactory
from src.erpsync.sync.entity_map import as_utc
from src.erpsync.sync.errors import ErrorType
from src.erpsync.sync.models import SyncJobModel, utcnow
from src.erpsync.sync.schemas import (
    JobStatus,
    LocalId,
    QueueStats,
    SyncAction,
    SyncDirection,
    SyncJob,
    normalize_local_id,
)

logger = structlog.get_logger(__name__)

MAX_ERROR_LENGTH = 2000


def _model_to_job(model: SyncJobModel) -> SyncJob:
    """Convert SyncJobModel to SyncJob schema."""
    return SyncJob(
        id=model.id,
        module=model.module,
        direction=SyncDirection(model.direction),
        entity_type=model.entity_type,
        action=SyncAction(model.action),
        local_id=model.local_id or "",
        remote_id=model.remote_id,
        payload=model.payload or {},
        priority=model.priority,
        status=JobStatus(model.status),
        attempts=model.attempts,
        max_retries=model.max_retries,
        last_error=model.last_error,
        error_type=ErrorType(model.error_type) if model.error_type else None,
        scheduled_at=as_utc(model.scheduled_at),
        claimed_at=as_utc(model.claimed_at),
        claim_token=model.claim_token,
        created_at=as_utc(model.created_at),
        processed_at=as_utc(model.processed_at),
    )


class SyncQueue:
    """Async repository and state machine for sync jobs.

    Args:
        session_factory: Callable yielding AsyncSession instances.
        max_retries: Retry ceiling stamped on new jobs.
        retry_base_seconds: Backoff base; attempt n waits 2**n * base (+ jitter).
        claim_timeout_seconds: Claims older than this are considered abandoned.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        max_retries: int = 3,
        retry_base_seconds: int = 60,
        claim_timeout_seconds: int = 600,
    ) -> None:
        self._session_factory = session_factory
        self._max_retries = max_retries
        self._retry_base = retry_base_seconds
        self._claim_timeout = claim_timeout_seconds

    # ── Producer side ───────────────────────────────────────────────────────

    async def enqueue(
        self,
        module: str,
        entity_type: str,
        action: SyncAction | str,
        local_id: LocalId | None = None,
        remote_id: int | None = None,
        direction: SyncDirection | str = SyncDirection.push,
        payload: dict[str, Any] | None = None,
        priority: int = 5,
        delay_seconds: float = 0,
    ) -> int:
        """Add a job, or refresh the pending job for the same entity.

        A pending job with the same module, direction, entity type and local
        id (or remote id when no local id is given) is updated in place:
        action, payload and priority are replaced and the schedule moves to
        the later of the two. Returns the job id.
        """
        action = SyncAction(action)
        direction = SyncDirection(direction)
        key = normalize_local_id(local_id) or None
        remote_id = remote_id or None
        scheduled_at = utcnow() + timedelta(seconds=delay_seconds)

        async for session in self._session_factory():
            existing = None
            if key or remote_id:
                stmt = select(SyncJobModel).where(
                    SyncJobModel.module == module,
                    SyncJobModel.entity_type == entity_type,
                    SyncJobModel.direction == direction.value,
                    SyncJobModel.status == JobStatus.pending.value,
                )
                if key:
                    stmt = stmt.where(SyncJobModel.local_id == key)
                else:
                    stmt = stmt.where(SyncJobModel.remote_id == remote_id)
                result = await session.execute(stmt.order_by(SyncJobModel.id).limit(1))
                existing = result.scalar_one_or_none()

            if existing is not None:
                existing.action = action.value
                existing.payload = payload
                existing.priority = priority
                if remote_id:
                    existing.remote_id = remote_id
                if scheduled_at > as_utc(existing.scheduled_at):
                    existing.scheduled_at = scheduled_at
                await session.commit()
                logger.debug(
                    "queue.job_coalesced",
                    job_id=existing.id,
                    module=module,
                    entity_type=entity_type,
                    action=action.value,
                )
                return existing.id

            model = SyncJobModel(
                module=module,
                direction=direction.value,
                entity_type=entity_type,
                action=action.value,
                local_id=key,
                remote_id=remote_id,
                payload=payload,
                priority=priority,
                status=JobStatus.pending.value,
                attempts=0,
                max_retries=self._max_retries,
                scheduled_at=scheduled_at,
                created_at=utcnow(),
            )
            session.add(model)
            await session.commit()
            logger.info(
                "queue.job_enqueued",
                job_id=model.id,
                module=module,
                direction=direction.value,
                entity_type=entity_type,
                action=action.value,
                local_id=key,
                remote_id=remote_id,
            )
            return model.id

    # ── Consumer side ───────────────────────────────────────────────────────

    async def claim_batch(self, max_n: int, module: str | None = None) -> list[SyncJob]:
        """Atomically claim up to ``max_n`` due jobs, lowest priority first.

        Abandoned claims (older than the claim timeout) are released first.
        """
        if max_n <= 0:
            return []
        now = utcnow()
        claimed_ids: list[int] = []

        async for session in self._session_factory():
            await self._release_abandoned(session, now)

            stmt = (
                select(SyncJobModel.id)
                .where(
                    SyncJobModel.status == JobStatus.pending.value,
                    SyncJobModel.scheduled_at <= now,
                )
                .order_by(SyncJobModel.priority, SyncJobModel.scheduled_at, SyncJobModel.id)
                .limit(max_n)
            )
            if module is not None:
                stmt = stmt.where(SyncJobModel.module == module)
            candidates = (await session.execute(stmt)).scalars().all()

            for job_id in candidates:
                result = await session.execute(
                    update(SyncJobModel)
                    .where(
                        SyncJobModel.id == job_id,
                        SyncJobModel.status == JobStatus.pending.value,
                    )
                    .values(
                        status=JobStatus.claimed.value,
                        claimed_at=now,
                        claim_token=str(uuid.uuid4()),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed_ids.append(job_id)
            await session.commit()

            if not claimed_ids:
                return []

            rows = await session.execute(
                select(SyncJobModel)
                .where(SyncJobModel.id.in_(claimed_ids))
                .order_by(SyncJobModel.priority, SyncJobModel.scheduled_at, SyncJobModel.id)
            )
            jobs = [_model_to_job(m) for m in rows.scalars().all()]
            logger.debug("queue.batch_claimed", count=len(jobs), module=module)
            return jobs

    async def ack_success(self, job: SyncJob) -> bool:
        """Mark a claimed job succeeded. False if the claim was lost."""
        async for session in self._session_factory():
            result = await session.execute(
                update(SyncJobModel)
                .where(*self._claim_guard(job))
                .values(
                    status=JobStatus.succeeded.value,
                    processed_at=utcnow(),
                    last_error=None,
                    error_type=None,
                    claim_token=None,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount != 1:
                logger.warning("queue.ack_claim_lost", job_id=job.id)
                return False
            return True

    async def ack_failure(
        self,
        job: SyncJob,
        error: str,
        error_type: ErrorType = ErrorType.transient,
        remote_id: int | None = None,
    ) -> JobStatus | None:
        """Record a failed attempt and reschedule or dead-letter the job.

        Args:
            job: The claimed job.
            error: Human-readable failure reason.
            error_type: Transient failures are retried, permanent ones are not.
            remote_id: Remote id created before the failure; stored on the job
                so the retry updates instead of creating a duplicate.

        Returns:
            The job's new status, or None if the claim was lost.
        """
        attempts = job.attempts + 1
        now = utcnow()
        dead = error_type == ErrorType.permanent or attempts > job.max_retries
        values: dict[str, Any] = {
            "attempts": attempts,
            "last_error": error[:MAX_ERROR_LENGTH],
            "error_type": error_type.value,
            "claimed_at": None,
            "claim_token": None,
        }
        if remote_id:
            values["remote_id"] = remote_id
        if dead:
            values["status"] = JobStatus.dead.value
            values["processed_at"] = now
        else:
            values["status"] = JobStatus.pending.value
            values["scheduled_at"] = now + timedelta(seconds=self.backoff_seconds(attempts))

        async for session in self._session_factory():
            result = await session.execute(
                update(SyncJobModel)
                .where(*self._claim_guard(job))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount != 1:
                logger.warning("queue.ack_claim_lost", job_id=job.id)
                return None

        log_kwargs = {
            "job_id": job.id,
            "module": job.module,
            "direction": job.direction.value,
            "entity_type": job.entity_type,
            "action": job.action.value,
            "local_id": job.local_id,
            "remote_id": remote_id or job.remote_id,
            "attempts": attempts,
            "error": error,
            "error_type": error_type.value,
        }
        if dead:
            logger.error("queue.job_dead", payload=job.payload, **log_kwargs)
            return JobStatus.dead
        logger.warning("queue.job_retry_scheduled", scheduled_at=values["scheduled_at"].isoformat(), **log_kwargs)
        return JobStatus.pending

    def backoff_seconds(self, attempts: int) -> float:
        """Delay before retry number ``attempts``: 2**attempts * base + jitter."""
        return (2**attempts) * self._retry_base + random.uniform(0, self._retry_base)

    # ── Admin operations ────────────────────────────────────────────────────

    async def get_job(self, job_id: int) -> SyncJob | None:
        async for session in self._session_factory():
            model = await session.get(SyncJobModel, job_id)
            return _model_to_job(model) if model else None

    async def stats(self) -> QueueStats:
        """Job counts per status."""
        async for session in self._session_factory():
            stmt = select(SyncJobModel.status, func.count()).group_by(SyncJobModel.status)
            result = await session.execute(stmt)
            counts = {status: count for status, count in result.all()}
            return QueueStats(**{s.value: counts.get(s.value, 0) for s in JobStatus})

    async def list_dead(self, limit: int = 50, module: str | None = None) -> list[SyncJob]:
        """Most recently dead-lettered jobs first."""
        async for session in self._session_factory():
            stmt = (
                select(SyncJobModel)
                .where(SyncJobModel.status == JobStatus.dead.value)
                .order_by(SyncJobModel.processed_at.desc(), SyncJobModel.id.desc())
                .limit(limit)
            )
            if module is not None:
                stmt = stmt.where(SyncJobModel.module == module)
            result = await session.execute(stmt)
            return [_model_to_job(m) for m in result.scalars().all()]

    async def retry_dead(self, job_ids: list[int] | None = None) -> int:
        """Move dead jobs back to pending with a fresh retry budget."""
        async for session in self._session_factory():
            stmt = update(SyncJobModel).where(SyncJobModel.status == JobStatus.dead.value)
            if job_ids is not None:
                stmt = stmt.where(SyncJobModel.id.in_(job_ids))
            result = await session.execute(
                stmt.values(
                    status=JobStatus.pending.value,
                    attempts=0,
                    last_error=None,
                    error_type=None,
                    scheduled_at=utcnow(),
                    processed_at=None,
                ).execution_options(synchronize_session=False)
            )
            await session.commit()
            logger.info("queue.dead_jobs_requeued", count=result.rowcount)
            return result.rowcount

    async def cancel(self, job_id: int) -> bool:
        """Delete a job that has not been claimed yet."""
        async for session in self._session_factory():
            result = await session.execute(
                delete(SyncJobModel).where(
                    SyncJobModel.id == job_id,
                    SyncJobModel.status == JobStatus.pending.value,
                )
            )
            await session.commit()
            if result.rowcount:
                logger.info("queue.job_cancelled", job_id=job_id)
            return result.rowcount > 0

    async def cleanup(self, days_old: int = 30) -> int:
        """Purge succeeded and dead jobs processed more than ``days_old`` days ago."""
        cutoff = utcnow() - timedelta(days=days_old)
        async for session in self._session_factory():
            result = await session.execute(
                delete(SyncJobModel).where(
                    SyncJobModel.status.in_([JobStatus.succeeded.value, JobStatus.dead.value]),
                    SyncJobModel.processed_at < cutoff,
                )
            )
            await session.commit()
            logger.info("queue.cleanup", deleted=result.rowcount, days_old=days_old)
            return result.rowcount

    # ── Internals ───────────────────────────────────────────────────────────

    @staticmethod
    def _claim_guard(job: SyncJob) -> tuple:
        return (
            SyncJobModel.id == job.id,
            SyncJobModel.status == JobStatus.claimed.value,
            SyncJobModel.claim_token == job.claim_token,
        )

    async def _release_abandoned(self, session, now: datetime) -> None:
        """Recover jobs whose worker died mid-claim.

        An abandoned claim counts as a failed attempt; jobs already at the
        retry ceiling are dead-lettered instead of released.
        """
        stale_before = now - timedelta(seconds=self._claim_timeout)
        abandoned = (
            SyncJobModel.status == JobStatus.claimed.value,
            SyncJobModel.claimed_at < stale_before,
        )
        dead = await session.execute(
            update(SyncJobModel)
            .where(*abandoned, SyncJobModel.attempts >= SyncJobModel.max_retries)
            .values(
                status=JobStatus.dead.value,
                attempts=SyncJobModel.attempts + 1,
                last_error="Claim expired",
                error_type=ErrorType.transient.value,
                claim_token=None,
                processed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        released = await session.execute(
            update(SyncJobModel)
            .where(*abandoned)
            .values(
                status=JobStatus.pending.value,
                attempts=SyncJobModel.attempts + 1,
                last_error="Claim expired",
                error_type=ErrorType.transient.value,
                claimed_at=None,
                claim_token=None,
                scheduled_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if dead.rowcount or released.rowcount:
            logger.warning(
                "queue.abandoned_claims_recovered",
                released=released.rowcount,
                dead_lettered=dead.rowcount,
            )
