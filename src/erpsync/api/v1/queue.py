"""Queue administration: stats, dead letters, retries and cancellation."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel

from src.erpsync.api.deps import get_sync_queue, get_worker, verify_admin_token
from src.erpsync.config import get_settings
from src.erpsync.sync.queue import SyncQueue
from src.erpsync.sync.schemas import QueueRunReport, QueueStats, SyncJob
from src.erpsync.sync.worker import SyncWorker

router = APIRouter(
    prefix="/queue",
    tags=["queue"],
    dependencies=[Depends(verify_admin_token)],
)


class RetryRequest(BaseModel):
    job_ids: list[int] | None = None


class CountResponse(BaseModel):
    count: int


@router.get("/stats", response_model=QueueStats)
async def queue_stats(queue: SyncQueue = Depends(get_sync_queue)) -> QueueStats:
    return await queue.stats()


@router.get("/dead", response_model=list[SyncJob])
async def list_dead_jobs(
    limit: int = Query(default=50, ge=1, le=500),
    module: str | None = None,
    queue: SyncQueue = Depends(get_sync_queue),
) -> list[SyncJob]:
    return await queue.list_dead(limit=limit, module=module)


@router.get("/jobs/{job_id}", response_model=SyncJob)
async def get_job(job_id: int, queue: SyncQueue = Depends(get_sync_queue)) -> SyncJob:
    job = await queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


@router.post("/retry-dead", response_model=CountResponse)
async def retry_dead_jobs(
    body: RetryRequest | None = None,
    queue: SyncQueue = Depends(get_sync_queue),
    worker: SyncWorker | None = Depends(get_worker),
) -> CountResponse:
    """Move dead jobs (all, or the listed ids) back to pending with attempts reset."""
    count = await queue.retry_dead(body.job_ids if body else None)
    if count and worker is not None:
        worker.wake()
    return CountResponse(count=count)


@router.delete("/jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_job(job_id: int, queue: SyncQueue = Depends(get_sync_queue)) -> Response:
    """Cancel a pending job. Claimed or finished jobs cannot be cancelled."""
    if not await queue.cancel(job_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No pending job with that id",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/process", response_model=QueueRunReport)
async def process_now(
    module: str | None = None,
    worker: SyncWorker | None = Depends(get_worker),
) -> QueueRunReport:
    """Run one queue pass in the request. Useful for cron-driven deployments."""
    if worker is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync worker not initialized",
        )
    return await worker.process_queue(module)


@router.post("/cleanup", response_model=CountResponse)
async def cleanup_jobs(
    days_old: int | None = Query(default=None, ge=1),
    queue: SyncQueue = Depends(get_sync_queue),
) -> CountResponse:
    """Delete succeeded and dead jobs older than ``days_old`` days (default SYNC_RETENTION_DAYS)."""
    return CountResponse(count=await queue.cleanup(days_old or get_settings().SYNC_RETENTION_DAYS))
