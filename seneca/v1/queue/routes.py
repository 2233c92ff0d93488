"""
Operator endpoints for queue inspection and maintenance.

Enqueueing is done in-process through MemoryQueue.enqueue (or the CLI),
not over HTTP. POST /queue/process-next runs one job inline for cron-driven
deployments that have no long-running worker.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from seneca.config.logging import get_logger
from seneca.v1.core.exceptions import (
    NotFoundError,
    ProcessingError,
    StoreError,
    create_success_response,
)
from seneca.v1.queue.models import JobStatus
from seneca.v1.queue.schemas import JobActionResponse, MaintenanceResponse
from seneca.v1.queue.service import MemoryQueue
from seneca.v1.workers.worker import BackgroundWorker

logger = get_logger(__name__)
router = APIRouter(prefix="/queue", tags=["queue"])


def get_queue(request: Request) -> MemoryQueue:
    """Queue built by the application lifespan."""
    queue = getattr(request.app.state, "queue", None)
    if queue is None:
        raise StoreError("Job queue is not initialised", operation="startup")
    return queue


QueueDep = Depends(get_queue)


def get_inline_worker(request: Request) -> BackgroundWorker:
    """Worker used to run single jobs on request."""
    worker = getattr(request.app.state, "inline_worker", None)
    if worker is None:
        raise StoreError("Inline worker is not initialised", operation="startup")
    return worker


@router.get("/stats", response_model=dict)
async def queue_stats(queue: MemoryQueue = QueueDep) -> dict[str, Any]:
    """Job counts per status and derived queue health."""
    stats = await queue.get_stats()
    data = stats.model_dump(mode="json")
    data["failure_rate"] = round(stats.failure_rate, 4)
    return create_success_response(data=data)


@router.get("/jobs/failed", response_model=dict)
async def list_failed_jobs(
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    queue: MemoryQueue = QueueDep,
) -> dict[str, Any]:
    jobs = await queue.get_failed_jobs(limit)
    return create_success_response(
        data={
            "jobs": [job.model_dump(mode="json") for job in jobs],
            "count": len(jobs),
        }
    )


@router.get("/jobs/stuck", response_model=dict)
async def list_stuck_jobs(queue: MemoryQueue = QueueDep) -> dict[str, Any]:
    """Processing jobs locked for longer than the stuck threshold."""
    jobs = await queue.list_stuck_jobs()
    return create_success_response(
        data={
            "jobs": [job.model_dump(mode="json") for job in jobs],
            "count": len(jobs),
            "threshold_minutes": queue.settings.queue_stuck_threshold_minutes,
        }
    )


@router.get("/jobs/{job_id}", response_model=dict)
async def get_job(job_id: UUID, queue: MemoryQueue = QueueDep) -> dict[str, Any]:
    job = await queue.get_job(job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found", details={"job_id": str(job_id)})
    return create_success_response(data=job.model_dump(mode="json"))


@router.post("/jobs/retry-failed", response_model=dict)
async def retry_failed_jobs(
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum jobs to retry"),
    queue: MemoryQueue = QueueDep,
) -> dict[str, Any]:
    """Reset up to `limit` failed jobs back to queued."""
    retried, seen = await queue.retry_all_failed(limit)
    logger.info("Failed jobs retried via API", retried=retried, seen=seen)
    return create_success_response(
        data={"retried": retried, "seen": seen},
        message=f"Retried {retried} of {seen} failed jobs",
    )


@router.post("/jobs/{job_id}/retry", response_model=dict)
async def retry_job(job_id: UUID, queue: MemoryQueue = QueueDep) -> dict[str, Any]:
    job = await queue.get_job(job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found", details={"job_id": str(job_id)})

    if job.status != JobStatus.FAILED or not await queue.retry_failed_job(job_id):
        raise HTTPException(
            status_code=409,
            detail=f"Job {job_id} is {job.status.value}; only failed jobs can be retried",
        )

    result = JobActionResponse(success_ids=[job_id], failed_ids=[])
    return create_success_response(data=result.model_dump(mode="json"))


@router.post("/maintenance", response_model=dict)
async def run_maintenance(
    retention_days: int | None = Query(
        default=None, ge=1, description="Override the configured retention"
    ),
    queue: MemoryQueue = QueueDep,
) -> dict[str, Any]:
    """Reclaim stuck jobs, then prune old completed and failed jobs."""
    days = retention_days or queue.settings.queue_retention_days
    reclaimed = await queue.cleanup_stuck_jobs()
    pruned = await queue.prune_old(days)

    result = MaintenanceResponse(
        stuck_reclaimed=reclaimed, pruned=pruned, retention_days=days
    )
    return create_success_response(data=result.model_dump())


@router.post("/process-next", response_model=dict)
async def process_next_job(
    worker: BackgroundWorker = Depends(get_inline_worker),
) -> dict[str, Any]:
    """Claim the next eligible job and run it to completion."""
    job = await worker.process_once()
    if job is None:
        return create_success_response(
            data={"processed_job": None}, message="No jobs to process"
        )

    processed = job.model_dump(mode="json")
    if job.status != JobStatus.COMPLETED:
        raise ProcessingError(
            "Job processing failed",
            details={"processed_job": processed},
        )

    logger.info("Job processed via API", job_id=str(job.id))
    return create_success_response(
        data={"processed_job": processed}, message="Job processed successfully"
    )
