"""
Memory processing queue: the typed facade over a JobStore.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from seneca.config.logging import get_logger
from seneca.config.settings import Settings
from seneca.v1.queue.models import JobStatus
from seneca.v1.queue.schemas import (
    PROCESS_MEMORY,
    EnqueueOptions,
    JobPayload,
    JobRecord,
    ProcessingOptions,
    QueueHealth,
    QueueStats,
    priority_to_number,
)
from seneca.v1.queue.store import JobStore

logger = get_logger(__name__)

# Health thresholds: failure rate over all jobs, and queued backlog size
CRITICAL_FAILURE_RATE = 0.2
CRITICAL_BACKLOG = 100
DEGRADED_FAILURE_RATE = 0.1
DEGRADED_BACKLOG = 50


def classify_health(stats: QueueStats) -> QueueHealth:
    """Derive queue health from failure rate and queued backlog."""
    failure_rate = stats.failure_rate
    backlog = stats.pending_jobs

    if failure_rate > CRITICAL_FAILURE_RATE or backlog > CRITICAL_BACKLOG:
        return QueueHealth.CRITICAL
    if failure_rate > DEGRADED_FAILURE_RATE or backlog > DEGRADED_BACKLOG:
        return QueueHealth.DEGRADED
    return QueueHealth.HEALTHY


class MemoryQueue:
    """
    Queue of memory enrichment jobs.

    Every method that touches the store may raise StoreError. Callers treat
    it as transient: the worker loop logs it and polls again later.
    """

    def __init__(self, store: JobStore, settings: Settings):
        self.store = store
        self.settings = settings

    async def enqueue(
        self,
        memory_id: str,
        family_id: str,
        options: EnqueueOptions | None = None,
    ) -> UUID:
        """
        Enqueue enrichment of a memory.

        Args:
            memory_id: Memory to enrich
            family_id: Family owning the memory
            options: Priority hint, processing option overrides, scheduling

        Returns:
            The new job id
        """
        options = options or EnqueueOptions()
        priority = priority_to_number(options.priority)
        processing_options = ProcessingOptions(**(options.processing_options or {}))

        payload = JobPayload(
            memory_id=str(memory_id),
            family_id=str(family_id),
            priority=priority,
            processing_options=processing_options,
        )
        job = JobRecord(
            type=PROCESS_MEMORY,
            payload=payload.model_dump(),
            status=JobStatus.QUEUED,
            priority=priority,
            attempts=0,
            max_attempts=options.max_attempts or self.settings.queue_max_attempts,
            scheduled_for=options.scheduled_for,
        )

        job_id = await self.store.insert(job)
        logger.info(
            "Job enqueued",
            job_id=str(job_id),
            memory_id=str(memory_id),
            family_id=str(family_id),
            priority=priority,
        )
        return job_id

    async def claim_next(self, worker_id: str) -> JobRecord | None:
        """Atomically claim the best eligible job; None when the queue is empty."""
        job = await self.store.claim_and_lock(worker_id)
        if job is not None:
            logger.info(
                "Job claimed",
                job_id=str(job.id),
                memory_id=job.memory_id,
                attempts=job.attempts,
                max_attempts=job.max_attempts,
            )
        return job

    async def complete(self, job_id: UUID) -> None:
        """Mark a job completed. Completing a completed job is a no-op."""
        changed = await self.store.set_completed(job_id)
        if not changed:
            logger.debug("Job already completed", job_id=str(job_id))

    async def fail(self, job_id: UUID, message: str) -> JobStatus | None:
        """Record a failure; the store re-queues or fails the job terminally."""
        status = await self.store.set_failed(job_id, message)
        if status is None:
            logger.warning(
                "Job failure ignored; job is not processing",
                job_id=str(job_id),
                error=message,
            )
        elif status == JobStatus.FAILED:
            logger.error("Job exhausted its attempts", job_id=str(job_id), error=message)
        else:
            logger.info("Job re-queued for retry", job_id=str(job_id), error=message)
        return status

    async def retry_failed_job(self, job_id: UUID) -> bool:
        """Reset a terminally failed job to queued; False if it is not failed."""
        retried = await self.store.reset_failed(job_id)
        if retried:
            logger.info("Job retried", job_id=str(job_id))
        return retried

    async def retry_all_failed(self, limit: int = 50) -> tuple[int, int]:
        """Retry up to `limit` failed jobs; returns (retried, seen)."""
        failed = await self.get_failed_jobs(limit)
        retried = 0
        for job in failed:
            if await self.retry_failed_job(job.id):
                retried += 1
        return retried, len(failed)

    def _stuck_cutoff(self) -> datetime:
        threshold = timedelta(minutes=self.settings.queue_stuck_threshold_minutes)
        return datetime.now(UTC) - threshold

    async def cleanup_stuck_jobs(self) -> int:
        """Fail processing jobs whose lock is older than the stuck threshold."""
        minutes = self.settings.queue_stuck_threshold_minutes
        count = await self.store.force_fail_stale(
            self._stuck_cutoff(),
            f"stuck timeout: locked for more than {minutes} minutes",
        )
        if count:
            logger.warning("Reclaimed stuck jobs", count=count, threshold_minutes=minutes)
        return count

    async def list_stuck_jobs(self) -> list[JobRecord]:
        return await self.store.find_stale(self._stuck_cutoff())

    async def get_stats(self) -> QueueStats:
        counts = await self.store.counts_by_status()
        stats = QueueStats.from_counts(counts)
        stats.queue_health = classify_health(stats)
        return stats

    async def prune_old(self, max_age_days: int | None = None) -> int:
        """Delete completed and failed jobs created more than `max_age_days` ago."""
        days = max_age_days if max_age_days is not None else self.settings.queue_retention_days
        cutoff = datetime.now(UTC) - timedelta(days=days)
        count = await self.store.delete_terminal_older_than(cutoff)
        if count:
            logger.info("Pruned old jobs", deleted_count=count, retention_days=days)
        return count

    async def get_job(self, job_id: UUID) -> JobRecord | None:
        return await self.store.get(job_id)

    async def get_failed_jobs(self, limit: int = 50) -> list[JobRecord]:
        return await self.store.list_by_status(JobStatus.FAILED, limit)
