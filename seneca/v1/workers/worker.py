"""
Background worker that claims and executes memory processing jobs.
"""

import asyncio
import os
import socket
import time
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Awaitable, Callable
from uuid import UUID

from pydantic import BaseModel, Field

from seneca.config.logging import bind_worker_context, get_logger
from seneca.config.settings import Settings
from seneca.v1.core.exceptions import ProcessingError
from seneca.v1.core.registries import ProcessorRegistry
from seneca.v1.queue.schemas import JobRecord, QueueHealth, QueueStats
from seneca.v1.queue.service import MemoryQueue
from seneca.v1.workers.analytics import (
    AnalyticsSink,
    ErrorReporter,
    JobOutcome,
    LogAnalyticsSink,
)
from seneca.v1.workers.backoff import (
    BackoffStrategy,
    ConstantBackoff,
    ExponentialBackoff,
    NoBackoff,
)
from seneca.v1.workers.lifecycle import install_process_guards

logger = get_logger(__name__)

# How long stop() waits for abandoned jobs to acknowledge cancellation
CANCEL_GRACE_SECONDS = 1.0
# Ceiling for the error backoff
MAX_ERROR_BACKOFF_SECONDS = 60.0


class WorkerStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    STOPPING = "stopping"
    STOPPED = "stopped"


class WorkerConfig(BaseModel):
    """Per-worker tuning. Durations are in seconds."""

    max_concurrent_jobs: int = Field(default=3, ge=1)
    processing_timeout: float = Field(default=300.0, gt=0)
    retry_delay: float = Field(default=5.0, ge=0)
    poll_interval: float = Field(default=2.0, ge=0)
    busy_poll_interval: float = Field(default=1.0, ge=0)
    health_check_interval: float = Field(default=30.0, gt=0)
    shutdown_timeout: float = Field(default=60.0, ge=0)
    install_signal_handlers: bool = False

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "WorkerConfig":
        values = {
            "max_concurrent_jobs": settings.worker_max_concurrent_jobs,
            "processing_timeout": settings.worker_processing_timeout_s,
            "retry_delay": settings.worker_retry_delay_s,
            "poll_interval": settings.worker_poll_interval_s,
            "busy_poll_interval": settings.worker_busy_poll_interval_s,
            "health_check_interval": settings.worker_health_check_interval_s,
            "shutdown_timeout": settings.worker_shutdown_timeout_s,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class WorkerStats(BaseModel):
    worker_id: str
    name: str
    status: WorkerStatus
    jobs_processed: int
    jobs_failed: int
    current_jobs: int
    uptime_seconds: float
    last_activity: datetime


@dataclass(slots=True)
class _InFlight:
    job: JobRecord
    task: asyncio.Task
    started_at: float


class BackgroundWorker:
    """
    Polls the queue and runs claimed jobs concurrently.

    Features:
    - Non-blocking dispatch bounded by max_concurrent_jobs
    - Per-job timeout that cancels the enrichment call
    - Periodic health check that logs stats and reclaims stuck jobs
    - Bounded graceful shutdown; jobs still running when the bound elapses
      are cancelled without write-back and later reclaimed as stuck
    """

    def __init__(
        self,
        name: str,
        queue: MemoryQueue,
        processors: ProcessorRegistry,
        config: WorkerConfig | None = None,
        analytics: AnalyticsSink | None = None,
        error_reporter: ErrorReporter | None = None,
        idle_backoff: BackoffStrategy | None = None,
        busy_backoff: BackoffStrategy | None = None,
        error_backoff: BackoffStrategy | None = None,
    ):
        self.name = name
        self.worker_id = f"seneca-{name}-{socket.gethostname()}-{os.getpid()}"
        self.queue = queue
        self.processors = processors
        self.config = config or WorkerConfig()
        self.analytics = analytics or LogAnalyticsSink()
        self.error_reporter = error_reporter or ErrorReporter()

        self.idle_backoff = idle_backoff or ConstantBackoff(self.config.poll_interval)
        self.busy_backoff = busy_backoff or ConstantBackoff(self.config.busy_poll_interval)
        if error_backoff is not None:
            self.error_backoff = error_backoff
        elif self.config.retry_delay > 0:
            self.error_backoff = ExponentialBackoff(
                base=self.config.retry_delay,
                maximum=max(self.config.retry_delay, MAX_ERROR_BACKOFF_SECONDS),
            )
        else:
            self.error_backoff = NoBackoff()

        self._running = False
        self._status = WorkerStatus.IDLE
        self._in_flight: dict[UUID, _InFlight] = {}
        self._jobs_processed = 0
        self._jobs_failed = 0
        self._started_at: float | None = None
        self._last_activity = datetime.now(UTC)

        self._wakeup = asyncio.Event()
        self._poll_task: asyncio.Task | None = None
        self._health_task: asyncio.Task | None = None
        self._uninstall_guards: Callable[[], None] | None = None
        self._stop_task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def status(self) -> WorkerStatus:
        return self._status

    async def start(self) -> None:
        """Start the poll loop and the health check. No-op when running."""
        if self._running:
            logger.warning("Worker is already running", worker_id=self.worker_id)
            return

        self._running = True
        self._status = WorkerStatus.IDLE
        self._started_at = time.monotonic()
        self._stop_task = None
        self._wakeup.clear()

        logger.info(
            "Starting background worker",
            worker_id=self.worker_id,
            config=self.config.model_dump(),
        )

        if self.config.install_signal_handlers:
            self._uninstall_guards = install_process_guards(
                self.stop, self.error_reporter
            )

        self._health_task = asyncio.create_task(
            self._health_check_loop(), name=f"{self.worker_id}.health"
        )
        self._poll_task = asyncio.create_task(
            self._poll_loop(), name=f"{self.worker_id}.poll"
        )

    async def stop(self) -> None:
        """
        Stop polling and drain in-flight jobs for up to shutdown_timeout.

        Concurrent callers all wait on the same shutdown.
        """
        if self._stop_task is None:
            if not self._running:
                return
            self._stop_task = asyncio.create_task(
                self._shutdown(), name=f"{self.worker_id}.stop"
            )
        await asyncio.shield(self._stop_task)

    async def _shutdown(self) -> None:
        logger.info("Stopping background worker", worker_id=self.worker_id)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.shutdown_timeout

        self._status = WorkerStatus.STOPPING
        self._running = False
        self._wakeup.set()

        if self._health_task is not None:
            self._health_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._health_task
            self._health_task = None

        # A claim in progress finishes so the job is dispatched, not orphaned
        if self._poll_task is not None:
            await asyncio.wait({self._poll_task}, timeout=max(0.0, deadline - loop.time()))
            if not self._poll_task.done():
                self._poll_task.cancel()
                with suppress(asyncio.CancelledError):
                    await self._poll_task
            self._poll_task = None

        await self._drain(deadline)

        if self._uninstall_guards is not None:
            self._uninstall_guards()
            self._uninstall_guards = None

        self._status = WorkerStatus.STOPPED
        logger.info(
            "Worker stopped",
            worker_id=self.worker_id,
            jobs_processed=self._jobs_processed,
            jobs_failed=self._jobs_failed,
        )

    async def _drain(self, deadline: float) -> None:
        loop = asyncio.get_running_loop()
        while self._in_flight:
            remaining = deadline - loop.time()
            if remaining <= 0:
                stragglers = [f.task for f in self._in_flight.values()]
                logger.warning(
                    "Shutdown timeout reached, abandoning jobs",
                    worker_id=self.worker_id,
                    job_count=len(stragglers),
                    job_ids=[str(job_id) for job_id in self._in_flight],
                )
                for task in stragglers:
                    task.cancel()
                await asyncio.wait(stragglers, timeout=CANCEL_GRACE_SECONDS)
                return

            logger.info(
                "Waiting for jobs to complete",
                worker_id=self.worker_id,
                job_count=len(self._in_flight),
                remaining_seconds=round(remaining, 2),
            )
            await asyncio.wait(
                [f.task for f in self._in_flight.values()],
                timeout=min(remaining, 1.0),
            )

    async def _pause(self, delay: float) -> None:
        """Sleep for `delay`, waking early on stop or when a job slot frees up."""
        self._wakeup.clear()
        if not self._running:
            return
        if delay <= 0:
            await asyncio.sleep(0)
            return
        with suppress(TimeoutError):
            await asyncio.wait_for(self._wakeup.wait(), timeout=delay)

    async def _poll_loop(self) -> None:
        """Claim jobs while running; never exits on a single failure."""
        bind_worker_context(self.worker_id)

        while self._running:
            try:
                if len(self._in_flight) >= self.config.max_concurrent_jobs:
                    await self._pause(self.busy_backoff.next_delay())
                    continue

                job = await self.queue.claim_next(self.worker_id)
                self.error_backoff.reset()

                if job is None:
                    await self._pause(self.idle_backoff.next_delay())
                    continue

                self.idle_backoff.reset()
                self._dispatch(job)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.error_reporter.report(
                    e, worker_id=self.worker_id, component="job_processing_loop"
                )
                await self._pause(self.error_backoff.next_delay())

    def _dispatch(self, job: JobRecord) -> None:
        task = asyncio.create_task(
            self._run_job(job), name=f"{self.worker_id}.job.{job.id}"
        )
        self._track(job, task)

    def _track(self, job: JobRecord, task: asyncio.Task) -> None:
        self._in_flight[job.id] = _InFlight(
            job=job, task=task, started_at=time.monotonic()
        )
        # Once stopping, status only moves forward to stopped
        if self._status == WorkerStatus.IDLE:
            self._status = WorkerStatus.PROCESSING
        self._last_activity = datetime.now(UTC)

    async def process_once(self) -> JobRecord | None:
        """
        Claim one job and run it to completion in the calling task.

        Used for cron-driven processing without a poll loop. Returns the
        job as stored afterwards, or None when nothing is eligible.
        """
        job = await self.queue.claim_next(self.worker_id)
        if job is None:
            return None

        self._track(job, asyncio.current_task())
        await self._run_job(job)
        return await self.queue.get_job(job.id)

    async def _run_job(self, job: JobRecord) -> None:
        started_at = time.monotonic()
        logger.info(
            "Processing job",
            job_id=str(job.id),
            memory_id=job.memory_id,
            attempt=job.attempts,
        )

        try:
            await self._execute(job)
        except asyncio.CancelledError:
            logger.warning("Job abandoned in-process", job_id=str(job.id))
            raise
        except Exception as e:
            await self._handle_failure(job, e, started_at)
        else:
            await self._handle_success(job, started_at)
        finally:
            self._in_flight.pop(job.id, None)
            self._last_activity = datetime.now(UTC)
            if not self._in_flight and self._status == WorkerStatus.PROCESSING:
                self._status = WorkerStatus.IDLE
            self._wakeup.set()

    async def _execute(self, job: JobRecord) -> None:
        """Run the job's processor, bounded by processing_timeout."""
        try:
            processor = self.processors.get(job.type)
        except KeyError as e:
            raise ProcessingError(f"No processor registered for job type: {job.type}") from e

        memory_id = job.memory_id
        if not memory_id:
            raise ProcessingError(f"Job {job.id} payload has no memory_id")

        timeout = self.config.processing_timeout
        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                await processor.process(memory_id)
        except TimeoutError as e:
            if not deadline.expired():
                raise
            raise ProcessingError(
                f"Job {job.id} timed out after {timeout:g}s", timed_out=True
            ) from e

    def _outcome(
        self, job: JobRecord, started_at: float, error: str | None = None
    ) -> JobOutcome:
        return JobOutcome(
            job_id=str(job.id),
            memory_id=job.memory_id,
            family_id=job.family_id,
            duration_ms=int((time.monotonic() - started_at) * 1000),
            worker_id=self.worker_id,
            error=error,
        )

    async def _handle_success(self, job: JobRecord, started_at: float) -> None:
        try:
            await self.queue.complete(job.id)
        except Exception as e:
            # The lock stays held; the stuck-job sweep will reclaim it
            self.error_reporter.report(
                e, worker_id=self.worker_id, job_id=str(job.id), component="complete_job"
            )
            return

        self._jobs_processed += 1
        outcome = self._outcome(job, started_at)
        logger.info(
            "Job completed successfully",
            job_id=outcome.job_id,
            duration_ms=outcome.duration_ms,
        )
        await self._record(self.analytics.record_success, outcome)

    async def _handle_failure(
        self, job: JobRecord, error: Exception, started_at: float
    ) -> None:
        message = str(error) or error.__class__.__name__
        outcome = self._outcome(job, started_at, error=message)
        logger.error(
            "Failed to process job",
            job_id=outcome.job_id,
            memory_id=outcome.memory_id,
            error=message,
            duration_ms=outcome.duration_ms,
        )

        try:
            await self.queue.fail(job.id, message)
        except Exception as e:
            self.error_reporter.report(
                e, worker_id=self.worker_id, job_id=str(job.id), component="fail_job"
            )

        self._jobs_failed += 1
        self.error_reporter.report(
            error,
            worker_id=self.worker_id,
            job_id=outcome.job_id,
            memory_id=outcome.memory_id,
            processing_time_ms=outcome.duration_ms,
        )
        await self._record(self.analytics.record_failure, outcome)

    async def _record(
        self, record: Callable[[JobOutcome], Awaitable[None]], outcome: JobOutcome
    ) -> None:
        try:
            await record(outcome)
        except Exception as e:
            logger.error(
                "Failed to record job outcome", job_id=outcome.job_id, error=str(e)
            )

    async def _health_check_loop(self) -> None:
        bind_worker_context(self.worker_id)
        while self._running:
            await asyncio.sleep(self.config.health_check_interval)
            try:
                await self.perform_health_check()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Health check failed", error=str(e))

    async def perform_health_check(self) -> QueueStats | None:
        """Log worker stats, warn on critical queue health, reclaim stuck jobs."""
        stats = self.get_stats()
        logger.info("Worker health check", **stats.model_dump(mode="json"))

        queue_stats = None
        try:
            queue_stats = await self.queue.get_stats()
            if queue_stats.queue_health == QueueHealth.CRITICAL:
                logger.warning(
                    "Queue health is critical", **queue_stats.model_dump(mode="json")
                )
        except Exception as e:
            logger.error("Failed to read queue stats", error=str(e))

        try:
            cleaned = await self.queue.cleanup_stuck_jobs()
            if cleaned > 0:
                logger.info("Cleaned up stuck jobs", cleaned_jobs=cleaned)
        except Exception as e:
            logger.error("Failed to clean up stuck jobs", error=str(e))

        return queue_stats

    def get_stats(self) -> WorkerStats:
        uptime = time.monotonic() - self._started_at if self._started_at else 0.0
        return WorkerStats(
            worker_id=self.worker_id,
            name=self.name,
            status=self._status,
            jobs_processed=self._jobs_processed,
            jobs_failed=self._jobs_failed,
            current_jobs=len(self._in_flight),
            uptime_seconds=round(uptime, 3),
            last_activity=self._last_activity,
        )

    def get_config(self) -> WorkerConfig:
        return self.config.model_copy()

    def is_healthy(self) -> bool:
        return self._running and self._status != WorkerStatus.STOPPED

    def get_current_jobs(self) -> list[JobRecord]:
        return [f.job.model_copy() for f in self._in_flight.values()]
