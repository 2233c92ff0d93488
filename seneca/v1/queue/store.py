"""
Job store implementations.

The store is the single source of truth for job state and the only place
where workers need mutual exclusion: claiming a job is always one atomic
conditional statement, never a read followed by a write.

Three implementations share the JobStore protocol:
- NativeJobStore calls the SQL functions installed by the queue migration
- ManualJobStore issues the equivalent statements through SQLAlchemy
- InMemoryJobStore keeps rows in a dict for local development and tests

create_job_store() picks one at startup.
"""

import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import and_, case, delete, func, or_, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from seneca.config.logging import get_logger
from seneca.config.settings import Settings, StoreBackend
from seneca.infra.database import Database
from seneca.v1.core.exceptions import NotFoundError, StoreError
from seneca.v1.queue.models import TERMINAL_STATUSES, JobStatus, QueueJob
from seneca.v1.queue.schemas import JobRecord

logger = get_logger(__name__)

NATIVE_FUNCTIONS = (
    "get_next_job_and_lock",
    "handle_job_failure",
    "cleanup_stuck_jobs",
    "get_job_statistics",
)


class JobStore(Protocol):
    """Durable job table primitives consumed by MemoryQueue."""

    async def insert(self, job: JobRecord) -> UUID: ...

    async def get(self, job_id: UUID) -> JobRecord | None: ...

    async def claim_and_lock(self, worker_id: str) -> JobRecord | None: ...

    async def set_completed(self, job_id: UUID) -> bool: ...

    async def set_failed(self, job_id: UUID, message: str) -> JobStatus | None: ...

    async def reset_failed(self, job_id: UUID) -> bool: ...

    async def find_stale(self, locked_before: datetime) -> list[JobRecord]: ...

    async def force_fail(self, job_id: UUID, reason: str) -> bool: ...

    async def force_fail_stale(self, locked_before: datetime, reason: str) -> int: ...

    async def counts_by_status(self) -> dict[JobStatus, int]: ...

    async def list_by_status(self, status: JobStatus, limit: int = 50) -> list[JobRecord]: ...

    async def delete_terminal_older_than(self, cutoff: datetime) -> int: ...


def _eligible_clause():
    return and_(
        QueueJob.status == JobStatus.QUEUED.value,
        QueueJob.locked_by.is_(None),
        or_(QueueJob.scheduled_for.is_(None), QueueJob.scheduled_for <= func.now()),
    )


def _to_record(row: QueueJob | None) -> JobRecord | None:
    return JobRecord.model_validate(row) if row is not None else None


class ManualJobStore:
    """SQLAlchemy statement-backed store for PostgreSQL."""

    def __init__(self, database: Database):
        self.database = database

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Open a session and translate driver failures into StoreError."""
        async with self.database.SessionLocal() as session:
            try:
                yield session
            except (SQLAlchemyError, OSError) as e:
                await session.rollback()
                logger.error(
                    "Job store operation failed", operation=operation, error=str(e)
                )
                raise StoreError(
                    f"Job store operation failed: {operation}", operation=operation
                ) from e

    async def insert(self, job: JobRecord) -> UUID:
        row = QueueJob(
            id=job.id,
            type=job.type,
            payload=job.payload,
            status=job.status.value,
            priority=job.priority,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            scheduled_for=job.scheduled_for,
            locked_by=job.locked_by,
            locked_at=job.locked_at,
            error_message=job.error_message,
            completed_at=job.completed_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )
        async with self._session("insert") as session:
            session.add(row)
            await session.commit()
        return job.id

    async def get(self, job_id: UUID) -> JobRecord | None:
        async with self._session("get") as session:
            return _to_record(await session.get(QueueJob, job_id))

    async def claim_and_lock(self, worker_id: str) -> JobRecord | None:
        """
        Claim the best eligible job in one conditional UPDATE.

        The candidate subquery skips rows locked by concurrent claimers and the
        outer WHERE re-checks eligibility, so two workers can never both win.
        """
        candidate = (
            select(QueueJob.id)
            .where(_eligible_clause())
            .order_by(QueueJob.priority.desc(), QueueJob.created_at.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            update(QueueJob)
            .where(
                QueueJob.id == candidate,
                QueueJob.status == JobStatus.QUEUED.value,
                QueueJob.locked_by.is_(None),
            )
            .values(
                status=JobStatus.PROCESSING.value,
                locked_by=worker_id,
                locked_at=func.now(),
                attempts=QueueJob.attempts + 1,
                updated_at=func.now(),
            )
            .returning(QueueJob)
            .execution_options(synchronize_session=False)
        )
        async with self._session("claim_and_lock") as session:
            result = await session.execute(stmt)
            job = _to_record(result.scalars().first())
            await session.commit()
        return job

    async def set_completed(self, job_id: UUID) -> bool:
        stmt = (
            update(QueueJob)
            .where(QueueJob.id == job_id, QueueJob.status != JobStatus.COMPLETED.value)
            .values(
                status=JobStatus.COMPLETED.value,
                completed_at=func.now(),
                locked_by=None,
                locked_at=None,
                error_message=None,
                updated_at=func.now(),
            )
            .returning(QueueJob.id)
            .execution_options(synchronize_session=False)
        )
        async with self._session("set_completed") as session:
            result = await session.execute(stmt)
            changed = result.scalar_one_or_none() is not None
            await session.commit()
            if not changed and await session.get(QueueJob, job_id) is None:
                raise NotFoundError(f"Job {job_id} not found", {"job_id": str(job_id)})
        return changed

    async def set_failed(self, job_id: UUID, message: str) -> JobStatus | None:
        # Retry-or-exhaust decided inside the UPDATE against the row's own counters
        stmt = (
            update(QueueJob)
            .where(QueueJob.id == job_id, QueueJob.status == JobStatus.PROCESSING.value)
            .values(
                status=case(
                    (QueueJob.attempts >= QueueJob.max_attempts, JobStatus.FAILED.value),
                    else_=JobStatus.QUEUED.value,
                ),
                error_message=message,
                locked_by=None,
                locked_at=None,
                updated_at=func.now(),
            )
            .returning(QueueJob.status)
            .execution_options(synchronize_session=False)
        )
        async with self._session("set_failed") as session:
            result = await session.execute(stmt)
            status = result.scalar_one_or_none()
            await session.commit()
        return JobStatus(status) if status is not None else None

    async def reset_failed(self, job_id: UUID) -> bool:
        stmt = (
            update(QueueJob)
            .where(QueueJob.id == job_id, QueueJob.status == JobStatus.FAILED.value)
            .values(
                status=JobStatus.QUEUED.value,
                attempts=0,
                error_message=None,
                locked_by=None,
                locked_at=None,
                scheduled_for=None,
                completed_at=None,
                updated_at=func.now(),
            )
            .returning(QueueJob.id)
            .execution_options(synchronize_session=False)
        )
        async with self._session("reset_failed") as session:
            result = await session.execute(stmt)
            reset = result.scalar_one_or_none() is not None
            await session.commit()
        return reset

    async def find_stale(self, locked_before: datetime) -> list[JobRecord]:
        stmt = (
            select(QueueJob)
            .where(
                QueueJob.status == JobStatus.PROCESSING.value,
                QueueJob.locked_at < locked_before,
            )
            .order_by(QueueJob.locked_at.asc())
        )
        async with self._session("find_stale") as session:
            result = await session.execute(stmt)
            return [JobRecord.model_validate(row) for row in result.scalars().all()]

    async def force_fail(self, job_id: UUID, reason: str) -> bool:
        stmt = (
            update(QueueJob)
            .where(QueueJob.id == job_id, QueueJob.status == JobStatus.PROCESSING.value)
            .values(
                status=JobStatus.FAILED.value,
                error_message=reason,
                locked_by=None,
                locked_at=None,
                updated_at=func.now(),
            )
            .returning(QueueJob.id)
            .execution_options(synchronize_session=False)
        )
        async with self._session("force_fail") as session:
            result = await session.execute(stmt)
            failed = result.scalar_one_or_none() is not None
            await session.commit()
        return failed

    async def force_fail_stale(self, locked_before: datetime, reason: str) -> int:
        stmt = (
            update(QueueJob)
            .where(
                QueueJob.status == JobStatus.PROCESSING.value,
                QueueJob.locked_at.is_not(None),
                QueueJob.locked_at < locked_before,
            )
            .values(
                status=JobStatus.FAILED.value,
                error_message=reason,
                locked_by=None,
                locked_at=None,
                updated_at=func.now(),
            )
            .returning(QueueJob.id)
            .execution_options(synchronize_session=False)
        )
        async with self._session("force_fail_stale") as session:
            result = await session.execute(stmt)
            count = len(result.scalars().all())
            await session.commit()
        return count

    async def counts_by_status(self) -> dict[JobStatus, int]:
        stmt = select(QueueJob.status, func.count(QueueJob.id)).group_by(QueueJob.status)
        async with self._session("counts_by_status") as session:
            result = await session.execute(stmt)
            rows = dict(result.all())
        return {status: int(rows.get(status.value, 0)) for status in JobStatus}

    async def list_by_status(self, status: JobStatus, limit: int = 50) -> list[JobRecord]:
        stmt = (
            select(QueueJob)
            .where(QueueJob.status == status.value)
            .order_by(QueueJob.updated_at.desc())
            .limit(limit)
        )
        async with self._session("list_by_status") as session:
            result = await session.execute(stmt)
            return [JobRecord.model_validate(row) for row in result.scalars().all()]

    async def delete_terminal_older_than(self, cutoff: datetime) -> int:
        stmt = (
            delete(QueueJob)
            .where(
                QueueJob.status.in_([s.value for s in TERMINAL_STATUSES]),
                QueueJob.created_at < cutoff,
            )
            .returning(QueueJob.id)
            .execution_options(synchronize_session=False)
        )
        async with self._session("delete_terminal_older_than") as session:
            result = await session.execute(stmt)
            count = len(result.scalars().all())
            await session.commit()
        return count


class NativeJobStore(ManualJobStore):
    """Store backed by the queue migration's SQL functions."""

    async def claim_and_lock(self, worker_id: str) -> JobRecord | None:
        stmt = select(QueueJob).from_statement(
            text("SELECT * FROM get_next_job_and_lock(:worker_id)")
        )
        async with self._session("get_next_job_and_lock") as session:
            result = await session.execute(stmt, {"worker_id": worker_id})
            job = _to_record(result.scalars().first())
            await session.commit()
        return job

    async def set_failed(self, job_id: UUID, message: str) -> JobStatus | None:
        async with self._session("handle_job_failure") as session:
            result = await session.execute(
                text("SELECT handle_job_failure(:job_id, :error)"),
                {"job_id": job_id, "error": message},
            )
            status = result.scalar_one_or_none()
            await session.commit()
        return JobStatus(status) if status is not None else None

    async def force_fail_stale(self, locked_before: datetime, reason: str) -> int:
        async with self._session("cleanup_stuck_jobs") as session:
            result = await session.execute(
                text("SELECT cleanup_stuck_jobs(:locked_before, :reason)"),
                {"locked_before": locked_before, "reason": reason},
            )
            count = result.scalar_one()
            await session.commit()
        return int(count or 0)

    async def counts_by_status(self) -> dict[JobStatus, int]:
        async with self._session("get_job_statistics") as session:
            result = await session.execute(text("SELECT * FROM get_job_statistics()"))
            row = result.mappings().one()
        return {status: int(row[status.value] or 0) for status in JobStatus}


class InMemoryJobStore:
    """
    Dict-backed store.

    Every method body runs under one lock and never awaits, so each operation
    is atomic with respect to other coroutines and threads.
    """

    def __init__(self):
        self._jobs: dict[UUID, JobRecord] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    def __len__(self) -> int:
        return len(self._jobs)

    async def insert(self, job: JobRecord) -> UUID:
        with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)
        return job.id

    async def get(self, job_id: UUID) -> JobRecord | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    async def claim_and_lock(self, worker_id: str) -> JobRecord | None:
        with self._lock:
            now = self._now()
            eligible = [job for job in self._jobs.values() if job.is_eligible(now)]
            if not eligible:
                return None
            job = min(eligible, key=lambda j: (-j.priority, j.created_at))
            job.status = JobStatus.PROCESSING
            job.locked_by = worker_id
            job.locked_at = now
            job.attempts += 1
            job.updated_at = now
            return job.model_copy(deep=True)

    async def set_completed(self, job_id: UUID) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(f"Job {job_id} not found", {"job_id": str(job_id)})
            if job.status == JobStatus.COMPLETED:
                return False
            now = self._now()
            job.status = JobStatus.COMPLETED
            job.completed_at = now
            job.locked_by = None
            job.locked_at = None
            job.error_message = None
            job.updated_at = now
            return True

    async def set_failed(self, job_id: UUID, message: str) -> JobStatus | None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return None
            job.status = (
                JobStatus.FAILED
                if job.attempts >= job.max_attempts
                else JobStatus.QUEUED
            )
            job.error_message = message
            job.locked_by = None
            job.locked_at = None
            job.updated_at = self._now()
            return job.status

    async def reset_failed(self, job_id: UUID) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.FAILED:
                return False
            job.status = JobStatus.QUEUED
            job.attempts = 0
            job.error_message = None
            job.locked_by = None
            job.locked_at = None
            job.scheduled_for = None
            job.completed_at = None
            job.updated_at = self._now()
            return True

    def _stale(self, locked_before: datetime) -> list[JobRecord]:
        return [
            job
            for job in self._jobs.values()
            if job.status == JobStatus.PROCESSING
            and job.locked_at is not None
            and job.locked_at < locked_before
        ]

    async def find_stale(self, locked_before: datetime) -> list[JobRecord]:
        with self._lock:
            stale = sorted(self._stale(locked_before), key=lambda j: j.locked_at)
            return [job.model_copy(deep=True) for job in stale]

    def _force_fail(self, job: JobRecord, reason: str) -> None:
        job.status = JobStatus.FAILED
        job.error_message = reason
        job.locked_by = None
        job.locked_at = None
        job.updated_at = self._now()

    async def force_fail(self, job_id: UUID, reason: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return False
            self._force_fail(job, reason)
            return True

    async def force_fail_stale(self, locked_before: datetime, reason: str) -> int:
        with self._lock:
            stale = self._stale(locked_before)
            for job in stale:
                self._force_fail(job, reason)
            return len(stale)

    async def counts_by_status(self) -> dict[JobStatus, int]:
        with self._lock:
            counts = {status: 0 for status in JobStatus}
            for job in self._jobs.values():
                counts[job.status] += 1
            return counts

    async def list_by_status(self, status: JobStatus, limit: int = 50) -> list[JobRecord]:
        with self._lock:
            matching = [job for job in self._jobs.values() if job.status == status]
            matching.sort(key=lambda j: j.updated_at, reverse=True)
            return [job.model_copy(deep=True) for job in matching[:limit]]

    async def delete_terminal_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            doomed = [
                job.id
                for job in self._jobs.values()
                if job.status in TERMINAL_STATUSES and job.created_at < cutoff
            ]
            for job_id in doomed:
                del self._jobs[job_id]
            return len(doomed)


async def native_functions_installed(database: Database) -> bool:
    """Check whether the queue migration's SQL functions exist."""
    try:
        async with database.engine.connect() as conn:
            result = await conn.execute(
                text("SELECT count(DISTINCT proname) FROM pg_proc WHERE proname = ANY(:names)"),
                {"names": list(NATIVE_FUNCTIONS)},
            )
            return result.scalar_one() == len(NATIVE_FUNCTIONS)
    except (SQLAlchemyError, OSError) as e:
        raise StoreError("Could not inspect queue functions", operation="probe") from e


async def create_job_store(
    settings: Settings, database: Database | None = None
) -> JobStore:
    """Select the job store implementation once, at startup."""
    backend = settings.queue_store_backend
    if backend == StoreBackend.MEMORY:
        logger.warning("Using in-memory job store; jobs do not survive restarts")
        return InMemoryJobStore()

    database = database or Database(settings)
    if backend == StoreBackend.AUTO:
        backend = (
            StoreBackend.NATIVE
            if await native_functions_installed(database)
            else StoreBackend.MANUAL
        )
        if backend == StoreBackend.MANUAL:
            logger.warning(
                "Queue SQL functions not found; falling back to manual statements",
                missing_any_of=list(NATIVE_FUNCTIONS),
            )

    logger.info("Job store selected", backend=backend.value)
    if backend == StoreBackend.NATIVE:
        return NativeJobStore(database)
    return ManualJobStore(database)
