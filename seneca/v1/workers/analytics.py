"""
Job outcome analytics and error reporting.

Both are best-effort collaborators: a failure to record an outcome is
logged and never turns a successful job into a failed one.
"""

from dataclasses import asdict, dataclass
from typing import Any, Protocol

from seneca.config.logging import get_logger
from seneca.infra.database import Database
from seneca.v1.queue.models import ProcessingAnalytics

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class JobOutcome:
    job_id: str
    memory_id: str | None
    duration_ms: int
    worker_id: str
    family_id: str | None = None
    error: str | None = None


class AnalyticsSink(Protocol):
    async def record_success(self, outcome: JobOutcome) -> None: ...

    async def record_failure(self, outcome: JobOutcome) -> None: ...


class LogAnalyticsSink:
    """Writes outcomes to the structured log only."""

    async def record_success(self, outcome: JobOutcome) -> None:
        logger.info("Job outcome", status="completed", **asdict(outcome))

    async def record_failure(self, outcome: JobOutcome) -> None:
        logger.info("Job outcome", status="failed", **asdict(outcome))


class DatabaseAnalyticsSink:
    """Inserts one processing_analytics row per outcome."""

    def __init__(self, database: Database):
        self.database = database

    async def _insert(self, outcome: JobOutcome, stage: str, status: str) -> None:
        row = ProcessingAnalytics(
            memory_id=outcome.memory_id,
            stage=stage,
            status=status,
            duration_ms=outcome.duration_ms,
            error_message=outcome.error,
            metadata_={
                "worker_id": outcome.worker_id,
                "job_id": outcome.job_id,
                "family_id": outcome.family_id,
            },
        )
        async with self.database.SessionLocal() as session:
            session.add(row)
            await session.commit()

    async def record_success(self, outcome: JobOutcome) -> None:
        await self._insert(outcome, "worker_completion", "completed")

    async def record_failure(self, outcome: JobOutcome) -> None:
        await self._insert(outcome, "worker_failure", "failed")


class ErrorReporter:
    """Shared sink for errors that would otherwise be dropped."""

    def report(self, error: BaseException, **context: Any) -> None:
        logger.error(
            "Error reported",
            exception=error.__class__.__name__,
            message=str(error),
            exc_info=error,
            **context,
        )
