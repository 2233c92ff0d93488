from datetime import UTC, datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlalchemy import text

from seneca.config.logging import get_logger
from seneca.config.settings import Settings, SettingsDep
from seneca.infra.database import Database
from seneca.v1.core.exceptions import create_success_response
from seneca.v1.queue.schemas import QueueHealth, QueueStats

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealthReport(BaseModel):
    """Queue health status."""

    health: QueueHealth | None = None
    pending_jobs: int = 0
    processing_jobs: int = 0
    failed_jobs: int = 0
    error: str | None = None


@router.get("/healthz", response_model=dict)
async def health_check(request: Request, settings: Settings = SettingsDep):
    """Health check with database connectivity and queue health."""

    timestamp = datetime.now(UTC).isoformat()
    overall_ok = True

    database: Database | None = getattr(request.app.state, "database", None)
    db_health = None
    if database is not None:
        db_health = await _check_database_health(database)
        if not db_health.connected:
            overall_ok = False

    queue_report = await _check_queue_health(request)
    if queue_report.error is not None:
        overall_ok = False

    health_data = {
        "ok": overall_ok,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "store_backend": getattr(request.app.state, "store_backend", None),
        "database": db_health.model_dump() if db_health else None,
        "queue": queue_report.model_dump(mode="json"),
    }

    return create_success_response(data=health_data)


async def _check_database_health(database: Database) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        async with database.SessionLocal() as session:
            await session.execute(text("SELECT 1"))

        response_time_ms = (datetime.now(UTC) - start_time).total_seconds() * 1000
        return DatabaseHealth(connected=True, response_time_ms=round(response_time_ms, 2))

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_queue_health(request: Request) -> QueueHealthReport:
    queue = getattr(request.app.state, "queue", None)
    if queue is None:
        return QueueHealthReport(error="Job queue is not initialised")

    try:
        stats: QueueStats = await queue.get_stats()
    except Exception as e:
        logger.warning("Queue health check failed", error=str(e))
        return QueueHealthReport(error=str(e))

    return QueueHealthReport(
        health=stats.queue_health,
        pending_jobs=stats.pending_jobs,
        processing_jobs=stats.processing_jobs,
        failed_jobs=stats.failed_jobs,
    )
