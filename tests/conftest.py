import asyncio
import importlib.util
import os
from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
import structlog
from fastapi.testclient import TestClient
from sqlalchemy import text

from seneca.config.settings import Settings, StoreBackend
from seneca.infra.database import Base, Database
from seneca.main import create_app
from seneca.v1.core.registries import ProcessorRegistry
from seneca.v1.queue.schemas import PROCESS_MEMORY
from seneca.v1.queue.service import MemoryQueue
from seneca.v1.queue.store import InMemoryJobStore
from seneca.v1.workers.worker import WorkerConfig
from tests.support import RecordingAnalytics, StubProcessor

# Import models to ensure they're registered
from seneca.v1.queue import models  # noqa: F401

QUEUE_MIGRATION = (
    Path(__file__).resolve().parent.parent
    / "migrations"
    / "versions"
    / "3b7c1e9a4d20_add_queue_jobs_table.py"
)


@pytest.fixture(scope="session", autouse=True)
def plain_logging():
    """
    Log through a non-caching print logger for the whole session.

    CliRunner swaps sys.stdout per invocation; a cached logger would keep
    writing to the closed stream afterwards.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    yield
    structlog.reset_defaults()


async def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01) -> None:
    """Poll `predicate` until it is truthy or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail(f"condition not met within {timeout}s")
        await asyncio.sleep(interval)


@pytest.fixture
def eventually():
    return wait_until


@pytest.fixture
def settings() -> Settings:
    """Settings for an in-process queue with fast worker timings."""
    return Settings(
        environment="test",
        queue_store_backend=StoreBackend.MEMORY,
        worker_poll_interval_s=0.01,
        worker_busy_poll_interval_s=0.01,
        worker_retry_delay_s=0.01,
        worker_shutdown_timeout_s=2.0,
    )


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def queue(store: InMemoryJobStore, settings: Settings) -> MemoryQueue:
    return MemoryQueue(store, settings)


@pytest.fixture
def processor() -> StubProcessor:
    return StubProcessor()


@pytest.fixture
def processors(processor: StubProcessor) -> ProcessorRegistry:
    registry = ProcessorRegistry()
    registry.register(PROCESS_MEMORY, processor)
    return registry


@pytest.fixture
def analytics() -> RecordingAnalytics:
    return RecordingAnalytics()


@pytest.fixture
def worker_config() -> WorkerConfig:
    return WorkerConfig(
        max_concurrent_jobs=3,
        processing_timeout=5.0,
        retry_delay=0.01,
        poll_interval=0.01,
        busy_poll_interval=0.01,
        health_check_interval=60.0,
        shutdown_timeout=2.0,
    )


@pytest.fixture
def app(settings: Settings):
    return create_app(settings)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Test client; entering it runs the lifespan that builds the queue."""
    with TestClient(app) as test_client:
        yield test_client


def _load_queue_migration():
    spec = importlib.util.spec_from_file_location("queue_migration", QUEUE_MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
async def database() -> AsyncGenerator[Database, None]:
    """Fresh queue schema on the PostgreSQL database named by DATABASE_URL."""
    database_url = os.getenv("DATABASE_URL")
    if not database_url or "postgresql" not in database_url:
        pytest.skip("No PostgreSQL database available for testing")

    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    db = Database(Settings(environment="test", database_url=database_url))
    migration = _load_queue_migration()

    async with db.engine.begin() as conn:
        await conn.execute(text("DROP TABLE IF EXISTS queue_jobs, processing_analytics CASCADE"))
        await conn.run_sync(Base.metadata.create_all)
        for statement in (
            migration.UPDATED_AT_FUNCTION,
            migration.UPDATED_AT_TRIGGER,
            migration.GET_NEXT_JOB_AND_LOCK,
            migration.HANDLE_JOB_FAILURE,
            migration.CLEANUP_STUCK_JOBS,
            migration.GET_JOB_STATISTICS,
        ):
            await conn.execute(text(statement))

    yield db

    async with db.engine.begin() as conn:
        await conn.execute(text("DELETE FROM queue_jobs"))
        await conn.execute(text("DELETE FROM processing_analytics"))
    await db.close()
