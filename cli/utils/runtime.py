"""Build the queue stack for CLI commands that talk to the store directly"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from seneca.config.settings import Settings, StoreBackend
from seneca.infra.database import Database
from seneca.v1.queue.service import MemoryQueue
from seneca.v1.queue.store import create_job_store


@dataclass
class QueueRuntime:
    queue: MemoryQueue
    database: Database | None = None


@asynccontextmanager
async def open_queue(settings: Settings) -> AsyncIterator[QueueRuntime]:
    """Open a queue over the configured store; disposes the engine on exit."""
    database = None
    if settings.queue_store_backend != StoreBackend.MEMORY:
        database = Database(settings)

    try:
        store = await create_job_store(settings, database)
        yield QueueRuntime(queue=MemoryQueue(store, settings), database=database)
    finally:
        if database is not None:
            await database.close()
