from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from seneca.config.logging import get_logger, setup_logging
from seneca.config.settings import Settings, StoreBackend, get_settings
from seneca.config.settings import settings as default_settings
from seneca.infra.database import Database
from seneca.v1.core.exceptions import (
    RequestContextMiddleware,
    SenecaException,
    general_exception_handler,
    http_exception_handler,
    seneca_exception_handler,
)
from seneca.v1.core.registries import ProcessorRegistry
from seneca.v1.healthz import router as health_router
from seneca.v1.queue.routes import router as queue_router
from seneca.v1.queue.service import MemoryQueue
from seneca.v1.queue.schemas import PROCESS_MEMORY
from seneca.v1.queue.store import create_job_store
from seneca.v1.workers.analytics import DatabaseAnalyticsSink, LogAnalyticsSink
from seneca.v1.workers.enrichment import HttpMemoryProcessor
from seneca.v1.workers.worker import BackgroundWorker, WorkerConfig

logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or default_settings

    # Initialize structured logging
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database = None
        if settings.queue_store_backend != StoreBackend.MEMORY:
            database = Database(settings)

        store = await create_job_store(settings, database)
        app.state.database = database
        app.state.store_backend = type(store).__name__
        app.state.queue = MemoryQueue(store, settings)

        # Runs single jobs for POST /v1/queue/process-next
        processor = HttpMemoryProcessor(settings)
        processors = ProcessorRegistry()
        processors.register(PROCESS_MEMORY, processor)
        processors.freeze()
        app.state.inline_worker = BackgroundWorker(
            "inline",
            app.state.queue,
            processors,
            config=WorkerConfig.from_settings(settings),
            analytics=DatabaseAnalyticsSink(database) if database else LogAnalyticsSink(),
        )

        logger.info("Queue API started", store_backend=app.state.store_backend)
        try:
            yield
        finally:
            app.state.queue = None
            app.state.inline_worker = None
            await processor.close()
            if database is not None:
                await database.close()

    app = FastAPI(
        title=settings.app_name,
        description="Durable memory enrichment job queue",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        # All endpoints will be under /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(SenecaException, seneca_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(queue_router, prefix="/v1")

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "seneca.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
    )
