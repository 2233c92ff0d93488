"""Worker Commands - Run background workers in the foreground"""

import asyncio

import typer
from rich.console import Console

from seneca.config.logging import get_logger, setup_logging
from seneca.config.settings import Settings, get_settings
from seneca.v1.core.exceptions import SenecaException
from seneca.v1.core.registries import ProcessorRegistry
from seneca.v1.queue.schemas import PROCESS_MEMORY
from seneca.v1.workers.analytics import (
    DatabaseAnalyticsSink,
    ErrorReporter,
    LogAnalyticsSink,
)
from seneca.v1.workers.enrichment import HttpMemoryProcessor
from seneca.v1.workers.lifecycle import install_process_guards
from seneca.v1.workers.manager import WorkerManager
from seneca.v1.workers.worker import WorkerConfig

from ..utils.formatting import create_workers_table, print_error, print_success
from ..utils.runtime import open_queue

console = Console()
logger = get_logger(__name__)


async def run_workers(
    settings: Settings,
    count: int,
    config: WorkerConfig,
    record_analytics: bool = True,
) -> None:
    """Run `count` workers until SIGINT or SIGTERM, then drain and stop them."""
    stop_requested = asyncio.Event()

    async def request_stop():
        stop_requested.set()

    async with open_queue(settings) as runtime:
        processor = HttpMemoryProcessor(settings)
        processors = ProcessorRegistry()
        processors.register(PROCESS_MEMORY, processor)
        processors.freeze()

        if record_analytics and runtime.database is not None:
            analytics = DatabaseAnalyticsSink(runtime.database)
        else:
            analytics = LogAnalyticsSink()

        error_reporter = ErrorReporter()
        manager = WorkerManager(
            runtime.queue,
            processors,
            analytics=analytics,
            error_reporter=error_reporter,
            default_config=config,
        )
        uninstall_guards = install_process_guards(request_stop, error_reporter)

        try:
            await manager.start_workers(count)
            print_success(f"Started {count} worker(s); press Ctrl+C to stop")
            await stop_requested.wait()
            logger.info("Shutdown requested", workers=len(manager.get_all_workers()))
        finally:
            console.print(create_workers_table(manager.get_worker_stats()))
            await manager.stop_all_workers()
            uninstall_guards()
            await processor.close()


def run(
    workers: int | None = typer.Option(None, "--workers", "-w", min=1, help="Number of workers"),
    max_concurrent: int | None = typer.Option(
        None, "--max-concurrent", "-c", min=1, help="Concurrent jobs per worker"
    ),
    timeout: float | None = typer.Option(None, "--timeout", "-t", help="Per-job timeout in seconds"),
    analytics: bool = typer.Option(
        True, "--analytics/--no-analytics", help="Record outcomes in processing_analytics"
    ),
):
    """🚀 Run background workers until interrupted"""
    settings = get_settings()
    setup_logging()

    config = WorkerConfig.from_settings(
        settings, max_concurrent_jobs=max_concurrent, processing_timeout=timeout
    )
    count = workers or settings.worker_count

    try:
        asyncio.run(run_workers(settings, count, config, record_analytics=analytics))
    except SenecaException as e:
        print_error(e.message)
        raise typer.Exit(1) from None

    print_success("All workers stopped")
