"""
Registry of named background workers.
"""

import asyncio

from seneca.config.logging import get_logger
from seneca.v1.core.exceptions import DuplicateWorkerError, NotFoundError
from seneca.v1.core.registries import ProcessorRegistry
from seneca.v1.queue.service import MemoryQueue
from seneca.v1.workers.analytics import AnalyticsSink, ErrorReporter
from seneca.v1.workers.worker import BackgroundWorker, WorkerConfig, WorkerStats

logger = get_logger(__name__)


class WorkerManager:
    """Starts, stops and inspects workers by name within one process."""

    def __init__(
        self,
        queue: MemoryQueue,
        processors: ProcessorRegistry,
        analytics: AnalyticsSink | None = None,
        error_reporter: ErrorReporter | None = None,
        default_config: WorkerConfig | None = None,
    ):
        self.queue = queue
        self.processors = processors
        self.analytics = analytics
        self.error_reporter = error_reporter or ErrorReporter()
        self.default_config = default_config or WorkerConfig()
        self._workers: dict[str, BackgroundWorker] = {}

    async def start_worker(
        self, name: str = "default", config: WorkerConfig | None = None
    ) -> BackgroundWorker:
        if name in self._workers:
            raise DuplicateWorkerError(
                f"Worker {name} already exists", details={"worker": name}
            )

        worker = BackgroundWorker(
            name,
            self.queue,
            self.processors,
            config=config or self.default_config,
            analytics=self.analytics,
            error_reporter=self.error_reporter,
        )
        self._workers[name] = worker
        try:
            await worker.start()
        except Exception:
            del self._workers[name]
            raise

        logger.info("Worker registered", worker=name, worker_id=worker.worker_id)
        return worker

    async def start_workers(
        self, count: int, config: WorkerConfig | None = None, prefix: str = "worker"
    ) -> list[BackgroundWorker]:
        """Start `count` workers named `{prefix}-1` .. `{prefix}-{count}`."""
        return [
            await self.start_worker(f"{prefix}-{i}", config) for i in range(1, count + 1)
        ]

    async def stop_worker(self, name: str) -> None:
        worker = self._workers.get(name)
        if worker is None:
            raise NotFoundError(f"Worker {name} not found", details={"worker": name})

        await worker.stop()
        del self._workers[name]
        logger.info("Worker removed", worker=name)

    async def stop_all_workers(self) -> None:
        workers = list(self._workers.values())
        if not workers:
            return

        logger.info("Stopping all workers", worker_count=len(workers))
        results = await asyncio.gather(
            *(worker.stop() for worker in workers), return_exceptions=True
        )
        for worker, result in zip(workers, results):
            if isinstance(result, Exception):
                self.error_reporter.report(
                    result, worker_id=worker.worker_id, component="stop_worker"
                )
        self._workers.clear()

    def get_worker_stats(self) -> list[WorkerStats]:
        return [worker.get_stats() for worker in self._workers.values()]

    def get_worker(self, name: str) -> BackgroundWorker | None:
        return self._workers.get(name)

    def get_all_workers(self) -> list[BackgroundWorker]:
        return list(self._workers.values())
