import pytest

from seneca.v1.core.exceptions import DuplicateWorkerError, NotFoundError
from seneca.v1.queue.models import JobStatus
from seneca.v1.workers.manager import WorkerManager
from seneca.v1.workers.worker import WorkerStatus


@pytest.fixture
async def manager(queue, processors, analytics, worker_config):
    manager = WorkerManager(queue, processors, analytics=analytics, default_config=worker_config)
    yield manager
    await manager.stop_all_workers()


@pytest.mark.asyncio
async def test_start_worker_registers_running_worker(manager):
    worker = await manager.start_worker("alpha")

    assert worker.is_running
    assert manager.get_worker("alpha") is worker
    assert manager.get_all_workers() == [worker]


@pytest.mark.asyncio
async def test_duplicate_worker_name_is_rejected(manager):
    await manager.start_worker("alpha")

    with pytest.raises(DuplicateWorkerError):
        await manager.start_worker("alpha")

    assert len(manager.get_all_workers()) == 1


@pytest.mark.asyncio
async def test_stop_worker_removes_it(manager):
    worker = await manager.start_worker("alpha")

    await manager.stop_worker("alpha")

    assert worker.status == WorkerStatus.STOPPED
    assert manager.get_worker("alpha") is None


@pytest.mark.asyncio
async def test_stop_unknown_worker_raises(manager):
    with pytest.raises(NotFoundError):
        await manager.stop_worker("ghost")


@pytest.mark.asyncio
async def test_start_workers_and_stop_all(manager):
    workers = await manager.start_workers(3)

    assert [w.name for w in workers] == ["worker-1", "worker-2", "worker-3"]
    assert len({w.worker_id for w in workers}) == 3
    assert len(manager.get_worker_stats()) == 3

    await manager.stop_all_workers()

    assert manager.get_all_workers() == []
    assert all(w.status == WorkerStatus.STOPPED for w in workers)


@pytest.mark.asyncio
async def test_workers_share_the_queue_without_double_processing(
    manager, queue, processor, eventually
):
    job_ids = [await queue.enqueue(f"mem-{i}", "fam") for i in range(10)]

    await manager.start_workers(3)
    await eventually(
        lambda: sum(s.jobs_processed for s in manager.get_worker_stats()) == 10
    )

    assert sorted(processor.calls) == sorted(f"mem-{i}" for i in range(10))
    for job_id in job_ids:
        assert (await queue.get_job(job_id)).status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_worker_config_override(manager, worker_config):
    custom = worker_config.model_copy(update={"max_concurrent_jobs": 1})

    worker = await manager.start_worker("solo", custom)

    assert worker.get_config().max_concurrent_jobs == 1
