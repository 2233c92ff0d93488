"""Operator HTTP endpoints over the in-memory store."""

import asyncio
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from seneca.v1.queue.models import JobStatus
from seneca.v1.queue.routes import get_inline_worker
from seneca.v1.queue.schemas import EnqueueOptions, Priority
from seneca.v1.workers.worker import BackgroundWorker


@pytest.fixture
def queue_api(client: TestClient):
    """The queue built by the app lifespan."""
    return client.app.state.queue


def _failed_job(queue):
    async def _make():
        options = EnqueueOptions(max_attempts=1, priority=Priority.HIGH)
        job_id = await queue.enqueue("mem-f", "fam", options)
        await queue.claim_next("worker-a")
        await queue.fail(job_id, "boom")
        return job_id

    return asyncio.run(_make())


def test_health_check_success(client: TestClient):
    response = client.get("/v1/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True

    health = data["data"]
    assert health["ok"] is True
    assert health["version"] == "1.0.0"
    assert health["environment"] == "test"
    assert health["store_backend"] == "InMemoryJobStore"
    assert health["database"] is None
    assert health["queue"]["health"] == "healthy"
    assert "X-Request-ID" in response.headers


def test_queue_stats(client: TestClient, queue_api):
    asyncio.run(queue_api.enqueue("mem-1", "fam"))
    _failed_job(queue_api)

    response = client.get("/v1/queue/stats")

    assert response.status_code == 200
    stats = response.json()["data"]
    assert stats["total_jobs"] == 2
    assert stats["pending_jobs"] == 1
    assert stats["failed_jobs"] == 1
    assert stats["failure_rate"] == 0.5
    assert stats["queue_health"] == "critical"


def test_get_job(client: TestClient, queue_api):
    job_id = asyncio.run(queue_api.enqueue("mem-1", "fam"))

    response = client.get(f"/v1/queue/jobs/{job_id}")

    assert response.status_code == 200
    job = response.json()["data"]
    assert job["id"] == str(job_id)
    assert job["status"] == "queued"
    assert job["payload"]["memory_id"] == "mem-1"


def test_get_unknown_job_returns_404_envelope(client: TestClient):
    response = client.get(f"/v1/queue/jobs/{uuid4()}")

    assert response.status_code == 404
    body = response.json()
    assert body["ok"] is False
    assert body["error"]["code"] == 404
    assert "not found" in body["error"]["message"]


def test_list_failed_jobs(client: TestClient, queue_api):
    job_id = _failed_job(queue_api)

    response = client.get("/v1/queue/jobs/failed", params={"limit": 10})

    data = response.json()["data"]
    assert data["count"] == 1
    assert data["jobs"][0]["id"] == str(job_id)
    assert data["jobs"][0]["error_message"] == "boom"


def test_list_stuck_jobs(client: TestClient, queue_api):
    job_id = asyncio.run(queue_api.enqueue("mem-1", "fam"))
    asyncio.run(queue_api.claim_next("worker-a"))
    queue_api.store._jobs[job_id].locked_at = datetime.now(UTC) - timedelta(hours=2)

    response = client.get("/v1/queue/jobs/stuck")

    data = response.json()["data"]
    assert [job["id"] for job in data["jobs"]] == [str(job_id)]
    assert data["threshold_minutes"] == 30


def test_retry_failed_job(client: TestClient, queue_api):
    job_id = _failed_job(queue_api)

    response = client.post(f"/v1/queue/jobs/{job_id}/retry")

    assert response.status_code == 200
    assert response.json()["data"]["success_ids"] == [str(job_id)]
    job = asyncio.run(queue_api.get_job(job_id))
    assert job.status == JobStatus.QUEUED


def test_retry_job_that_is_not_failed_conflicts(client: TestClient, queue_api):
    job_id = asyncio.run(queue_api.enqueue("mem-1", "fam"))

    response = client.post(f"/v1/queue/jobs/{job_id}/retry")

    assert response.status_code == 409
    assert response.json()["ok"] is False


def test_retry_unknown_job_returns_404(client: TestClient):
    response = client.post(f"/v1/queue/jobs/{uuid4()}/retry")

    assert response.status_code == 404


def test_retry_all_failed(client: TestClient, queue_api):
    _failed_job(queue_api)
    _failed_job(queue_api)

    response = client.post("/v1/queue/jobs/retry-failed")

    assert response.status_code == 200
    assert response.json()["data"] == {"retried": 2, "seen": 2}


def test_maintenance_reclaims_and_prunes(client: TestClient, queue_api):
    stuck_id = asyncio.run(queue_api.enqueue("stuck", "fam"))
    asyncio.run(queue_api.claim_next("worker-a"))
    queue_api.store._jobs[stuck_id].locked_at = datetime.now(UTC) - timedelta(hours=2)
    old_id = _failed_job(queue_api)
    queue_api.store._jobs[old_id].created_at = datetime.now(UTC) - timedelta(days=90)

    response = client.post("/v1/queue/maintenance")

    assert response.status_code == 200
    assert response.json()["data"] == {
        "stuck_reclaimed": 1,
        "pruned": 1,
        "retention_days": 30,
    }
    assert asyncio.run(queue_api.get_job(stuck_id)).status == JobStatus.FAILED


def test_maintenance_validates_retention(client: TestClient):
    response = client.post("/v1/queue/maintenance", params={"retention_days": 0})

    assert response.status_code == 422


@pytest.fixture
def inline_processor(client: TestClient, queue_api, processors, processor, worker_config, analytics):
    """Run process-next jobs through the stub enrichment collaborator."""
    worker = BackgroundWorker(
        "inline", queue_api, processors, config=worker_config, analytics=analytics
    )
    client.app.dependency_overrides[get_inline_worker] = lambda: worker
    yield processor
    client.app.dependency_overrides.pop(get_inline_worker, None)


def test_process_next_with_empty_queue(client: TestClient, inline_processor):
    response = client.post("/v1/queue/process-next")

    assert response.status_code == 200
    body = response.json()
    assert body["data"]["processed_job"] is None
    assert body["message"] == "No jobs to process"
    assert inline_processor.calls == []


def test_process_next_completes_one_job(client: TestClient, queue_api, inline_processor):
    first = asyncio.run(queue_api.enqueue("mem-1", "fam"))
    second = asyncio.run(queue_api.enqueue("mem-2", "fam"))

    response = client.post("/v1/queue/process-next")

    assert response.status_code == 200
    job = response.json()["data"]["processed_job"]
    assert job["id"] == str(first)
    assert job["status"] == "completed"
    assert job["completed_at"] is not None
    assert inline_processor.calls == ["mem-1"]
    assert asyncio.run(queue_api.get_job(second)).status == JobStatus.QUEUED


def test_process_next_reports_failure(client: TestClient, queue_api, inline_processor):
    inline_processor.failures["mem-1"] = RuntimeError("enrichment down")
    job_id = asyncio.run(queue_api.enqueue("mem-1", "fam"))

    response = client.post("/v1/queue/process-next")

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["message"] == "Job processing failed"
    job = error["details"]["processed_job"]
    assert job["id"] == str(job_id)
    assert job["status"] == "queued"
    assert job["error_message"] == "enrichment down"
    assert job["attempts"] == 1
