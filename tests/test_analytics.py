"""Outcome sinks, error reporter and the HTTP enrichment processor."""

import httpx
import pytest

from seneca.v1.core.exceptions import ProcessingError
from seneca.v1.workers.analytics import ErrorReporter, JobOutcome, LogAnalyticsSink
from seneca.v1.workers.enrichment import HttpMemoryProcessor


def _processor(settings, handler) -> HttpMemoryProcessor:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="http://enrichment.test/api",
    )
    return HttpMemoryProcessor(settings, client=client)


@pytest.mark.asyncio
async def test_processor_posts_to_memory_endpoint(settings):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    processor = _processor(settings, handler)
    await processor.process("mem-42")
    await processor.close()

    assert seen[0].method == "POST"
    assert seen[0].url.path == "/api/v1/memories/mem-42/process"


@pytest.mark.asyncio
async def test_processor_raises_on_error_status(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, json={"ok": False, "error": {"message": "model overloaded"}})

    processor = _processor(settings, handler)

    with pytest.raises(ProcessingError, match="status 502") as exc_info:
        await processor.process("mem-1")

    assert exc_info.value.details["body"] == {"message": "model overloaded"}
    await processor.close()


@pytest.mark.asyncio
async def test_processor_wraps_connection_errors(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    processor = _processor(settings, handler)

    with pytest.raises(ProcessingError, match="Enrichment request failed"):
        await processor.process("mem-1")
    await processor.close()


def test_processor_sends_internal_api_key(settings):
    keyed = settings.model_copy(update={"enrichment_api_key": "s3cret"})

    processor = HttpMemoryProcessor(keyed)

    assert processor.client.headers["X-Internal-API-Key"] == "s3cret"
    assert str(processor.client.base_url) == "http://localhost:3000/api/"


@pytest.mark.asyncio
async def test_log_sink_accepts_outcomes():
    sink = LogAnalyticsSink()
    outcome = JobOutcome(job_id="j", memory_id="m", duration_ms=12, worker_id="w")

    await sink.record_success(outcome)
    await sink.record_failure(JobOutcome(job_id="j", memory_id="m", duration_ms=5, worker_id="w", error="boom"))


def test_error_reporter_never_raises():
    try:
        raise ValueError("lost")
    except ValueError as e:
        ErrorReporter().report(e, worker_id="w", component="test")
