"""Tests for CLI commands"""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import Mock, patch

import pytest
import structlog
from typer.testing import CliRunner

from cli.client.base import SenecaAPIError
from cli.main import app
from cli.utils.runtime import QueueRuntime
from seneca.config.logging import get_logger, setup_logging
from seneca.v1.queue.models import JobStatus
from seneca.v1.queue.schemas import EnqueueOptions


@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


@pytest.fixture
def cli_queue(queue, settings):
    """Route queue commands to the in-memory queue fixture."""

    @asynccontextmanager
    async def fake_open_queue(_settings):
        yield QueueRuntime(queue=queue)

    with patch("cli.commands.queue.open_queue", fake_open_queue), patch(
        "cli.commands.queue.get_settings", return_value=settings
    ):
        yield queue


def _failed_job(queue) -> str:
    async def _make():
        job_id = await queue.enqueue("mem-f", "fam", EnqueueOptions(max_attempts=1))
        await queue.claim_next("worker-a")
        await queue.fail(job_id, "enrichment exploded")
        return job_id

    return asyncio.run(_make())


class TestMainCommands:
    def test_version(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "Seneca v1.0.0" in result.stdout

    def test_help_lists_commands(self, runner):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "enqueue", "stats", "failed", "retry", "cleanup", "status"):
            assert command in result.stdout

    @patch("cli.main.APIClient")
    def test_status_success(self, mock_client_class, runner):
        mock_client = Mock()
        mock_client.__enter__ = Mock(return_value=mock_client)
        mock_client.__exit__ = Mock(return_value=None)
        mock_client.health_check.return_value = {
            "ok": True,
            "version": "1.0.0",
            "environment": "development",
            "store_backend": "NativeJobStore",
            "queue": {"health": "healthy"},
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Connected Successfully" in result.stdout
        assert "NativeJobStore" in result.stdout

    @patch("cli.main.APIClient")
    def test_status_failure(self, mock_client_class, runner):
        mock_client = Mock()
        mock_client.__enter__ = Mock(return_value=mock_client)
        mock_client.__exit__ = Mock(return_value=None)
        mock_client.health_check.side_effect = SenecaAPIError("Connection failed")
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout


class TestQueueCommands:
    def test_enqueue(self, runner, cli_queue):
        result = runner.invoke(
            app,
            ["enqueue", "mem-1", "fam-1", "--priority", "high", "--options", '{"detect_milestones": false}'],
        )

        assert result.exit_code == 0
        assert "Job enqueued" in result.stdout
        job = asyncio.run(cli_queue.claim_next("w"))
        assert job.priority == 3
        assert job.payload["processing_options"]["detect_milestones"] is False

    def test_enqueue_rejects_bad_options(self, runner, cli_queue):
        result = runner.invoke(app, ["enqueue", "mem-1", "fam-1", "--options", "{not json"])

        assert result.exit_code == 1
        assert "Invalid --options JSON" in result.stdout

    def test_stats(self, runner, cli_queue):
        asyncio.run(cli_queue.enqueue("mem-1", "fam"))

        result = runner.invoke(app, ["stats"])

        assert result.exit_code == 0
        assert "Queue Health: healthy" in result.stdout
        assert "Queued: 1" in result.stdout

    def test_failed_empty(self, runner, cli_queue):
        result = runner.invoke(app, ["failed"])

        assert result.exit_code == 0
        assert "No failed jobs" in result.stdout

    def test_failed_lists_jobs(self, runner, cli_queue):
        _failed_job(cli_queue)

        result = runner.invoke(app, ["failed"])

        assert result.exit_code == 0
        assert "Failed Jobs" in result.stdout
        assert "mem-f" in result.stdout

    def test_retry_single_job(self, runner, cli_queue):
        job_id = _failed_job(cli_queue)

        result = runner.invoke(app, ["retry", str(job_id)])

        assert result.exit_code == 0
        assert "re-queued" in result.stdout
        assert asyncio.run(cli_queue.get_job(job_id)).status == JobStatus.QUEUED

    def test_retry_job_that_is_not_failed(self, runner, cli_queue):
        job_id = asyncio.run(cli_queue.enqueue("mem-1", "fam"))

        result = runner.invoke(app, ["retry", str(job_id)])

        assert result.exit_code == 1
        assert "is not a failed job" in result.stdout

    def test_retry_all(self, runner, cli_queue):
        _failed_job(cli_queue)
        _failed_job(cli_queue)

        result = runner.invoke(app, ["retry", "--all"])

        assert result.exit_code == 0
        assert "Retried 2 of 2 failed jobs" in result.stdout

    def test_retry_requires_target(self, runner, cli_queue):
        result = runner.invoke(app, ["retry"])

        assert result.exit_code == 1
        assert "Pass a job id or --all" in result.stdout

    def test_cleanup(self, runner, cli_queue):
        result = runner.invoke(app, ["cleanup"])

        assert result.exit_code == 0
        assert "No stuck jobs" in result.stdout
        assert "Pruned" in result.stdout


class TestRunCommand:
    def test_run_starts_workers_and_stops_on_signal(self, runner, settings):
        def fake_guards(shutdown, error_reporter):
            loop = asyncio.get_running_loop()
            loop.call_later(0.1, lambda: loop.create_task(shutdown()))
            return lambda: None

        with patch("cli.commands.worker.get_settings", return_value=settings), patch(
            "cli.commands.worker.install_process_guards", fake_guards
        ):
            result = runner.invoke(app, ["run", "--workers", "2"])

        assert result.exit_code == 0, result.stdout
        assert "Started 2 worker(s)" in result.stdout
        assert "All workers stopped" in result.stdout

    def test_loggers_keep_writing_after_run(self, runner, settings, capsys):
        def fake_guards(shutdown, error_reporter):
            loop = asyncio.get_running_loop()
            loop.call_later(0.05, lambda: loop.create_task(shutdown()))
            return lambda: None

        with patch("cli.commands.worker.get_settings", return_value=settings), patch(
            "cli.commands.worker.install_process_guards", fake_guards
        ):
            result = runner.invoke(app, ["run", "--workers", "1"])
        assert result.exit_code == 0, result.stdout

        # The runner's stdout is closed by now
        get_logger("seneca.v1.workers.worker").info("logged after run")

        assert "logged after run" in capsys.readouterr().out


def test_setup_logging_keeps_existing_configuration():
    before = structlog.get_config()

    setup_logging()

    assert structlog.get_config() == before
