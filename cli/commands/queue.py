"""Queue Commands - Enqueue, inspect and maintain jobs"""

import asyncio
import json
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel

from seneca.config.settings import get_settings
from seneca.v1.core.exceptions import SenecaException
from seneca.v1.queue.schemas import EnqueueOptions, Priority

from ..utils.formatting import (
    create_jobs_table,
    create_stats_panel,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from ..utils.runtime import open_queue

console = Console()


def _run(coro):
    try:
        return asyncio.run(coro)
    except SenecaException as e:
        print_error(e.message)
        raise typer.Exit(1) from None


def enqueue(
    memory_id: str = typer.Argument(..., help="Memory to enrich"),
    family_id: str = typer.Argument(..., help="Family owning the memory"),
    priority: Priority = typer.Option(Priority.NORMAL, "--priority", "-p", help="Priority hint"),
    options: str | None = typer.Option(
        None, "--options", help='Processing option overrides as JSON, e.g. {"analyze_sentiment": false}'
    ),
    max_attempts: int | None = typer.Option(None, "--max-attempts", min=1, help="Attempts before failing"),
):
    """➕ Enqueue enrichment of a memory"""
    processing_options = None
    if options:
        try:
            processing_options = json.loads(options)
        except json.JSONDecodeError as e:
            print_error(f"Invalid --options JSON: {e}")
            raise typer.Exit(1) from None

    enqueue_options = EnqueueOptions(
        priority=priority,
        processing_options=processing_options,
        max_attempts=max_attempts,
    )

    async def _enqueue():
        async with open_queue(get_settings()) as runtime:
            return await runtime.queue.enqueue(memory_id, family_id, enqueue_options)

    job_id = _run(_enqueue())
    print_success(f"Job enqueued: {job_id}")


def stats():
    """📊 Show job counts and queue health"""

    async def _stats():
        async with open_queue(get_settings()) as runtime:
            return await runtime.queue.get_stats()

    console.print(create_stats_panel(_run(_stats())))


def failed(
    limit: int = typer.Option(50, "--limit", "-l", help="Number of jobs to show"),
):
    """🧯 List terminally failed jobs"""

    async def _failed():
        async with open_queue(get_settings()) as runtime:
            return await runtime.queue.get_failed_jobs(limit)

    jobs = _run(_failed())
    if not jobs:
        print_success("No failed jobs")
        return

    console.print(create_jobs_table(jobs, title="Failed Jobs"))


def retry(
    job_id: UUID | None = typer.Argument(None, help="Failed job to retry"),
    all_failed: bool = typer.Option(False, "--all", help="Retry every failed job up to --limit"),
    limit: int = typer.Option(50, "--limit", "-l", help="Maximum jobs to retry with --all"),
):
    """🔁 Re-queue failed jobs"""
    if job_id is None and not all_failed:
        print_error("Pass a job id or --all")
        raise typer.Exit(1)

    async def _retry():
        async with open_queue(get_settings()) as runtime:
            if all_failed:
                return await runtime.queue.retry_all_failed(limit)
            return await runtime.queue.retry_failed_job(job_id)

    result = _run(_retry())
    if all_failed:
        retried, seen = result
        print_success(f"Retried {retried} of {seen} failed jobs")
    elif result:
        print_success(f"Job {job_id} re-queued")
    else:
        print_error(f"Job {job_id} is not a failed job")
        raise typer.Exit(1)


def cleanup(
    retention_days: int | None = typer.Option(
        None, "--retention-days", "-r", min=1, help="Prune terminal jobs older than this"
    ),
    stuck_only: bool = typer.Option(False, "--stuck-only", help="Skip the retention prune"),
):
    """🧹 Reclaim stuck jobs and prune old ones"""

    async def _cleanup():
        async with open_queue(get_settings()) as runtime:
            reclaimed = await runtime.queue.cleanup_stuck_jobs()
            pruned = 0 if stuck_only else await runtime.queue.prune_old(retention_days)
            return reclaimed, pruned

    reclaimed, pruned = _run(_cleanup())
    if reclaimed:
        print_warning(f"Marked {reclaimed} stuck jobs as failed")
    else:
        print_info("No stuck jobs")

    if not stuck_only:
        console.print(Panel(
            f"🗑  Pruned [cyan]{pruned}[/cyan] completed or failed jobs",
            title="Cleanup",
            border_style="green",
        ))
