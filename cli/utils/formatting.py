"""Rich Formatting Utilities for CLI Output"""

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from seneca.v1.queue.schemas import JobRecord, QueueHealth, QueueStats
from seneca.v1.workers.worker import WorkerStats

console = Console()

HEALTH_STYLES = {
    QueueHealth.HEALTHY: "green",
    QueueHealth.DEGRADED: "yellow",
    QueueHealth.CRITICAL: "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def create_jobs_table(jobs: list[JobRecord], title: str = "Jobs") -> Table:
    """Create a formatted table for a job list"""
    table = Table(title=title, box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Memory", justify="left", style="magenta")
    table.add_column("Status", justify="center", style="bold")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Updated", justify="center")
    table.add_column("Error", justify="left", style="red")

    for job in jobs:
        error = job.error_message or "-"
        table.add_row(
            str(job.id),
            job.memory_id or "-",
            job.status.value,
            f"{job.attempts}/{job.max_attempts}",
            job.updated_at.strftime("%Y-%m-%d %H:%M:%S") if job.updated_at else "-",
            error[:60] + "..." if len(error) > 60 else error,
        )

    return table


def create_stats_panel(stats: QueueStats) -> Panel:
    """Create formatted panel for queue statistics"""
    style = HEALTH_STYLES[stats.queue_health]
    content = f"""
📊 [bold blue]Queue Statistics[/bold blue]

• Total: [blue]{stats.total_jobs}[/blue]
• Queued: [cyan]{stats.pending_jobs}[/cyan]
• Processing: [yellow]{stats.processing_jobs}[/yellow]
• Completed: [green]{stats.completed_jobs}[/green]
• Failed: [red]{stats.failed_jobs}[/red]
• Delayed: [purple]{stats.delayed_jobs}[/purple]
• Failure rate: [{style}]{stats.failure_rate:.1%}[/{style}]
"""

    return Panel(
        content,
        title=f"Queue Health: {stats.queue_health.value}",
        border_style=style,
    )


def create_workers_table(workers: list[WorkerStats]) -> Table:
    """Create formatted table for running workers"""
    table = Table(title="Workers", box=box.ROUNDED)

    table.add_column("Worker", justify="left", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Processed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")

    for worker in workers:
        table.add_row(
            worker.worker_id,
            worker.status.value,
            str(worker.jobs_processed),
            str(worker.jobs_failed),
        )

    return table
