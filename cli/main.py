"""Seneca CLI - Main Entry Point"""

from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from seneca.config.settings import settings

from .client.base import APIClient, SenecaAPIError
from .commands import queue, worker
from .utils.formatting import print_error, print_info

console = Console()

app = typer.Typer(
    name="seneca",
    help="🧠 Seneca - Memory enrichment queue CLI",
    rich_markup_mode="rich",
)

app.command("run")(worker.run)
app.command("enqueue")(queue.enqueue)
app.command("stats")(queue.stats)
app.command("failed")(queue.failed)
app.command("retry")(queue.retry)
app.command("cleanup")(queue.cleanup)


@app.command()
def status(
    base_url: str = typer.Option(
        "http://localhost:8000", "--url", envvar="SENECA_API_URL", help="Operator API URL"
    ),
):
    """📡 Check the operator API and queue health"""
    print_info(f"Checking connection to: {base_url}")

    try:
        with APIClient(base_url) as client:
            health = client.health_check()
    except SenecaAPIError as e:
        print_error(f"Failed to connect: {e}")
        console.print(Panel(
            f"🚫 [red]Connection Failed[/red]\n\n"
            f"Make sure the Seneca API is running at:\n"
            f"[blue]{base_url}[/blue]",
            title="Connection Error",
            border_style="red"
        ))
        raise typer.Exit(1)

    queue_health = health.get("queue") or {}
    console.print(Panel(
        f"🚀 [green]Connected Successfully![/green]\n\n"
        f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
        f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
        f"• Store: [magenta]{health.get('store_backend') or 'unknown'}[/magenta]\n"
        f"• Queue health: [bold]{queue_health.get('health') or 'unknown'}[/bold]",
        title="System Status",
        border_style="green" if health.get("ok") else "yellow"
    ))


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", help="Show version and exit"
    ),
):
    """
    🧠 Seneca CLI

    Run enrichment workers and operate the memory processing queue.
    """
    if version:
        console.print(f"Seneca v{settings.version}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit()


if __name__ == "__main__":
    app()
