"""Content Planner CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from .client.base import PlannerAPIError
from .client.endpoints import PlannerClient
from .commands import config, jobs, runtime
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info

console = Console()

app = typer.Typer(
    name="planner",
    help="🗓️ Content Planner - job orchestration CLI",
    rich_markup_mode="rich",
)

# Processes
app.command("worker")(runtime.worker)
app.command("scheduler")(runtime.scheduler)
app.command("reconcile")(runtime.reconcile)

# Operator actions over the API
app.command("stats")(jobs.stats)
app.command("jobs")(jobs.list_jobs)
app.command("job")(jobs.show)
app.command("retry")(jobs.retry)
app.command("cancel")(jobs.cancel)

app.add_typer(config.app, name="config")


@app.command()
def status():
    """📡 Check API connectivity and worker health"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with PlannerClient(base_url) as client:
            health = client.health_check()
    except PlannerAPIError as e:
        print_error(f"Failed to connect: {e}")
        console.print(Panel(
            f"🚫 [red]Connection Failed[/red]\n\n"
            f"Make sure the Content Planner API is running at:\n"
            f"[blue]{base_url}[/blue]\n\n"
            f"You can update the API URL with:\n"
            f"[cyan]planner config set api.base_url <url>[/cyan]",
            title="Connection Error",
            border_style="red"
        ))
        raise typer.Exit(1) from None

    worker = health.get("worker") or {}
    console.print(Panel(
        f"🚀 [green]Connected Successfully![/green]\n\n"
        f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
        f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
        f"• Active workers: [cyan]{worker.get('active_workers', 0)}[/cyan]\n"
        f"• Stuck jobs: [red]{worker.get('stuck_jobs_count', 0)}[/red]\n"
        f"• Dead letter: [red]{worker.get('dead_letter_count', 0)}[/red]",
        title="System Status",
        border_style="green"
    ))


@app.command()
def version():
    """📎 Show CLI version information"""
    from . import __version__

    console.print(f"Content Planner CLI v{__version__}")


if __name__ == "__main__":
    app()
