"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_COLUMNS = ("waiting", "delayed", "active", "completed", "failed")
STATUS_STYLES = {
    "waiting": "blue",
    "delayed": "cyan",
    "active": "yellow",
    "completed": "green",
    "failed": "red",
    "cancelled": "dim",
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


def create_queue_stats_table(stats: dict[str, dict[str, int]]) -> Table:
    """Create a table of per-queue, per-status counts"""
    table = Table(title="Queues", box=box.ROUNDED)

    table.add_column("Queue", justify="left", style="bold")
    for status in STATUS_COLUMNS:
        table.add_column(status.capitalize(), justify="right", style=STATUS_STYLES[status])

    for queue_name in sorted(stats):
        counts = stats[queue_name]
        table.add_row(queue_name, *(str(counts.get(s, 0)) for s in STATUS_COLUMNS))

    return table


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a job listing"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Run At", justify="left", style="yellow")
    table.add_column("Attempts", justify="center")
    table.add_column("Key", justify="left", style="white")

    for job in jobs:
        status = job.get("status", "")
        style = STATUS_STYLES.get(status, "white")
        table.add_row(
            str(job.get("id", ""))[:8],  # Short ID
            job.get("job_type", ""),
            f"[{style}]{status}[/{style}]",
            job.get("run_at", "-"),
            f"{job.get('attempts', 0)}/{job.get('max_attempts', 0)}",
            job.get("idempotency_key") or "-",
        )

    return table


def create_scan_report_panel(report: dict[str, Any]) -> Panel:
    """Create formatted panel for a reconciliation scan report"""
    content = (
        f"• Scanned: [blue]{report.get('scanned', 0)}[/blue]\n"
        f"• Enqueued: [green]{report.get('enqueued', 0)}[/green]\n"
        f"• Deduplicated: [cyan]{report.get('deduplicated', 0)}[/cyan]\n"
        f"• Failed: [red]{report.get('failed', 0)}[/red]"
    )
    border = "red" if report.get("failed") else "green"
    return Panel(content, title=f"Scan: {report.get('scan', '?')}", border_style=border)
