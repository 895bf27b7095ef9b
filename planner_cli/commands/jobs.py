"""Job Commands - queue introspection and operator actions over the API"""

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.base import PlannerAPIError
from ..client.endpoints import PlannerClient
from ..utils.formatting import (
    create_jobs_table,
    create_queue_stats_table,
    print_error,
    print_success,
    print_warning,
)

console = Console()


def stats():
    """📊 Show per-queue job counts"""
    try:
        with PlannerClient() as client:
            queue_stats = client.get_queue_stats()
    except PlannerAPIError as e:
        print_error(f"Failed to fetch queue stats: {e}")
        raise typer.Exit(1) from None

    console.print(create_queue_stats_table(queue_stats))

    failed = sum(counts.get("failed", 0) for counts in queue_stats.values())
    if failed:
        print_warning(f"{failed} job(s) in dead letter; retry with: planner retry <job_id>")


def list_jobs(
    queue: str | None = typer.Option(None, "--queue", "-q", help="Filter by queue"),
    status: list[str] | None = typer.Option(
        None, "--status", "-s", help="Filter by status (repeatable)"
    ),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum results"),
):
    """📋 List recent jobs"""
    try:
        with PlannerClient() as client:
            result = client.list_jobs(queue=queue, status=status, limit=limit)
    except PlannerAPIError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None

    jobs = result.get("jobs", [])
    if not jobs:
        console.print("[dim]No jobs found[/dim]")
        return
    console.print(create_jobs_table(jobs))
    console.print(f"[dim]Showing {len(jobs)} of {result.get('total', len(jobs))}[/dim]")


def show(job_id: str = typer.Argument(..., help="Job ID")):
    """🔍 Show one job"""
    try:
        with PlannerClient() as client:
            job = client.get_job(job_id)
    except PlannerAPIError as e:
        print_error(f"Failed to fetch job: {e}")
        raise typer.Exit(1) from None

    lines = [
        f"• Type: [magenta]{job.get('job_type')}[/magenta]",
        f"• Status: [bold]{job.get('status')}[/bold]",
        f"• Run at: [yellow]{job.get('run_at')}[/yellow]",
        f"• Attempts: {job.get('attempts')}/{job.get('max_attempts')}",
        f"• Progress: [cyan]{job.get('progress', 0)}%[/cyan]",
    ]
    if job.get("idempotency_key"):
        lines.append(f"• Key: {job['idempotency_key']}")
    if job.get("last_error"):
        lines.append(f"• Last error: [red]{job['last_error']}[/red]")
    console.print(Panel("\n".join(lines), title=f"Job {job_id}", border_style="blue"))


def retry(job_id: str = typer.Argument(..., help="ID of a failed job")):
    """🔄 Move a dead-lettered job back to waiting"""
    try:
        with PlannerClient() as client:
            client.retry_job(job_id)
    except PlannerAPIError as e:
        print_error(f"Retry failed: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job_id} queued for retry")


def cancel(idempotency_key: str = typer.Argument(..., help="Idempotency key")):
    """🛑 Cancel the waiting or delayed job holding a key"""
    try:
        with PlannerClient() as client:
            client.cancel_pending(idempotency_key)
    except PlannerAPIError as e:
        print_error(f"Cancel failed: {e}")
        raise typer.Exit(1) from None

    print_success(f"Cancelled pending job for {idempotency_key}")
