"""Runtime Commands - worker, scheduler and one-off reconciliation scans"""

import asyncio

import typer
from rich.console import Console

from planner.config.logging import setup_logging
from planner.config.settings import Settings, get_settings
from planner.infra.database import Database
from planner.v1.core.registries import job_registry
from planner.v1.jobs.reconciler import QueueReconciler, ScanName, ScanReport
from planner.v1.jobs.registry_init import register_job_processors
from planner.v1.jobs.scheduler import ReconcilerScheduler
from planner.v1.jobs.types import QueueName
from planner.v1.jobs.worker import JobWorker

from ..utils.formatting import create_scan_report_panel, print_error, print_info

console = Console()


def worker(
    queue: list[QueueName] | None = typer.Option(
        None, "--queue", "-q", help="Only drain these queues (repeatable)"
    ),
):
    """⚙️ Run a job worker"""
    settings = get_settings()
    setup_logging()
    queues = queue or None
    print_info(
        f"Starting worker for {', '.join(q.value for q in queues) if queues else 'all queues'}"
    )
    try:
        asyncio.run(_run_worker(settings, queues))
    except KeyboardInterrupt:
        print_info("Worker stopped")


async def _run_worker(settings: Settings, queues: list[QueueName] | None) -> None:
    database = Database(settings)
    register_job_processors(settings)
    if settings.environment != "development":
        job_registry.freeze()

    job_worker = JobWorker(settings, database, queues=queues)
    try:
        await job_worker.start()
    finally:
        await job_worker.stop()
        await database.close()


def scheduler():
    """⏰ Run the reconciliation scheduler"""
    settings = get_settings()
    setup_logging()
    print_info(f"Starting scheduler (timezone {settings.scheduler_timezone})")
    try:
        asyncio.run(_run_scheduler(settings))
    except KeyboardInterrupt:
        print_info("Scheduler stopped")


async def _run_scheduler(settings: Settings) -> None:
    database = Database(settings)
    reconciler_scheduler = ReconcilerScheduler(settings, database)
    try:
        await reconciler_scheduler.start()
    finally:
        await reconciler_scheduler.stop()
        await database.close()


def reconcile(
    scan: ScanName = typer.Argument(..., help="Scan to run now"),
):
    """🔁 Run one reconciliation scan and print its report"""
    settings = get_settings()
    setup_logging()
    try:
        report = asyncio.run(_run_scan(settings, scan))
    except Exception as e:
        print_error(f"Scan failed: {e}")
        raise typer.Exit(1) from None

    console.print(create_scan_report_panel(report.as_dict()))
    if report.failed:
        raise typer.Exit(1)


async def _run_scan(settings: Settings, scan: ScanName) -> ScanReport:
    database = Database(settings)
    try:
        return await QueueReconciler(settings, database).run_scan(scan)
    finally:
        await database.close()
