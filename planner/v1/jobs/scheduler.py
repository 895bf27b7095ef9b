"""
Cron trigger for the reconciliation scans and retention cleanup.

Any number of replicas may run this loop: duplicate firings produce
duplicate enqueue calls, which the idempotency keys absorb.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from planner.config.logging import get_logger
from planner.config.settings import Settings
from planner.infra.database import Database
from planner.v1.jobs.clock import Clock, next_cron_time, utcnow
from planner.v1.jobs.reconciler import QueueReconciler, ScanName
from planner.v1.jobs.service import JobService

logger = get_logger(__name__)

MAX_SLEEP_SECONDS = 60


@dataclass
class ScheduledTask:
    name: str
    cron: str
    run: Callable[[], Awaitable[Any]]
    next_run: datetime | None = None


class ReconcilerScheduler:
    """Runs each scan on its cron schedule."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        *,
        clock: Clock = utcnow,
        reconciler: QueueReconciler | None = None,
    ):
        self.settings = settings
        self.database = database
        self.clock = clock
        self.reconciler = reconciler or QueueReconciler(settings, database, clock)
        self.jobs = JobService(settings, clock=clock)
        self.running = False
        self.tasks = self._build_tasks()

    def _build_tasks(self) -> list[ScheduledTask]:
        settings = self.settings
        crons = {
            ScanName.POSTING_REMINDERS: settings.posting_reminder_scan_cron,
            ScanName.QUOTA_RESETS: settings.quota_reset_scan_cron,
            ScanName.TRIAL_EXPIRATIONS: settings.trial_expiration_scan_cron,
            ScanName.ANALYTICS: settings.analytics_scan_cron,
            ScanName.AUTO_POSTS: settings.auto_post_scan_cron,
        }

        def scan_runner(scan: ScanName) -> Callable[[], Awaitable[Any]]:
            return lambda: self.reconciler.run_scan(scan)

        tasks = [
            ScheduledTask(scan.value, cron, scan_runner(scan))
            for scan, cron in crons.items()
        ]
        tasks.append(ScheduledTask("job-cleanup", settings.job_cleanup_cron, self.cleanup))
        return tasks

    def arm(self) -> None:
        """Compute each task's first firing from the current time."""
        now = self.clock()
        for task in self.tasks:
            task.next_run = next_cron_time(task.cron, now, self.settings.scheduler_timezone)

    async def start(self) -> None:
        if self.running:
            raise RuntimeError("Scheduler is already running")

        self.running = True
        logger.info(
            "Starting reconciler scheduler",
            tasks={task.name: task.cron for task in self.tasks},
            timezone=self.settings.scheduler_timezone,
        )
        try:
            await self.run_startup_scans()
            self.arm()
            while self.running:
                due_at = min(task.next_run for task in self.tasks if task.next_run)
                wait = (due_at - self.clock()).total_seconds()
                if wait > 0:
                    await asyncio.sleep(min(wait, MAX_SLEEP_SECONDS))
                    continue
                await self.tick()
        finally:
            self.running = False

    async def stop(self) -> None:
        logger.info("Stopping reconciler scheduler")
        self.running = False

    async def tick(self) -> list[str]:
        """Run every task that is due and advance its next firing; returns the names run."""
        now = self.clock()
        ran: list[str] = []
        for task in self.tasks:
            if task.next_run is None or task.next_run > now:
                continue
            await self._run_task(task)
            task.next_run = next_cron_time(task.cron, now, self.settings.scheduler_timezone)
            ran.append(task.name)
        return ran

    async def _run_task(self, task: ScheduledTask) -> None:
        try:
            await task.run()
        except Exception:
            logger.exception("Scheduled task failed", task=task.name)

    async def run_startup_scans(self) -> None:
        """Self-heal recurring and trial jobs right after a restart."""
        for scan in (ScanName.QUOTA_RESETS, ScanName.TRIAL_EXPIRATIONS):
            try:
                await self.reconciler.run_scan(scan)
            except Exception:
                logger.exception("Startup scan failed", scan=scan.value)

    async def cleanup(self) -> int:
        async with self.database.session() as session:
            return await self.jobs.cleanup_old_jobs(session)
