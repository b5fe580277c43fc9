"""APScheduler wiring for the scheduled jobs."""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from market_intel.config import settings
from market_intel.errors import NotFoundError
from market_intel.worker.jobs import (
    CompetitorScrapeJob,
    MarketCleanupJob,
    MarketResearchJob,
    ScheduledJob,
    StorageMonitoringJob,
)

logger = logging.getLogger(__name__)


class JobScheduler:
    """Owns the job instances and the clock that triggers them.

    The same job objects serve both cron ticks and ``run_now`` calls, so the
    per-job running flag covers both paths.
    """

    def __init__(self, jobs: Optional[list[ScheduledJob]] = None, timezone: Optional[str] = None):
        if jobs is None:
            jobs = [
                CompetitorScrapeJob(),
                MarketResearchJob(),
                MarketCleanupJob(),
                StorageMonitoringJob(),
            ]
        self.jobs: dict[str, ScheduledJob] = {job.name: job for job in jobs}
        self.timezone = timezone or settings.scheduler_timezone
        self.scheduler: Optional[AsyncIOScheduler] = None

    def get_job(self, job_name: str) -> ScheduledJob:
        job = self.jobs.get(job_name)
        if job is None:
            raise NotFoundError(f"Job not found: {job_name}")
        return job

    def start(self):
        """Schedule every enabled job and start the clock."""
        if self.scheduler is not None and self.scheduler.running:
            return

        self.scheduler = AsyncIOScheduler(timezone=self.timezone)
        for job in self.jobs.values():
            if not job.enabled:
                logger.info(f"Job {job.name} disabled, not scheduling")
                continue
            self.scheduler.add_job(
                job.run,
                CronTrigger.from_crontab(job.cron, timezone=self.timezone),
                id=job.name,
                name=job.description or job.name,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=600,
                replace_existing=True,
            )
            logger.info(f"Job {job.name} scheduled: '{job.cron}' ({self.timezone})")

        self.scheduler.start()
        logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")

    def stop(self):
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        self.scheduler = None

    async def run_now(self, job_name: str, triggered_by: str = "manual") -> dict:
        """Run a job immediately, outside its schedule.

        Raises:
            NotFoundError: Unknown job name
        """
        job = self.get_job(job_name)
        logger.info(f"Manually triggering job {job_name}")
        return await job.run(triggered_by=triggered_by)

    def status(self) -> dict:
        next_runs = {}
        if self.scheduler is not None and self.scheduler.running:
            for scheduled in self.scheduler.get_jobs():
                next_runs[scheduled.id] = scheduled.next_run_time
        return {
            "running": self.scheduler is not None and self.scheduler.running,
            "timezone": self.timezone,
            "jobs": {
                name: {**job.status(), "next_run": next_runs.get(name)}
                for name, job in self.jobs.items()
            },
        }


job_scheduler = JobScheduler()
