"""Job scheduling for the periodic health and reliability runs."""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Any
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger


logger = structlog.get_logger(__name__)


def parse_cron_expression(cron_expression: str, timezone_name: str = "UTC") -> CronTrigger:
    """Build a trigger from a five-field "minute hour day month day_of_week" expression."""
    cron_parts = cron_expression.split()
    if len(cron_parts) != 5:
        raise ValueError(f"Invalid cron expression: {cron_expression}")

    return CronTrigger(
        minute=cron_parts[0],
        hour=cron_parts[1],
        day=cron_parts[2],
        month=cron_parts[3],
        day_of_week=cron_parts[4],
        timezone=timezone_name,
    )


class JobScheduler:
    """Manages scheduled jobs using APScheduler.

    Every job runs with ``max_instances=1`` and ``coalesce=True``: a tick that is
    still running when the next fire time arrives makes the scheduler skip that
    fire rather than start an overlapping run.
    """

    def __init__(self, timezone_name: str = "UTC"):
        self.timezone_name = timezone_name
        self.scheduler = AsyncIOScheduler(timezone=timezone_name)
        self.jobs: Dict[str, Any] = {}
        self.running = False

    async def start(self):
        """Start the job scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.start()
        self.running = True
        logger.info("Job scheduler started")

    async def stop(self):
        """Stop the job scheduler."""
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Job scheduler stopped")

    def _add(self, job_id: str, func: Callable, trigger: Any, job_type: str,
             description: Optional[str], **info: Any):
        if job_id in self.jobs:
            logger.warning("Job already exists, replacing", job_id=job_id)
            self.remove_job(job_id)

        job = self.scheduler.add_job(
            func=func,
            trigger=trigger,
            id=job_id,
            name=description or job_id,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
        )

        self.jobs[job_id] = {
            "job": job,
            "type": job_type,
            "description": description,
            "added_at": datetime.now(timezone.utc),
            **info,
        }
        return job

    def add_cron_job(
        self,
        job_id: str,
        func: Callable,
        cron_expression: str,
        description: Optional[str] = None
    ):
        """Add a cron-scheduled job."""
        trigger = parse_cron_expression(cron_expression, self.timezone_name)
        self._add(job_id, func, trigger, "cron", description, expression=cron_expression)
        logger.info("Added cron job",
                    job_id=job_id,
                    cron=cron_expression,
                    description=description)

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        seconds: float,
        description: Optional[str] = None
    ):
        """Add an interval-based job."""
        if seconds <= 0:
            raise ValueError(f"Interval must be positive: {seconds}")
        trigger = IntervalTrigger(seconds=seconds, timezone=self.timezone_name)
        self._add(job_id, func, trigger, "interval", description, seconds=seconds)
        logger.info("Added interval job",
                    job_id=job_id,
                    interval_seconds=seconds,
                    description=description)

    def add_one_shot_job(
        self,
        job_id: str,
        func: Callable,
        delay_seconds: float,
        description: Optional[str] = None
    ):
        """Add a job that runs once after a delay."""
        run_date = datetime.now(timezone.utc) + timedelta(seconds=max(0.0, float(delay_seconds)))
        trigger = DateTrigger(run_date=run_date)
        self._add(job_id, func, trigger, "date", description, run_date=run_date)
        logger.info("Added one-shot job",
                    job_id=job_id,
                    delay_seconds=delay_seconds,
                    description=description)

    def remove_job(self, job_id: str) -> bool:
        """Remove a scheduled job."""
        if job_id not in self.jobs:
            logger.warning("Job not found", job_id=job_id)
            return False

        job_info = self.jobs.pop(job_id)
        # One-shot jobs drop out of APScheduler once they have fired.
        if self.scheduler.get_job(job_id) is not None:
            self.scheduler.remove_job(job_id)
        logger.info("Removed job", job_id=job_id, job_type=job_info["type"])
        return True

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Get status information for a job."""
        if job_id not in self.jobs:
            return None

        job_info = self.jobs[job_id]
        scheduler_job = self.scheduler.get_job(job_id)
        next_run = getattr(scheduler_job, "next_run_time", None) if scheduler_job else None

        return {
            "job_id": job_id,
            "name": scheduler_job.name if scheduler_job else job_info.get("description") or job_id,
            "type": job_info["type"],
            "next_run": next_run.isoformat() if next_run else None,
            "added_at": job_info["added_at"].isoformat(),
            "description": job_info.get("description"),
            "scheduled": scheduler_job is not None,
        }

    def list_jobs(self) -> List[Dict[str, Any]]:
        """List all known jobs."""
        return [status for status in (self.get_job_status(job_id) for job_id in self.jobs) if status]

    def get_scheduler_status(self) -> Dict[str, Any]:
        """Get overall scheduler status."""
        next_runs = [
            job.next_run_time for job in self.scheduler.get_jobs()
            if getattr(job, "next_run_time", None)
        ]
        next_run = min(next_runs, default=None)
        return {
            "running": self.running,
            "job_count": len(self.jobs),
            "next_run": next_run.isoformat() if next_run else None,
        }

