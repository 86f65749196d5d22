"""APScheduler service: the timer engine behind the job registry."""

import logging
from collections.abc import Callable
from typing import Any

from apscheduler.events import JobEvent
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.job import Job
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from pytz import timezone as pytz_timezone

from config.settings import SchedulerSettings
from task_types import SchedulerInfo

logger = logging.getLogger(__name__)


class SchedulerService:
    """APScheduler wrapper shared by built-in jobs and HTTP tasks."""

    def __init__(self, settings: SchedulerSettings):
        """Initialize the scheduler service."""
        self.settings = settings
        self.scheduler: BackgroundScheduler | None = None
        self._setup_scheduler()

    @property
    def timezone(self):
        """Timezone triggers are evaluated in."""
        return pytz_timezone(self.settings.scheduler_timezone)

    def _setup_scheduler(self) -> None:
        """Set up the APScheduler instance."""
        # Job functions are closures rebuilt from task and override rows at
        # startup, so they live in memory only
        jobstores = {
            "default": MemoryJobStore(),
        }

        # Executors configuration
        executors = {
            "default": ThreadPoolExecutor(
                self.settings.scheduler_executors_thread_pool_max_workers
            ),
        }

        # Job defaults
        job_defaults = {
            "coalesce": self.settings.scheduler_job_defaults_coalesce,
            "max_instances": self.settings.scheduler_job_defaults_max_instances,
            "misfire_grace_time": self.settings.scheduler_job_defaults_misfire_grace_time,
        }

        # Create scheduler
        self.scheduler = BackgroundScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=self.timezone,
        )

    @property
    def running(self) -> bool:
        """Whether the scheduler thread is running."""
        return bool(self.scheduler and self.scheduler.running)

    def start(self) -> None:
        """Start the scheduler."""
        if self.scheduler and not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started successfully")

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the scheduler."""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler shut down")

    def add_job(
        self,
        func: Callable[..., Any],
        trigger: BaseTrigger,
        job_id: str,
        **kwargs: Any,
    ) -> Job:
        """Add a job to the scheduler, replacing any job with the same id."""
        if not self.running:
            raise RuntimeError("Scheduler not initialized or not running")

        job = self.scheduler.add_job(
            func=func, trigger=trigger, id=job_id, replace_existing=True, **kwargs
        )
        logger.info(f"Added job: {job.id}")
        return job

    def remove_job(self, job_id: str) -> None:
        """Remove a job from the scheduler."""
        if not self.running:
            raise RuntimeError("Scheduler not initialized or not running")

        self.scheduler.remove_job(job_id)
        logger.info(f"Removed job: {job_id}")

    def reschedule_job(self, job_id: str, trigger: BaseTrigger) -> Job:
        """Swap a job's trigger in place and recompute its next run time."""
        if not self.running:
            raise RuntimeError("Scheduler not initialized or not running")

        job = self.scheduler.reschedule_job(job_id, trigger=trigger)
        logger.info(f"Rescheduled job: {job_id}")
        return job

    def get_jobs(self) -> list[Job]:
        """Get all jobs from the scheduler."""
        if not self.running:
            return []

        return self.scheduler.get_jobs()

    def get_job(self, job_id: str) -> Job | None:
        """Get a specific job by ID."""
        if not self.scheduler:
            return None

        return self.scheduler.get_job(job_id)

    def add_listener(self, callback: Callable[[JobEvent], None], mask: int) -> None:
        """Subscribe to scheduler events."""
        self.scheduler.add_listener(callback, mask)

    def get_scheduler_info(self) -> SchedulerInfo:
        """Get scheduler information."""
        if not self.scheduler:
            return {"running": False, "jobs_count": 0, "timezone": "", "executors": []}

        jobs = self.get_jobs()
        return {
            "running": self.scheduler.running,
            "jobs_count": len(jobs),
            "timezone": str(self.scheduler.timezone),
            "executors": list(self.scheduler._executors.keys()),
        }
