"""Scheduler service runtime."""

import logging
import signal
import sys
import threading
from pathlib import Path

from config.settings import SchedulerSettings, get_settings
from jobs.base_job import register_builtin_job
from jobs.job_registry import JobRegistry
from jobs.task_run_cleanup import TaskRunCleanupJob
from models.base import create_tables, init_db
from services.override_store import ScheduleOverrideStore
from services.scheduler_service import SchedulerService
from services.task_executor import TaskExecutor
from services.task_service import TaskService
from services.task_store import TaskStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: SchedulerSettings) -> None:
    """Configure logging with both console and file handlers."""
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT)

    # Console handler (for docker logs)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    # File handler (persistent logs)
    file_handler = logging.FileHandler(log_dir / "scheduler.log")
    file_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)


class SchedulerRuntime:
    """Owns and wires every scheduler component for one process."""

    def __init__(self, settings: SchedulerSettings):
        self.settings = settings
        self.scheduler_service = SchedulerService(settings)
        self.override_store = ScheduleOverrideStore()
        self.task_store = TaskStore(default_timeout=settings.task_default_timeout_seconds)
        self.job_registry = JobRegistry(self.scheduler_service, self.override_store)
        self.task_executor = TaskExecutor(settings, self.job_registry, self.task_store)
        self.task_service = TaskService(self.task_store, self.task_executor)

    def builtin_jobs(self) -> list:
        """Built-in jobs registered at startup."""
        return [TaskRunCleanupJob(self.settings, self.task_store)]

    def start(self) -> None:
        """Bring the scheduler up.

        Built-in jobs are registered before persisted overrides are replayed,
        so an override always lands on an existing entry.
        """
        init_db(self.settings.database_url)
        create_tables()

        self.scheduler_service.start()

        for job in self.builtin_jobs():
            register_builtin_job(self.job_registry, job)

        self.job_registry.replay_overrides()
        self.task_executor.load_and_schedule_all()
        logger.info("Scheduler runtime started")

    def shutdown(self, wait: bool = True) -> None:
        """Stop the scheduler, waiting for running jobs when wait is True."""
        self.scheduler_service.shutdown(wait=wait)
        logger.info("Scheduler runtime stopped")


def main() -> None:
    """Main entry point."""
    settings = get_settings()
    configure_logging(settings)

    runtime = SchedulerRuntime(settings)
    runtime.start()

    stop_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    info = runtime.scheduler_service.get_scheduler_info()
    logger.info(
        f"Scheduler running with {info['jobs_count']} job(s) in {info['timezone']}"
    )

    stop_event.wait()
    runtime.shutdown()


if __name__ == "__main__":
    main()
