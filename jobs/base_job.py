"""Base class for all built-in scheduled jobs."""

import logging
import traceback
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any

from config.settings import SchedulerSettings
from jobs.job_registry import CORE_SOURCE, JobInfo, JobRegistry
from task_types import JobExecutionResult

logger = logging.getLogger(__name__)


class BaseJob(ABC):
    """Base class for all built-in scheduled jobs."""

    JOB_SOURCE: str = CORE_SOURCE
    JOB_NAME: str = "base_job"
    JOB_DESCRIPTION: str = "Base job class"
    DEFAULT_SCHEDULE: str = "@daily"
    ALLOW_MANUAL_TRIGGER: bool = True

    def __init__(self, settings: SchedulerSettings):
        """Initialize the base job."""
        self.settings = settings

    @abstractmethod
    def _execute_job(self) -> dict[str, Any]:
        """Execute the actual job logic. Must be implemented by subclasses."""
        pass

    def execute(self) -> JobExecutionResult:
        """Execute the job with error handling and logging."""
        start_time = datetime.now(UTC)
        logger.info(f"Starting job: {self.JOB_SOURCE}:{self.JOB_NAME}")

        try:
            result = self._execute_job()

            execution_time = (datetime.now(UTC) - start_time).total_seconds()
            logger.info(
                f"Job completed successfully: {self.JOB_SOURCE}:{self.JOB_NAME} "
                f"(Duration: {execution_time:.2f}s)"
            )

            return {
                "status": "success",
                "job_source": self.JOB_SOURCE,
                "job_name": self.JOB_NAME,
                "start_time": start_time.isoformat(),
                "execution_time_seconds": execution_time,
                "result": result,
                **_record_counts(result),
            }

        except Exception as e:
            execution_time = (datetime.now(UTC) - start_time).total_seconds()
            error_type = type(e).__name__

            logger.error(
                f"Job failed: {self.JOB_SOURCE}:{self.JOB_NAME} "
                f"(Duration: {execution_time:.2f}s)\n"
                f"Error Type: {error_type}\n"
                f"Error Message: {e}\n"
                f"Stack Trace:\n{traceback.format_exc()}"
            )

            return {
                "status": "error",
                "job_source": self.JOB_SOURCE,
                "job_name": self.JOB_NAME,
                "start_time": start_time.isoformat(),
                "execution_time_seconds": execution_time,
                "error": str(e),
                "error_type": error_type,
            }


def _record_counts(result: dict[str, Any]) -> dict[str, int]:
    return {
        key: result[key]
        for key in ("records_processed", "records_success", "records_failed")
        if key in result
    }


def register_builtin_job(registry: JobRegistry, job: BaseJob) -> JobInfo:
    """Install a built-in job in the scheduler and the registry."""
    return registry.schedule_job(
        source=job.JOB_SOURCE,
        name=job.JOB_NAME,
        description=job.JOB_DESCRIPTION,
        default_schedule=job.DEFAULT_SCHEDULE,
        job_func=job.execute,
        trigger_func=job.execute if job.ALLOW_MANUAL_TRIGGER else None,
    )
