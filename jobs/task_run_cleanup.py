"""Task Run Cleanup Job

Scheduled job enforcing the retention policy on HTTP task run history.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from config.settings import SchedulerSettings
from services.task_store import TaskStore

from .base_job import BaseJob

logger = logging.getLogger(__name__)


class TaskRunCleanupJob(BaseJob):
    """Job for deleting old scheduled task run records."""

    JOB_NAME = "task_run_cleanup"
    JOB_DESCRIPTION = "Delete scheduled task run history older than the retention period"
    DEFAULT_SCHEDULE = "0 3 * * *"

    def __init__(
        self,
        settings: SchedulerSettings,
        task_store: TaskStore,
        retention_days: int | None = None,
    ):
        """
        Initialize the cleanup job.

        Args:
            settings: Scheduler settings
            task_store: Store owning the run history
            retention_days: Days of history to keep, defaults to the configured value
        """
        super().__init__(settings)
        self.task_store = task_store
        self.retention_days = (
            retention_days
            if retention_days is not None
            else settings.task_run_retention_days
        )

    def _execute_job(self) -> dict[str, Any]:
        """Delete runs that started before the retention cutoff."""
        cutoff = datetime.now(UTC) - timedelta(days=self.retention_days)
        deleted = self.task_store.delete_runs_older_than(cutoff)

        if deleted:
            logger.info(
                f"Deleted {deleted} task run(s) older than {self.retention_days} days"
            )

        return {
            "cutoff": cutoff.isoformat(),
            "retention_days": self.retention_days,
            "records_processed": deleted,
            "records_success": deleted,
            "records_failed": 0,
        }
