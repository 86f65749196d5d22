"""Task lifecycle service: keeps task rows and live schedules consistent."""

import logging
from typing import Any

from jobs.exceptions import SchedulerError, SchedulerStorageError
from services.task_executor import TaskExecutor
from services.task_store import ScheduledTaskRecord, TaskStore
from task_types import TaskRunResult

logger = logging.getLogger(__name__)


class TaskService:
    """Create, edit, toggle, delete and trigger HTTP tasks.

    Create, update and toggle write the row first and then change the live
    entry. When the live change fails the row is put back the way it was.
    Delete goes the other way round and reschedules the task when the row
    cannot be deleted.
    """

    def __init__(self, task_store: TaskStore, executor: TaskExecutor):
        self.task_store = task_store
        self.executor = executor

    def create_task(
        self,
        name: str,
        url: str,
        schedule: str,
        timeout_seconds: Any = None,
        created_by: str | None = None,
        is_active: bool = True,
    ) -> ScheduledTaskRecord:
        """Insert a task and schedule it when active."""
        task = self.task_store.create_task(
            name=name,
            url=url,
            schedule=schedule,
            timeout_seconds=timeout_seconds,
            created_by=created_by,
            is_active=is_active,
        )

        try:
            self.executor.add_task(task)
        except (SchedulerError, RuntimeError):
            logger.error(f"Failed to schedule new task {task.id}, removing it")
            self.task_store.delete_task(task.id)
            raise

        return task

    def update_task(
        self,
        task_id: int,
        name: str,
        url: str,
        schedule: str,
        timeout_seconds: Any = None,
    ) -> ScheduledTaskRecord:
        """Update a task's fields and reschedule it when active."""
        previous = self.task_store.get_task(task_id)
        task = self.task_store.update_task(
            task_id,
            name=name,
            url=url,
            schedule=schedule,
            timeout_seconds=timeout_seconds,
        )

        try:
            self.executor.reschedule_task(task)
        except (SchedulerError, RuntimeError):
            logger.error(f"Failed to reschedule task {task_id}, restoring previous values")
            self.task_store.restore_task(previous)
            self.executor.reschedule_task(previous)
            raise

        return task

    def set_active(self, task_id: int, is_active: bool) -> ScheduledTaskRecord:
        """Activate or deactivate a task."""
        previous = self.task_store.get_task(task_id)
        task = self.task_store.set_active(task_id, is_active)

        try:
            if is_active:
                self.executor.add_task(task)
            else:
                self.executor.remove_task(task_id)
        except (SchedulerError, RuntimeError):
            logger.error(f"Failed to toggle task {task_id}, restoring previous state")
            self.task_store.set_active(task_id, previous.is_active)
            raise

        logger.info(f"Task {task_id} {'activated' if is_active else 'deactivated'}")
        return task

    def delete_task(self, task_id: int) -> None:
        """Unschedule a task and delete it with its run history.

        If the row cannot be deleted the task is scheduled again.
        """
        task = self.task_store.get_task(task_id)
        was_scheduled = self.executor.remove_task(task_id)

        try:
            self.task_store.delete_task(task_id)
        except SchedulerStorageError:
            if was_scheduled:
                logger.error(f"Failed to delete task {task_id}, restoring its schedule")
                self.executor.add_task(task)
            raise

        logger.info(f"Task {task_id} deleted")

    def trigger_task(self, task_id: int) -> TaskRunResult:
        """Run a task now. See TaskExecutor.trigger_task."""
        return self.executor.trigger_task(task_id)
