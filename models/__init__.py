"""Database models for the scheduler service."""

from .base import Base
from .scheduled_task import ScheduledTask
from .scheduler_override import SchedulerOverride
from .task_run import ScheduledTaskRun

__all__ = ["Base", "ScheduledTask", "ScheduledTaskRun", "SchedulerOverride"]
