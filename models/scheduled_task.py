"""Scheduled task model for admin-authored HTTP ping tasks."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .base import Base

TASK_NAME_MIN_LEN = 3
TASK_NAME_MAX_LEN = 100
TASK_URL_MAX_LEN = 2048
TASK_TIMEOUT_MIN = 1
TASK_TIMEOUT_MAX = 300
TASK_TIMEOUT_DEFAULT = 30


def task_job_name(task_id: int) -> str:
    """Name of a task's entry in the job registry."""
    return f"task_{task_id}"


class ScheduledTask(Base):
    """Model for a user-created task that pings a URL on a schedule."""

    __tablename__ = "scheduled_tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # User-provided task information
    name = Column(String(TASK_NAME_MAX_LEN), nullable=False)
    url = Column(String(TASK_URL_MAX_LEN), nullable=False)
    schedule = Column(String(255), nullable=False)  # Cron expression or shortcut

    # Status tracking
    is_active = Column(Boolean, nullable=False, default=True)
    timeout_seconds = Column(Integer, nullable=False, default=TASK_TIMEOUT_DEFAULT)

    # Metadata
    created_by = Column(String(255), nullable=True)  # Admin who created the task

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(
        DateTime, nullable=False, default=func.now(), onupdate=func.now()
    )

    # Relationship to task runs
    runs = relationship(
        "ScheduledTaskRun",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<ScheduledTask(id={self.id}, name={self.name}, active={self.is_active})>"

    @property
    def registry_name(self) -> str:
        """Name of this task's entry in the job registry."""
        return task_job_name(self.id)
