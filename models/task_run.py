"""Task run model for tracking individual task executions."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import Base

RUN_STATUS_SUCCESS = "success"
RUN_STATUS_FAILED = "failed"


class ScheduledTaskRun(Base):
    """Append-only record of one scheduled task execution."""

    __tablename__ = "scheduled_task_runs"
    __table_args__ = (
        Index("ix_scheduled_task_runs_task_started", "task_id", "started_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(
        Integer,
        ForeignKey("scheduled_tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Execution details
    status = Column(String(50), nullable=False)  # 'success', 'failed'
    status_code = Column(Integer, nullable=True)
    response_summary = Column(String(255), nullable=True)  # Never the raw body
    error_message = Column(Text, nullable=True)
    triggered_by = Column(String(50), nullable=True)  # 'scheduler', 'manual'

    # Timing information
    duration_ms = Column(Integer, nullable=True)
    started_at = Column(DateTime, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)

    task = relationship("ScheduledTask", back_populates="runs")

    def __repr__(self) -> str:
        return (
            f"<ScheduledTaskRun(id={self.id}, task_id={self.task_id}, "
            f"status={self.status})>"
        )

    @property
    def is_success(self) -> bool:
        """Check if the run completed successfully."""
        return self.status == RUN_STATUS_SUCCESS
