"""Persisted schedule overrides for built-in jobs."""

from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func

from .base import Base


class SchedulerOverride(Base):
    """Admin-supplied schedule replacing a built-in job's default."""

    __tablename__ = "scheduler_overrides"

    source = Column(String(100), primary_key=True)
    name = Column(String(255), primary_key=True)
    override_schedule = Column(String(255), nullable=False)
    updated_at = Column(
        DateTime, nullable=False, default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<SchedulerOverride(source={self.source}, name={self.name}, "
            f"schedule={self.override_schedule})>"
        )
