"""Persistence for admin overrides of built-in job schedules."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from models.base import get_db_session
from models.scheduler_override import SchedulerOverride
from services.task_store import SessionFactory, storage_errors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleOverrideRecord:
    """Detached snapshot of a SchedulerOverride row."""

    source: str
    name: str
    schedule: str
    updated_at: datetime | None


class ScheduleOverrideStore:
    """Upsert/delete/list of (source, name) -> schedule overrides."""

    def __init__(self, session_factory: SessionFactory | None = None):
        self._session_factory = session_factory or get_db_session

    def get(self, source: str, name: str) -> str | None:
        """Return the override schedule for a job, or None."""
        with storage_errors("load schedule override"), self._session_factory() as session:
            override = session.get(SchedulerOverride, (source, name))
            return override.override_schedule if override else None

    def upsert(self, source: str, name: str, schedule: str) -> None:
        """Insert or replace the override for a job."""
        with storage_errors("persist schedule override"), self._session_factory() as session:
            session.merge(
                SchedulerOverride(
                    source=source,
                    name=name,
                    override_schedule=schedule,
                    updated_at=datetime.now(UTC),
                )
            )
            session.commit()
        logger.debug(f"Persisted schedule override {source}:{name} -> {schedule}")

    def delete(self, source: str, name: str) -> bool:
        """Delete the override for a job. Returns True if one existed."""
        with storage_errors("remove schedule override"), self._session_factory() as session:
            deleted = (
                session.query(SchedulerOverride)
                .filter(
                    SchedulerOverride.source == source,
                    SchedulerOverride.name == name,
                )
                .delete(synchronize_session=False)
            )
            session.commit()
        return deleted > 0

    def list_all(self) -> list[ScheduleOverrideRecord]:
        """List every persisted override ordered by source then name."""
        with storage_errors("list schedule overrides"), self._session_factory() as session:
            overrides = (
                session.query(SchedulerOverride)
                .order_by(SchedulerOverride.source, SchedulerOverride.name)
                .all()
            )
            return [
                ScheduleOverrideRecord(
                    source=o.source,
                    name=o.name,
                    schedule=o.override_schedule,
                    updated_at=o.updated_at,
                )
                for o in overrides
            ]
