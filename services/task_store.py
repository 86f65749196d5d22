"""Persistence for scheduled HTTP tasks and their run history."""

import logging
import math
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jobs.exceptions import (
    SchedulerStorageError,
    TaskNotFoundError,
    TaskValidationError,
)
from models.base import get_db_session
from models.scheduled_task import (
    TASK_NAME_MAX_LEN,
    TASK_NAME_MIN_LEN,
    TASK_TIMEOUT_DEFAULT,
    TASK_TIMEOUT_MAX,
    TASK_TIMEOUT_MIN,
    TASK_URL_MAX_LEN,
    ScheduledTask,
    task_job_name,
)
from models.task_run import ScheduledTaskRun
from services.schedule_parser import validate_schedule
from services.url_safety import validate_task_url

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]

# Pagination constants
DEFAULT_RUNS_PER_PAGE = 20
MAX_RUNS_PER_PAGE = 100


@dataclass(frozen=True)
class ScheduledTaskRecord:
    """Detached snapshot of a ScheduledTask row."""

    id: int
    name: str
    url: str
    schedule: str
    is_active: bool
    timeout_seconds: int
    created_by: str | None
    created_at: datetime | None
    updated_at: datetime | None

    @property
    def registry_name(self) -> str:
        """Name of this task's entry in the job registry."""
        return task_job_name(self.id)

    @classmethod
    def from_model(cls, task: ScheduledTask) -> "ScheduledTaskRecord":
        return cls(
            id=task.id,
            name=task.name,
            url=task.url,
            schedule=task.schedule,
            is_active=bool(task.is_active),
            timeout_seconds=task.timeout_seconds,
            created_by=task.created_by,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )


@dataclass(frozen=True)
class TaskRunRecord:
    """Detached snapshot of a ScheduledTaskRun row."""

    id: int
    task_id: int
    status: str
    status_code: int | None
    response_summary: str | None
    duration_ms: int | None
    error_message: str | None
    triggered_by: str | None
    started_at: datetime
    completed_at: datetime | None

    @classmethod
    def from_model(cls, run: ScheduledTaskRun) -> "TaskRunRecord":
        return cls(
            id=run.id,
            task_id=run.task_id,
            status=run.status,
            status_code=run.status_code,
            response_summary=run.response_summary,
            duration_ms=run.duration_ms,
            error_message=run.error_message,
            triggered_by=run.triggered_by,
            started_at=run.started_at,
            completed_at=run.completed_at,
        )


@dataclass(frozen=True)
class TaskRunPage:
    """One page of run history plus pagination metadata."""

    runs: list[TaskRunRecord]
    total: int
    page: int
    per_page: int

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into SchedulerStorageError."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Failed to {action}: {e}")
        raise SchedulerStorageError(f"failed to {action}") from e


def clamp_timeout(value: Any, default: int = TASK_TIMEOUT_DEFAULT) -> int:
    """Parse a timeout and clamp it to the allowed range.

    Missing, non-numeric, zero or negative values fall back to the default.
    """
    timeout = default
    if value is not None and value != "":
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            parsed = 0
        if parsed > 0:
            timeout = parsed
    return max(TASK_TIMEOUT_MIN, min(TASK_TIMEOUT_MAX, timeout))


def validate_task_fields(name: str, url: str, schedule: str) -> tuple[str, str, str]:
    """Validate user-supplied task fields and return them stripped.

    Raises:
        TaskValidationError: Missing field or length out of range
        UnsafeURLError: URL fails the SSRF guard
        ScheduleValidationError: Schedule does not parse
    """
    name = (name or "").strip()
    url = (url or "").strip()
    schedule = (schedule or "").strip()

    if not name or not url or not schedule:
        raise TaskValidationError("name, URL and schedule are required")
    if not TASK_NAME_MIN_LEN <= len(name) <= TASK_NAME_MAX_LEN:
        raise TaskValidationError(
            f"name must be between {TASK_NAME_MIN_LEN} and {TASK_NAME_MAX_LEN} characters"
        )
    if len(url) > TASK_URL_MAX_LEN:
        raise TaskValidationError(f"URL must be at most {TASK_URL_MAX_LEN} characters")

    validate_task_url(url)
    validate_schedule(schedule)
    return name, url, schedule


class TaskStore:
    """CRUD for scheduled tasks plus the append-only run log."""

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        default_timeout: int = TASK_TIMEOUT_DEFAULT,
    ):
        self._session_factory = session_factory or get_db_session
        self.default_timeout = default_timeout

    # Tasks

    def create_task(
        self,
        name: str,
        url: str,
        schedule: str,
        timeout_seconds: Any = None,
        created_by: str | None = None,
        is_active: bool = True,
    ) -> ScheduledTaskRecord:
        """Validate and insert a new task."""
        name, url, schedule = validate_task_fields(name, url, schedule)
        now = datetime.now(UTC)

        with storage_errors("create scheduled task"), self._session_factory() as session:
            task = ScheduledTask(
                name=name,
                url=url,
                schedule=schedule,
                is_active=is_active,
                timeout_seconds=clamp_timeout(timeout_seconds, self.default_timeout),
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
            session.add(task)
            session.commit()
            record = ScheduledTaskRecord.from_model(task)

        logger.info(f"Created scheduled task {record.id} ({record.name})")
        return record

    def update_task(
        self,
        task_id: int,
        name: str,
        url: str,
        schedule: str,
        timeout_seconds: Any = None,
    ) -> ScheduledTaskRecord:
        """Validate and update a task's editable fields."""
        name, url, schedule = validate_task_fields(name, url, schedule)

        with storage_errors("update scheduled task"), self._session_factory() as session:
            task = self._load(session, task_id)
            task.name = name
            task.url = url
            task.schedule = schedule
            task.timeout_seconds = clamp_timeout(timeout_seconds, self.default_timeout)
            task.updated_at = datetime.now(UTC)
            session.commit()
            return ScheduledTaskRecord.from_model(task)

    def restore_task(self, record: ScheduledTaskRecord) -> ScheduledTaskRecord:
        """Write a previous snapshot back over the row, without validation."""
        with storage_errors("restore scheduled task"), self._session_factory() as session:
            task = self._load(session, record.id)
            task.name = record.name
            task.url = record.url
            task.schedule = record.schedule
            task.timeout_seconds = record.timeout_seconds
            task.is_active = record.is_active
            task.updated_at = datetime.now(UTC)
            session.commit()
            return ScheduledTaskRecord.from_model(task)

    def set_active(self, task_id: int, is_active: bool) -> ScheduledTaskRecord:
        """Toggle whether a task is scheduled."""
        with storage_errors("toggle scheduled task"), self._session_factory() as session:
            task = self._load(session, task_id)
            task.is_active = is_active
            task.updated_at = datetime.now(UTC)
            session.commit()
            return ScheduledTaskRecord.from_model(task)

    def get_task(self, task_id: int) -> ScheduledTaskRecord:
        """Get a task by id.

        Raises:
            TaskNotFoundError: If no such task exists
        """
        with storage_errors("load scheduled task"), self._session_factory() as session:
            return ScheduledTaskRecord.from_model(self._load(session, task_id))

    def list_tasks(self) -> list[ScheduledTaskRecord]:
        """List every task ordered by name."""
        with storage_errors("list scheduled tasks"), self._session_factory() as session:
            tasks = session.query(ScheduledTask).order_by(ScheduledTask.name).all()
            return [ScheduledTaskRecord.from_model(task) for task in tasks]

    def list_active_tasks(self) -> list[ScheduledTaskRecord]:
        """List active tasks ordered by name."""
        with storage_errors("list active scheduled tasks"), self._session_factory() as session:
            tasks = (
                session.query(ScheduledTask)
                .filter(ScheduledTask.is_active.is_(True))
                .order_by(ScheduledTask.name)
                .all()
            )
            return [ScheduledTaskRecord.from_model(task) for task in tasks]

    def delete_task(self, task_id: int) -> None:
        """Delete a task and, by cascade, its run history."""
        with storage_errors("delete scheduled task"), self._session_factory() as session:
            task = self._load(session, task_id)
            session.delete(task)
            session.commit()
        logger.info(f"Deleted scheduled task {task_id}")

    # Runs

    def record_run(
        self,
        task_id: int,
        status: str,
        started_at: datetime,
        completed_at: datetime | None = None,
        status_code: int | None = None,
        duration_ms: int | None = None,
        error_message: str | None = None,
        response_summary: str | None = None,
        triggered_by: str | None = None,
    ) -> TaskRunRecord:
        """Append one run record."""
        with storage_errors("record task run"), self._session_factory() as session:
            run = ScheduledTaskRun(
                task_id=task_id,
                status=status,
                status_code=status_code,
                duration_ms=duration_ms,
                error_message=error_message,
                response_summary=response_summary,
                triggered_by=triggered_by,
                started_at=started_at,
                completed_at=completed_at,
            )
            session.add(run)
            session.commit()
            return TaskRunRecord.from_model(run)

    def list_runs(
        self, task_id: int, page: int = 1, per_page: int = DEFAULT_RUNS_PER_PAGE
    ) -> TaskRunPage:
        """Get one page of a task's run history, newest first."""
        page = max(1, page)
        # Cap per_page at MAX_RUNS_PER_PAGE (silent capping)
        per_page = max(1, min(per_page, MAX_RUNS_PER_PAGE))

        with storage_errors("list task runs"), self._session_factory() as session:
            query = session.query(ScheduledTaskRun).filter(
                ScheduledTaskRun.task_id == task_id
            )
            total = query.count()
            runs = (
                query.order_by(
                    ScheduledTaskRun.started_at.desc(), ScheduledTaskRun.id.desc()
                )
                .offset((page - 1) * per_page)
                .limit(per_page)
                .all()
            )
            return TaskRunPage(
                runs=[TaskRunRecord.from_model(run) for run in runs],
                total=total,
                page=page,
                per_page=per_page,
            )

    def count_runs(self, task_id: int) -> int:
        """Count all runs recorded for a task."""
        with storage_errors("count task runs"), self._session_factory() as session:
            return (
                session.query(ScheduledTaskRun)
                .filter(ScheduledTaskRun.task_id == task_id)
                .count()
            )

    def delete_runs_older_than(self, cutoff: datetime, task_id: int | None = None) -> int:
        """Delete runs started before the cutoff. Returns the number deleted."""
        with storage_errors("delete old task runs"), self._session_factory() as session:
            query = session.query(ScheduledTaskRun).filter(
                ScheduledTaskRun.started_at < cutoff
            )
            if task_id is not None:
                query = query.filter(ScheduledTaskRun.task_id == task_id)
            deleted = query.delete(synchronize_session=False)
            session.commit()
            return deleted

    @staticmethod
    def _load(session: Session, task_id: int) -> ScheduledTask:
        task = session.get(ScheduledTask, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task
