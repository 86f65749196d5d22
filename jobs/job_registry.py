"""Job registry: one live catalogue of built-in jobs and HTTP tasks."""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MAX_INSTANCES,
    EVENT_JOB_MISSED,
    JobEvent,
    JobExecutionEvent,
)
from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError

from jobs.exceptions import (
    JobNotFoundError,
    JobNotReschedulableError,
    ScheduleValidationError,
    SchedulerError,
    SchedulerStorageError,
    TriggerNotAvailableError,
)
from services.override_store import ScheduleOverrideStore
from services.schedule_parser import parse_schedule
from services.scheduler_service import SchedulerService

logger = logging.getLogger(__name__)

CORE_SOURCE = "core"
TASK_SOURCE = "task"


def job_key(source: str, name: str) -> str:
    """Registry key and APScheduler job id for a (source, name) pair."""
    return f"{source}:{name}"


@dataclass(frozen=True)
class JobInfo:
    """Public snapshot of a registered job."""

    source: str
    name: str
    description: str
    default_schedule: str
    schedule: str
    is_overridden: bool
    last_run: datetime | None
    next_run: datetime | None
    can_trigger: bool


@dataclass
class _RegisteredJob:
    source: str
    name: str
    description: str
    default_schedule: str
    schedule: str
    job: Job
    job_func: Callable[[], Any]
    trigger_func: Callable[[], Any] | None
    is_overridden: bool = False

    @property
    def key(self) -> str:
        return job_key(self.source, self.name)


class JobRegistry:
    """Registry for every scheduled job, whatever its source.

    All descriptor reads and writes go through one re-entrant lock. Schedule
    swaps hold it for the whole persist-then-reschedule sequence.
    """

    def __init__(
        self,
        scheduler_service: SchedulerService,
        override_store: ScheduleOverrideStore,
    ):
        """Initialize the job registry."""
        self.scheduler_service = scheduler_service
        self.override_store = override_store

        self._lock = threading.RLock()
        self._jobs: dict[str, _RegisteredJob] = {}

        # Execution events can be dispatched while APScheduler holds its job
        # store lock, so last-run bookkeeping never waits on self._lock
        self._last_runs: dict[str, datetime] = {}
        self._last_runs_lock = threading.Lock()

        scheduler_service.add_listener(
            self._on_job_finished, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR
        )
        scheduler_service.add_listener(
            self._on_job_skipped, EVENT_JOB_MAX_INSTANCES | EVENT_JOB_MISSED
        )

    # Registration

    def register(
        self,
        source: str,
        name: str,
        description: str,
        default_schedule: str,
        job: Job,
        job_func: Callable[[], Any],
        trigger_func: Callable[[], Any] | None = None,
    ) -> None:
        """Record a job that is already installed in the scheduler.

        Args:
            source: Namespace, e.g. "core", a module name, or "task"
            name: Unique name within the source
            description: Human-readable description
            default_schedule: Schedule baked into code
            job: Live APScheduler job handle for the installed entry
            job_func: Callable the timer fires
            trigger_func: Callable for manual "run now", None to disallow
        """
        key = job_key(source, name)
        with self._lock:
            if key in self._jobs:
                logger.warning(f"Job '{key}' already registered, overwriting")

            self._jobs[key] = _RegisteredJob(
                source=source,
                name=name,
                description=description,
                default_schedule=default_schedule,
                schedule=default_schedule,
                job=job,
                job_func=job_func,
                trigger_func=trigger_func,
            )

        logger.debug(f"Registered scheduled job {key} ({default_schedule})")

    def schedule_job(
        self,
        source: str,
        name: str,
        description: str,
        default_schedule: str,
        job_func: Callable[[], Any],
        trigger_func: Callable[[], Any] | None = None,
    ) -> JobInfo:
        """Install a job in the scheduler and register it.

        Raises:
            ScheduleValidationError: If default_schedule does not parse
        """
        trigger = parse_schedule(default_schedule, self.scheduler_service.timezone)
        key = job_key(source, name)

        with self._lock:
            job = self.scheduler_service.add_job(
                job_func, trigger, job_id=key, name=description or key
            )
            self.register(
                source, name, description, default_schedule, job, job_func, trigger_func
            )
            return self._snapshot(self._jobs[key])

    def unregister(self, source: str, name: str) -> bool:
        """Remove a job's live entry and descriptor. Returns False if unknown."""
        key = job_key(source, name)
        with self._lock:
            registered = self._jobs.pop(key, None)
            if registered is None:
                return False

            try:
                self.scheduler_service.remove_job(registered.job.id)
            except JobLookupError:
                logger.debug(f"Job '{key}' had no live scheduler entry")

        with self._last_runs_lock:
            self._last_runs.pop(key, None)

        logger.debug(f"Unregistered scheduled job {key}")
        return True

    # Read model

    def list(self) -> list[JobInfo]:
        """Snapshot of all jobs sorted by source then name."""
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: (j.source, j.name))
            return [self._snapshot(job) for job in jobs]

    def get(self, source: str, name: str) -> JobInfo | None:
        """Snapshot of one job, or None if it is not registered."""
        with self._lock:
            registered = self._jobs.get(job_key(source, name))
            return self._snapshot(registered) if registered else None

    def has_job(self, source: str, name: str) -> bool:
        with self._lock:
            return job_key(source, name) in self._jobs

    def _snapshot(self, registered: _RegisteredJob) -> JobInfo:
        live = self.scheduler_service.get_job(registered.job.id)
        # Pending jobs (scheduler not started) have no next_run_time yet
        next_run = getattr(live, "next_run_time", None) if live else None
        with self._last_runs_lock:
            last_run = self._last_runs.get(registered.key)

        return JobInfo(
            source=registered.source,
            name=registered.name,
            description=registered.description,
            default_schedule=registered.default_schedule,
            schedule=registered.schedule,
            is_overridden=registered.is_overridden,
            last_run=last_run,
            next_run=next_run,
            can_trigger=registered.trigger_func is not None,
        )

    # Schedule changes

    def update_schedule(self, source: str, name: str, new_schedule: str) -> None:
        """Override a job's schedule and persist the override.

        Raises:
            JobNotFoundError: Unknown job
            JobNotReschedulableError: Task jobs keep their schedule on the task row
            ScheduleValidationError: new_schedule does not parse
            SchedulerStorageError: Override could not be persisted
            SchedulerError: Live entry could not be swapped
        """
        new_schedule = (new_schedule or "").strip()

        with self._lock:
            registered = self._require_reschedulable(source, name)

            if new_schedule == registered.default_schedule:
                self.reset_schedule(source, name)
                return

            trigger = parse_schedule(new_schedule, self.scheduler_service.timezone)
            previous = self.override_store.get(source, name)
            self.override_store.upsert(source, name, new_schedule)

            try:
                self.scheduler_service.reschedule_job(registered.job.id, trigger)
            except (JobLookupError, RuntimeError) as e:
                self._restore_override(source, name, previous)
                raise SchedulerError(f"failed to apply new schedule: {e}") from e

            registered.schedule = new_schedule
            registered.is_overridden = True

        logger.info(f"Updated job schedule {source}:{name} -> {new_schedule}")

    def reset_schedule(self, source: str, name: str) -> None:
        """Restore a job's default schedule and delete its override.

        Raises:
            JobNotFoundError: Unknown job
            JobNotReschedulableError: Task jobs keep their schedule on the task row
            SchedulerStorageError: Override could not be removed
            SchedulerError: Live entry could not be swapped
        """
        with self._lock:
            registered = self._require_reschedulable(source, name)

            if not registered.is_overridden:
                # Already at default; drop any stale row left behind
                self.override_store.delete(source, name)
                return

            trigger = parse_schedule(
                registered.default_schedule, self.scheduler_service.timezone
            )
            previous = self.override_store.get(source, name)
            self.override_store.delete(source, name)

            try:
                self.scheduler_service.reschedule_job(registered.job.id, trigger)
            except (JobLookupError, RuntimeError) as e:
                self._restore_override(source, name, previous)
                raise SchedulerError(f"failed to restore default schedule: {e}") from e

            registered.schedule = registered.default_schedule
            registered.is_overridden = False

        logger.info(
            f"Reset job schedule {source}:{name} to default {registered.default_schedule}"
        )

    def replay_overrides(self) -> int:
        """Apply persisted overrides to registered jobs.

        Called once by the host after every built-in job is registered.
        Overrides for unknown jobs or unparsable schedules are skipped.

        Returns:
            Number of overrides applied
        """
        applied = 0
        for override in self.override_store.list_all():
            key = job_key(override.source, override.name)
            with self._lock:
                registered = self._jobs.get(key)
                if registered is None or registered.source == TASK_SOURCE:
                    logger.warning(f"Skipping schedule override for unknown job {key}")
                    continue

                try:
                    trigger = parse_schedule(
                        override.schedule, self.scheduler_service.timezone
                    )
                except ScheduleValidationError as e:
                    logger.warning(f"Skipping invalid schedule override for {key}: {e}")
                    continue

                try:
                    self.scheduler_service.reschedule_job(registered.job.id, trigger)
                except (JobLookupError, RuntimeError) as e:
                    logger.error(f"Failed to apply schedule override for {key}: {e}")
                    continue

                registered.schedule = override.schedule
                registered.is_overridden = override.schedule != registered.default_schedule
                applied += 1

        if applied:
            logger.info(f"Applied {applied} schedule override(s)")
        return applied

    def _restore_override(self, source: str, name: str, previous: str | None) -> None:
        try:
            if previous is None:
                self.override_store.delete(source, name)
            else:
                self.override_store.upsert(source, name, previous)
        except SchedulerStorageError:
            logger.critical(
                f"Failed to roll back schedule override for {source}:{name}; "
                "persisted and live schedules differ until the next restart"
            )
            raise

    def _require(self, source: str, name: str) -> _RegisteredJob:
        registered = self._jobs.get(job_key(source, name))
        if registered is None:
            raise JobNotFoundError(source, name)
        return registered

    def _require_reschedulable(self, source: str, name: str) -> _RegisteredJob:
        registered = self._require(source, name)
        if registered.source == TASK_SOURCE:
            raise JobNotReschedulableError(
                f"job cannot be rescheduled: {source}:{name} "
                "(edit the task to change its schedule)"
            )
        return registered

    # Execution

    def trigger_now(self, source: str, name: str) -> Any:
        """Run a job's trigger callable synchronously and return its result.

        Raises:
            JobNotFoundError: Unknown job
            TriggerNotAvailableError: Job was registered without a trigger callable
        """
        with self._lock:
            registered = self._require(source, name)
            trigger_func = registered.trigger_func
            key = registered.key

        if trigger_func is None:
            raise TriggerNotAvailableError(source, name)

        logger.info(f"Manually triggering job {key}")
        started_at = datetime.now(self.scheduler_service.timezone)
        result = trigger_func()
        self._mark_run(key, started_at)
        return result

    def _mark_run(self, key: str, when: datetime) -> None:
        with self._last_runs_lock:
            self._last_runs[key] = when

    def _on_job_finished(self, event: JobExecutionEvent) -> None:
        self._mark_run(event.job_id, event.scheduled_run_time)
        if event.exception is not None:
            logger.error(f"Scheduled job {event.job_id} raised: {event.exception}")

    def _on_job_skipped(self, event: JobEvent) -> None:
        # Dispatched under APScheduler's job store lock: log only
        if event.code == EVENT_JOB_MAX_INSTANCES:
            logger.warning(
                f"Skipped run of {event.job_id}: previous run still in progress"
            )
        else:
            logger.warning(f"Missed run of {event.job_id}")
