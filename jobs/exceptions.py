"""Exceptions raised by the scheduler core.

Messages are written to be shown to an admin verbatim.
"""


class SchedulerError(Exception):
    """Base class for every scheduler error."""


# Validation errors: raised before any state is touched


class ScheduleValidationError(SchedulerError, ValueError):
    """Schedule expression could not be parsed."""


class UnsafeURLError(SchedulerError, ValueError):
    """Target URL points somewhere the server must not call."""


class TaskValidationError(SchedulerError, ValueError):
    """Scheduled task field is out of range."""


# Lookup errors


class JobNotFoundError(SchedulerError, LookupError):
    """No job is registered under the given source and name."""

    def __init__(self, source: str, name: str):
        super().__init__(f"job not found: {source}:{name}")
        self.source = source
        self.name = name


class TaskNotFoundError(SchedulerError, LookupError):
    """No scheduled task row exists with the given id."""

    def __init__(self, task_id: int):
        super().__init__(f"task not found: {task_id}")
        self.task_id = task_id


class TaskNotScheduledError(SchedulerError, LookupError):
    """Task exists but has no live timer entry (e.g. inactive)."""

    def __init__(self, task_id: int):
        super().__init__(f"task is not scheduled: {task_id}")
        self.task_id = task_id


# State errors


class TriggerNotAvailableError(SchedulerError):
    """Job was registered without a manual trigger callable."""

    def __init__(self, source: str, name: str):
        super().__init__(f"manual trigger not available for: {source}:{name}")
        self.source = source
        self.name = name


class JobNotReschedulableError(SchedulerError):
    """Job schedule cannot be overridden through the registry."""


class TaskBusyError(SchedulerError):
    """A run of the same task is already in flight."""


class TaskTriggerRateLimitedError(SchedulerError):
    """Manual trigger requested again too soon."""


# Storage errors


class SchedulerStorageError(SchedulerError):
    """Persisting or reading scheduler state failed."""
