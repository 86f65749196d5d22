"""Type definitions for the scheduler service.

TypedDict shapes for the dict payloads passed between jobs, the executor
and callers of the registry.
"""

from typing import Any, TypedDict


class JobExecutionResult(TypedDict, total=False):
    """Result from a built-in job execution.

    Returned by BaseJob.execute().
    """

    status: str  # "success" or "error"
    job_source: str  # Registry namespace, e.g. "core"
    job_name: str  # Registry name
    start_time: str  # ISO datetime when job started
    execution_time_seconds: float  # Execution duration in seconds
    result: Any  # Result from _execute_job()
    error: str  # Error message if failed
    error_type: str  # Exception class name if failed

    # Standardized counters reported by jobs that process records
    records_processed: int
    records_success: int
    records_failed: int


class TaskRunResult(TypedDict, total=False):
    """Outcome of one HTTP task execution.

    Returned by TaskExecutor for manual triggers.
    """

    task_id: int  # ScheduledTask id
    run_id: int | None  # ScheduledTaskRun id, None if recording failed
    status: str  # "success" or "failed"
    status_code: int | None  # HTTP status code if a response arrived
    duration_ms: int  # Wall time of the execution
    error_message: str | None  # Failure description
    response_summary: str | None  # "<content-type> (<n> bytes)"
    triggered_by: str  # "scheduler" or "manual"


class SchedulerInfo(TypedDict):
    """Scheduler status summary."""

    running: bool
    jobs_count: int
    timezone: str
    executors: list[str]


__all__ = [
    "JobExecutionResult",
    "TaskRunResult",
    "SchedulerInfo",
]
