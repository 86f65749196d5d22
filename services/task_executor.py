"""Task executor: turns scheduled task rows into live HTTP ping jobs.

Each active task becomes one registry entry (source "task", name
"task_<id>"). When it fires, the executor re-checks the URL against the SSRF
guard, performs a bounded GET and appends one run record.
"""

import contextlib
import logging
import socket
import threading
import time
from datetime import UTC, datetime
from functools import partial

import httpcore
import httpx

from config.settings import SchedulerSettings
from jobs.exceptions import (
    JobNotFoundError,
    SchedulerError,
    SchedulerStorageError,
    TaskBusyError,
    TaskNotScheduledError,
    TaskTriggerRateLimitedError,
    UnsafeURLError,
)
from jobs.job_registry import TASK_SOURCE, JobRegistry
from models.scheduled_task import task_job_name
from models.task_run import RUN_STATUS_FAILED, RUN_STATUS_SUCCESS
from services.schedule_parser import validate_schedule
from services.task_store import ScheduledTaskRecord, TaskStore
from services.url_safety import public_address, validate_task_url
from task_types import TaskRunResult

logger = logging.getLogger(__name__)

TRIGGERED_BY_SCHEDULER = "scheduler"
TRIGGERED_BY_MANUAL = "manual"


def _check_request_url(request: httpx.Request) -> None:
    """httpx request hook: runs for the first request and every redirect hop."""
    validate_task_url(str(request.url))


class GuardedNetworkBackend(httpcore.SyncBackend):
    """Network backend that only opens sockets to public addresses.

    The host is resolved and checked when the connection is opened and the
    socket connects to the checked address, so a DNS answer that changes
    after validate_task_url cannot redirect the connection. TLS still
    verifies the certificate against the hostname httpcore passes separately.
    """

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options=None,
    ) -> httpcore.NetworkStream:
        address = public_address(host, port)
        return super().connect_tcp(
            address,
            port,
            timeout=timeout,
            local_address=local_address,
            socket_options=socket_options,
        )


class GuardedHTTPTransport(httpx.HTTPTransport):
    """httpx transport whose connections go through GuardedNetworkBackend."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # HTTPTransport does not take a network backend argument
        self._pool._network_backend = GuardedNetworkBackend()


class RequestDeadline:
    """One wall-clock budget for a whole call: every hop plus the body read.

    httpx timeouts apply to each connect, read and write on their own. Here
    each hop gets only the remaining budget, and when the budget runs out a
    timer shuts down the socket of the response being read, which wakes a
    blocked read.
    """

    def __init__(self, seconds: float):
        self.seconds = seconds
        self.expires_at = time.monotonic() + seconds
        self.expired = threading.Event()
        self._lock = threading.Lock()
        self._socket = None
        self._timer = threading.Timer(seconds, self._expire)
        self._timer.daemon = True

    def __enter__(self) -> "RequestDeadline":
        self._timer.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self._timer.cancel()

    def remaining(self) -> float:
        return self.expires_at - time.monotonic()

    def exceeded(self, request: httpx.Request) -> httpx.TimeoutException:
        return httpx.ReadTimeout(
            f"deadline of {self.seconds:g}s exceeded", request=request
        )

    def check(self, request: httpx.Request) -> None:
        if self.expired.is_set() or self.remaining() <= 0:
            raise self.exceeded(request)

    def on_request(self, request: httpx.Request) -> None:
        """Request hook: refuse hops past the deadline, give the rest the remaining time."""
        self.check(request)
        request.extensions["timeout"] = httpx.Timeout(self.remaining()).as_dict()

    def on_response(self, response: httpx.Response) -> None:
        """Response hook: remember the socket the body will be read from."""
        stream = response.extensions.get("network_stream")
        sock = stream.get_extra_info("socket") if stream is not None else None
        with self._lock:
            self._socket = sock
            if self.expired.is_set():
                self._shutdown_socket()

    def _expire(self) -> None:
        with self._lock:
            self.expired.set()
            self._shutdown_socket()

    def _shutdown_socket(self) -> None:
        if self._socket is None:
            return
        with contextlib.suppress(OSError):
            self._socket.shutdown(socket.SHUT_RDWR)


class TaskExecutor:
    """Schedules HTTP tasks in the job registry and runs them."""

    def __init__(
        self,
        settings: SchedulerSettings,
        registry: JobRegistry,
        task_store: TaskStore,
        http_transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize the task executor.

        Args:
            settings: Scheduler settings
            registry: Registry the task jobs are installed in
            task_store: Store receiving run records
            http_transport: Optional httpx transport, e.g. httpx.MockTransport in tests
        """
        self.settings = settings
        self.registry = registry
        self.task_store = task_store
        self._transport = http_transport

        # Serializes add/remove/reschedule so a task never has two entries
        self._lock = threading.Lock()
        self._run_locks: dict[int, threading.Lock] = {}
        self._last_manual_trigger: dict[int, float] = {}

    # Scheduling

    def add_task(self, task: ScheduledTaskRecord) -> bool:
        """Schedule an active task. Returns False if the task is inactive.

        Raises:
            ScheduleValidationError: If the stored schedule does not parse
        """
        with self._lock:
            return self._add_task_locked(task)

    def remove_task(self, task_id: int) -> bool:
        """Cancel a task's live entry. Its row and run history are kept."""
        with self._lock:
            removed = self._remove_task_locked(task_id)
            self._last_manual_trigger.pop(task_id, None)
            run_lock = self._run_locks.get(task_id)
            # A run still in flight keeps its lock
            if run_lock is not None and not run_lock.locked():
                del self._run_locks[task_id]
            return removed

    def reschedule_task(self, task: ScheduledTaskRecord) -> bool:
        """Replace a task's live entry with one built from the updated row."""
        with self._lock:
            self._remove_task_locked(task.id)
            return self._add_task_locked(task)

    def is_scheduled(self, task_id: int) -> bool:
        return self.registry.has_job(TASK_SOURCE, task_job_name(task_id))

    def load_and_schedule_all(self) -> int:
        """Schedule every active task row. Rows that fail are logged and skipped.

        Returns:
            Number of tasks scheduled
        """
        scheduled = 0
        for task in self.task_store.list_active_tasks():
            try:
                if self.add_task(task):
                    scheduled += 1
            except SchedulerError as e:
                logger.error(f"Failed to schedule task {task.id} ({task.name}): {e}")

        logger.info(f"Scheduled {scheduled} HTTP task(s)")
        return scheduled

    def _add_task_locked(self, task: ScheduledTaskRecord) -> bool:
        if not task.is_active:
            logger.debug(f"Task {task.id} is inactive, not scheduling")
            return False

        validate_schedule(task.schedule)

        self.registry.schedule_job(
            source=TASK_SOURCE,
            name=task.registry_name,
            description=task.name,
            default_schedule=task.schedule,
            job_func=partial(self._run_task, task, TRIGGERED_BY_SCHEDULER),
            trigger_func=partial(self._run_task, task, TRIGGERED_BY_MANUAL),
        )
        logger.info(f"Scheduled task {task.id} ({task.name}) with {task.schedule}")
        return True

    def _remove_task_locked(self, task_id: int) -> bool:
        removed = self.registry.unregister(TASK_SOURCE, task_job_name(task_id))
        if removed:
            logger.info(f"Unscheduled task {task_id}")
        return removed

    # Execution

    def trigger_task(self, task_id: int) -> TaskRunResult:
        """Run a scheduled task now on the calling thread.

        Raises:
            TaskNotScheduledError: Task has no live entry
            TaskTriggerRateLimitedError: Triggered again too soon
            TaskBusyError: A run of the task is already in flight
            SchedulerStorageError: The run record could not be written
        """
        name = task_job_name(task_id)
        with self._lock:
            if not self.registry.has_job(TASK_SOURCE, name):
                raise TaskNotScheduledError(task_id)
            self._check_trigger_rate(task_id)

        try:
            return self.registry.trigger_now(TASK_SOURCE, name)
        except JobNotFoundError as e:
            raise TaskNotScheduledError(task_id) from e

    def _check_trigger_rate(self, task_id: int) -> None:
        min_interval = self.settings.task_trigger_min_interval_seconds
        now = time.monotonic()
        last = self._last_manual_trigger.get(task_id)
        if last is not None and now - last < min_interval:
            raise TaskTriggerRateLimitedError(
                f"task {task_id} was triggered less than {min_interval:g} seconds ago"
            )
        self._last_manual_trigger[task_id] = now

    def _run_task(
        self, task: ScheduledTaskRecord, triggered_by: str
    ) -> TaskRunResult | None:
        with self._lock:
            run_lock = self._run_locks.setdefault(task.id, threading.Lock())

        if not run_lock.acquire(blocking=False):
            if triggered_by == TRIGGERED_BY_MANUAL:
                raise TaskBusyError(f"task {task.id} is already running")
            logger.warning(f"Skipping run of task {task.id}: previous run in progress")
            return None

        try:
            return self._execute_task(task, triggered_by)
        finally:
            run_lock.release()

    def _execute_task(
        self, task: ScheduledTaskRecord, triggered_by: str
    ) -> TaskRunResult:
        started_at = datetime.now(UTC)
        start = time.monotonic()
        status = RUN_STATUS_FAILED
        status_code = None
        response_summary = None
        error_message = None

        try:
            # DNS may have changed since the task was saved
            validate_task_url(task.url)
            status_code, response_summary = self._fetch(task)
            if 200 <= status_code < 300:
                status = RUN_STATUS_SUCCESS
            else:
                error_message = f"HTTP {status_code}"
        except UnsafeURLError as e:
            error_message = f"URL blocked: {e}"
        except httpx.TimeoutException:
            error_message = f"request timed out after {task.timeout_seconds}s"
        except httpx.HTTPError as e:
            error_message = f"request failed: {e}"

        duration_ms = int((time.monotonic() - start) * 1000)

        if status == RUN_STATUS_SUCCESS:
            logger.info(
                f"Task {task.id} ({task.name}) succeeded: HTTP {status_code} "
                f"in {duration_ms}ms [{triggered_by}]"
            )
        else:
            logger.warning(
                f"Task {task.id} ({task.name}) failed: {error_message} [{triggered_by}]"
            )

        run_id = None
        try:
            run = self.task_store.record_run(
                task_id=task.id,
                status=status,
                started_at=started_at,
                completed_at=datetime.now(UTC),
                status_code=status_code,
                duration_ms=duration_ms,
                error_message=error_message,
                response_summary=response_summary,
                triggered_by=triggered_by,
            )
            run_id = run.id
        except SchedulerStorageError:
            # Logged by the store; scheduled fires have no caller to report to
            if triggered_by == TRIGGERED_BY_MANUAL:
                raise

        return {
            "task_id": task.id,
            "run_id": run_id,
            "status": status,
            "status_code": status_code,
            "duration_ms": duration_ms,
            "error_message": error_message,
            "response_summary": response_summary,
            "triggered_by": triggered_by,
        }

    def _fetch(self, task: ScheduledTaskRecord) -> tuple[int, str]:
        """GET the task URL. Returns the status code and a response summary.

        The whole call, redirects and body read included, is bounded by the
        task's timeout.
        """
        transport = self._transport if self._transport is not None else GuardedHTTPTransport()
        with RequestDeadline(float(task.timeout_seconds)) as deadline:
            try:
                with httpx.Client(
                    timeout=httpx.Timeout(float(task.timeout_seconds)),
                    follow_redirects=True,
                    max_redirects=self.settings.task_max_redirects,
                    headers={"User-Agent": self.settings.task_user_agent},
                    event_hooks={
                        "request": [deadline.on_request, _check_request_url],
                        "response": [deadline.on_response],
                    },
                    transport=transport,
                    trust_env=False,
                ) as client:
                    with client.stream("GET", task.url) as response:
                        received = self._read_limited(response, deadline)
                        content_type = response.headers.get("content-type", "unknown")
                        return response.status_code, f"{content_type} ({received} bytes)"
            except httpx.TransportError as e:
                # A socket shut down by the deadline surfaces as a read error
                if deadline.expired.is_set() and not isinstance(e, httpx.TimeoutException):
                    raise deadline.exceeded(e.request) from e
                raise

    def _read_limited(self, response: httpx.Response, deadline: RequestDeadline) -> int:
        """Read at most task_response_max_bytes of the body; return the count."""
        limit = self.settings.task_response_max_bytes
        received = 0
        if limit <= 0:
            return received

        for chunk in response.iter_bytes():
            deadline.check(response.request)
            received += len(chunk)
            if received >= limit:
                return limit

        # A close-delimited body ends quietly when the deadline shuts the socket
        deadline.check(response.request)
        return received
