"""Builder for scheduled task test objects."""

from datetime import UTC, datetime

from services.task_store import ScheduledTaskRecord, TaskStore


class ScheduledTaskBuilder:
    """Fluent builder for scheduled tasks.

    Examples:
        # Detached record, nothing persisted
        task = ScheduledTaskBuilder().build()

        # Inactive task stored in the database
        task = ScheduledTaskBuilder().inactive().create(task_store)

        # Custom configuration
        task = (
            ScheduledTaskBuilder()
            .with_name("Nightly warmup")
            .with_url("https://api.example.com/warm")
            .with_schedule("@every 1h")
            .with_timeout(5)
            .build()
        )
    """

    def __init__(self):
        """Initialize builder with sensible defaults."""
        self._id = 1
        self._name = "Ping example"
        self._url = "https://example.com/hook"
        self._schedule = "@every 1h"
        self._is_active = True
        self._timeout_seconds = 30
        self._created_by = "admin@example.com"

    def with_id(self, task_id: int) -> "ScheduledTaskBuilder":
        """Set task ID (detached records only)."""
        self._id = task_id
        return self

    def with_name(self, name: str) -> "ScheduledTaskBuilder":
        self._name = name
        return self

    def with_url(self, url: str) -> "ScheduledTaskBuilder":
        self._url = url
        return self

    def with_schedule(self, schedule: str) -> "ScheduledTaskBuilder":
        self._schedule = schedule
        return self

    def with_timeout(self, timeout_seconds: int) -> "ScheduledTaskBuilder":
        self._timeout_seconds = timeout_seconds
        return self

    def inactive(self) -> "ScheduledTaskBuilder":
        """Mark the task as inactive."""
        self._is_active = False
        return self

    def build(self) -> ScheduledTaskRecord:
        """Build a detached record without touching the database."""
        now = datetime.now(UTC)
        return ScheduledTaskRecord(
            id=self._id,
            name=self._name,
            url=self._url,
            schedule=self._schedule,
            is_active=self._is_active,
            timeout_seconds=self._timeout_seconds,
            created_by=self._created_by,
            created_at=now,
            updated_at=now,
        )

    def create(self, task_store: TaskStore) -> ScheduledTaskRecord:
        """Persist the task through the store and return the stored record."""
        return task_store.create_task(
            name=self._name,
            url=self._url,
            schedule=self._schedule,
            timeout_seconds=self._timeout_seconds,
            created_by=self._created_by,
            is_active=self._is_active,
        )
