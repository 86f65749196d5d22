"""Tests for the scheduler runtime."""

import logging
from pathlib import Path

import pytest

from app import SchedulerRuntime, configure_logging
from services.override_store import ScheduleOverrideStore
from tests.utils.builders import ScheduledTaskBuilder


@pytest.fixture
def runtime(test_settings):
    """Started runtime, shut down after the test."""
    runtime = SchedulerRuntime(test_settings)
    runtime.start()
    yield runtime
    runtime.shutdown(wait=False)


class TestSchedulerRuntime:
    """Test startup wiring."""

    def test_start_registers_builtin_jobs(self, runtime):
        """Built-in jobs are registered on start."""
        info = runtime.job_registry.get("core", "task_run_cleanup")

        assert info is not None
        assert info.schedule == "0 3 * * *"
        assert info.can_trigger is True
        assert runtime.scheduler_service.running

    def test_start_replays_overrides(self, test_settings, database):
        """Persisted overrides apply on the next start."""
        ScheduleOverrideStore().upsert("core", "task_run_cleanup", "0 5 * * *")

        runtime = SchedulerRuntime(test_settings)
        runtime.start()
        try:
            info = runtime.job_registry.get("core", "task_run_cleanup")
            assert info.schedule == "0 5 * * *"
            assert info.is_overridden is True
        finally:
            runtime.shutdown(wait=False)

    def test_start_schedules_active_tasks(self, test_settings, task_store):
        """Active tasks from the database are scheduled on start."""
        active = ScheduledTaskBuilder().with_name("Active ping").create(task_store)
        idle = ScheduledTaskBuilder().with_name("Idle ping").inactive().create(task_store)

        runtime = SchedulerRuntime(test_settings)
        runtime.start()
        try:
            assert runtime.task_executor.is_scheduled(active.id)
            assert not runtime.task_executor.is_scheduled(idle.id)
        finally:
            runtime.shutdown(wait=False)

    def test_task_lifecycle_through_runtime(self, runtime):
        """Tasks created through the service appear in the job list."""
        task = runtime.task_service.create_task(
            name="Ping example", url="https://example.com/hook", schedule="@every 1h"
        )

        keys = [(j.source, j.name) for j in runtime.job_registry.list()]

        assert ("task", f"task_{task.id}") in keys
        assert ("core", "task_run_cleanup") in keys

    def test_shutdown_stops_scheduler(self, test_settings):
        """shutdown stops the scheduler."""
        runtime = SchedulerRuntime(test_settings)
        runtime.start()

        runtime.shutdown(wait=False)

        assert not runtime.scheduler_service.running


class TestConfigureLogging:
    """Test logging setup."""

    def test_file_and_console_handlers(self, test_settings):
        """Logs go to the console and to scheduler.log."""
        root_logger = logging.getLogger()
        before = list(root_logger.handlers)

        try:
            configure_logging(test_settings)

            added = [h for h in root_logger.handlers if h not in before]
            assert any(isinstance(h, logging.FileHandler) for h in added)
            assert any(type(h) is logging.StreamHandler for h in added)
            assert any(
                Path(getattr(h, "baseFilename", "")).name == "scheduler.log" for h in added
            )
        finally:
            for handler in list(root_logger.handlers):
                if handler not in before:
                    root_logger.removeHandler(handler)
                    handler.close()
