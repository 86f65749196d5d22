"""Tests for scheduler service."""

import pytest
from apscheduler.jobstores.base import JobLookupError

from services.schedule_parser import parse_schedule
from services.scheduler_service import SchedulerService


def noop():
    return None


class TestSchedulerService:
    """Test the scheduler service."""

    def test_scheduler_initialization(self, test_settings):
        """Test scheduler service initialization."""
        service = SchedulerService(test_settings)

        assert service.settings == test_settings
        assert service.scheduler is not None
        assert not service.running

    def test_scheduler_start_stop(self, test_settings):
        """Test starting and stopping the scheduler."""
        service = SchedulerService(test_settings)

        service.start()
        assert service.running

        service.shutdown(wait=False)
        assert not service.running

    def test_job_defaults_from_settings(self, test_settings):
        """Overlapping runs are skipped and missed runs coalesced."""
        service = SchedulerService(test_settings)

        defaults = service.scheduler._job_defaults
        assert defaults["max_instances"] == 1
        assert defaults["coalesce"] is True
        assert defaults["misfire_grace_time"] == 60

    def test_add_job(self, scheduler_service):
        """Test adding a job to the scheduler."""
        job = scheduler_service.add_job(noop, parse_schedule("@every 10s"), "test_job")

        assert job.id == "test_job"
        assert scheduler_service.get_job("test_job") is not None
        assert job.next_run_time is not None

    def test_add_job_replaces_existing(self, scheduler_service):
        """Adding a job with an existing id replaces it."""
        scheduler_service.add_job(noop, parse_schedule("@every 10s"), "test_job")
        scheduler_service.add_job(noop, parse_schedule("@every 20s"), "test_job")

        jobs = scheduler_service.get_jobs()
        assert len(jobs) == 1

    def test_add_job_requires_running_scheduler(self, test_settings):
        """Jobs cannot be added before start()."""
        service = SchedulerService(test_settings)

        with pytest.raises(RuntimeError, match="not running"):
            service.add_job(noop, parse_schedule("@every 10s"), "test_job")

    def test_remove_job(self, scheduler_service):
        """Test removing a job."""
        scheduler_service.add_job(noop, parse_schedule("@every 10s"), "test_job")

        scheduler_service.remove_job("test_job")

        assert scheduler_service.get_job("test_job") is None

    def test_remove_missing_job_raises(self, scheduler_service):
        """Removing an unknown job raises JobLookupError."""
        with pytest.raises(JobLookupError):
            scheduler_service.remove_job("nonexistent_job")

    def test_reschedule_job_keeps_single_entry(self, scheduler_service):
        """Rescheduling swaps the trigger in place."""
        scheduler_service.add_job(noop, parse_schedule("@every 1h"), "test_job")

        job = scheduler_service.reschedule_job("test_job", parse_schedule("@every 30m"))

        assert job.id == "test_job"
        assert len(scheduler_service.get_jobs()) == 1
        assert scheduler_service.get_job("test_job").trigger.interval.total_seconds() == 1800

    def test_get_job_nonexistent(self, scheduler_service):
        """Test getting a job that does not exist."""
        assert scheduler_service.get_job("nonexistent_job") is None

    def test_get_jobs_when_stopped(self, test_settings):
        """A stopped scheduler reports no jobs."""
        service = SchedulerService(test_settings)

        assert service.get_jobs() == []

    def test_get_scheduler_info(self, scheduler_service):
        """Test getting scheduler information."""
        scheduler_service.add_job(noop, parse_schedule("@every 10s"), "test_job")

        info = scheduler_service.get_scheduler_info()

        assert info["running"] is True
        assert info["jobs_count"] == 1
        assert info["timezone"] == "UTC"
        assert info["executors"] == ["default"]
