"""Test configuration and fixtures."""

import contextlib
import ipaddress
import os
import socket
import tempfile

import pytest

from config.settings import SchedulerSettings
from jobs.job_registry import JobRegistry
from models.base import create_tables, get_engine, init_db
from services.override_store import ScheduleOverrideStore
from services.scheduler_service import SchedulerService
from services.task_store import TaskStore

# Hostname -> addresses served by the fake resolver
DNS_RECORDS = {
    "example.com": ["93.184.216.34"],
    "api.example.com": ["93.184.216.35"],
    "hooks.example.org": ["2606:2800:220:1::248"],
    "internal.example.com": ["10.0.0.5"],
    "mixed.example.com": ["93.184.216.36", "192.168.1.10"],
    "metadata.example.net": ["169.254.169.254"],
}


@pytest.fixture(autouse=True)
def fake_dns(monkeypatch):
    """Serve DNS answers from a dict so tests never touch the network.

    Tests may add or change records on the returned dict.
    """
    records = {host: list(addresses) for host, addresses in DNS_RECORDS.items()}

    def getaddrinfo(host, port, family=0, type=0, proto=0, flags=0):
        addresses = records.get(str(host).lower().rstrip("."))
        if not addresses:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

        infos = []
        for address in addresses:
            if ipaddress.ip_address(address).version == 6:
                infos.append(
                    (socket.AF_INET6, socket.SOCK_STREAM, 6, "", (address, port or 0, 0, 0))
                )
            else:
                infos.append(
                    (socket.AF_INET, socket.SOCK_STREAM, 6, "", (address, port or 0))
                )
        return infos

    monkeypatch.setattr(socket, "getaddrinfo", getaddrinfo)
    return records


@pytest.fixture
def test_settings(monkeypatch, tmp_path):
    """Create test settings with temporary database."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    # Set environment variables for Pydantic to pick up
    for key, value in {
        "SCHEDULER_DATABASE_URL": f"sqlite:///{db_path}",
        "SCHEDULER_TIMEZONE": "UTC",
        "TASK_TRIGGER_MIN_INTERVAL_SECONDS": "0",
        "LOG_DIR": str(tmp_path / "logs"),
    }.items():
        monkeypatch.setenv(key, value)

    settings = SchedulerSettings()

    yield settings

    # Cleanup
    engine = get_engine()
    if engine is not None:
        engine.dispose()
    with contextlib.suppress(OSError):
        os.unlink(db_path)


@pytest.fixture
def database(test_settings):
    """Initialize the temporary database and create every table."""
    engine = init_db(test_settings.database_url)
    create_tables()
    yield engine
    engine.dispose()


@pytest.fixture
def scheduler_service(test_settings):
    """Running scheduler service, shut down after the test."""
    service = SchedulerService(test_settings)
    service.start()
    yield service
    service.shutdown(wait=False)


@pytest.fixture
def override_store(database):
    """Schedule override store bound to the test database."""
    return ScheduleOverrideStore()


@pytest.fixture
def task_store(database):
    """Task store bound to the test database."""
    return TaskStore()


@pytest.fixture
def job_registry(scheduler_service, override_store):
    """Job registry on top of a running scheduler."""
    return JobRegistry(scheduler_service, override_store)
