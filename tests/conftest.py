"""Pytest configuration and fixtures for Rishvan tests."""

import socket
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from rishvan.config import Settings
from rishvan.manager import RequestManager
from rishvan.notifier import NotificationBroker
from rishvan.store import RequestStore
from rishvan.webserver import create_app


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Create a temporary path for the request database."""
    return tmp_path / "app.db"


@pytest.fixture
def store(db_path: Path) -> RequestStore:
    return RequestStore(db_path=db_path)


@pytest.fixture
def broker() -> NotificationBroker:
    return NotificationBroker()


@pytest.fixture
def manager(store: RequestStore) -> RequestManager:
    return RequestManager(store)


@pytest.fixture
def free_port() -> int:
    """Find a local port nobody is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def settings(db_path: Path, free_port: int) -> Settings:
    return Settings(
        source_name="test-ide",
        port=free_port,
        db_path=db_path,
        probe_timeout=0.5,
        poll_interval=0.05,
        poll_timeout=1.0,
        open_browser=False,
    )


@pytest.fixture
def client(settings, manager, broker, store) -> TestClient:
    return TestClient(create_app(settings, manager, broker, store))


@pytest.fixture
def seeded_store(store: RequestStore) -> RequestStore:
    """Store with a mix of sources, apps and statuses."""
    store.create("test-ide", "app-a", "q1")
    store.create("test-ide", "app-b", "q2")
    q3 = store.create("test-ide", "app-a", "q3")
    store.mark_responded(q3.id, "done")
    store.create("other-ide", "app-a", "q4")
    return store
