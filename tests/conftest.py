"""
Shared fixtures: an in-memory SQLite database per test, freshly wired services
and a FastAPI TestClient bound to the same database.
"""
import os

# keep the module-level engine and worker away from real infrastructure
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("SWEEP_INTERVAL_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient

from gatewatch.api.dependencies import get_db_manager
from gatewatch.database import DatabaseManager
from gatewatch.main import create_app
from gatewatch.services.alert_service import AlertService
from gatewatch.services.checkin_service import CheckinService
from gatewatch.services.notification_service import NotificationService, notification_service
from gatewatch.utils.locks import KeyedLock


@pytest.fixture
def db():
    manager = DatabaseManager("sqlite://")
    manager.create_tables()
    yield manager
    manager.engine.dispose()


@pytest.fixture
def conn(db):
    """One transaction for direct service tests. Do not mix with CheckinService calls."""
    with db.get_connection() as connection:
        yield connection


@pytest.fixture
def notifier():
    return NotificationService(buffer_size=50)


@pytest.fixture
def alert_service(notifier):
    return AlertService(notifier)


@pytest.fixture
def checkin_service(db, alert_service):
    return CheckinService(db, alert_service, locks=KeyedLock())


@pytest.fixture
def client(db):
    notification_service.clear()
    app = create_app()
    app.dependency_overrides[get_db_manager] = lambda: db
    return TestClient(app)
