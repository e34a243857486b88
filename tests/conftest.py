"""
Shared fixtures: in-memory Motor database, a controllable clock,
and a TestClient wired to both.
"""
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from trustgate.api.v1.routes.trusted_device_route import get_trusted_device_service
from trustgate.core.security import create_access_token
from trustgate.db.mongodb import get_database
from trustgate.main import app
from trustgate.services.trusted_device_service import TrustedDeviceService


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    # Whole seconds: MongoDB keeps millisecond precision only
    return FakeClock(datetime(2026, 1, 5, 9, 0, 0))


@pytest.fixture
def db():
    return AsyncMongoMockClient()["trustgate_test"]


@pytest.fixture
def service(db, clock):
    return TrustedDeviceService(db, clock=clock)


@pytest.fixture
def client(db, service):
    async def _get_db():
        return db

    async def _get_service():
        return service

    app.dependency_overrides[get_database] = _get_db
    app.dependency_overrides[get_trusted_device_service] = _get_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_token(user_id="U1", email="client@contoso.com", principal_type="client", **claims):
    payload = {"id": user_id, "email": email, **claims}
    if principal_type is not None:
        payload["principal_type"] = principal_type
    return create_access_token(payload)


def auth_headers(**kwargs) -> dict:
    return {"Authorization": f"Bearer {make_token(**kwargs)}"}


@pytest.fixture
def device_payload():
    return {
        "device_fingerprint": "fp-123",
        "device_name": "Work laptop",
        "device_info": {"browser": "Firefox", "os": "Linux"},
        "trust_duration_days": 30,
    }
