"""
Pytest configuration and fixtures for phonegate tests.
"""
from datetime import datetime, timedelta
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession

from phonegate import create_app
from phonegate.auth import build_auth_gateway
from phonegate.auth.delivery import CodeDeliveryGateway, DeliveryResult
from phonegate.cache import InMemoryBackend
from phonegate.core.config import Settings
from phonegate.db import Database
from phonegate.utils.datetime import get_current_time

PHONE = "9876543210"
PASSWORD = "s3cret-pass"


class RecordingGateway(CodeDeliveryGateway):
    """Delivery gateway that remembers every code instead of sending it."""

    def __init__(self):
        self.sent: List[Tuple[str, str]] = []
        self.fail_with: Optional[str] = None

    async def send(self, phone: str, code: str) -> DeliveryResult:
        if self.fail_with:
            return DeliveryResult(success=False, error=self.fail_with)
        self.sent.append((phone, code))
        return DeliveryResult(success=True)

    def last_code(self, phone: str) -> str:
        for sent_phone, code in reversed(self.sent):
            if sent_phone == phone:
                return code
        raise AssertionError(f"No code was sent to {phone}")


class FakeClock:
    """Settable clock for expiry and lockout tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or get_current_time()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def wrong_code(code: str) -> str:
    return "000000" if code != "000000" else "111111"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        SECRET_KEY="test-secret-key",
        BCRYPT_ROUNDS=4,
        DOCS_ENABLED=False,
    )


@pytest.fixture
def delivery() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryBackend:
    return InMemoryBackend(key_prefix="test:")


@pytest.fixture
def gateway(store, settings, delivery, clock):
    return build_auth_gateway(store, settings, delivery=delivery, clock=clock)


@pytest.fixture
def app(settings, store, gateway):
    return create_app(settings, store=store, gateway=gateway)


@pytest.fixture
def client(app):
    """Test client with startup (table creation) and shutdown run around it."""
    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    database = Database(settings.DATABASE_URL)
    await database.create_all()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def db(database) -> AsyncGenerator[AsyncSession, None]:
    async with database.session_factory() as session:
        yield session


def signup_payload(**overrides) -> Dict[str, str]:
    payload = {
        "fullName": "Asha Rao",
        "phone": PHONE,
        "email": "asha@example.com",
        "password": PASSWORD,
        "role": "user",
    }
    payload.update(overrides)
    return payload


def register(client: TestClient, delivery: RecordingGateway, **overrides) -> Dict:
    """Run signup plus OTP verification and return the ``data`` block."""
    payload = signup_payload(**overrides)
    response = client.post("/api/v1/auth/signup", json=payload)
    assert response.status_code == 200, response.text
    code = delivery.last_code(payload["phone"])
    response = client.post(
        "/api/v1/auth/verify-otp",
        json={"phone": payload["phone"], "otp": code, "role": payload["role"]},
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]


def login(client: TestClient, phone: str = PHONE, password: str = PASSWORD, role: str = "user"):
    return client.post("/api/v1/auth/login", json={"phone": phone, "password": password, "role": role})


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
