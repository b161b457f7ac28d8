"""
Shared pytest fixtures for TravelTales tests.

This module provides common fixtures including:
- FakeClock: Controllable time source for expiry, cooldown and window tests
- fakeredis clients for behavioural store tests
- RecordingMailer: Captures outbound mail so tests can follow emailed links
- FastAPI test client wired to an in-memory Redis
"""

from datetime import UTC, datetime, timedelta
from typing import Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import fakeredis
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from traveltales.main import create_app
from traveltales.modules.accounts import AccountStore
from traveltales.modules.apikeys import ApiKeyManager
from traveltales.modules.config import ConfigModule
from traveltales.modules.mail import MailMessage
from traveltales.modules.security import CSRF_COOKIE_NAME, CSRF_HEADER_NAME
from traveltales.modules.tokens import TokenService

TEST_PASSWORD = "Str0ngPassw0rd"
ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "AdminPassw0rd"

TEST_CONFIG = {
    "jwt_secret": "test-jwt-secret-0123456789abcdef0123456789abcdef",
    "csrf_secret": "test-csrf-secret-0123456789abcdef0123456789abcdef",
    "admin_username": ADMIN_USERNAME,
    "admin_password": ADMIN_PASSWORD,
    "admin_email": "admin@traveltales.test",
    "bcrypt_rounds": 4,
    "cookie_secure": False,
    "use_mock_data": True,
    "rate_limit_auth": 50,
    "rate_limit_general": 500,
    "frontend_url": "http://frontend.test",
}


# =============================================================================
# Time and mail doubles
# =============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime.now(UTC).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingMailer:
    """Mailer that keeps every message in memory."""

    def __init__(self):
        self.messages: List[MailMessage] = []

    async def send(self, message: MailMessage) -> None:
        self.messages.append(message)

    def of_kind(self, kind: str, to: Optional[str] = None) -> List[MailMessage]:
        return [m for m in self.messages if m.kind == kind and (to is None or m.to == to)]

    def link_params(self, kind: str, to: Optional[str] = None) -> Dict[str, str]:
        """Query parameters (token, userId) of the latest link of a kind."""
        messages = self.of_kind(kind, to)
        assert messages, f"no '{kind}' mail sent"
        query = parse_qs(urlparse(messages[-1].link).query)
        return {name: values[0] for name, values in query.items()}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailer():
    return RecordingMailer()


# =============================================================================
# Redis-backed modules
# =============================================================================


@pytest_asyncio.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def account_store(redis_client, clock):
    return AccountStore(redis_client, bcrypt_rounds=4, clock=clock)


@pytest.fixture
def token_service(redis_client, clock):
    return TokenService(redis_client, clock=clock)


@pytest.fixture
def apikey_manager(redis_client, clock):
    return ApiKeyManager(redis_client, cooldown_seconds=300, clock=clock)


# =============================================================================
# HTTP application
# =============================================================================


def make_config(**overrides) -> ConfigModule:
    values = dict(TEST_CONFIG)
    values.update(overrides)
    return ConfigModule(overrides=values)


def build_client(clock: FakeClock, mailer: RecordingMailer, **overrides) -> TestClient:
    server = fakeredis.FakeServer()

    async def redis_factory():
        return fakeredis.FakeAsyncRedis(server=server, decode_responses=True)

    app = create_app(
        config=make_config(**overrides), redis_factory=redis_factory, clock=clock, mailer=mailer
    )
    return TestClient(app)


@pytest.fixture
def client(clock, mailer):
    with build_client(clock, mailer) as test_client:
        yield test_client


def csrf_headers(client: TestClient) -> Dict[str, str]:
    return {CSRF_HEADER_NAME: client.cookies.get(CSRF_COOKIE_NAME) or ""}


def register(client: TestClient, username: str = "alice", email: Optional[str] = None, **extra):
    body = {
        "username": username,
        "email": email or f"{username}@example.com",
        "password": TEST_PASSWORD,
        "first_name": username.title(),
        "last_name": "Traveller",
    }
    body.update(extra)
    return client.post("/auth/register", json=body)


def verify_email(client: TestClient, mailer: RecordingMailer, email: str):
    params = mailer.link_params("email_verification", to=email)
    return client.get("/auth/verify-email", params=params)


def login(client: TestClient, username: str = "alice", password: str = TEST_PASSWORD):
    return client.post("/auth/login", json={"username": username, "password": password})


def signed_up(client: TestClient, mailer: RecordingMailer, username: str = "alice") -> int:
    """Register, verify and log in; returns the account id."""
    response = register(client, username)
    assert response.status_code == 201, response.text
    assert verify_email(client, mailer, f"{username}@example.com").status_code == 200
    response = login(client, username)
    assert response.status_code == 200, response.text
    return response.json()["userId"]
