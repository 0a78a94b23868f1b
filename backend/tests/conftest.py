"""
Shared fixtures: in-memory SQLite, fake clock, in-memory counter store and a
stub bot verifier wired into the application factory.
"""
import re
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from tracker.config import Settings
from tracker.main import create_app
from tracker.services.bot_verification import VerificationResult
from tracker.services.capacity import InMemoryCounterStore
from tracker.services.identity import COOKIE_NAME

TEST_SALT = "test-salt-0123456789abcdef"
CLIENT_IP = "203.0.113.7"
OTHER_IP = "198.51.100.23"
RATE_LIMIT_NOW = 1_000_000.0  # 20 s before the next 60 s window


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class StubVerifier:
    """Bot verifier double: passes unless told otherwise."""

    def __init__(self, passed: bool = True, degraded: bool = False):
        self.passed = passed
        self.degraded = degraded
        self.calls = []

    def verify(self, token, remote_ip_hash=None):
        self.calls.append(token)
        return VerificationResult(passed=self.passed, degraded=self.degraded)


def make_settings(**overrides) -> Settings:
    values = {
        "salt": TEST_SALT,
        "database_url": "sqlite://",
        "min_sample_count": 1,
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(**values)


def ip_headers(address: str = CLIENT_IP) -> dict:
    return {"X-Forwarded-For": address}


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def counter_store():
    return InMemoryCounterStore()


@pytest.fixture
def verifier():
    return StubVerifier()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def app(settings, counter_store, clock, verifier):
    return create_app(
        settings=settings,
        counter_store=counter_store,
        clock=clock,
        bot_verifier=verifier,
        rate_limit_clock=lambda: RATE_LIMIT_NOW,
    )


@pytest.fixture
def client(app):
    with TestClient(app, base_url="https://testserver") as test_client:
        yield test_client


def build_app(counter_store=None, clock=None, verifier=None, **setting_overrides):
    """App with the test doubles and overridden settings."""
    return create_app(
        settings=make_settings(**setting_overrides),
        counter_store=counter_store or InMemoryCounterStore(),
        clock=clock or FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)),
        bot_verifier=verifier or StubVerifier(),
        rate_limit_clock=lambda: RATE_LIMIT_NOW,
    )


def submit(client, predicted_date, ip=CLIENT_IP, cookie_id=None, method="POST", token="tok"):
    """Send POST/PUT /predict with an explicit identity (cookie jar cleared)."""
    client.cookies.clear()
    headers = ip_headers(ip)
    if cookie_id:
        headers["Cookie"] = f"{COOKIE_NAME}={cookie_id}"
    return client.request(
        method,
        "/predict",
        json={"predicted_date": predicted_date, "metadata_token": token},
        headers=headers,
    )


def issued_cookie(response):
    """Client token from the response's Set-Cookie header, if one was issued."""
    match = re.search(rf"{COOKIE_NAME}=([0-9a-f-]{{36}})", response.headers.get("set-cookie", ""))
    return match.group(1) if match else None
