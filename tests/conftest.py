import time

import httpx
import pytest
from fastapi.testclient import TestClient

from chat_proxy.config import Settings
from chat_proxy.main import create_app
from chat_proxy.rate_limit import ChatRateLimiter


class FakeClock:
    """Replaces time.time, which the limits memory storage reads for window expiry."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeUpstream:
    """Stands in for the Chatbase endpoint; records every request it receives."""

    def __init__(self):
        self.requests = []
        self.handler = lambda request: httpx.Response(200, json={"text": "hello"})

    def __call__(self, request):
        self.requests.append(request)
        return self.handler(request)


def make_settings(**overrides):
    values = {
        "CHATBASE_BOT_ID": "bot-123",
        "CHATBASE_API_KEY": "secret-key",
        "CHATBASE_API_URL": "https://chatbase.test/api/v1/chat",
        "STATIC_DIR": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()

@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock(float(int(time.time())))
    monkeypatch.setattr(time, "time", fake)
    return fake

@pytest.fixture
def upstream():
    return FakeUpstream()

@pytest.fixture
def rate_limiter(settings, clock):
    return ChatRateLimiter(
        max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )

@pytest.fixture
def app(settings, rate_limiter, upstream):
    return create_app(settings, rate_limiter=rate_limiter, upstream_transport=httpx.MockTransport(upstream))

@pytest.fixture
def make_app(rate_limiter, upstream):
    """Build an app with settings overrides, sharing the test's limiter and upstream."""
    def _make_app(**overrides):
        return create_app(
            make_settings(**overrides),
            rate_limiter=rate_limiter,
            upstream_transport=httpx.MockTransport(upstream),
        )
    return _make_app

@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
