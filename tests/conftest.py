"""Shared test fixtures."""

import os

# Settings requires JWT_SECRET; set before anything imports config.settings
os.environ.setdefault("JWT_SECRET", "test-secret-do-not-use-in-prod")
os.environ.setdefault("XENDIT_WEBHOOK_SECRET", "whsec-test")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from redis.exceptions import ConnectionError as RedisConnectionError

from config.settings import settings
from src.em_common.redis_client import get_redis
from src.main import app


class FakeRedis:
    """In-memory stand-in for the handful of redis.asyncio calls the guards make."""

    def __init__(self) -> None:
        self.values: dict[str, Any] = {}
        self.ttls: dict[str, int] = {}
        self.down = False

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("connection refused")

    async def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> list[int]:
        self._check()
        key, window = keys_and_args[0], int(keys_and_args[1])
        current = int(self.values.get(key, 0)) + 1
        self.values[key] = current
        if current == 1:
            self.ttls[key] = window
        return [current, self.ttls.get(key, -1)]

    async def get(self, key: str) -> Any:
        self._check()
        return self.values.get(key)

    async def set(self, key: str, value: Any, ex: int | None = None) -> bool:
        self._check()
        self.values[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True


@pytest.fixture
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> FakeRedis:
    """FakeRedis wired into both the guard dependencies and the global middleware."""
    redis = FakeRedis()

    async def _get_fake_redis() -> FakeRedis:
        return redis

    monkeypatch.setattr("src.em_gateway.middleware.rate_limit.get_redis", _get_fake_redis)
    app.dependency_overrides[get_redis] = _get_fake_redis
    yield redis
    app.dependency_overrides.pop(get_redis, None)


@pytest.fixture
def make_token() -> Callable[..., str]:
    def _make(
        user_id: str,
        role: str = "user",
        email: str | None = None,
        token_type: str = "access",
        expires_in: timedelta = timedelta(minutes=30),
    ) -> str:
        now = datetime.now(UTC)
        payload: dict[str, Any] = {
            "sub": user_id,
            "type": token_type,
            "role": role,
            "iat": now,
            "exp": now + expires_in,
        }
        if email:
            payload["email"] = email
        return str(jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM))

    return _make


@pytest.fixture
async def client(fake_redis: FakeRedis) -> AsyncClient:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
