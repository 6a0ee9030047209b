"""Integration-test fixtures.

Needs a running PostgreSQL with migrations applied and a running Redis
(``alembic upgrade head``). Skipped unless EM_INTEGRATION=1.

All integration tests share a single event loop so that the module-level
SQLAlchemy async engine pool and Redis pool (both created at import time)
remain valid across the entire test session.
"""

import os
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import text

from config.settings import settings
from src.em_common.database import engine
from src.main import app


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if os.environ.get("EM_INTEGRATION") == "1":
        return
    skip = pytest.mark.skip(reason="set EM_INTEGRATION=1 to run against live PostgreSQL + Redis")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest_asyncio.fixture(loop_scope="session", scope="session")
async def client() -> AsyncClient:  # type: ignore[override]
    """Session-scoped async HTTP client; keeps the engine pool alive."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def token_for() -> Callable[..., str]:
    def _make(user_id: str, role: str = "user") -> str:
        now = datetime.now(UTC)
        payload = {"sub": user_id, "type": "access", "role": role, "exp": now + timedelta(minutes=30)}
        return str(jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM))

    return _make


@pytest_asyncio.fixture(loop_scope="session")
async def listing_factory() -> Callable[..., str]:
    async def _create(seller_id: str | None = None, price: int = 100_000) -> str:
        async with engine.begin() as conn:
            result = await conn.execute(
                text("""
                    INSERT INTO listings (seller_id, account_identifier, price, status, field_values)
                    VALUES (:seller_id, :ident, :price, 'active',
                            CAST('{"email": "acc@example.com", "password": "hunter2"}' AS JSONB))
                    RETURNING id
                """),
                {
                    "seller_id": seller_id or f"seller_{uuid.uuid4().hex[:8]}",
                    "ident": f"ML Mythic #{uuid.uuid4().hex[:6]}",
                    "price": price,
                },
            )
            return str(result.scalar_one())

    return _create
