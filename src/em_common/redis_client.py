"""Shared redis.asyncio pool for the request guards (idempotency replay, rate limits).

Redis holds nothing the escrow flow depends on for correctness; listing
exclusivity and payment state live in PostgreSQL. ``ping_redis`` lets the
lifespan report an unreachable cache without refusing to start, since the
guards fail open.
"""
import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config.settings import settings

logger = logging.getLogger(__name__)

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    """FastAPI dependency and plain accessor; the pool is created lazily."""
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.REDIS_TIMEOUT_SECONDS,
        )
    return _redis_pool


async def ping_redis() -> bool:
    try:
        return bool(await (await get_redis()).ping())
    except (RedisError, OSError) as e:
        logger.warning("Redis unreachable at startup, guards will fail open: %s", e)
        return False


async def close_redis() -> None:
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None
