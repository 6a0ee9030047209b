"""Idempotent replay of POST/PUT responses keyed by the Idempotency-Key header.

Best effort: without Redis there is no replay guarantee. The business
operations behind these endpoints are protected by database constraints
regardless (listing row lock, one open dispute per transaction).
"""
import json
import logging
from dataclasses import dataclass
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config.settings import settings
from src.em_common.errors import CacheUnavailableError
from src.em_gateway.guards.policy import GUARD_POLICIES, FailurePolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredResponse:
    status_code: int
    body: Any


class IdempotencyStore:
    def __init__(
        self,
        redis: aioredis.Redis,
        ttl_seconds: int | None = None,
        lookup_policy: FailurePolicy = GUARD_POLICIES["idempotency_lookup"],
        store_policy: FailurePolicy = GUARD_POLICIES["idempotency_store"],
    ) -> None:
        self._redis = redis
        self._ttl = ttl_seconds or settings.IDEMPOTENCY_TTL_SECONDS
        self._lookup_policy = lookup_policy
        self._store_policy = store_policy

    @staticmethod
    def cache_key(key: str) -> str:
        return f"idempotent:{key}"

    async def lookup(self, key: str) -> StoredResponse | None:
        try:
            raw = await self._redis.get(self.cache_key(key))
        except (RedisError, OSError) as e:
            if self._lookup_policy is FailurePolicy.FAIL_CLOSED:
                raise CacheUnavailableError() from e
            logger.warning("Idempotency lookup failed for %s, proceeding without replay: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            cached = json.loads(raw)
            return StoredResponse(status_code=int(cached["status"]), body=cached["body"])
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable idempotency entry for %s", key)
            return None

    async def store(self, key: str, status_code: int, body: Any) -> None:
        payload = json.dumps({"status": status_code, "body": body}, default=str)
        try:
            await self._redis.set(self.cache_key(key), payload, ex=self._ttl)
        except (RedisError, OSError) as e:
            if self._store_policy is FailurePolicy.FAIL_CLOSED:
                raise CacheUnavailableError() from e
            logger.warning("Failed to cache idempotent response for %s: %s", key, e)
            return
        logger.debug("Cached idempotent response for key: %s", key)
