"""Fixed-window rate limiter on Redis.

INCR and the first EXPIRE run in one Lua script so a crash between the two
can never leave a counter without a TTL.
"""
import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.em_common.errors import CacheUnavailableError, RateLimitError
from src.em_gateway.guards.policy import GUARD_POLICIES, FailurePolicy

logger = logging.getLogger(__name__)

_INCR_SCRIPT = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
  redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return {current, redis.call('TTL', KEYS[1])}
"""


def user_key(user_id: str, scope: str) -> str:
    return f"ratelimit:user:{user_id}:{scope}"


def ip_key(ip: str) -> str:
    return f"ratelimit:global:{ip}"


class RateLimiter:
    def __init__(
        self,
        redis: aioredis.Redis,
        on_failure: FailurePolicy = GUARD_POLICIES["rate_limit"],
    ) -> None:
        self._redis = redis
        self._on_failure = on_failure

    async def hit(self, key: str, limit: int, window_seconds: int) -> int:
        """Count one request against ``key``; returns the count in the current window.

        Raises RateLimitError once the count exceeds ``limit``.
        """
        try:
            current, ttl = await self._redis.eval(_INCR_SCRIPT, 1, key, window_seconds)
        except (RedisError, OSError) as e:
            if self._on_failure is FailurePolicy.FAIL_CLOSED:
                logger.error("Rate limit check failed for %s, rejecting: %s", key, e)
                raise CacheUnavailableError() from e
            logger.warning("Rate limit check failed for %s, allowing request: %s", key, e)
            return 0

        current = int(current)
        if current > limit:
            retry_after = int(ttl) if int(ttl) > 0 else window_seconds
            raise RateLimitError(retry_after=retry_after)
        return current
