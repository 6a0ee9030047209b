"""Guard limits and cache-failure policy.

Redis is never the source of truth, so each guard operation declares up
front what happens when the cache cannot be reached:

  FAIL_OPEN   - allow the request, log a warning
  FAIL_CLOSED - reject with CacheUnavailableError (503)

Idempotency lookups never fabricate a replay on failure; with FAIL_OPEN the
request simply runs without replay protection.
"""
from dataclasses import dataclass
from enum import Enum

from config.settings import settings


class FailurePolicy(str, Enum):
    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_seconds: int


GUARD_POLICIES: dict[str, FailurePolicy] = {
    "rate_limit": FailurePolicy.FAIL_OPEN,
    "idempotency_lookup": FailurePolicy.FAIL_OPEN,
    "idempotency_store": FailurePolicy.FAIL_OPEN,
}

RATE_LIMITS: dict[str, RateLimitRule] = {
    "purchase": RateLimitRule(limit=1, window_seconds=5),
    "create_dispute": RateLimitRule(limit=5, window_seconds=3600),
    "dispute_message": RateLimitRule(limit=30, window_seconds=3600),
    "global": RateLimitRule(limit=settings.GLOBAL_RATE_LIMIT_PER_MINUTE, window_seconds=60),
}
