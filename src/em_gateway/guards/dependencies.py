"""FastAPI dependencies wiring the guards into routers.

    @router.post("/purchase")
    async def purchase(..., idem: IdempotencyContext = Depends(idempotent("purchase"))):
        if (cached := idem.replay_response()) is not None:
            return cached
        ...
        return await idem.respond(201, success_response(data))

``idempotent(scope)`` also applies the per-user limit for ``scope``, but only
once the replay lookup missed: a retry carrying a known Idempotency-Key gets
the stored response and never spends the caller's rate-limit budget.
"""
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import redis.asyncio as aioredis
from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from src.em_common.redis_client import get_redis
from src.em_common.response import ApiResponse
from src.em_gateway.auth.dependencies import CurrentUser, get_current_user
from src.em_gateway.guards.idempotency import IdempotencyStore, StoredResponse
from src.em_gateway.guards.policy import RATE_LIMITS
from src.em_gateway.guards.rate_limiter import RateLimiter, user_key

IDEMPOTENCY_HEADER = "Idempotency-Key"
_IDEMPOTENT_METHODS = frozenset({"POST", "PUT"})


def rate_limited(
    scope: str, path_param: str | None = None
) -> Callable[..., Awaitable[None]]:
    """Per-user limit from RATE_LIMITS[scope]; ``path_param`` narrows the key to one resource."""
    rule = RATE_LIMITS[scope]

    async def dependency(
        request: Request,
        current_user: CurrentUser = Depends(get_current_user),
        redis: aioredis.Redis = Depends(get_redis),
    ) -> None:
        key_scope = scope
        if path_param is not None:
            key_scope = f"{scope}_{request.path_params[path_param]}"
        await RateLimiter(redis).hit(
            user_key(current_user.id, key_scope), rule.limit, rule.window_seconds
        )

    return dependency


@dataclass
class IdempotencyContext:
    store: IdempotencyStore | None = None
    key: str | None = None
    cached: StoredResponse | None = None

    def replay_response(self) -> JSONResponse | None:
        if self.cached is None:
            return None
        return JSONResponse(status_code=self.cached.status_code, content=self.cached.body)

    async def respond(self, status_code: int, resp: ApiResponse) -> JSONResponse:
        body = resp.model_dump(mode="json")
        if self.store is not None and self.key is not None:
            await self.store.store(self.key, status_code, body)
        return JSONResponse(status_code=status_code, content=body)


def idempotent(
    scope: str, limited: bool = True
) -> Callable[..., Awaitable[IdempotencyContext]]:
    """Replay lookup for ``scope``, then (on a miss) the per-user limit RATE_LIMITS[scope]."""
    rule = RATE_LIMITS[scope] if limited else None

    async def dependency(
        request: Request,
        current_user: CurrentUser = Depends(get_current_user),
        redis: aioredis.Redis = Depends(get_redis),
    ) -> IdempotencyContext:
        ctx = IdempotencyContext()
        header = request.headers.get(IDEMPOTENCY_HEADER)
        if request.method in _IDEMPOTENT_METHODS and header:
            store = IdempotencyStore(redis)
            # Scoped per user so one caller's key can never replay another's response
            key = f"{scope}:{current_user.id}:{header}"
            ctx = IdempotencyContext(store=store, key=key, cached=await store.lookup(key))
        if ctx.cached is None and rule is not None:
            await RateLimiter(redis).hit(
                user_key(current_user.id, scope), rule.limit, rule.window_seconds
            )
        return ctx

    return dependency
