"""Global per-IP rate limit middleware.

Rule: RATE_LIMITS["global"] (100 req / 60 s per client IP), key
"ratelimit:global:{ip}". Client IP is the first X-Forwarded-For hop when
behind a reverse proxy, else the socket peer. Fails open when Redis is down.

Exceptions raised here bypass FastAPI's exception handlers, so the 429 is
rendered directly in the ApiResponse envelope with a Retry-After header.
"""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from src.em_common.errors import AppError, RateLimitError
from src.em_common.redis_client import get_redis
from src.em_common.response import error_response
from src.em_gateway.guards.policy import RATE_LIMITS
from src.em_gateway.guards.rate_limiter import RateLimiter, ip_key

_EXEMPT_PATHS = frozenset({"/health"})


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in _EXEMPT_PATHS:
            return await call_next(request)

        rule = RATE_LIMITS["global"]
        try:
            limiter = RateLimiter(await get_redis())
            await limiter.hit(ip_key(client_ip(request)), rule.limit, rule.window_seconds)
        except RateLimitError as e:
            headers = {"Retry-After": str(e.retry_after)} if e.retry_after else None
            return JSONResponse(
                status_code=e.http_status,
                content=error_response(e.code, e.message).model_dump(),
                headers=headers,
            )
        except AppError as e:
            return JSONResponse(
                status_code=e.http_status,
                content=error_response(e.code, e.message).model_dump(),
            )
        return await call_next(request)
