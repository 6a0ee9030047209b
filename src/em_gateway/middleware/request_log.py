"""Access log plus request-id propagation.

Each request gets an id (or keeps a caller-supplied ``X-Request-ID``) that is
stored on ``request.state``, bound to the response-envelope context and echoed
back in the ``X-Request-ID`` header.

    INFO [POST] /api/v1/transactions/purchase -> 201 (23ms) req_a1b2c3d4e5f6
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from src.em_common.response import new_request_id, set_request_id

logger = logging.getLogger("em.request")

_MAX_INBOUND_ID = 64


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        inbound = request.headers.get("X-Request-ID", "")
        request_id = inbound if 0 < len(inbound) <= _MAX_INBOUND_ID else new_request_id()
        request.state.request_id = request_id
        set_request_id(request_id)

        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "[%s] %s -> %d (%.0fms) %s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request_id,
        )
        return response
