"""Response envelope shared by every escrow endpoint.

    {"code": 0, "message": "success", "data": {...},
     "timestamp": "...", "request_id": "req_..."}

``code`` is 0 on success and the AppError code otherwise; ``data`` is null
on error. The request id is the one RequestLogMiddleware assigned to the
current request, so envelopes, logs and the X-Request-ID header agree.
"""

import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def current_request_id() -> str:
    """Id of the request being served; a fresh one outside a request (jobs, tests)."""
    return _request_id.get() or new_request_id()


class ApiResponse(BaseModel):
    code: int = 0
    message: str = "success"
    data: Any = None
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    request_id: str = Field(default_factory=current_request_id)


def success_response(data: Any = None, message: str = "success") -> ApiResponse:
    return ApiResponse(code=0, message=message, data=data)


def error_response(code: int, message: str) -> ApiResponse:
    return ApiResponse(code=code, message=message, data=None)
