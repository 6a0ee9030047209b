"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.em_admin.api.router import router as admin_router
from src.em_common.database import engine
from src.em_common.errors import AppError, InternalError, RateLimitError
from src.em_common.redis_client import close_redis, ping_redis
from src.em_common.response import error_response
from src.em_dispute.api.router import router as dispute_router
from src.em_gateway.middleware.rate_limit import RateLimitMiddleware
from src.em_gateway.middleware.request_log import RequestLogMiddleware
from src.em_scheduler.service import EscrowScheduler
from src.em_transaction.api.router import get_purchase_service
from src.em_transaction.api.router import router as transaction_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB + Redis connections, start jobs. Shutdown: stop + dispose."""
    # Startup
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    await ping_redis()
    scheduler: EscrowScheduler = app.state.scheduler
    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    yield
    # Shutdown
    scheduler.shutdown()
    if get_purchase_service.cache_info().currsize:
        await get_purchase_service().aclose()
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)
app.state.scheduler = EscrowScheduler()


# Starlette runs the last-added middleware first: request IDs exist before rate limiting
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message)
    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
        headers=headers,
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    err = InternalError()
    return JSONResponse(
        status_code=err.http_status,
        content=error_response(err.code, err.message).model_dump(),
    )


app.include_router(transaction_router, prefix="/api/v1")
app.include_router(dispute_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
