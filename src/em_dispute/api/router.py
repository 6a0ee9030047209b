# src/em_dispute/api/router.py
"""Dispute REST API (buyer / seller side). Adjudication lives under /admin."""
from functools import lru_cache
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.em_common.database import get_db_session
from src.em_common.response import ApiResponse, success_response
from src.em_dispute.application.schemas import (
    AddMessageRequest,
    CreateDisputeRequest,
    DisputeDetailResponse,
    DisputeListResponse,
    DisputeMessageResponse,
    DisputeResponse,
    ReasonLiteral,
)
from src.em_dispute.application.service import DisputeService
from src.em_gateway.auth.dependencies import CurrentUser, get_current_user
from src.em_gateway.guards.dependencies import IdempotencyContext, idempotent, rate_limited

router = APIRouter(prefix="/disputes", tags=["disputes"])


@lru_cache
def get_dispute_service() -> DisputeService:
    return DisputeService()


@router.post("", status_code=201)
async def create_dispute(
    req: CreateDisputeRequest,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DisputeService, Depends(get_dispute_service)],
    idem: Annotated[IdempotencyContext, Depends(idempotent("create_dispute"))],
) -> JSONResponse:
    if (cached := idem.replay_response()) is not None:
        return cached
    dispute = await service.create_dispute(
        db,
        current_user.id,
        req.transaction_id,
        req.reason,
        req.description,
        [str(url) for url in req.evidence],
    )
    return await idem.respond(
        201,
        success_response(
            DisputeResponse.from_domain(dispute).model_dump(mode="json"),
            message="Dispute created",
        ),
    )


@router.get("")
async def list_disputes(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DisputeService, Depends(get_dispute_service)],
    status: str | None = Query(None, description="Filter by dispute status"),
    reason: ReasonLiteral | None = Query(None, description="Filter by dispute reason"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Items per page"),
) -> ApiResponse:
    result = await service.list_disputes(db, current_user.id, status, reason, page, limit)
    return success_response(DisputeListResponse.from_page(result).model_dump(mode="json"))


@router.get("/{dispute_id}")
async def get_dispute(
    dispute_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DisputeService, Depends(get_dispute_service)],
) -> ApiResponse:
    detail = await service.get_dispute_detail(db, dispute_id, current_user.id)
    return success_response(DisputeDetailResponse.from_detail(detail).model_dump(mode="json"))


@router.post(
    "/{dispute_id}/messages",
    status_code=201,
    dependencies=[Depends(rate_limited("dispute_message", path_param="dispute_id"))],
)
async def add_message(
    dispute_id: str,
    req: AddMessageRequest,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DisputeService, Depends(get_dispute_service)],
) -> ApiResponse:
    message = await service.add_message(
        db, dispute_id, current_user.id, req.message, [str(url) for url in req.attachments]
    )
    return success_response(
        DisputeMessageResponse.from_domain(message).model_dump(mode="json"),
        message="Message added",
    )
