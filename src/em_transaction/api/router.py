# src/em_transaction/api/router.py
"""Escrow transaction REST API + payment provider webhook."""
import asyncio
import logging
from functools import lru_cache
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.em_common.database import get_db_session
from src.em_common.errors import (
    AppError,
    InvalidSignatureError,
    MalformedPayloadError,
    WebhookTimeoutError,
)
from src.em_common.response import ApiResponse, success_response
from src.em_gateway.auth.dependencies import CurrentUser, get_current_user
from src.em_gateway.guards.dependencies import IdempotencyContext, idempotent
from src.em_transaction.application.credentials import CredentialDisclosureManager
from src.em_transaction.application.purchase import PurchaseService
from src.em_transaction.application.schemas import (
    CredentialResponse,
    PurchaseRequest,
    PurchaseResponse,
    TransactionResponse,
    WebhookAckResponse,
)
from src.em_transaction.application.webhook import PaymentWebhookProcessor
from src.em_transaction.domain.models import WebhookAck

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])


# One instance per process: the purchase service owns the provider HTTP client
@lru_cache
def get_purchase_service() -> PurchaseService:
    return PurchaseService()


@lru_cache
def get_webhook_processor() -> PaymentWebhookProcessor:
    return PaymentWebhookProcessor()


@lru_cache
def get_credential_manager() -> CredentialDisclosureManager:
    return CredentialDisclosureManager()


@router.post("/purchase", status_code=201)
async def create_purchase(
    req: PurchaseRequest,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[PurchaseService, Depends(get_purchase_service)],
    idem: Annotated[IdempotencyContext, Depends(idempotent("purchase"))],
) -> JSONResponse:
    if (cached := idem.replay_response()) is not None:
        return cached
    result = await service.create_purchase(db, current_user.id, req.listing_id, current_user.email)
    return await idem.respond(
        201,
        success_response(
            PurchaseResponse.from_result(result).model_dump(mode="json"),
            message="Transaction created. Please proceed to payment.",
        ),
    )


@router.post("/webhook/xendit")
async def payment_webhook(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    processor: Annotated[PaymentWebhookProcessor, Depends(get_webhook_processor)],
    x_callback_signature: Annotated[str | None, Header()] = None,
) -> WebhookAckResponse:
    """Provider callback. Authentication failures answer 401/400; every
    authenticated delivery answers 200 so the provider stops retrying.
    Processing that overruns PAYMENT_TIMEOUT_SECONDS is rolled back and
    answers 503, so the provider redelivers."""
    raw = await request.body()
    try:
        ack = await asyncio.wait_for(
            processor.handle_payment_event(db, x_callback_signature, raw),
            timeout=settings.PAYMENT_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as e:
        await db.rollback()
        logger.error("Webhook processing timed out after %.1fs", settings.PAYMENT_TIMEOUT_SECONDS)
        raise WebhookTimeoutError() from e
    except (InvalidSignatureError, MalformedPayloadError):
        raise
    except AppError as e:
        logger.error("Webhook rejected (%d): %s", e.code, e.message)
        ack = WebhookAck(outcome="rejected", detail=e.message)
    return WebhookAckResponse.from_ack(ack)


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[PurchaseService, Depends(get_purchase_service)],
) -> ApiResponse:
    txn = await service.get_transaction(db, transaction_id, current_user.id)
    return success_response(TransactionResponse.from_domain(txn).model_dump(mode="json"))


@router.post("/{transaction_id}/confirm")
async def confirm_receipt(
    transaction_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[PurchaseService, Depends(get_purchase_service)],
) -> ApiResponse:
    txn = await service.confirm_receipt(db, transaction_id, current_user.id)
    return success_response(
        TransactionResponse.from_domain(txn).model_dump(mode="json"),
        message="Transaction completed",
    )


@router.get("/{transaction_id}/credentials")
async def get_credentials(
    transaction_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    manager: Annotated[CredentialDisclosureManager, Depends(get_credential_manager)],
) -> ApiResponse:
    view = await manager.fetch_credentials(db, transaction_id, current_user.id)
    return success_response(CredentialResponse.from_view(view).model_dump(mode="json"))
