# src/em_transaction/application/schemas.py
from datetime import datetime
from typing import Any

from pydantic import BaseModel, field_validator

from src.em_transaction.domain.models import (
    CredentialView,
    PurchaseResult,
    Transaction,
    WebhookAck,
)


class PurchaseRequest(BaseModel):
    listing_id: str

    @field_validator("listing_id")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("listing_id must not be empty")
        return v.strip()


class PurchaseResponse(BaseModel):
    transaction_id: str
    payment_url: str
    expires_at: datetime

    @classmethod
    def from_result(cls, result: PurchaseResult) -> "PurchaseResponse":
        return cls(
            transaction_id=result.transaction_id,
            payment_url=result.payment_url,
            expires_at=result.expires_at,
        )


class TransactionResponse(BaseModel):
    id: str
    buyer_id: str
    seller_id: str
    listing_id: str
    item_price: int
    platform_fee_amount: int
    disbursement_fee: int
    total_buyer_paid: int
    seller_received: int
    status: str
    payment_status: str
    expires_at: datetime | None = None
    credentials_first_accessed_at: datetime | None = None
    credentials_expires_at: datetime | None = None
    completed_at: datetime | None = None
    disbursed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_domain(cls, txn: Transaction) -> "TransactionResponse":
        return cls(
            id=txn.id,
            buyer_id=txn.buyer_id,
            seller_id=txn.seller_id,
            listing_id=txn.listing_id,
            item_price=txn.item_price,
            platform_fee_amount=txn.platform_fee_amount,
            disbursement_fee=txn.disbursement_fee,
            total_buyer_paid=txn.total_buyer_paid,
            seller_received=txn.seller_received,
            status=txn.status,
            payment_status=txn.payment_status,
            expires_at=txn.expires_at,
            credentials_first_accessed_at=txn.credentials_first_accessed_at,
            credentials_expires_at=txn.credentials_expires_at,
            completed_at=txn.completed_at,
            disbursed_at=txn.disbursed_at,
            created_at=txn.created_at,
            updated_at=txn.updated_at,
        )


class CredentialResponse(BaseModel):
    transaction_id: str
    account_identifier: str
    credentials: dict[str, Any]
    expires_at: datetime
    minutes_remaining: int
    warning: str | None = None

    @classmethod
    def from_view(cls, view: CredentialView) -> "CredentialResponse":
        return cls(
            transaction_id=view.transaction_id,
            account_identifier=view.account_identifier,
            credentials=view.credentials,
            expires_at=view.expires_at,
            minutes_remaining=view.minutes_remaining,
            warning=view.warning,
        )


class WebhookAckResponse(BaseModel):
    """Body returned to the payment provider. Always HTTP 200 once authenticated."""

    success: bool
    outcome: str
    transaction_id: str | None = None
    message: str | None = None

    @classmethod
    def from_ack(cls, ack: WebhookAck) -> "WebhookAckResponse":
        return cls(
            success=ack.outcome != "rejected",
            outcome=ack.outcome,
            transaction_id=ack.transaction_id,
            message=ack.detail,
        )
