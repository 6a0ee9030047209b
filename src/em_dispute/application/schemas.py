# src/em_dispute/application/schemas.py
from datetime import datetime
from typing import Literal

from pydantic import AnyHttpUrl, BaseModel, Field

from src.em_dispute.domain.models import (
    DESCRIPTION_MIN_LENGTH,
    MAX_ATTACHMENTS,
    MAX_EVIDENCE_URLS,
    NOTES_MAX_LENGTH,
    TEXT_MAX_LENGTH,
    Dispute,
    DisputeDetail,
    DisputeMessage,
    DisputePage,
)

ReasonLiteral = Literal[
    "account_not_received", "incorrect_account", "account_banned", "seller_unresponsive", "other"
]


class CreateDisputeRequest(BaseModel):
    transaction_id: str = Field(min_length=1)
    reason: ReasonLiteral
    description: str = Field(min_length=DESCRIPTION_MIN_LENGTH, max_length=TEXT_MAX_LENGTH)
    evidence: list[AnyHttpUrl] = Field(default_factory=list, max_length=MAX_EVIDENCE_URLS)


class AddMessageRequest(BaseModel):
    message: str = Field(min_length=1, max_length=TEXT_MAX_LENGTH)
    attachments: list[AnyHttpUrl] = Field(default_factory=list, max_length=MAX_ATTACHMENTS)


class ResolveDisputeRequest(BaseModel):
    resolution: Literal["refund_buyer", "in_favor_seller", "partial_refund"]
    refund_percentage: int | None = Field(default=None, ge=0, le=100)
    notes: str | None = Field(default=None, max_length=NOTES_MAX_LENGTH)


class DisputeResponse(BaseModel):
    id: str
    transaction_id: str
    buyer_id: str
    seller_id: str
    reason: str
    description: str
    evidence_urls: list[str]
    status: str
    resolution: str | None = None
    refund_percentage: int | None = None
    notes: str | None = None
    resolved_by: str | None = None
    auto_resolve_at: datetime | None = None
    resolved_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_domain(cls, d: Dispute) -> "DisputeResponse":
        return cls(
            id=d.id,
            transaction_id=d.transaction_id,
            buyer_id=d.buyer_id,
            seller_id=d.seller_id,
            reason=d.reason,
            description=d.description,
            evidence_urls=d.evidence_urls,
            status=d.status,
            resolution=d.resolution,
            refund_percentage=d.refund_percentage,
            notes=d.notes,
            resolved_by=d.resolved_by,
            auto_resolve_at=d.auto_resolve_at,
            resolved_at=d.resolved_at,
            created_at=d.created_at,
            updated_at=d.updated_at,
        )


class DisputeMessageResponse(BaseModel):
    id: str
    dispute_id: str
    sender_id: str
    message: str
    attachments: list[str]
    created_at: datetime | None = None

    @classmethod
    def from_domain(cls, m: DisputeMessage) -> "DisputeMessageResponse":
        return cls(
            id=m.id,
            dispute_id=m.dispute_id,
            sender_id=m.sender_id,
            message=m.message,
            attachments=m.attachments,
            created_at=m.created_at,
        )


class DisputeDetailResponse(DisputeResponse):
    messages: list[DisputeMessageResponse]

    @classmethod
    def from_detail(cls, detail: DisputeDetail) -> "DisputeDetailResponse":
        base = DisputeResponse.from_domain(detail.dispute).model_dump()
        return cls(
            **base,
            messages=[DisputeMessageResponse.from_domain(m) for m in detail.messages],
        )


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class DisputeListResponse(BaseModel):
    disputes: list[DisputeResponse]
    pagination: Pagination

    @classmethod
    def from_page(cls, page: DisputePage) -> "DisputeListResponse":
        return cls(
            disputes=[DisputeResponse.from_domain(d) for d in page.items],
            pagination=Pagination(
                page=page.page, limit=page.limit, total=page.total, pages=page.pages
            ),
        )
