"""Dispute domain models: pure dataclasses, no SQLAlchemy dependency."""
from dataclasses import dataclass, field
from datetime import datetime

from src.em_common.enums import DisputeStatus as DS
from src.em_common.enums import RefundStatus, Resolution
from src.em_common.errors import DisputeValidationError, InvalidRefundPercentageError
from src.em_common.money import percent_floor

MAX_EVIDENCE_URLS = 5
MAX_ATTACHMENTS = 3
DESCRIPTION_MIN_LENGTH = 10
TEXT_MAX_LENGTH = 1000
NOTES_MAX_LENGTH = 500

# open -> in_review -> resolved | auto_resolved; any state -> closed
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    DS.OPEN.value: frozenset({DS.IN_REVIEW.value, DS.RESOLVED.value, DS.AUTO_RESOLVED.value, DS.CLOSED.value}),
    DS.IN_REVIEW.value: frozenset({DS.RESOLVED.value, DS.AUTO_RESOLVED.value, DS.CLOSED.value}),
    DS.RESOLVED.value: frozenset({DS.CLOSED.value}),
    DS.AUTO_RESOLVED.value: frozenset({DS.CLOSED.value}),
    DS.CLOSED.value: frozenset(),
}

# No further messages once the thread is sealed
SEALED_STATUSES: frozenset[str] = frozenset({DS.CLOSED.value, DS.AUTO_RESOLVED.value})


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


@dataclass
class Dispute:
    id: str
    transaction_id: str
    buyer_id: str
    seller_id: str
    reason: str
    description: str
    evidence_urls: list[str] = field(default_factory=list)
    status: str = DS.OPEN.value
    resolution: str | None = None
    refund_percentage: int | None = None
    notes: str | None = None
    resolved_by: str | None = None
    auto_resolve_at: datetime | None = None
    resolved_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    @property
    def accepts_messages(self) -> bool:
        return self.status not in SEALED_STATUSES

    @property
    def is_resolvable(self) -> bool:
        return can_transition(self.status, DS.RESOLVED.value)


@dataclass
class DisputeMessage:
    id: str
    dispute_id: str
    sender_id: str
    message: str
    attachments: list[str] = field(default_factory=list)
    created_at: datetime | None = None


@dataclass
class Refund:
    dispute_id: str
    buyer_id: str
    seller_id: str
    buyer_refund_amount: int
    seller_refund_amount: int
    status: str = RefundStatus.PENDING.value
    id: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class RefundAmounts:
    buyer_refund: int
    seller_refund: int


@dataclass
class DisputeDetail:
    dispute: Dispute
    messages: list[DisputeMessage]


@dataclass
class DisputePage:
    items: list[Dispute]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


def calculate_refund(total_buyer_paid: int, platform_fee_amount: int, percentage: int) -> RefundAmounts:
    """Split of a refund at ``percentage`` percent, integer floor.

    calculate_refund(100_000, 3_000, 50) == RefundAmounts(50_000, 48_500)
    """
    if not 0 <= percentage <= 100:
        raise InvalidRefundPercentageError(percentage)
    return RefundAmounts(
        buyer_refund=percent_floor(total_buyer_paid, percentage),
        seller_refund=percent_floor(total_buyer_paid - platform_fee_amount, percentage),
    )


def refund_percentage_for(resolution: str, requested: int | None) -> int:
    """Percentage implied by an arbiter's resolution.

    refund_buyer is always a full refund, in_favor_seller none; partial_refund
    must name a strictly partial share (1-99).
    """
    if resolution == Resolution.REFUND_BUYER.value:
        return 100
    if resolution == Resolution.IN_FAVOR_SELLER.value:
        return 0
    if resolution == Resolution.PARTIAL_REFUND.value:
        if requested is None or not 1 <= requested <= 99:
            raise InvalidRefundPercentageError(requested)
        return requested
    raise DisputeValidationError(f"Unsupported resolution: {resolution}")
