"""Transaction domain models: pure dataclasses, no SQLAlchemy dependency."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.em_common.enums import TransactionStatus as TS

# Escrow state machine. ``cancelled`` is only reached by payment-window expiry.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    TS.PENDING.value: frozenset({TS.PAID.value, TS.PROCESSING.value, TS.DISPUTED.value, TS.CANCELLED.value}),
    TS.PAID.value: frozenset({TS.PROCESSING.value, TS.DISPUTED.value}),
    TS.PROCESSING.value: frozenset({TS.COMPLETED.value, TS.DISPUTED.value, TS.REFUNDED.value}),
    TS.COMPLETED.value: frozenset({TS.REFUNDED.value}),
    TS.DISPUTED.value: frozenset(),
    TS.REFUNDED.value: frozenset(),
    TS.CANCELLED.value: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def statuses_reaching(target: str) -> list[str]:
    """Every status with a legal edge into ``target``, in table order."""
    return [s for s, targets in ALLOWED_TRANSITIONS.items() if target in targets]


@dataclass
class Transaction:
    id: str
    buyer_id: str
    seller_id: str
    listing_id: str
    # Fee breakdown, written once at insert, never updated
    item_price: int
    platform_fee_bps: int
    platform_fee_amount: int
    disbursement_fee: int
    total_buyer_paid: int
    seller_received: int
    # Lifecycle
    status: str = TS.PENDING.value
    payment_status: str = "pending"
    payment_gateway_ref: str | None = None
    expires_at: datetime | None = None  # payment window
    credentials_first_accessed_at: datetime | None = None
    credentials_expires_at: datetime | None = None
    completed_at: datetime | None = None
    disbursed_at: datetime | None = None
    disbursement_ref: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def fees_reconcile(self) -> bool:
        return (
            self.seller_received + self.platform_fee_amount + self.disbursement_fee
            == self.item_price
        )


@dataclass
class CredentialAccess:
    transaction_id: str
    buyer_id: str
    accessed_at: datetime
    expires_at: datetime
    id: int | None = None

    def is_open(self, now: datetime) -> bool:
        # Strict: a fetch at exactly expires_at is already outside the window
        return now < self.expires_at


@dataclass
class PurchaseResult:
    transaction_id: str
    payment_url: str
    expires_at: datetime


@dataclass
class CredentialView:
    transaction_id: str
    account_identifier: str
    credentials: dict[str, Any]
    expires_at: datetime
    minutes_remaining: int
    warning: str | None = None


@dataclass
class WebhookAck:
    """Outcome of one webhook delivery; always acknowledged to the provider."""

    outcome: str  # processed | ignored | duplicate | rejected
    transaction_id: str | None = None
    detail: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
