"""Global enums: must match DB CHECK constraints exactly."""

from enum import Enum


class ListingStatus(str, Enum):
    ACTIVE = "active"
    SOLD = "sold"
    EXPIRED = "expired"
    DELETED = "deleted"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"


class DisputeStatus(str, Enum):
    OPEN = "open"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"
    AUTO_RESOLVED = "auto_resolved"
    CLOSED = "closed"


class DisputeReason(str, Enum):
    ACCOUNT_NOT_RECEIVED = "account_not_received"
    INCORRECT_ACCOUNT = "incorrect_account"
    ACCOUNT_BANNED = "account_banned"
    SELLER_UNRESPONSIVE = "seller_unresponsive"
    OTHER = "other"


class Resolution(str, Enum):
    REFUND_BUYER = "refund_buyer"
    IN_FAVOR_SELLER = "in_favor_seller"
    PARTIAL_REFUND = "partial_refund"
    AUTO_RESOLVED = "auto_resolved"


class RefundStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationType(str, Enum):
    TRANSACTION_PENDING = "transaction_pending"
    PAYMENT_CONFIRMED = "payment_confirmed"
    TRANSACTION_COMPLETED = "transaction_completed"
    DISPUTE_OPENED = "transaction_dispute_opened"
    DISPUTE_RESOLVED = "dispute_resolved"
    DISBURSEMENT_COMPLETED = "disbursement_completed"
    DISBURSEMENT_FAILED = "disbursement_failed"
