"""Payment webhook processing: authenticate, validate, transition.

Stateless per event and idempotent by provider reference: the paid
transition is a conditional UPDATE, so duplicate or out-of-order deliveries
find zero matching rows and are acknowledged without side effects (and
without a second notification).

Signature/payload failures raise (router answers 401/400). Business
rejections also raise AppError; the router logs them and still answers 200
so the provider stops retrying.
"""
import hashlib
import hmac
import json
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.em_common.database import async_session_factory
from src.em_common.enums import PaymentStatus
from src.em_common.errors import (
    InvalidSignatureError,
    InvalidTransitionError,
    MalformedPayloadError,
    PaymentAmountMismatchError,
    TransactionNotFoundError,
)
from src.em_notification.domain.post_commit import PostCommitHooks
from src.em_notification.domain.sink import NotificationSink
from src.em_notification.infrastructure.sink import DatabaseNotificationSink
from src.em_notification.messages import notify_payment_confirmed
from src.em_transaction.domain.models import WebhookAck
from src.em_transaction.domain.repository import TransactionRepositoryProtocol
from src.em_transaction.infrastructure.persistence import TransactionRepository

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: tuple[str, ...] = ("id", "external_id", "status", "amount")
PAID_STATUSES: frozenset[str] = frozenset({"PAID", "SETTLED"})


def compute_signature(raw_payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_payload, hashlib.sha256).hexdigest()


def verify_signature(signature: str | None, raw_payload: bytes, secret: str) -> bool:
    """HMAC-SHA256 over the raw body, constant-time compare. Empty inputs never verify."""
    if not signature or not secret:
        return False
    expected = compute_signature(raw_payload, secret)
    return hmac.compare_digest(signature.strip().lower(), expected)


def parse_payload(raw_payload: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedPayloadError("Webhook body is not valid JSON") from e
    if not isinstance(payload, dict):
        raise MalformedPayloadError()
    missing = [f for f in REQUIRED_FIELDS if payload.get(f) in (None, "")]
    if missing:
        raise MalformedPayloadError(f"Missing fields: {', '.join(missing)}")
    return payload


class PaymentWebhookProcessor:
    def __init__(
        self,
        txn_repo: TransactionRepositoryProtocol | None = None,
        sink: NotificationSink | None = None,
        secret: str | None = None,
    ) -> None:
        self._txn_repo: TransactionRepositoryProtocol = txn_repo or TransactionRepository()
        self._sink: NotificationSink = sink or DatabaseNotificationSink(async_session_factory)
        self._secret = settings.XENDIT_WEBHOOK_SECRET if secret is None else secret

    async def handle_payment_event(
        self, db: AsyncSession, signature: str | None, raw_payload: bytes
    ) -> WebhookAck:
        if not verify_signature(signature, raw_payload, self._secret):
            raise InvalidSignatureError()
        payload = parse_payload(raw_payload)

        status = str(payload["status"]).upper()
        if status not in PAID_STATUSES:
            logger.info("Webhook %s received with status %s, nothing to do", payload["id"], status)
            return WebhookAck(outcome="ignored", detail=f"status {status}")

        return await self._apply_payment(db, str(payload["id"]), payload["amount"])

    async def _apply_payment(self, db: AsyncSession, invoice_id: str, amount: Any) -> WebhookAck:
        hooks = PostCommitHooks()
        try:
            txn = await self._txn_repo.get_by_gateway_ref(db, invoice_id)
            if txn is None:
                raise TransactionNotFoundError(f"payment reference {invoice_id}")
            try:
                paid_amount = int(amount)
            except (TypeError, ValueError) as e:
                raise MalformedPayloadError("amount must be an integer") from e
            if paid_amount != txn.total_buyer_paid:
                raise PaymentAmountMismatchError(txn.total_buyer_paid, paid_amount)

            updated = await self._txn_repo.mark_paid(db, txn.id)
            if updated is None:
                await db.rollback()
                current = await self._txn_repo.get_by_id(db, txn.id)
                if current is not None and current.payment_status == PaymentStatus.PAID.value:
                    logger.info("Duplicate payment webhook for transaction %s ignored", txn.id)
                    return WebhookAck(outcome="duplicate", transaction_id=txn.id)
                state = current.status if current else "missing"
                raise InvalidTransitionError(state, "processing")

            hooks.add(
                "notify_payment_confirmed",
                lambda: notify_payment_confirmed(
                    self._sink, updated.buyer_id, updated.seller_id, updated.id
                ),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        await hooks.run()
        logger.info("Payment confirmed for transaction %s", updated.id)
        return WebhookAck(outcome="processed", transaction_id=updated.id)
