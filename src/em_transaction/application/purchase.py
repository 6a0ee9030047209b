"""PurchaseService: escrow transaction creation and buyer-side transitions.

create_purchase is the one concurrency-critical path: the listing row lock
(taken by ListingGuard) is held from the availability check until commit,
so two buyers racing for the same listing serialise on it and the loser
sees status='sold'. Invoice creation happens *inside* the unit of work;
if the provider fails or times out, the rollback releases the listing and
no transaction row survives.
"""
import asyncio
import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.em_common.database import async_session_factory
from src.em_common.datetime_utils import utc_now
from src.em_common.enums import TransactionStatus
from src.em_common.errors import (
    InvalidTransitionError,
    ListingNotAvailableError,
    PaymentProviderError,
    TransactionNotFoundError,
)
from src.em_listing.domain.guard import ListingGuard
from src.em_listing.domain.repository import ListingRepositoryProtocol
from src.em_listing.infrastructure.persistence import ListingRepository
from src.em_notification.domain.post_commit import PostCommitHooks
from src.em_notification.domain.sink import NotificationSink
from src.em_notification.infrastructure.sink import DatabaseNotificationSink
from src.em_notification.messages import (
    notify_transaction_completed,
    notify_transaction_pending,
)
from src.em_transaction.domain.fee import calculate_fees
from src.em_transaction.domain.models import PurchaseResult, Transaction, can_transition
from src.em_transaction.domain.repository import TransactionRepositoryProtocol
from src.em_transaction.infrastructure.payment_gateway import (
    Invoice,
    PaymentGateway,
    build_payment_gateway,
)
from src.em_transaction.infrastructure.persistence import TransactionRepository

logger = logging.getLogger(__name__)


class PurchaseService:
    def __init__(
        self,
        txn_repo: TransactionRepositoryProtocol | None = None,
        listing_repo: ListingRepositoryProtocol | None = None,
        gateway: PaymentGateway | None = None,
        sink: NotificationSink | None = None,
    ) -> None:
        self._txn_repo: TransactionRepositoryProtocol = txn_repo or TransactionRepository()
        self._listing_repo: ListingRepositoryProtocol = listing_repo or ListingRepository()
        self._guard = ListingGuard(self._listing_repo)
        self._gateway: PaymentGateway = gateway or build_payment_gateway()
        self._sink: NotificationSink = sink or DatabaseNotificationSink(async_session_factory)

    async def create_purchase(
        self,
        db: AsyncSession,
        buyer_id: str,
        listing_id: str,
        payer_email: str | None = None,
    ) -> PurchaseResult:
        hooks = PostCommitHooks()
        try:
            listing = await self._guard.acquire(db, listing_id, buyer_id)
            fees = calculate_fees(listing.price)
            txn = await self._txn_repo.insert(
                db,
                Transaction(
                    id="",
                    buyer_id=buyer_id,
                    seller_id=listing.seller_id,
                    listing_id=listing.id,
                    item_price=fees.item_price,
                    platform_fee_bps=fees.platform_fee_bps,
                    platform_fee_amount=fees.platform_fee_amount,
                    disbursement_fee=fees.disbursement_fee,
                    total_buyer_paid=fees.total_buyer_paid,
                    seller_received=fees.seller_received,
                ),
            )
            await self._listing_repo.mark_sold(db, listing.id)
            logger.info("Marked listing %s as 'sold' pending payment.", listing.id)

            invoice = await self._request_invoice(
                txn, payer_email, f"Purchase of {listing.account_identifier}"
            )
            expires_at = utc_now() + timedelta(minutes=settings.PAYMENT_WINDOW_MINUTES)
            await self._txn_repo.attach_payment(db, txn.id, invoice.id, expires_at)

            hooks.add(
                "notify_transaction_pending",
                lambda: notify_transaction_pending(self._sink, txn.seller_id, txn.id),
            )
            await db.commit()
        except IntegrityError as e:
            # uq_transactions_listing_active: another open purchase slipped in
            await db.rollback()
            logger.warning("Concurrent purchase rejected for listing %s: %s", listing_id, e.orig)
            raise ListingNotAvailableError() from e
        except Exception:
            await db.rollback()
            hooks.discard()
            raise

        await hooks.run()
        logger.info("Purchase initiated for transaction ID: %s", txn.id)
        return PurchaseResult(
            transaction_id=txn.id,
            payment_url=invoice.payment_url,
            expires_at=expires_at,
        )

    async def _request_invoice(
        self, txn: Transaction, payer_email: str | None, description: str
    ) -> Invoice:
        try:
            return await asyncio.wait_for(
                self._gateway.create_invoice(
                    external_id=txn.id,
                    amount=txn.total_buyer_paid,
                    payer_email=payer_email,
                    description=description,
                ),
                timeout=settings.PAYMENT_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as e:
            logger.error("Payment provider timed out for transaction %s", txn.id)
            raise PaymentProviderError("Payment provider timed out. Please try again.") from e

    async def get_transaction(
        self, db: AsyncSession, transaction_id: str, user_id: str
    ) -> Transaction:
        txn = await self._txn_repo.get_by_id(db, transaction_id)
        # Non-participants get the same answer as a missing row
        if txn is None or user_id not in (txn.buyer_id, txn.seller_id):
            raise TransactionNotFoundError(transaction_id)
        return txn

    async def confirm_receipt(
        self, db: AsyncSession, transaction_id: str, buyer_id: str
    ) -> Transaction:
        """Buyer accepts delivery: processing -> completed."""
        hooks = PostCommitHooks()
        try:
            txn = await self._txn_repo.get_by_id(db, transaction_id)
            if txn is None or txn.buyer_id != buyer_id:
                raise TransactionNotFoundError(transaction_id)
            if not can_transition(txn.status, TransactionStatus.COMPLETED.value):
                raise InvalidTransitionError(txn.status, TransactionStatus.COMPLETED.value)
            updated = await self._txn_repo.mark_completed(
                db, transaction_id, TransactionStatus.PROCESSING.value, utc_now()
            )
            if updated is None:
                raise InvalidTransitionError(txn.status, TransactionStatus.COMPLETED.value)
            hooks.add(
                "notify_transaction_completed",
                lambda: notify_transaction_completed(self._sink, updated.seller_id, updated.id),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        await hooks.run()
        logger.info("Transaction %s completed by buyer", transaction_id)
        return updated

    async def aclose(self) -> None:
        await self._gateway.aclose()
