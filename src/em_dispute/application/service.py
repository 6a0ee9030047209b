"""DisputeService: opening, discussing, adjudicating and auto-resolving disputes.

State machine: open → in_review → resolved | auto_resolved, any → closed.

The dispute row carries the dispute lifecycle; the linked transaction is only
touched when a full refund is granted (processing|completed → refunded).
Disbursement is held back for any transaction with an open or in-review
dispute (see TransactionRepository.list_disbursable).
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.em_common.database import async_session_factory
from src.em_common.datetime_utils import utc_now
from src.em_common.enums import DisputeReason, DisputeStatus, Resolution, TransactionStatus
from src.em_common.errors import (
    DisputeConflictError,
    DisputeNotFoundError,
    DisputeValidationError,
    ForbiddenError,
    TransactionNotFoundError,
)
from src.em_common.id_generator import dispute_id as new_dispute_id
from src.em_common.id_generator import message_id as new_message_id
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
    Refund,
    RefundAmounts,
    calculate_refund,
    can_transition,
    refund_percentage_for,
)
from src.em_dispute.domain.repository import DisputeRepositoryProtocol
from src.em_dispute.infrastructure.persistence import DisputeRepository
from src.em_notification.domain.post_commit import PostCommitHooks
from src.em_notification.domain.sink import NotificationSink
from src.em_notification.infrastructure.sink import DatabaseNotificationSink
from src.em_notification.messages import notify_dispute_opened, notify_dispute_resolved
from src.em_transaction.domain.models import Transaction, statuses_reaching
from src.em_transaction.domain.repository import TransactionRepositoryProtocol
from src.em_transaction.infrastructure.persistence import TransactionRepository

logger = logging.getLogger(__name__)

_REASONS = frozenset(r.value for r in DisputeReason)
_REFUNDABLE_TXN_STATUSES = statuses_reaching(TransactionStatus.REFUNDED.value)

AUTO_RESOLVE_BATCH_SIZE = 100


def _validate_new_dispute(reason: str, description: str, evidence: list[str]) -> None:
    if reason not in _REASONS:
        raise DisputeValidationError(f"Unknown dispute reason: {reason}")
    if not DESCRIPTION_MIN_LENGTH <= len(description.strip()) <= TEXT_MAX_LENGTH:
        raise DisputeValidationError(
            f"Description must be {DESCRIPTION_MIN_LENGTH}-{TEXT_MAX_LENGTH} characters"
        )
    if len(evidence) > MAX_EVIDENCE_URLS:
        raise DisputeValidationError(f"At most {MAX_EVIDENCE_URLS} evidence URLs allowed")


def _validate_message(text: str, attachments: list[str]) -> None:
    if not 1 <= len(text.strip()) <= TEXT_MAX_LENGTH:
        raise DisputeValidationError(f"Message must be 1-{TEXT_MAX_LENGTH} characters")
    if len(attachments) > MAX_ATTACHMENTS:
        raise DisputeValidationError(f"At most {MAX_ATTACHMENTS} attachments allowed")


class DisputeService:
    def __init__(
        self,
        repo: DisputeRepositoryProtocol | None = None,
        txn_repo: TransactionRepositoryProtocol | None = None,
        sink: NotificationSink | None = None,
    ) -> None:
        self._repo: DisputeRepositoryProtocol = repo or DisputeRepository()
        self._txn_repo: TransactionRepositoryProtocol = txn_repo or TransactionRepository()
        self._sink: NotificationSink = sink or DatabaseNotificationSink(async_session_factory)

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    async def create_dispute(
        self,
        db: AsyncSession,
        buyer_id: str,
        transaction_id: str,
        reason: str,
        description: str,
        evidence: list[str] | None = None,
        now: datetime | None = None,
    ) -> Dispute:
        evidence = list(evidence or [])
        _validate_new_dispute(reason, description, evidence)
        now = now or utc_now()
        hooks = PostCommitHooks()
        try:
            txn = await self._txn_repo.get_by_id(db, transaction_id)
            if txn is None or txn.buyer_id != buyer_id:
                raise TransactionNotFoundError(transaction_id)
            if await self._repo.has_active_for_transaction(db, transaction_id):
                raise DisputeConflictError("An active dispute already exists for this transaction.")

            dispute = await self._repo.insert(
                db,
                Dispute(
                    id=new_dispute_id(),
                    transaction_id=transaction_id,
                    buyer_id=buyer_id,
                    seller_id=txn.seller_id,
                    reason=reason,
                    description=description.strip(),
                    evidence_urls=evidence,
                    auto_resolve_at=now + timedelta(days=settings.DISPUTE_AUTO_RESOLVE_DAYS),
                ),
            )
            hooks.add(
                "notify_dispute_opened",
                lambda: notify_dispute_opened(self._sink, dispute.seller_id, dispute.id),
            )
            await db.commit()
        except IntegrityError as e:
            # uq_disputes_transaction_active: a concurrent request won the race
            await db.rollback()
            raise DisputeConflictError(
                "An active dispute already exists for this transaction."
            ) from e
        except Exception:
            await db.rollback()
            raise

        await hooks.run()
        logger.info("Dispute created: %s for transaction %s", dispute.id, transaction_id)
        return dispute

    async def add_message(
        self,
        db: AsyncSession,
        dispute_id: str,
        user_id: str,
        text: str,
        attachments: list[str] | None = None,
    ) -> DisputeMessage:
        attachments = list(attachments or [])
        _validate_message(text, attachments)
        try:
            dispute = await self._repo.get_by_id(db, dispute_id)
            if dispute is None:
                raise DisputeNotFoundError(dispute_id)
            if not dispute.is_participant(user_id):
                raise ForbiddenError("Only the buyer or seller can post to this dispute.")
            if not dispute.accepts_messages:
                raise DisputeConflictError("Cannot add messages to closed dispute.")

            message = await self._repo.insert_message(
                db,
                DisputeMessage(
                    id=new_message_id(),
                    dispute_id=dispute_id,
                    sender_id=user_id,
                    message=text.strip(),
                    attachments=attachments,
                ),
            )
            # The seller answering puts the dispute under review
            if user_id == dispute.seller_id and can_transition(
                dispute.status, DisputeStatus.IN_REVIEW.value
            ):
                await self._repo.set_status(
                    db, dispute_id, DisputeStatus.OPEN.value, DisputeStatus.IN_REVIEW.value
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Message added to dispute %s", dispute_id)
        return message

    async def get_dispute_detail(
        self, db: AsyncSession, dispute_id: str, user_id: str
    ) -> DisputeDetail:
        dispute = await self._repo.get_by_id(db, dispute_id)
        if dispute is None or not dispute.is_participant(user_id):
            raise DisputeNotFoundError(dispute_id)
        messages = await self._repo.list_messages(db, dispute_id)
        return DisputeDetail(dispute=dispute, messages=messages)

    async def list_disputes(
        self,
        db: AsyncSession,
        user_id: str,
        status: str | None = None,
        reason: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> DisputePage:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        total = await self._repo.count_for_user(db, user_id, status, reason)
        items = await self._repo.list_for_user(
            db, user_id, status, reason, limit, (page - 1) * limit
        )
        return DisputePage(items=items, page=page, limit=limit, total=total)

    # ------------------------------------------------------------------
    # Arbiter
    # ------------------------------------------------------------------

    async def resolve(
        self,
        db: AsyncSession,
        dispute_id: str,
        admin_id: str,
        resolution: str,
        refund_percentage: int | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> Dispute:
        """Adjudicate a dispute. refund_buyer=100%, partial_refund=1-99%, in_favor_seller=0%."""
        percentage = refund_percentage_for(resolution, refund_percentage)
        if notes is not None and len(notes) > NOTES_MAX_LENGTH:
            raise DisputeValidationError(f"Notes must be at most {NOTES_MAX_LENGTH} characters")
        now = now or utc_now()
        hooks = PostCommitHooks()
        try:
            dispute = await self._repo.lock_by_id(db, dispute_id)
            if dispute is None:
                raise DisputeNotFoundError(dispute_id)
            if not dispute.is_resolvable:
                raise DisputeConflictError("This dispute is already resolved.")

            txn = await self._txn_repo.get_by_id(db, dispute.transaction_id)
            if txn is None:
                raise TransactionNotFoundError(dispute.transaction_id)
            amounts = calculate_refund(txn.total_buyer_paid, txn.platform_fee_amount, percentage)

            resolved = await self._repo.mark_resolved(
                db, dispute_id, resolution, percentage, notes, admin_id, now
            )
            if resolved is None:
                raise DisputeConflictError("This dispute is already resolved.")
            await self._settle_refund(db, resolved, txn, amounts, percentage)

            hooks.add(
                "notify_dispute_resolved",
                lambda: notify_dispute_resolved(
                    self._sink, [resolved.buyer_id, resolved.seller_id], resolved.id, resolution
                ),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        await hooks.run()
        logger.info("Dispute resolved: %s with resolution: %s", dispute_id, resolution)
        return resolved

    async def auto_resolve_expired(self, db: AsyncSession, now: datetime | None = None) -> int:
        """Full buyer refund for every dispute past its deadline; returns how many were resolved.

        Each dispute is its own unit of work. The conditional update re-checks
        status and deadline, so overlapping runs resolve each dispute once.
        """
        now = now or utc_now()
        due = await self._repo.list_due_for_auto_resolve(db, now, AUTO_RESOLVE_BATCH_SIZE)
        if not due:
            logger.info("No expired disputes to auto-resolve")
            return 0

        resolved_count = 0
        for dispute_id in due:
            hooks = PostCommitHooks()
            try:
                dispute = await self._repo.mark_auto_resolved(db, dispute_id, now)
                if dispute is None:
                    await db.rollback()
                    continue
                txn = await self._txn_repo.get_by_id(db, dispute.transaction_id)
                if txn is not None:
                    amounts = calculate_refund(txn.total_buyer_paid, txn.platform_fee_amount, 100)
                    await self._settle_refund(db, dispute, txn, amounts, 100)
                else:
                    logger.error(
                        "Auto-resolved dispute %s has no transaction %s; no refund recorded",
                        dispute_id, dispute.transaction_id,
                    )
                hooks.add(
                    "notify_dispute_resolved",
                    lambda d=dispute: notify_dispute_resolved(
                        self._sink, [d.buyer_id, d.seller_id], d.id,
                        Resolution.AUTO_RESOLVED.value,
                    ),
                )
                await db.commit()
            except Exception:
                await db.rollback()
                logger.exception("Failed to auto-resolve dispute %s", dispute_id)
                continue
            await hooks.run()
            resolved_count += 1
            logger.info("Dispute auto-resolved: %s", dispute_id)

        logger.info("Auto-resolved %d expired disputes", resolved_count)
        return resolved_count

    async def _settle_refund(
        self,
        db: AsyncSession,
        dispute: Dispute,
        txn: Transaction,
        amounts: RefundAmounts,
        percentage: int,
    ) -> None:
        if amounts.buyer_refund <= 0:
            return
        await self._repo.insert_refund(
            db,
            Refund(
                dispute_id=dispute.id,
                buyer_id=dispute.buyer_id,
                seller_id=dispute.seller_id,
                buyer_refund_amount=amounts.buyer_refund,
                seller_refund_amount=amounts.seller_refund,
            ),
        )
        if percentage == 100:
            await self._txn_repo.set_status(
                db, txn.id, _REFUNDABLE_TXN_STATUSES, TransactionStatus.REFUNDED.value
            )
        logger.info(
            "Refund created for dispute %s: buyer=%d, seller=%d",
            dispute.id, amounts.buyer_refund, amounts.seller_refund,
        )
