"""Escrow background jobs.

Each job is one pass over rows selected by a predicate and is safe to run
again at any time: every state change is a conditional UPDATE, so a row
already moved by a previous (or concurrent) run is simply not matched.
Zero affected rows is the normal case.

Every job takes the session it runs in and the instant it treats as "now",
and returns the number of rows it changed.
"""
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.em_common.enums import TransactionStatus
from src.em_common.errors import PaymentProviderError
from src.em_dispute.application.service import DisputeService
from src.em_listing.domain.repository import ListingRepositoryProtocol
from src.em_notification.domain.post_commit import PostCommitHooks
from src.em_notification.domain.sink import NotificationSink
from src.em_notification.messages import (
    notify_disbursement_completed,
    notify_disbursement_failed,
)
from src.em_transaction.application.credentials import CredentialDisclosureManager
from src.em_transaction.domain.models import Transaction
from src.em_transaction.domain.repository import TransactionRepositoryProtocol
from src.em_transaction.infrastructure.payment_gateway import DisbursementGateway

logger = logging.getLogger(__name__)

DisbursementEligibility = Callable[[Transaction], bool]


def default_disbursement_eligibility(txn: Transaction) -> bool:
    """Completed, never paid out, something left to pay.

    Transactions with an open or in-review dispute are already excluded by
    the candidate query.
    """
    return (
        txn.status == TransactionStatus.COMPLETED.value
        and txn.disbursed_at is None
        and txn.seller_received > 0
    )


async def auto_expire(
    db: AsyncSession,
    now: datetime,
    listing_repo: ListingRepositoryProtocol,
    txn_repo: TransactionRepositoryProtocol,
) -> int:
    """Expire stale listings; release listings held by unpaid purchases past their window."""
    cutoff = now - timedelta(days=settings.LISTING_TTL_DAYS)
    try:
        expired = await listing_repo.expire_stale(db, cutoff)
        reverted = await listing_repo.revert_abandoned(db, now)
        cancelled = await txn_repo.cancel_expired_unpaid(db, now)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Auto-expired %d listings, reverted %d abandoned listings, cancelled %d unpaid transactions",
        len(expired), len(reverted), len(cancelled),
    )
    return len(expired) + len(reverted) + len(cancelled)


async def auto_complete(
    db: AsyncSession, now: datetime, txn_repo: TransactionRepositoryProtocol
) -> int:
    cutoff = now - timedelta(days=settings.AUTO_COMPLETE_DAYS)
    try:
        completed = await txn_repo.auto_complete(db, cutoff, now)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Auto-completed %d transactions", len(completed))
    return len(completed)


async def disburse_completed(
    db: AsyncSession,
    now: datetime,
    txn_repo: TransactionRepositoryProtocol,
    gateway: DisbursementGateway,
    sink: NotificationSink,
    is_eligible: DisbursementEligibility = default_disbursement_eligibility,
    batch_size: int | None = None,
) -> int:
    """Pay sellers for completed transactions, one transaction per unit of work.

    Each row is claimed (``disbursement_claimed_at``) and committed before the
    provider is called, so an overlapping run (scheduled or manual) finds the
    row taken and skips it. A payout the provider rejects releases the claim
    for the next run; a payout with an unknown outcome keeps the claim.
    """
    candidates = await txn_repo.list_disbursable(db, batch_size or settings.DISBURSEMENT_BATCH_SIZE)
    # Release the snapshot before the first payout call
    await db.rollback()

    disbursed = 0
    for txn in candidates:
        if not is_eligible(txn):
            continue
        if not await _claim(db, txn_repo, txn.id, now):
            logger.info("Transaction %s already claimed or paid by another run", txn.id)
            continue

        hooks = PostCommitHooks()
        try:
            reference = await gateway.disburse(txn.id, txn.seller_id, txn.seller_received)
        except PaymentProviderError as e:
            logger.error("Disbursement failed for transaction %s: %s", txn.id, e.message)
            await _release(db, txn_repo, txn.id)
            hooks.add(
                "notify_disbursement_failed",
                lambda t=txn, reason=e.message: notify_disbursement_failed(
                    sink, t.seller_id, t.seller_received, reason, t.id
                ),
            )
            await hooks.run()
            continue
        except Exception:
            logger.exception(
                "Payout outcome unknown for transaction %s; claim kept for manual review", txn.id
            )
            continue

        try:
            recorded = await txn_repo.mark_disbursed(db, txn.id, reference, now)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception(
                "Payout %s sent for transaction %s but could not be recorded", reference, txn.id
            )
            continue

        if not recorded:
            logger.warning(
                "Transaction %s was no longer disbursable when recording payout %s",
                txn.id, reference,
            )
            continue

        hooks.add(
            "notify_disbursement_completed",
            lambda t=txn: notify_disbursement_completed(sink, t.seller_id, t.seller_received, t.id),
        )
        await hooks.run()
        disbursed += 1
        logger.info("Disbursed %d to seller %s for transaction %s", txn.seller_received, txn.seller_id, txn.id)

    logger.info("Disbursed %d of %d candidate transactions", disbursed, len(candidates))
    return disbursed


async def _claim(
    db: AsyncSession, txn_repo: TransactionRepositoryProtocol, transaction_id: str, now: datetime
) -> bool:
    try:
        claimed = await txn_repo.claim_disbursement(db, transaction_id, now)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("Could not claim transaction %s for disbursement", transaction_id)
        return False
    return claimed


async def _release(
    db: AsyncSession, txn_repo: TransactionRepositoryProtocol, transaction_id: str
) -> None:
    try:
        await txn_repo.release_disbursement_claim(db, transaction_id)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("Could not release disbursement claim on transaction %s", transaction_id)


async def auto_resolve_disputes(
    db: AsyncSession, now: datetime, dispute_service: DisputeService
) -> int:
    return await dispute_service.auto_resolve_expired(db, now)


async def credential_cleanup(
    db: AsyncSession, now: datetime, manager: CredentialDisclosureManager
) -> int:
    return await manager.purge_expired(db, now)
