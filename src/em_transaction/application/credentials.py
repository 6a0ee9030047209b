"""CredentialDisclosureManager: one-time, time-boxed credential reveal.

Window rules:
  * the first successful fetch opens a 10-minute window (one row in
    credential_access, unique per transaction);
  * fetches inside the window return the same data and the remaining time;
    they never extend the window;
  * the window is strict: at ``now >= expires_at`` the fetch is refused;
  * the cleanup job purges the record one hour after first access, and the
    transaction's first-access stamp keeps the window from reopening.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.em_common.datetime_utils import minutes_until, utc_now
from src.em_common.enums import TransactionStatus
from src.em_common.errors import (
    CredentialsExpiredError,
    CredentialsNotReadyError,
    TransactionNotFoundError,
)
from src.em_listing.domain.repository import ListingRepositoryProtocol
from src.em_listing.infrastructure.persistence import ListingRepository
from src.em_transaction.domain.models import CredentialAccess, CredentialView
from src.em_transaction.domain.repository import (
    CredentialAccessRepositoryProtocol,
    TransactionRepositoryProtocol,
)
from src.em_transaction.infrastructure.persistence import (
    CredentialAccessRepository,
    TransactionRepository,
)

logger = logging.getLogger(__name__)

ONE_TIME_WARNING = (
    "Credentials will expire in {minutes} minutes and will not be shown again. "
    "Please save them now."
)


class CredentialDisclosureManager:
    def __init__(
        self,
        txn_repo: TransactionRepositoryProtocol | None = None,
        access_repo: CredentialAccessRepositoryProtocol | None = None,
        listing_repo: ListingRepositoryProtocol | None = None,
    ) -> None:
        self._txn_repo: TransactionRepositoryProtocol = txn_repo or TransactionRepository()
        self._access_repo: CredentialAccessRepositoryProtocol = (
            access_repo or CredentialAccessRepository()
        )
        self._listing_repo: ListingRepositoryProtocol = listing_repo or ListingRepository()

    async def fetch_credentials(
        self,
        db: AsyncSession,
        transaction_id: str,
        buyer_id: str,
        now: datetime | None = None,
    ) -> CredentialView:
        now = now or utc_now()
        txn = await self._txn_repo.get_by_id(db, transaction_id)
        if txn is None or txn.buyer_id != buyer_id:
            raise TransactionNotFoundError(transaction_id)
        if txn.status != TransactionStatus.COMPLETED.value:
            raise CredentialsNotReadyError()

        listing = await self._listing_repo.get_by_id(db, txn.listing_id)
        if listing is None:
            raise TransactionNotFoundError(transaction_id)

        access = await self._access_repo.get_for_transaction(db, transaction_id)
        if access is None and txn.credentials_first_accessed_at is not None:
            # Record already purged by the cleanup job; the window never reopens
            logger.info("Credential window for transaction %s was purged", transaction_id)
            raise CredentialsExpiredError()
        # Only the request whose insert created the window gets the one-time warning
        first_access = False
        if access is None:
            try:
                access, first_access = await self._open_window(db, transaction_id, buyer_id, now)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        if not access.is_open(now):
            logger.info("Credential window closed for transaction %s", transaction_id)
            raise CredentialsExpiredError()

        if first_access:
            logger.info(
                "Credentials first accessed for transaction %s. Expires at: %s",
                transaction_id, access.expires_at.isoformat(),
            )
        else:
            logger.info("Credentials re-accessed for transaction %s", transaction_id)

        minutes = minutes_until(access.expires_at, now)
        return CredentialView(
            transaction_id=transaction_id,
            account_identifier=listing.account_identifier,
            credentials=listing.credentials,
            expires_at=access.expires_at,
            minutes_remaining=minutes,
            warning=ONE_TIME_WARNING.format(minutes=settings.CREDENTIAL_WINDOW_MINUTES)
            if first_access
            else None,
        )

    async def _open_window(
        self, db: AsyncSession, transaction_id: str, buyer_id: str, now: datetime
    ) -> tuple[CredentialAccess, bool]:
        record, inserted = await self._access_repo.create_if_absent(
            db,
            CredentialAccess(
                transaction_id=transaction_id,
                buyer_id=buyer_id,
                accessed_at=now,
                expires_at=now + timedelta(minutes=settings.CREDENTIAL_WINDOW_MINUTES),
            ),
        )
        if inserted:
            await self._txn_repo.stamp_credentials_window(
                db, transaction_id, record.accessed_at, record.expires_at
            )
        return record, inserted

    async def purge_expired(self, db: AsyncSession, now: datetime | None = None) -> int:
        """Delete access records older than the retention period; returns rows deleted."""
        now = now or utc_now()
        cutoff = now - timedelta(minutes=settings.CREDENTIAL_RETENTION_MINUTES)
        try:
            deleted = await self._access_repo.delete_older_than(db, cutoff)
            cleared = await self._txn_repo.clear_credentials_window(db, cutoff)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        if deleted or cleared:
            logger.info(
                "Deleted %d expired credential access records, cleared %d transaction stamps",
                deleted, cleared,
            )
        return deleted
