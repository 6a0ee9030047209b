"""TransactionRepository / CredentialAccessRepository: raw SQL persistence.

Every state change is a conditional UPDATE (``WHERE status = <expected>``)
with ``RETURNING``: zero rows means someone else already moved the row, which
callers treat as a no-op rather than an error. Nothing here overwrites a
status blindly.

Transaction ownership: the CALLER commits or rolls back.
"""
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.em_transaction.domain.models import CredentialAccess, Transaction

# ---------------------------------------------------------------------------
# SQL: transactions
# ---------------------------------------------------------------------------

_COLUMNS = """
    id, buyer_id, seller_id, listing_id,
    item_price, platform_fee_bps, platform_fee_amount, disbursement_fee,
    total_buyer_paid, seller_received,
    status, payment_status, payment_gateway_ref, expires_at,
    credentials_first_accessed_at, credentials_expires_at,
    completed_at, disbursed_at, disbursement_ref, created_at, updated_at
"""

_INSERT_TXN_SQL = text(f"""
    INSERT INTO transactions (
        buyer_id, seller_id, listing_id,
        item_price, platform_fee_bps, platform_fee_amount, disbursement_fee,
        total_buyer_paid, seller_received, status, payment_status)
    VALUES (
        :buyer_id, :seller_id, :listing_id,
        :item_price, :platform_fee_bps, :platform_fee_amount, :disbursement_fee,
        :total_buyer_paid, :seller_received, 'pending', 'pending')
    RETURNING {_COLUMNS}
""")

_GET_TXN_SQL = text(f"SELECT {_COLUMNS} FROM transactions WHERE id = :id")

_GET_TXN_BY_REF_SQL = text(
    f"SELECT {_COLUMNS} FROM transactions WHERE payment_gateway_ref = :ref"
)

_ATTACH_PAYMENT_SQL = text("""
    UPDATE transactions
    SET payment_gateway_ref = :ref, expires_at = :expires_at, updated_at = NOW()
    WHERE id = :id
""")

_MARK_PAID_SQL = text(f"""
    UPDATE transactions
    SET payment_status = 'paid', status = 'processing', updated_at = NOW()
    WHERE id = :id AND payment_status = 'pending' AND status = 'pending'
    RETURNING {_COLUMNS}
""")

_MARK_COMPLETED_SQL = text(f"""
    UPDATE transactions
    SET status = 'completed', completed_at = :now, updated_at = NOW()
    WHERE id = :id AND status = :from_status
    RETURNING {_COLUMNS}
""")

_SET_STATUS_SQL = text("""
    UPDATE transactions
    SET status = :to_status, updated_at = NOW()
    WHERE id = :id
      AND status = ANY(string_to_array(CAST(:from_csv AS TEXT), ','))
    RETURNING id
""")

_CANCEL_EXPIRED_SQL = text("""
    UPDATE transactions
    SET status = 'cancelled', payment_status = 'expired', updated_at = NOW()
    WHERE status = 'pending'
      AND payment_status IN ('pending', 'failed')
      AND expires_at < :now
    RETURNING id
""")

_AUTO_COMPLETE_SQL = text("""
    UPDATE transactions
    SET status = 'completed', completed_at = :now, updated_at = NOW()
    WHERE status = 'processing' AND created_at < :cutoff
    RETURNING id
""")

# Default disbursement eligibility: completed, never paid out, no live dispute.
_LIST_DISBURSABLE_SQL = text(f"""
    SELECT {_COLUMNS} FROM transactions t
    WHERE t.status = 'completed'
      AND t.disbursed_at IS NULL
      AND t.disbursement_claimed_at IS NULL
      AND NOT EXISTS (
          SELECT 1 FROM disputes d
          WHERE d.transaction_id = t.id AND d.status IN ('open', 'in_review')
      )
    ORDER BY t.completed_at ASC NULLS FIRST
    LIMIT :limit
""")

_CLAIM_DISBURSEMENT_SQL = text("""
    UPDATE transactions t
    SET disbursement_claimed_at = :now, updated_at = NOW()
    WHERE t.id = :id
      AND t.status = 'completed'
      AND t.disbursed_at IS NULL
      AND t.disbursement_claimed_at IS NULL
      AND NOT EXISTS (
          SELECT 1 FROM disputes d
          WHERE d.transaction_id = t.id AND d.status IN ('open', 'in_review')
      )
    RETURNING t.id
""")

_RELEASE_DISBURSEMENT_SQL = text("""
    UPDATE transactions
    SET disbursement_claimed_at = NULL, updated_at = NOW()
    WHERE id = :id AND disbursed_at IS NULL AND disbursement_claimed_at IS NOT NULL
    RETURNING id
""")

_MARK_DISBURSED_SQL = text("""
    UPDATE transactions
    SET disbursed_at = :now, disbursement_ref = :ref, updated_at = NOW()
    WHERE id = :id AND status = 'completed'
      AND disbursed_at IS NULL AND disbursement_claimed_at IS NOT NULL
    RETURNING id
""")

_STAMP_CREDENTIALS_SQL = text("""
    UPDATE transactions
    SET credentials_first_accessed_at = COALESCE(credentials_first_accessed_at, :accessed_at),
        credentials_expires_at = :expires_at,
        updated_at = NOW()
    WHERE id = :id
""")

_CLEAR_CREDENTIALS_SQL = text("""
    UPDATE transactions
    SET credentials_expires_at = NULL, updated_at = NOW()
    WHERE credentials_first_accessed_at IS NOT NULL
      AND credentials_first_accessed_at < :cutoff
      AND credentials_expires_at IS NOT NULL
    RETURNING id
""")

# ---------------------------------------------------------------------------
# SQL: credential_access
# ---------------------------------------------------------------------------

_GET_ACCESS_SQL = text("""
    SELECT id, transaction_id, buyer_id, accessed_at, expires_at
    FROM credential_access WHERE transaction_id = :transaction_id
""")

# UNIQUE(transaction_id): concurrent first fetches collapse onto one window.
_INSERT_ACCESS_SQL = text("""
    INSERT INTO credential_access (transaction_id, buyer_id, accessed_at, expires_at)
    VALUES (:transaction_id, :buyer_id, :accessed_at, :expires_at)
    ON CONFLICT (transaction_id) DO NOTHING
    RETURNING id, transaction_id, buyer_id, accessed_at, expires_at
""")

_DELETE_ACCESS_SQL = text("""
    DELETE FROM credential_access WHERE accessed_at < :cutoff RETURNING id
""")


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_transaction(row: Any) -> Transaction:
    return Transaction(
        id=str(row.id),
        buyer_id=str(row.buyer_id),
        seller_id=str(row.seller_id),
        listing_id=str(row.listing_id),
        item_price=int(row.item_price),
        platform_fee_bps=int(row.platform_fee_bps),
        platform_fee_amount=int(row.platform_fee_amount),
        disbursement_fee=int(row.disbursement_fee),
        total_buyer_paid=int(row.total_buyer_paid),
        seller_received=int(row.seller_received),
        status=row.status,
        payment_status=row.payment_status,
        payment_gateway_ref=row.payment_gateway_ref,
        expires_at=row.expires_at,
        credentials_first_accessed_at=row.credentials_first_accessed_at,
        credentials_expires_at=row.credentials_expires_at,
        completed_at=row.completed_at,
        disbursed_at=row.disbursed_at,
        disbursement_ref=row.disbursement_ref,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_access(row: Any) -> CredentialAccess:
    return CredentialAccess(
        id=row.id,
        transaction_id=str(row.transaction_id),
        buyer_id=str(row.buyer_id),
        accessed_at=row.accessed_at,
        expires_at=row.expires_at,
    )


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class TransactionRepository:
    """Concrete implementation of TransactionRepositoryProtocol using raw SQL."""

    async def insert(self, db: AsyncSession, txn: Transaction) -> Transaction:
        result = await db.execute(
            _INSERT_TXN_SQL,
            {
                "buyer_id": txn.buyer_id,
                "seller_id": txn.seller_id,
                "listing_id": txn.listing_id,
                "item_price": txn.item_price,
                "platform_fee_bps": txn.platform_fee_bps,
                "platform_fee_amount": txn.platform_fee_amount,
                "disbursement_fee": txn.disbursement_fee,
                "total_buyer_paid": txn.total_buyer_paid,
                "seller_received": txn.seller_received,
            },
        )
        return _row_to_transaction(result.fetchone())

    async def get_by_id(self, db: AsyncSession, transaction_id: str) -> Transaction | None:
        result = await db.execute(_GET_TXN_SQL, {"id": transaction_id})
        row = result.fetchone()
        return _row_to_transaction(row) if row else None

    async def get_by_gateway_ref(self, db: AsyncSession, gateway_ref: str) -> Transaction | None:
        result = await db.execute(_GET_TXN_BY_REF_SQL, {"ref": gateway_ref})
        row = result.fetchone()
        return _row_to_transaction(row) if row else None

    async def attach_payment(
        self, db: AsyncSession, transaction_id: str, gateway_ref: str, expires_at: datetime
    ) -> None:
        await db.execute(
            _ATTACH_PAYMENT_SQL,
            {"id": transaction_id, "ref": gateway_ref, "expires_at": expires_at},
        )

    async def mark_paid(self, db: AsyncSession, transaction_id: str) -> Transaction | None:
        result = await db.execute(_MARK_PAID_SQL, {"id": transaction_id})
        row = result.fetchone()
        return _row_to_transaction(row) if row else None

    async def mark_completed(
        self, db: AsyncSession, transaction_id: str, from_status: str, now: datetime
    ) -> Transaction | None:
        result = await db.execute(
            _MARK_COMPLETED_SQL,
            {"id": transaction_id, "from_status": from_status, "now": now},
        )
        row = result.fetchone()
        return _row_to_transaction(row) if row else None

    async def set_status(
        self, db: AsyncSession, transaction_id: str, from_statuses: list[str], to_status: str
    ) -> bool:
        result = await db.execute(
            _SET_STATUS_SQL,
            {"id": transaction_id, "from_csv": ",".join(from_statuses), "to_status": to_status},
        )
        return result.fetchone() is not None

    async def cancel_expired_unpaid(self, db: AsyncSession, now: datetime) -> list[str]:
        result = await db.execute(_CANCEL_EXPIRED_SQL, {"now": now})
        return [str(r.id) for r in result.fetchall()]

    async def auto_complete(self, db: AsyncSession, cutoff: datetime, now: datetime) -> list[str]:
        result = await db.execute(_AUTO_COMPLETE_SQL, {"cutoff": cutoff, "now": now})
        return [str(r.id) for r in result.fetchall()]

    async def list_disbursable(self, db: AsyncSession, limit: int) -> list[Transaction]:
        result = await db.execute(_LIST_DISBURSABLE_SQL, {"limit": limit})
        return [_row_to_transaction(r) for r in result.fetchall()]

    async def claim_disbursement(
        self, db: AsyncSession, transaction_id: str, now: datetime
    ) -> bool:
        """Reserve the payout for one run; False when paid, claimed or disputed meanwhile."""
        result = await db.execute(_CLAIM_DISBURSEMENT_SQL, {"id": transaction_id, "now": now})
        return result.fetchone() is not None

    async def release_disbursement_claim(self, db: AsyncSession, transaction_id: str) -> bool:
        result = await db.execute(_RELEASE_DISBURSEMENT_SQL, {"id": transaction_id})
        return result.fetchone() is not None

    async def mark_disbursed(
        self, db: AsyncSession, transaction_id: str, reference: str, now: datetime
    ) -> bool:
        result = await db.execute(
            _MARK_DISBURSED_SQL, {"id": transaction_id, "ref": reference, "now": now}
        )
        return result.fetchone() is not None

    async def stamp_credentials_window(
        self, db: AsyncSession, transaction_id: str, accessed_at: datetime, expires_at: datetime
    ) -> None:
        await db.execute(
            _STAMP_CREDENTIALS_SQL,
            {"id": transaction_id, "accessed_at": accessed_at, "expires_at": expires_at},
        )

    async def clear_credentials_window(self, db: AsyncSession, cutoff: datetime) -> int:
        result = await db.execute(_CLEAR_CREDENTIALS_SQL, {"cutoff": cutoff})
        return len(result.fetchall())


class CredentialAccessRepository:
    async def get_for_transaction(
        self, db: AsyncSession, transaction_id: str
    ) -> CredentialAccess | None:
        result = await db.execute(_GET_ACCESS_SQL, {"transaction_id": transaction_id})
        row = result.fetchone()
        return _row_to_access(row) if row else None

    async def create_if_absent(
        self, db: AsyncSession, record: CredentialAccess
    ) -> tuple[CredentialAccess, bool]:
        """Insert the window, or return whichever concurrent insert won.

        The flag is True only when this call's INSERT created the row.
        """
        result = await db.execute(
            _INSERT_ACCESS_SQL,
            {
                "transaction_id": record.transaction_id,
                "buyer_id": record.buyer_id,
                "accessed_at": record.accessed_at,
                "expires_at": record.expires_at,
            },
        )
        row = result.fetchone()
        if row is not None:
            return _row_to_access(row), True
        existing = await self.get_for_transaction(db, record.transaction_id)
        if existing is None:
            # Winner was purged between our insert and read
            return record, False
        return existing, False

    async def delete_older_than(self, db: AsyncSession, cutoff: datetime) -> int:
        result = await db.execute(_DELETE_ACCESS_SQL, {"cutoff": cutoff})
        return len(result.fetchall())
