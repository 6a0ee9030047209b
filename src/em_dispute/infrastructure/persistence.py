"""DisputeRepository: raw SQL persistence implementation.

Resolution updates are conditional on ``status IN ('open', 'in_review')``
so an arbiter and the auto-resolve job can never both settle one dispute.

asyncpg NULL parameter pattern: CAST(:param AS TYPE) IS NULL required for None values.
"""
import json
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.em_dispute.domain.models import Dispute, DisputeMessage, Refund

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_COLUMNS = """
    id, transaction_id, buyer_id, seller_id, reason, description, evidence_urls,
    status, resolution, refund_percentage, notes, resolved_by,
    auto_resolve_at, resolved_at, created_at, updated_at
"""

_INSERT_DISPUTE_SQL = text(f"""
    INSERT INTO disputes (
        id, transaction_id, buyer_id, seller_id, reason, description,
        evidence_urls, status, auto_resolve_at)
    VALUES (
        :id, :transaction_id, :buyer_id, :seller_id, :reason, :description,
        CAST(:evidence_urls AS JSONB), 'open', :auto_resolve_at)
    RETURNING {_COLUMNS}
""")

_GET_DISPUTE_SQL = text(f"SELECT {_COLUMNS} FROM disputes WHERE id = :id")

_LOCK_DISPUTE_SQL = text(f"SELECT {_COLUMNS} FROM disputes WHERE id = :id FOR UPDATE")

_ACTIVE_FOR_TXN_SQL = text("""
    SELECT 1 FROM disputes
    WHERE transaction_id = :transaction_id AND status != 'closed'
    LIMIT 1
""")

_SET_STATUS_SQL = text("""
    UPDATE disputes SET status = :to_status, updated_at = NOW()
    WHERE id = :id AND status = :from_status
    RETURNING id
""")

_MARK_RESOLVED_SQL = text(f"""
    UPDATE disputes
    SET status = 'resolved',
        resolution = :resolution,
        refund_percentage = :refund_percentage,
        notes = :notes,
        resolved_by = :resolved_by,
        resolved_at = :now,
        updated_at = NOW()
    WHERE id = :id AND status IN ('open', 'in_review')
    RETURNING {_COLUMNS}
""")

_MARK_AUTO_RESOLVED_SQL = text(f"""
    UPDATE disputes
    SET status = 'auto_resolved',
        resolution = 'auto_resolved',
        refund_percentage = 100,
        resolved_at = :now,
        updated_at = NOW()
    WHERE id = :id
      AND status IN ('open', 'in_review')
      AND auto_resolve_at <= :now
    RETURNING {_COLUMNS}
""")

_DUE_FOR_AUTO_RESOLVE_SQL = text("""
    SELECT id FROM disputes
    WHERE status IN ('open', 'in_review') AND auto_resolve_at <= :now
    ORDER BY auto_resolve_at ASC
    LIMIT :limit
""")

_INSERT_MESSAGE_SQL = text("""
    INSERT INTO dispute_messages (id, dispute_id, sender_id, message, attachments)
    VALUES (:id, :dispute_id, :sender_id, :message, CAST(:attachments AS JSONB))
    RETURNING id, dispute_id, sender_id, message, attachments, created_at
""")

_LIST_MESSAGES_SQL = text("""
    SELECT id, dispute_id, sender_id, message, attachments, created_at
    FROM dispute_messages
    WHERE dispute_id = :dispute_id
    ORDER BY created_at ASC, id ASC
""")

_INSERT_REFUND_SQL = text("""
    INSERT INTO refunds (
        dispute_id, buyer_id, seller_id, buyer_refund_amount, seller_refund_amount, status)
    VALUES (
        :dispute_id, :buyer_id, :seller_id, :buyer_refund_amount, :seller_refund_amount, :status)
    RETURNING id, dispute_id, buyer_id, seller_id,
              buyer_refund_amount, seller_refund_amount, status, created_at
""")

_USER_FILTER = """
    (buyer_id = :user_id OR seller_id = :user_id)
    AND (CAST(:status AS TEXT) IS NULL OR status = CAST(:status AS TEXT))
    AND (CAST(:reason AS TEXT) IS NULL OR reason = CAST(:reason AS TEXT))
"""

_LIST_FOR_USER_SQL = text(f"""
    SELECT {_COLUMNS} FROM disputes
    WHERE {_USER_FILTER}
    ORDER BY created_at DESC, id DESC
    LIMIT :limit OFFSET :offset
""")

_COUNT_FOR_USER_SQL = text(f"SELECT COUNT(*) AS total FROM disputes WHERE {_USER_FILTER}")


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _decode_list(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return list(json.loads(raw))
    return list(raw)


def _row_to_dispute(row: Any) -> Dispute:
    return Dispute(
        id=row.id,
        transaction_id=str(row.transaction_id),
        buyer_id=str(row.buyer_id),
        seller_id=str(row.seller_id),
        reason=row.reason,
        description=row.description,
        evidence_urls=_decode_list(row.evidence_urls),
        status=row.status,
        resolution=row.resolution,
        refund_percentage=row.refund_percentage,
        notes=row.notes,
        resolved_by=str(row.resolved_by) if row.resolved_by is not None else None,
        auto_resolve_at=row.auto_resolve_at,
        resolved_at=row.resolved_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_message(row: Any) -> DisputeMessage:
    return DisputeMessage(
        id=row.id,
        dispute_id=row.dispute_id,
        sender_id=str(row.sender_id),
        message=row.message,
        attachments=_decode_list(row.attachments),
        created_at=row.created_at,
    )


def _row_to_refund(row: Any) -> Refund:
    return Refund(
        id=row.id,
        dispute_id=row.dispute_id,
        buyer_id=str(row.buyer_id),
        seller_id=str(row.seller_id),
        buyer_refund_amount=int(row.buyer_refund_amount),
        seller_refund_amount=int(row.seller_refund_amount),
        status=row.status,
        created_at=row.created_at,
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class DisputeRepository:
    """Concrete implementation of DisputeRepositoryProtocol using raw SQL."""

    async def insert(self, db: AsyncSession, dispute: Dispute) -> Dispute:
        result = await db.execute(
            _INSERT_DISPUTE_SQL,
            {
                "id": dispute.id,
                "transaction_id": dispute.transaction_id,
                "buyer_id": dispute.buyer_id,
                "seller_id": dispute.seller_id,
                "reason": dispute.reason,
                "description": dispute.description,
                "evidence_urls": json.dumps(dispute.evidence_urls),
                "auto_resolve_at": dispute.auto_resolve_at,
            },
        )
        return _row_to_dispute(result.fetchone())

    async def get_by_id(self, db: AsyncSession, dispute_id: str) -> Dispute | None:
        result = await db.execute(_GET_DISPUTE_SQL, {"id": dispute_id})
        row = result.fetchone()
        return _row_to_dispute(row) if row else None

    async def lock_by_id(self, db: AsyncSession, dispute_id: str) -> Dispute | None:
        result = await db.execute(_LOCK_DISPUTE_SQL, {"id": dispute_id})
        row = result.fetchone()
        return _row_to_dispute(row) if row else None

    async def has_active_for_transaction(self, db: AsyncSession, transaction_id: str) -> bool:
        result = await db.execute(_ACTIVE_FOR_TXN_SQL, {"transaction_id": transaction_id})
        return result.fetchone() is not None

    async def set_status(
        self, db: AsyncSession, dispute_id: str, from_status: str, to_status: str
    ) -> bool:
        result = await db.execute(
            _SET_STATUS_SQL,
            {"id": dispute_id, "from_status": from_status, "to_status": to_status},
        )
        return result.fetchone() is not None

    async def mark_resolved(
        self,
        db: AsyncSession,
        dispute_id: str,
        resolution: str,
        refund_percentage: int,
        notes: str | None,
        resolved_by: str,
        now: datetime,
    ) -> Dispute | None:
        result = await db.execute(
            _MARK_RESOLVED_SQL,
            {
                "id": dispute_id,
                "resolution": resolution,
                "refund_percentage": refund_percentage,
                "notes": notes,
                "resolved_by": resolved_by,
                "now": now,
            },
        )
        row = result.fetchone()
        return _row_to_dispute(row) if row else None

    async def mark_auto_resolved(
        self, db: AsyncSession, dispute_id: str, now: datetime
    ) -> Dispute | None:
        result = await db.execute(_MARK_AUTO_RESOLVED_SQL, {"id": dispute_id, "now": now})
        row = result.fetchone()
        return _row_to_dispute(row) if row else None

    async def list_due_for_auto_resolve(
        self, db: AsyncSession, now: datetime, limit: int
    ) -> list[str]:
        result = await db.execute(_DUE_FOR_AUTO_RESOLVE_SQL, {"now": now, "limit": limit})
        return [r.id for r in result.fetchall()]

    async def insert_message(self, db: AsyncSession, message: DisputeMessage) -> DisputeMessage:
        result = await db.execute(
            _INSERT_MESSAGE_SQL,
            {
                "id": message.id,
                "dispute_id": message.dispute_id,
                "sender_id": message.sender_id,
                "message": message.message,
                "attachments": json.dumps(message.attachments),
            },
        )
        return _row_to_message(result.fetchone())

    async def list_messages(self, db: AsyncSession, dispute_id: str) -> list[DisputeMessage]:
        result = await db.execute(_LIST_MESSAGES_SQL, {"dispute_id": dispute_id})
        return [_row_to_message(r) for r in result.fetchall()]

    async def insert_refund(self, db: AsyncSession, refund: Refund) -> Refund:
        result = await db.execute(
            _INSERT_REFUND_SQL,
            {
                "dispute_id": refund.dispute_id,
                "buyer_id": refund.buyer_id,
                "seller_id": refund.seller_id,
                "buyer_refund_amount": refund.buyer_refund_amount,
                "seller_refund_amount": refund.seller_refund_amount,
                "status": refund.status,
            },
        )
        return _row_to_refund(result.fetchone())

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: str,
        status: str | None,
        reason: str | None,
        limit: int,
        offset: int,
    ) -> list[Dispute]:
        result = await db.execute(
            _LIST_FOR_USER_SQL,
            {
                "user_id": user_id,
                "status": status,
                "reason": reason,
                "limit": limit,
                "offset": offset,
            },
        )
        return [_row_to_dispute(r) for r in result.fetchall()]

    async def count_for_user(
        self, db: AsyncSession, user_id: str, status: str | None, reason: str | None
    ) -> int:
        result = await db.execute(
            _COUNT_FOR_USER_SQL, {"user_id": user_id, "status": status, "reason": reason}
        )
        return int(result.scalar_one())
