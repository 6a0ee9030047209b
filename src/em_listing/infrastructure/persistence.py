"""ListingRepository: raw SQL persistence implementation.

Transaction ownership: the CALLER starts/commits the unit of work.
``lock_for_purchase`` takes a row lock that is held until that commit.
"""
import json
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.em_listing.domain.models import Listing

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_SELECT_COLUMNS = """
    id, seller_id, account_identifier, price, status, field_values,
    created_at, expires_at, updated_at
"""

_GET_LISTING_SQL = text(f"""
    SELECT {_SELECT_COLUMNS}
    FROM listings WHERE id = :id
""")

_LOCK_LISTING_SQL = text(f"""
    SELECT {_SELECT_COLUMNS}
    FROM listings WHERE id = :id
    FOR UPDATE
""")

_MARK_SOLD_SQL = text("""
    UPDATE listings SET status = 'sold', updated_at = NOW()
    WHERE id = :id AND status = 'active'
""")

_EXPIRE_STALE_SQL = text("""
    UPDATE listings
    SET status = 'expired', updated_at = NOW()
    WHERE status = 'active' AND created_at < :cutoff
    RETURNING id
""")

# A sold listing is released only while its purchase is still unpaid and the
# payment window has lapsed; paid transactions keep the listing sold.
_REVERT_ABANDONED_SQL = text("""
    UPDATE listings l
    SET status = 'active', updated_at = NOW()
    WHERE l.status = 'sold'
      AND EXISTS (
          SELECT 1 FROM transactions t
          WHERE t.listing_id = l.id
            AND t.status IN ('pending', 'cancelled')
            AND t.payment_status IN ('pending', 'failed', 'expired')
            AND t.expires_at < :now
      )
      AND NOT EXISTS (
          SELECT 1 FROM transactions t2
          WHERE t2.listing_id = l.id
            AND (t2.status IN ('paid', 'processing', 'completed', 'disputed', 'refunded')
                 OR (t2.status = 'pending' AND (t2.expires_at IS NULL OR t2.expires_at >= :now)))
      )
    RETURNING l.id
""")


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _decode_field_values(raw: Any) -> dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, str):
        return dict(json.loads(raw))
    return dict(raw)


def _row_to_listing(row: Any) -> Listing:
    return Listing(
        id=str(row.id),
        seller_id=str(row.seller_id),
        account_identifier=row.account_identifier,
        price=int(row.price),
        status=row.status,
        credentials=_decode_field_values(row.field_values),
        created_at=row.created_at,
        expires_at=row.expires_at,
        updated_at=row.updated_at,
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ListingRepository:
    """Concrete implementation of ListingRepositoryProtocol using raw SQL."""

    async def get_by_id(self, db: AsyncSession, listing_id: str) -> Listing | None:
        result = await db.execute(_GET_LISTING_SQL, {"id": listing_id})
        row = result.fetchone()
        return _row_to_listing(row) if row else None

    async def lock_for_purchase(self, db: AsyncSession, listing_id: str) -> Listing | None:
        result = await db.execute(_LOCK_LISTING_SQL, {"id": listing_id})
        row = result.fetchone()
        return _row_to_listing(row) if row else None

    async def mark_sold(self, db: AsyncSession, listing_id: str) -> None:
        await db.execute(_MARK_SOLD_SQL, {"id": listing_id})

    async def expire_stale(self, db: AsyncSession, cutoff: datetime) -> list[str]:
        result = await db.execute(_EXPIRE_STALE_SQL, {"cutoff": cutoff})
        return [str(r.id) for r in result.fetchall()]

    async def revert_abandoned(self, db: AsyncSession, now: datetime) -> list[str]:
        result = await db.execute(_REVERT_ABANDONED_SQL, {"now": now})
        return [str(r.id) for r in result.fetchall()]
