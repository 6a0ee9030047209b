"""DisputeRepository Protocol: interface contract for persistence layer."""
from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.em_dispute.domain.models import Dispute, DisputeMessage, Refund


class DisputeRepositoryProtocol(Protocol):
    async def insert(self, db: AsyncSession, dispute: Dispute) -> Dispute: ...

    async def get_by_id(self, db: AsyncSession, dispute_id: str) -> Dispute | None: ...

    async def lock_by_id(self, db: AsyncSession, dispute_id: str) -> Dispute | None: ...

    async def has_active_for_transaction(self, db: AsyncSession, transaction_id: str) -> bool: ...

    async def set_status(
        self, db: AsyncSession, dispute_id: str, from_status: str, to_status: str
    ) -> bool: ...

    async def mark_resolved(
        self,
        db: AsyncSession,
        dispute_id: str,
        resolution: str,
        refund_percentage: int,
        notes: str | None,
        resolved_by: str,
        now: datetime,
    ) -> Dispute | None: ...

    async def mark_auto_resolved(
        self, db: AsyncSession, dispute_id: str, now: datetime
    ) -> Dispute | None: ...

    async def list_due_for_auto_resolve(
        self, db: AsyncSession, now: datetime, limit: int
    ) -> list[str]: ...

    async def insert_message(self, db: AsyncSession, message: DisputeMessage) -> DisputeMessage: ...

    async def list_messages(self, db: AsyncSession, dispute_id: str) -> list[DisputeMessage]: ...

    async def insert_refund(self, db: AsyncSession, refund: Refund) -> Refund: ...

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: str,
        status: str | None,
        reason: str | None,
        limit: int,
        offset: int,
    ) -> list[Dispute]: ...

    async def count_for_user(
        self, db: AsyncSession, user_id: str, status: str | None, reason: str | None
    ) -> int: ...
