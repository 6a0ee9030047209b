"""TransactionRepository Protocol: interface contract for persistence layer."""
from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.em_transaction.domain.models import CredentialAccess, Transaction


class TransactionRepositoryProtocol(Protocol):
    async def insert(self, db: AsyncSession, txn: Transaction) -> Transaction: ...

    async def get_by_id(self, db: AsyncSession, transaction_id: str) -> Transaction | None: ...

    async def get_by_gateway_ref(self, db: AsyncSession, gateway_ref: str) -> Transaction | None: ...

    async def attach_payment(
        self, db: AsyncSession, transaction_id: str, gateway_ref: str, expires_at: datetime
    ) -> None: ...

    async def mark_paid(self, db: AsyncSession, transaction_id: str) -> Transaction | None: ...

    async def mark_completed(
        self, db: AsyncSession, transaction_id: str, from_status: str, now: datetime
    ) -> Transaction | None: ...

    async def set_status(
        self, db: AsyncSession, transaction_id: str, from_statuses: list[str], to_status: str
    ) -> bool: ...

    async def cancel_expired_unpaid(self, db: AsyncSession, now: datetime) -> list[str]: ...

    async def auto_complete(self, db: AsyncSession, cutoff: datetime, now: datetime) -> list[str]: ...

    async def list_disbursable(self, db: AsyncSession, limit: int) -> list[Transaction]: ...

    async def claim_disbursement(
        self, db: AsyncSession, transaction_id: str, now: datetime
    ) -> bool: ...

    async def release_disbursement_claim(self, db: AsyncSession, transaction_id: str) -> bool: ...

    async def mark_disbursed(
        self, db: AsyncSession, transaction_id: str, reference: str, now: datetime
    ) -> bool: ...

    async def stamp_credentials_window(
        self, db: AsyncSession, transaction_id: str, accessed_at: datetime, expires_at: datetime
    ) -> None: ...

    async def clear_credentials_window(self, db: AsyncSession, cutoff: datetime) -> int: ...


class CredentialAccessRepositoryProtocol(Protocol):
    async def get_for_transaction(
        self, db: AsyncSession, transaction_id: str
    ) -> CredentialAccess | None: ...

    async def create_if_absent(
        self, db: AsyncSession, record: CredentialAccess
    ) -> tuple[CredentialAccess, bool]: ...

    async def delete_older_than(self, db: AsyncSession, cutoff: datetime) -> int: ...
