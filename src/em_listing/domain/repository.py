"""ListingRepository Protocol: interface contract for persistence layer."""
from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.em_listing.domain.models import Listing


class ListingRepositoryProtocol(Protocol):
    async def get_by_id(self, db: AsyncSession, listing_id: str) -> Listing | None: ...

    async def lock_for_purchase(self, db: AsyncSession, listing_id: str) -> Listing | None: ...

    async def mark_sold(self, db: AsyncSession, listing_id: str) -> None: ...

    async def expire_stale(self, db: AsyncSession, cutoff: datetime) -> list[str]: ...

    async def revert_abandoned(self, db: AsyncSession, now: datetime) -> list[str]: ...
