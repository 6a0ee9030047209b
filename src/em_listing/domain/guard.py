"""Posting availability guard: first step of every purchase.

Must run inside the purchase unit of work: the row lock it takes is what
serialises competing buyers, and it is released only at commit/rollback.
"""
from sqlalchemy.ext.asyncio import AsyncSession

from src.em_common.errors import ListingNotAvailableError, SelfPurchaseError
from src.em_listing.domain.models import Listing
from src.em_listing.domain.repository import ListingRepositoryProtocol


class ListingGuard:
    def __init__(self, repo: ListingRepositoryProtocol) -> None:
        self._repo = repo

    async def acquire(self, db: AsyncSession, listing_id: str, buyer_id: str) -> Listing:
        listing = await self._repo.lock_for_purchase(db, listing_id)
        if listing is None or not listing.is_purchasable:
            raise ListingNotAvailableError()
        if listing.seller_id == buyer_id:
            raise SelfPurchaseError()
        return listing
