# tests/unit/test_listing_guard.py
"""Unit tests for ListingGuard and ListingRepository."""
import json
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.em_common.errors import ListingNotAvailableError, SelfPurchaseError
from src.em_listing.domain.guard import ListingGuard
from src.em_listing.domain.models import Listing
from src.em_listing.infrastructure.persistence import ListingRepository


def _make_listing(**kwargs: Any) -> Listing:
    return Listing(
        id=kwargs.get("id", "lst-1"),
        seller_id=kwargs.get("seller_id", "seller-1"),
        account_identifier=kwargs.get("account_identifier", "ML Mythic 500 skins"),
        price=kwargs.get("price", 100_000),
        status=kwargs.get("status", "active"),
        credentials=kwargs.get("credentials", {"email": "a@b.c", "password": "pw"}),
    )


def _make_row(**kwargs: Any) -> MagicMock:
    row = MagicMock()
    row.id = kwargs.get("id", "lst-1")
    row.seller_id = kwargs.get("seller_id", "seller-1")
    row.account_identifier = kwargs.get("account_identifier", "ML Mythic")
    row.price = kwargs.get("price", 100_000)
    row.status = kwargs.get("status", "active")
    row.field_values = kwargs.get("field_values", {"email": "a@b.c"})
    row.created_at = kwargs.get("created_at", datetime.now(UTC))
    row.expires_at = kwargs.get("expires_at")
    row.updated_at = kwargs.get("updated_at", datetime.now(UTC))
    return row


class TestListingGuard:
    async def test_active_listing_acquired(self) -> None:
        repo = AsyncMock()
        repo.lock_for_purchase.return_value = _make_listing()
        listing = await ListingGuard(repo).acquire(AsyncMock(), "lst-1", "buyer-1")
        assert listing.id == "lst-1"
        repo.lock_for_purchase.assert_awaited_once()

    async def test_missing_listing(self) -> None:
        repo = AsyncMock()
        repo.lock_for_purchase.return_value = None
        with pytest.raises(ListingNotAvailableError):
            await ListingGuard(repo).acquire(AsyncMock(), "lst-x", "buyer-1")

    @pytest.mark.parametrize("status", ["sold", "expired", "deleted"])
    async def test_non_active_listing(self, status: str) -> None:
        repo = AsyncMock()
        repo.lock_for_purchase.return_value = _make_listing(status=status)
        with pytest.raises(ListingNotAvailableError):
            await ListingGuard(repo).acquire(AsyncMock(), "lst-1", "buyer-1")

    async def test_self_purchase(self) -> None:
        repo = AsyncMock()
        repo.lock_for_purchase.return_value = _make_listing(seller_id="buyer-1")
        with pytest.raises(SelfPurchaseError):
            await ListingGuard(repo).acquire(AsyncMock(), "lst-1", "buyer-1")


class TestListingRepository:
    async def test_get_by_id_maps_row(self) -> None:
        db = AsyncMock()
        result_mock = MagicMock()
        result_mock.fetchone.return_value = _make_row()
        db.execute.return_value = result_mock
        listing = await ListingRepository().get_by_id(db, "lst-1")
        assert listing is not None
        assert listing.price == 100_000
        assert listing.credentials == {"email": "a@b.c"}

    async def test_field_values_as_json_text(self) -> None:
        db = AsyncMock()
        result_mock = MagicMock()
        result_mock.fetchone.return_value = _make_row(field_values=json.dumps({"pin": "1234"}))
        db.execute.return_value = result_mock
        listing = await ListingRepository().lock_for_purchase(db, "lst-1")
        assert listing is not None
        assert listing.credentials == {"pin": "1234"}

    async def test_lock_uses_for_update(self) -> None:
        db = AsyncMock()
        result_mock = MagicMock()
        result_mock.fetchone.return_value = None
        db.execute.return_value = result_mock
        assert await ListingRepository().lock_for_purchase(db, "lst-1") is None
        sql = str(db.execute.call_args[0][0])
        assert "FOR UPDATE" in sql

    async def test_expire_stale_returns_ids(self) -> None:
        db = AsyncMock()
        result_mock = MagicMock()
        result_mock.fetchall.return_value = [MagicMock(id="a"), MagicMock(id="b")]
        db.execute.return_value = result_mock
        ids = await ListingRepository().expire_stale(db, datetime.now(UTC))
        assert ids == ["a", "b"]

    async def test_revert_abandoned_passes_now(self) -> None:
        db = AsyncMock()
        result_mock = MagicMock()
        result_mock.fetchall.return_value = []
        db.execute.return_value = result_mock
        now = datetime.now(UTC)
        assert await ListingRepository().revert_abandoned(db, now) == []
        assert db.execute.call_args[0][1] == {"now": now}
