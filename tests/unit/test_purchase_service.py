# tests/unit/test_purchase_service.py
"""Unit tests for PurchaseService.

Concurrency is exercised against in-memory repositories whose
``lock_for_purchase`` holds a per-listing asyncio.Lock until the fake
session commits or rolls back, the same way a FOR UPDATE row lock does.
"""
import asyncio
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from config.settings import settings
from src.em_common.errors import (
    InvalidTransitionError,
    ListingNotAvailableError,
    PaymentProviderError,
    SelfPurchaseError,
    TransactionNotFoundError,
)
from src.em_listing.domain.models import Listing
from src.em_transaction.application.purchase import PurchaseService
from src.em_transaction.domain.models import Transaction
from src.em_transaction.infrastructure.payment_gateway import Invoice


class FakeSession:
    def __init__(self) -> None:
        self.held: list[asyncio.Lock] = []
        self.undo: list[Callable[[], None]] = []
        self.commits = 0
        self.rollbacks = 0

    def _release(self) -> None:
        for lock in self.held:
            lock.release()
        self.held.clear()

    async def commit(self) -> None:
        self.commits += 1
        self.undo.clear()
        self._release()

    async def rollback(self) -> None:
        self.rollbacks += 1
        for fn in reversed(self.undo):
            fn()
        self.undo.clear()
        self._release()


class InMemoryListingRepo:
    def __init__(self, *listings: Listing) -> None:
        self.listings = {lst.id: lst for lst in listings}
        self.locks = {lst.id: asyncio.Lock() for lst in listings}

    async def get_by_id(self, db: Any, listing_id: str) -> Listing | None:
        return self.listings.get(listing_id)

    async def lock_for_purchase(self, db: FakeSession, listing_id: str) -> Listing | None:
        lock = self.locks.get(listing_id)
        if lock is None:
            return None
        await lock.acquire()
        db.held.append(lock)
        return replace(self.listings[listing_id])

    async def mark_sold(self, db: FakeSession, listing_id: str) -> None:
        listing = self.listings[listing_id]
        previous = listing.status
        listing.status = "sold"
        db.undo.append(lambda: setattr(listing, "status", previous))


class InMemoryTxnRepo:
    def __init__(self) -> None:
        self.rows: dict[str, Transaction] = {}
        self._seq = 0

    async def insert(self, db: FakeSession, txn: Transaction) -> Transaction:
        self._seq += 1
        saved = replace(txn, id=f"txn-{self._seq}")
        self.rows[saved.id] = saved
        db.undo.append(lambda: self.rows.pop(saved.id, None))
        return saved

    async def attach_payment(
        self, db: FakeSession, transaction_id: str, gateway_ref: str, expires_at: datetime
    ) -> None:
        row = self.rows[transaction_id]
        row.payment_gateway_ref = gateway_ref
        row.expires_at = expires_at


class SlowGateway:
    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[str] = []

    async def create_invoice(
        self, external_id: str, amount: int, payer_email: str | None, description: str
    ) -> Invoice:
        self.calls.append(external_id)
        await asyncio.sleep(self.delay)
        return Invoice(
            id=f"inv-{external_id}",
            external_id=external_id,
            status="PENDING",
            amount=amount,
            payment_url=f"https://checkout.example/{external_id}",
            expiry=datetime.now(UTC) + timedelta(hours=1),
        )

    async def aclose(self) -> None:
        return None


def _make_listing(**kwargs: Any) -> Listing:
    return Listing(
        id=kwargs.get("id", "lst-1"),
        seller_id=kwargs.get("seller_id", "seller-1"),
        account_identifier=kwargs.get("account_identifier", "ML Mythic"),
        price=kwargs.get("price", 100_000),
        status=kwargs.get("status", "active"),
    )


def _make_txn(**kwargs: Any) -> Transaction:
    return Transaction(
        id=kwargs.get("id", "txn-1"),
        buyer_id=kwargs.get("buyer_id", "buyer-1"),
        seller_id=kwargs.get("seller_id", "seller-1"),
        listing_id=kwargs.get("listing_id", "lst-1"),
        item_price=100_000,
        platform_fee_bps=300,
        platform_fee_amount=3000,
        disbursement_fee=2500,
        total_buyer_paid=100_000,
        seller_received=94_500,
        status=kwargs.get("status", "pending"),
    )


class TestCreatePurchase:
    async def test_happy_path(self) -> None:
        listings = InMemoryListingRepo(_make_listing())
        txns = InMemoryTxnRepo()
        sink = AsyncMock()
        svc = PurchaseService(txns, listings, SlowGateway(), sink)
        db = FakeSession()

        result = await svc.create_purchase(db, "buyer-1", "lst-1", "buyer@example.com")

        assert result.transaction_id == "txn-1"
        assert result.payment_url.endswith("txn-1")
        assert listings.listings["lst-1"].status == "sold"
        txn = txns.rows["txn-1"]
        assert txn.seller_received == 94_500
        assert txn.payment_gateway_ref == "inv-txn-1"
        assert db.commits == 1
        sink.notify.assert_awaited_once()
        assert sink.notify.await_args.args[0] == "seller-1"

    async def test_concurrent_buyers_exactly_one_wins(self) -> None:
        listings = InMemoryListingRepo(_make_listing())
        txns = InMemoryTxnRepo()
        svc = PurchaseService(txns, listings, SlowGateway(delay=0.01), AsyncMock())

        results = await asyncio.gather(
            svc.create_purchase(FakeSession(), "buyer-a", "lst-1"),
            svc.create_purchase(FakeSession(), "buyer-b", "lst-1"),
            return_exceptions=True,
        )

        wins = [r for r in results if not isinstance(r, Exception)]
        losses = [r for r in results if isinstance(r, Exception)]
        assert len(wins) == 1
        assert len(losses) == 1
        assert isinstance(losses[0], ListingNotAvailableError)
        assert len(txns.rows) == 1
        assert listings.listings["lst-1"].status == "sold"

    async def test_sold_listing_rejected(self) -> None:
        svc = PurchaseService(
            InMemoryTxnRepo(), InMemoryListingRepo(_make_listing(status="sold")),
            SlowGateway(), AsyncMock(),
        )
        db = FakeSession()
        with pytest.raises(ListingNotAvailableError):
            await svc.create_purchase(db, "buyer-1", "lst-1")
        assert db.rollbacks == 1

    async def test_unknown_listing_rejected(self) -> None:
        svc = PurchaseService(InMemoryTxnRepo(), InMemoryListingRepo(), SlowGateway(), AsyncMock())
        with pytest.raises(ListingNotAvailableError):
            await svc.create_purchase(FakeSession(), "buyer-1", "missing")

    async def test_self_purchase_rejected(self) -> None:
        svc = PurchaseService(
            InMemoryTxnRepo(), InMemoryListingRepo(_make_listing()), SlowGateway(), AsyncMock()
        )
        with pytest.raises(SelfPurchaseError):
            await svc.create_purchase(FakeSession(), "seller-1", "lst-1")

    async def test_provider_timeout_rolls_back(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "PAYMENT_TIMEOUT_SECONDS", 0.01)
        listings = InMemoryListingRepo(_make_listing())
        txns = InMemoryTxnRepo()
        sink = AsyncMock()
        svc = PurchaseService(txns, listings, SlowGateway(delay=1.0), sink)
        db = FakeSession()

        with pytest.raises(PaymentProviderError):
            await svc.create_purchase(db, "buyer-1", "lst-1")

        assert db.rollbacks == 1
        assert db.commits == 0
        assert txns.rows == {}
        assert listings.listings["lst-1"].status == "active"
        sink.notify.assert_not_awaited()

    async def test_provider_error_rolls_back(self) -> None:
        gateway = AsyncMock()
        gateway.create_invoice.side_effect = PaymentProviderError()
        listings = InMemoryListingRepo(_make_listing())
        txns = InMemoryTxnRepo()
        svc = PurchaseService(txns, listings, gateway, AsyncMock())
        with pytest.raises(PaymentProviderError):
            await svc.create_purchase(FakeSession(), "buyer-1", "lst-1")
        assert txns.rows == {}
        assert listings.listings["lst-1"].status == "active"

    async def test_unique_violation_maps_to_not_available(self) -> None:
        txn_repo = AsyncMock()
        txn_repo.insert.side_effect = IntegrityError("INSERT", {}, Exception("uq_transactions_listing_active"))
        listing_repo = AsyncMock()
        listing_repo.lock_for_purchase.return_value = _make_listing()
        db = AsyncMock()
        svc = PurchaseService(txn_repo, listing_repo, SlowGateway(), AsyncMock())
        with pytest.raises(ListingNotAvailableError):
            await svc.create_purchase(db, "buyer-1", "lst-1")
        db.rollback.assert_awaited_once()
        db.commit.assert_not_awaited()


class TestGetTransaction:
    async def test_participant_can_read(self) -> None:
        txn_repo = AsyncMock()
        txn_repo.get_by_id.return_value = _make_txn()
        svc = PurchaseService(txn_repo, AsyncMock(), SlowGateway(), AsyncMock())
        assert (await svc.get_transaction(AsyncMock(), "txn-1", "seller-1")).id == "txn-1"

    async def test_stranger_gets_not_found(self) -> None:
        txn_repo = AsyncMock()
        txn_repo.get_by_id.return_value = _make_txn()
        svc = PurchaseService(txn_repo, AsyncMock(), SlowGateway(), AsyncMock())
        with pytest.raises(TransactionNotFoundError):
            await svc.get_transaction(AsyncMock(), "txn-1", "someone-else")


class TestConfirmReceipt:
    async def test_processing_to_completed(self) -> None:
        txn_repo = AsyncMock()
        txn_repo.get_by_id.return_value = _make_txn(status="processing")
        txn_repo.mark_completed.return_value = _make_txn(status="completed")
        sink = AsyncMock()
        db = AsyncMock()
        svc = PurchaseService(txn_repo, AsyncMock(), SlowGateway(), sink)

        txn = await svc.confirm_receipt(db, "txn-1", "buyer-1")

        assert txn.status == "completed"
        assert txn_repo.mark_completed.call_args[0][2] == "processing"
        db.commit.assert_awaited_once()
        sink.notify.assert_awaited_once()

    async def test_wrong_state(self) -> None:
        txn_repo = AsyncMock()
        txn_repo.get_by_id.return_value = _make_txn(status="pending")
        db = AsyncMock()
        svc = PurchaseService(txn_repo, AsyncMock(), SlowGateway(), AsyncMock())
        with pytest.raises(InvalidTransitionError):
            await svc.confirm_receipt(db, "txn-1", "buyer-1")
        db.rollback.assert_awaited_once()
        txn_repo.mark_completed.assert_not_awaited()

    @pytest.mark.parametrize("status", ["paid", "completed", "disputed", "refunded", "cancelled"])
    async def test_illegal_source_states_never_reach_the_update(self, status: str) -> None:
        txn_repo = AsyncMock()
        txn_repo.get_by_id.return_value = _make_txn(status=status)
        svc = PurchaseService(txn_repo, AsyncMock(), SlowGateway(), AsyncMock())
        with pytest.raises(InvalidTransitionError):
            await svc.confirm_receipt(AsyncMock(), "txn-1", "buyer-1")
        txn_repo.mark_completed.assert_not_awaited()

    async def test_lost_race_to_another_update(self) -> None:
        txn_repo = AsyncMock()
        txn_repo.get_by_id.return_value = _make_txn(status="processing")
        # A dispute or refund moved the row between read and update
        txn_repo.mark_completed.return_value = None
        db = AsyncMock()
        svc = PurchaseService(txn_repo, AsyncMock(), SlowGateway(), AsyncMock())
        with pytest.raises(InvalidTransitionError):
            await svc.confirm_receipt(db, "txn-1", "buyer-1")
        db.rollback.assert_awaited_once()

    async def test_only_buyer_confirms(self) -> None:
        txn_repo = AsyncMock()
        txn_repo.get_by_id.return_value = _make_txn(status="processing")
        svc = PurchaseService(txn_repo, AsyncMock(), SlowGateway(), AsyncMock())
        with pytest.raises(TransactionNotFoundError):
            await svc.confirm_receipt(AsyncMock(), "txn-1", "seller-1")


async def test_aclose_closes_gateway() -> None:
    gateway = MagicMock()
    gateway.aclose = AsyncMock()
    svc = PurchaseService(AsyncMock(), AsyncMock(), gateway, AsyncMock())
    await svc.aclose()
    gateway.aclose.assert_awaited_once()
