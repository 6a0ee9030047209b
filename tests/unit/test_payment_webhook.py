# tests/unit/test_payment_webhook.py
"""Unit tests for signature verification and PaymentWebhookProcessor."""
import json
from typing import Any
from unittest.mock import AsyncMock

import pytest

from src.em_common.errors import (
    InvalidSignatureError,
    InvalidTransitionError,
    MalformedPayloadError,
    PaymentAmountMismatchError,
    TransactionNotFoundError,
)
from src.em_transaction.application.webhook import (
    PaymentWebhookProcessor,
    compute_signature,
    parse_payload,
    verify_signature,
)
from src.em_transaction.domain.models import Transaction

SECRET = "whsec-unit"


def _make_txn(**kwargs: Any) -> Transaction:
    return Transaction(
        id=kwargs.get("id", "txn-1"),
        buyer_id="buyer-1",
        seller_id="seller-1",
        listing_id="lst-1",
        item_price=100_000,
        platform_fee_bps=300,
        platform_fee_amount=3000,
        disbursement_fee=2500,
        total_buyer_paid=kwargs.get("total_buyer_paid", 100_000),
        seller_received=94_500,
        status=kwargs.get("status", "pending"),
        payment_status=kwargs.get("payment_status", "pending"),
        payment_gateway_ref="inv-1",
    )


def _body(**overrides: Any) -> bytes:
    payload = {"id": "inv-1", "external_id": "txn-1", "status": "PAID", "amount": 100_000}
    payload.update(overrides)
    return json.dumps(payload).encode()


def _signed(body: bytes) -> str:
    return compute_signature(body, SECRET)


class TestSignature:
    def test_valid(self) -> None:
        body = _body()
        assert verify_signature(_signed(body), body, SECRET)

    def test_case_and_whitespace_tolerated(self) -> None:
        body = _body()
        assert verify_signature(f" {_signed(body).upper()} ", body, SECRET)

    def test_tampered_body(self) -> None:
        body = _body()
        assert not verify_signature(_signed(body), _body(amount=1), SECRET)

    def test_missing_signature_or_secret(self) -> None:
        body = _body()
        assert not verify_signature(None, body, SECRET)
        assert not verify_signature("", body, SECRET)
        assert not verify_signature(_signed(body), body, "")


class TestParsePayload:
    def test_not_json(self) -> None:
        with pytest.raises(MalformedPayloadError):
            parse_payload(b"not json")

    def test_not_object(self) -> None:
        with pytest.raises(MalformedPayloadError):
            parse_payload(b"[1, 2]")

    def test_missing_fields(self) -> None:
        with pytest.raises(MalformedPayloadError) as exc_info:
            parse_payload(json.dumps({"id": "inv-1", "status": ""}).encode())
        assert "external_id" in exc_info.value.message
        assert "status" in exc_info.value.message


class TestPaymentWebhookProcessor:
    def _processor(self, repo: AsyncMock, sink: AsyncMock | None = None) -> PaymentWebhookProcessor:
        return PaymentWebhookProcessor(txn_repo=repo, sink=sink or AsyncMock(), secret=SECRET)

    async def test_bad_signature_rejected_before_db(self) -> None:
        repo = AsyncMock()
        body = _body()
        with pytest.raises(InvalidSignatureError):
            await self._processor(repo).handle_payment_event(AsyncMock(), "deadbeef", body)
        repo.get_by_gateway_ref.assert_not_awaited()

    async def test_paid_moves_to_processing_and_notifies(self) -> None:
        repo = AsyncMock()
        repo.get_by_gateway_ref.return_value = _make_txn()
        repo.mark_paid.return_value = _make_txn(status="processing", payment_status="paid")
        sink = AsyncMock()
        db = AsyncMock()
        body = _body()

        ack = await self._processor(repo, sink).handle_payment_event(db, _signed(body), body)

        assert ack.outcome == "processed"
        assert ack.transaction_id == "txn-1"
        db.commit.assert_awaited_once()
        assert sink.notify.await_count == 2

    async def test_duplicate_delivery_is_noop(self) -> None:
        repo = AsyncMock()
        repo.get_by_gateway_ref.return_value = _make_txn()
        repo.mark_paid.return_value = None
        repo.get_by_id.return_value = _make_txn(status="processing", payment_status="paid")
        sink = AsyncMock()
        db = AsyncMock()
        body = _body()

        ack = await self._processor(repo, sink).handle_payment_event(db, _signed(body), body)

        assert ack.outcome == "duplicate"
        db.commit.assert_not_awaited()
        sink.notify.assert_not_awaited()

    async def test_paid_after_cancel_is_conflict(self) -> None:
        repo = AsyncMock()
        repo.get_by_gateway_ref.return_value = _make_txn(status="cancelled", payment_status="expired")
        repo.mark_paid.return_value = None
        repo.get_by_id.return_value = _make_txn(status="cancelled", payment_status="expired")
        body = _body()
        with pytest.raises(InvalidTransitionError):
            await self._processor(repo).handle_payment_event(AsyncMock(), _signed(body), body)

    async def test_non_paid_status_ignored(self) -> None:
        repo = AsyncMock()
        body = _body(status="EXPIRED")
        ack = await self._processor(repo).handle_payment_event(AsyncMock(), _signed(body), body)
        assert ack.outcome == "ignored"
        repo.get_by_gateway_ref.assert_not_awaited()

    async def test_settled_treated_as_paid(self) -> None:
        repo = AsyncMock()
        repo.get_by_gateway_ref.return_value = _make_txn()
        repo.mark_paid.return_value = _make_txn(status="processing", payment_status="paid")
        body = _body(status="settled")
        ack = await self._processor(repo).handle_payment_event(AsyncMock(), _signed(body), body)
        assert ack.outcome == "processed"

    async def test_amount_mismatch(self) -> None:
        repo = AsyncMock()
        repo.get_by_gateway_ref.return_value = _make_txn()
        db = AsyncMock()
        body = _body(amount=90_000)
        with pytest.raises(PaymentAmountMismatchError):
            await self._processor(repo).handle_payment_event(db, _signed(body), body)
        repo.mark_paid.assert_not_awaited()
        db.rollback.assert_awaited()

    async def test_unknown_reference(self) -> None:
        repo = AsyncMock()
        repo.get_by_gateway_ref.return_value = None
        body = _body()
        with pytest.raises(TransactionNotFoundError):
            await self._processor(repo).handle_payment_event(AsyncMock(), _signed(body), body)

    async def test_non_integer_amount(self) -> None:
        repo = AsyncMock()
        repo.get_by_gateway_ref.return_value = _make_txn()
        body = _body(amount="lots")
        with pytest.raises(MalformedPayloadError):
            await self._processor(repo).handle_payment_event(AsyncMock(), _signed(body), body)
