# tests/integration/test_escrow_flow.py
"""End-to-end escrow flow against live PostgreSQL + Redis:
purchase → paid webhook → confirm → credentials → dispute.

Uses the mock payment provider (PAYMENT_PROVIDER=mock); the webhook is
signed with XENDIT_WEBHOOK_SECRET, which must be non-empty.
"""

import json
import uuid
from collections.abc import Callable

import pytest
from httpx import AsyncClient
from sqlalchemy import text

from config.settings import settings
from src.em_common.database import engine
from src.em_transaction.application.webhook import compute_signature

pytestmark = [pytest.mark.integration, pytest.mark.asyncio(loop_scope="session")]


def _user() -> str:
    return f"user_{uuid.uuid4().hex[:8]}"


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def _gateway_ref(transaction_id: str) -> str:
    async with engine.connect() as conn:
        result = await conn.execute(
            text("SELECT payment_gateway_ref FROM transactions WHERE id = :id"),
            {"id": transaction_id},
        )
        return str(result.scalar_one())


async def _pay(client: AsyncClient, transaction_id: str, amount: int) -> dict:
    body = json.dumps({
        "id": await _gateway_ref(transaction_id),
        "external_id": transaction_id,
        "status": "PAID",
        "amount": amount,
    }).encode()
    resp = await client.post(
        "/api/v1/transactions/webhook/xendit",
        content=body,
        headers={
            "content-type": "application/json",
            "x-callback-signature": compute_signature(body, settings.XENDIT_WEBHOOK_SECRET),
        },
    )
    assert resp.status_code == 200
    return dict(resp.json())


async def test_full_escrow_flow(
    client: AsyncClient, token_for: Callable[..., str], listing_factory: Callable
) -> None:
    buyer = _user()
    listing_id = await listing_factory()

    resp = await client.post(
        "/api/v1/transactions/purchase", json={"listing_id": listing_id}, headers=_auth(token_for(buyer))
    )
    assert resp.status_code == 201
    txn_id = resp.json()["data"]["transaction_id"]

    resp = await client.get(f"/api/v1/transactions/{txn_id}", headers=_auth(token_for(buyer)))
    txn = resp.json()["data"]
    assert txn["status"] == "pending"
    assert txn["seller_received"] + txn["platform_fee_amount"] + txn["disbursement_fee"] == txn["item_price"]

    ack = await _pay(client, txn_id, txn["total_buyer_paid"])
    assert ack["outcome"] == "processed"
    duplicate = await _pay(client, txn_id, txn["total_buyer_paid"])
    assert duplicate["outcome"] == "duplicate"

    resp = await client.get(f"/api/v1/transactions/{txn_id}/credentials", headers=_auth(token_for(buyer)))
    assert resp.status_code == 409

    resp = await client.post(f"/api/v1/transactions/{txn_id}/confirm", headers=_auth(token_for(buyer)))
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "completed"

    first = await client.get(f"/api/v1/transactions/{txn_id}/credentials", headers=_auth(token_for(buyer)))
    assert first.status_code == 200
    assert first.json()["data"]["credentials"]["password"] == "hunter2"
    assert first.json()["data"]["warning"]
    again = await client.get(f"/api/v1/transactions/{txn_id}/credentials", headers=_auth(token_for(buyer)))
    assert again.json()["data"]["expires_at"] == first.json()["data"]["expires_at"]
    assert again.json()["data"]["warning"] is None


async def test_second_buyer_gets_conflict(
    client: AsyncClient, token_for: Callable[..., str], listing_factory: Callable
) -> None:
    listing_id = await listing_factory()
    first = await client.post(
        "/api/v1/transactions/purchase", json={"listing_id": listing_id}, headers=_auth(token_for(_user()))
    )
    second = await client.post(
        "/api/v1/transactions/purchase", json={"listing_id": listing_id}, headers=_auth(token_for(_user()))
    )
    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()["code"] == 2001


async def test_dispute_and_partial_refund(
    client: AsyncClient, token_for: Callable[..., str], listing_factory: Callable
) -> None:
    buyer, admin = _user(), _user()
    listing_id = await listing_factory(price=100_000)
    resp = await client.post(
        "/api/v1/transactions/purchase", json={"listing_id": listing_id}, headers=_auth(token_for(buyer))
    )
    txn_id = resp.json()["data"]["transaction_id"]
    await _pay(client, txn_id, 100_000)

    payload = {
        "transaction_id": txn_id,
        "reason": "account_not_received",
        "description": "Seller never delivered the account details",
    }
    resp = await client.post("/api/v1/disputes", json=payload, headers=_auth(token_for(buyer)))
    assert resp.status_code == 201
    dispute_id = resp.json()["data"]["id"]
    resp = await client.post("/api/v1/disputes", json=payload, headers=_auth(token_for(buyer)))
    assert resp.status_code == 409

    resp = await client.post(
        f"/api/v1/admin/disputes/{dispute_id}/resolve",
        json={"resolution": "partial_refund", "refund_percentage": 50},
        headers=_auth(token_for(admin, role="admin")),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "resolved"

    async with engine.connect() as conn:
        row = (
            await conn.execute(
                text("SELECT buyer_refund_amount, seller_refund_amount FROM refunds WHERE dispute_id = :id"),
                {"id": dispute_id},
            )
        ).one()
    assert (row.buyer_refund_amount, row.seller_refund_amount) == (50_000, 48_500)
