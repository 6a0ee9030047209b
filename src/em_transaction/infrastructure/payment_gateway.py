"""Payment provider clients (invoices in, disbursements out).

``XenditPaymentGateway`` talks to the real API over httpx with a bounded
timeout; ``MockPaymentGateway`` returns deterministic checkout links for
local development. Any transport failure, timeout or non-2xx response is
raised as PaymentProviderError so the purchase unit of work rolls back.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol

import httpx

from config.settings import settings
from src.em_common.datetime_utils import ensure_utc, utc_now
from src.em_common.errors import PaymentProviderError

logger = logging.getLogger(__name__)


@dataclass
class Invoice:
    id: str
    external_id: str
    status: str
    amount: int
    payment_url: str
    expiry: datetime


class PaymentGateway(Protocol):
    async def create_invoice(
        self, external_id: str, amount: int, payer_email: str | None, description: str
    ) -> Invoice: ...

    async def aclose(self) -> None: ...


class DisbursementGateway(Protocol):
    async def disburse(self, external_id: str, seller_id: str, amount: int) -> str: ...


def _parse_expiry(raw: str | None) -> datetime:
    if not raw:
        return utc_now() + timedelta(minutes=settings.PAYMENT_WINDOW_MINUTES)
    return ensure_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))


class XenditPaymentGateway:
    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.xendit.co",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            auth=(secret_key, ""),
            timeout=httpx.Timeout(timeout),
        )

    async def create_invoice(
        self, external_id: str, amount: int, payer_email: str | None, description: str
    ) -> Invoice:
        body: dict[str, Any] = {
            "external_id": external_id,
            "amount": amount,
            "description": description,
            "invoice_duration": settings.PAYMENT_WINDOW_MINUTES * 60,
        }
        if payer_email:
            body["payer_email"] = payer_email
        try:
            resp = await self._client.post("/v2/invoices", json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as e:
            logger.error("Invoice request timed out for %s", external_id)
            raise PaymentProviderError("Payment provider timed out. Please try again.") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Invoice request failed for %s: %s", external_id, e)
            raise PaymentProviderError() from e

        if not data.get("invoice_url") or not data.get("id"):
            raise PaymentProviderError()
        return Invoice(
            id=data["id"],
            external_id=data.get("external_id", external_id),
            status=data.get("status", "PENDING"),
            amount=int(data.get("amount", amount)),
            payment_url=data["invoice_url"],
            expiry=_parse_expiry(data.get("expiry_date")),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


class MockPaymentGateway:
    """Local stand-in: no network, invoice ids look like the real ones."""

    async def create_invoice(
        self, external_id: str, amount: int, payer_email: str | None, description: str
    ) -> Invoice:
        invoice_id = f"inv-{secrets.token_hex(12)}"
        logger.info("[MOCK XENDIT] Creating invoice %s for external_id %s", invoice_id, external_id)
        return Invoice(
            id=invoice_id,
            external_id=external_id,
            status="PENDING",
            amount=amount,
            payment_url=f"https://checkout.xendit.co/web/{invoice_id}",
            expiry=utc_now() + timedelta(minutes=settings.PAYMENT_WINDOW_MINUTES),
        )

    async def aclose(self) -> None:
        return None


class MockDisbursementGateway:
    async def disburse(self, external_id: str, seller_id: str, amount: int) -> str:
        reference = f"disb-{secrets.token_hex(10)}"
        logger.info(
            "[MOCK XENDIT] Disbursing %d to seller %s for %s (%s)",
            amount, seller_id, external_id, reference,
        )
        return reference


def build_payment_gateway() -> PaymentGateway:
    if settings.PAYMENT_PROVIDER == "xendit":
        return XenditPaymentGateway(
            secret_key=settings.XENDIT_SECRET_KEY,
            base_url=settings.XENDIT_API_URL,
            timeout=settings.PAYMENT_TIMEOUT_SECONDS,
        )
    if not settings.XENDIT_SECRET_KEY:
        logger.warning("Xendit API key is not set. Using mock payment gateway.")
    return MockPaymentGateway()
