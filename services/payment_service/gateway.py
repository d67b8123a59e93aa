"""
Read-only client for the payment authority (Razorpay REST API).

The authority is the source of truth for whether a customer actually paid.
Lookups answer paid / pending / failed; anything else (timeouts, transport
errors, 5xx, unknown order) raises GatewayUnavailable so the caller leaves
the order untouched and asks again on its next pass.
"""
import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from shared.config import settings
from shared.errors import GatewayUnavailable

logger = structlog.get_logger(__name__)

PAID = "paid"
PENDING = "pending"
FAILED = "failed"


@dataclass(frozen=True)
class GatewayLookup:
    status: str
    payment_id: Optional[str] = None


def _is_captured(payment: dict) -> bool:
    return payment.get("status") == "captured" and payment.get("captured") is True


def verify_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    """HMAC-SHA256 of the payload with the shared secret, compared in constant time."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


class PaymentGatewayClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.GATEWAY_BASE_URL).rstrip("/")
        self.key_id = settings.GATEWAY_KEY_ID if key_id is None else key_id
        self.key_secret = settings.GATEWAY_KEY_SECRET if key_secret is None else key_secret
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    async def _get(self, path: str) -> dict:
        if not self.configured:
            raise GatewayUnavailable("Payment gateway credentials not configured")
        try:
            async with httpx.AsyncClient(
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.get(f"{self.base_url}{path}")
        except httpx.HTTPError as exc:
            raise GatewayUnavailable(f"Payment gateway unreachable: {exc}") from exc

        if resp.status_code == 404:
            raise GatewayUnavailable(f"Payment gateway has no record for {path}")
        if resp.status_code >= 400:
            raise GatewayUnavailable(f"Payment gateway answered {resp.status_code} for {path}")
        try:
            return resp.json()
        except ValueError as exc:
            raise GatewayUnavailable(f"Payment gateway sent an unreadable body for {path}") from exc

    async def lookup_order_status(self, gateway_order_id: str) -> GatewayLookup:
        data = await self._get(f"/orders/{gateway_order_id}/payments")
        payments = data.get("items") or []

        captured = next((p for p in payments if _is_captured(p)), None)
        if captured is not None:
            return GatewayLookup(PAID, captured.get("id"))
        if payments and all(p.get("status") == "failed" for p in payments):
            return GatewayLookup(FAILED, payments[-1].get("id"))
        return GatewayLookup(PENDING)


gateway = PaymentGatewayClient()
