# Overview: Razorpay adapter; creates gateway orders and verifies payment callback signatures.

"""
Payment Gateway Adapter (Razorpay)

WHY: Checkout opens the gateway's payment UI against a gateway-side order,
and the callback proves payment with an HMAC signature. This module is the
only place that talks to the gateway or knows its signing scheme.

DESIGN:
- Synchronous httpx.Client with HTTP basic auth (key id / key secret)
- Amounts in, amounts out in MAJOR units (Decimal); converted to paise here
- Signature = HMAC-SHA256(key_secret, order_id + "|" + payment_id), hex
- Constant-time comparison (hmac.compare_digest)
- Transport is injectable so tests can use httpx.MockTransport
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal

import httpx

from ..money import to_minor_units

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Raised when the gateway is unconfigured, unreachable or rejects a call."""
    pass


@dataclass(frozen=True)
class GatewayOrder:
    id: str
    amount: int  # minor units
    currency: str


@dataclass(frozen=True)
class GatewayPayment:
    id: str
    order_id: str | None
    amount: int  # minor units
    currency: str
    status: str
    method: str | None


def compute_signature(secret: str, order_id: str, payment_id: str) -> str:
    """Expected callback signature for (gateway order id, payment id)."""
    payload = f"{order_id}|{payment_id}"
    return hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


class PaymentGateway:
    """Flask extension wrapping the Razorpay REST API."""

    def __init__(self, app=None):
        self.key_id = ""
        self.key_secret = ""
        self.api_base = ""
        self.timeout = 10.0
        self._transport: httpx.BaseTransport | None = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self.key_id = app.config.get("RAZORPAY_KEY_ID", "")
        self.key_secret = app.config.get("RAZORPAY_KEY_SECRET", "")
        self.api_base = app.config.get("RAZORPAY_API_BASE", "https://api.razorpay.com/v1").rstrip("/")
        self.timeout = float(app.config.get("PAYMENT_TIMEOUT_SECONDS", 10))
        app.extensions["payment_gateway"] = self

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def use_transport(self, transport: httpx.BaseTransport | None) -> None:
        """Route outbound calls through `transport` (None restores the network)."""
        self._transport = transport

    def _client(self) -> httpx.Client:
        if not self.configured:
            raise PaymentGatewayError("Razorpay credentials are not configured")
        return httpx.Client(
            base_url=self.api_base,
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
            transport=self._transport,
        )

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            with self._client() as client:
                response = client.request(method, path, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Razorpay rejected request",
                extra={"path": path, "status": exc.response.status_code, "body": exc.response.text[:500]},
            )
            raise PaymentGatewayError(f"Gateway returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.error("Razorpay request failed", extra={"path": path, "error": str(exc)})
            raise PaymentGatewayError("Gateway unreachable") from exc
        except ValueError as exc:
            raise PaymentGatewayError("Gateway returned an invalid response") from exc

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def create_order(
        self,
        amount: Decimal,
        currency: str = "INR",
        receipt: str | None = None,
        notes: dict | None = None,
    ) -> GatewayOrder:
        """
        Create the gateway-side order the customer will pay against.

        `amount` is in major units and is sent as integer minor units.
        """
        body = {
            "amount": to_minor_units(amount),
            "currency": currency,
        }
        if receipt:
            body["receipt"] = receipt
        if notes:
            body["notes"] = {str(k): str(v) for k, v in notes.items()}

        data = self._request("POST", "/orders", json=body)
        try:
            return GatewayOrder(id=data["id"], amount=int(data["amount"]), currency=data["currency"])
        except (KeyError, TypeError, ValueError) as exc:
            raise PaymentGatewayError("Gateway returned an invalid order") from exc

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        data = self._request("GET", f"/payments/{payment_id}")
        try:
            return GatewayPayment(
                id=data["id"],
                order_id=data.get("order_id"),
                amount=int(data["amount"]),
                currency=data["currency"],
                status=data.get("status", ""),
                method=data.get("method"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise PaymentGatewayError("Gateway returned an invalid payment") from exc

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """
        True iff `signature` is HMAC-SHA256(key_secret, order_id|payment_id).

        Never raises for bad input; a missing secret verifies nothing.
        """
        if not self.key_secret or not order_id or not payment_id or not signature:
            return False
        expected = compute_signature(self.key_secret, order_id, payment_id)
        return hmac.compare_digest(expected.encode("utf-8"), str(signature).encode("utf-8"))
