# Overview: Transactional email via the Resend REST API; one function per lifecycle event.

"""
Transactional Email Service

WHY: Customers and the store admin are told about order, shipping, return,
cart-recovery and stock events. Sending is best-effort: every function here
returns an EmailResult and never raises, so callers (usually through the
notification dispatcher) cannot be failed by the mail provider.

DESIGN:
- Mailer is a Flask extension owning configuration and the httpx transport
- Event functions take a plain dataclass and build a plain-text body
- Missing RESEND_API_KEY is a failed result, not an exception
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

import httpx
from flask import current_app

from ..money import money_str

logger = logging.getLogger(__name__)

STORE_NAME = "STORE"


@dataclass
class EmailResult:
    success: bool
    data: dict | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {"success": self.success, "data": self.data, "error": self.error}


class Mailer:
    """Flask extension wrapping the Resend `POST /emails` endpoint."""

    def __init__(self, app=None):
        self.api_key = ""
        self.api_base = ""
        self.sender = ""
        self.timeout = 10.0
        self._transport: httpx.BaseTransport | None = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self.api_key = app.config.get("RESEND_API_KEY", "")
        self.api_base = app.config.get("RESEND_API_BASE", "https://api.resend.com").rstrip("/")
        self.sender = app.config.get("MAIL_FROM", "onboarding@resend.dev")
        self.timeout = float(app.config.get("MAIL_TIMEOUT_SECONDS", 10))
        if not self.api_key:
            app.logger.warning("RESEND_API_KEY not configured. Email features will not work.")
        app.extensions["mailer"] = self

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def use_transport(self, transport: httpx.BaseTransport | None) -> None:
        self._transport = transport

    def send(self, to: str, subject: str, text: str) -> EmailResult:
        if not self.configured:
            return EmailResult(success=False, error="Email provider not configured")
        if not to:
            return EmailResult(success=False, error="Missing recipient")

        payload = {"from": self.sender, "to": [to], "subject": subject, "text": text}
        try:
            with httpx.Client(
                base_url=self.api_base,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = client.post("/emails", json=payload)
                response.raise_for_status()
                return EmailResult(success=True, data=response.json())
        except httpx.HTTPStatusError as exc:
            return EmailResult(success=False, error=f"HTTP {exc.response.status_code}: {exc.response.text[:200]}")
        except httpx.HTTPError as exc:
            return EmailResult(success=False, error=str(exc) or exc.__class__.__name__)
        except ValueError:
            # 2xx with a non-JSON body still means the provider accepted it
            return EmailResult(success=True, data=None)


def _mailer() -> Mailer:
    return current_app.extensions["mailer"]


def format_price(amount, currency: str = "INR") -> str:
    value = Decimal(money_str(Decimal(str(amount))))
    symbol = "₹" if currency == "INR" else f"{currency} "
    return f"{symbol}{value:,.2f}"


def _store_url() -> str:
    return current_app.config.get("STORE_URL", "").rstrip("/")


# =============================================================================
# PAYLOADS
# =============================================================================

@dataclass
class EmailLineItem:
    name: str
    quantity: int
    price: Decimal
    size: str | None = None
    color: str | None = None


@dataclass
class OrderConfirmationEmail:
    customer_email: str
    customer_name: str
    order_number: str
    items: list[EmailLineItem]
    subtotal: Decimal
    shipping_cost: Decimal
    discount: Decimal
    total: Decimal
    shipping_address: dict = field(default_factory=dict)
    currency: str = "INR"


@dataclass
class ShippingUpdateEmail:
    customer_email: str
    customer_name: str
    order_number: str
    tracking_number: str | None = None
    tracking_url: str | None = None


@dataclass
class OrderStatusEmail:
    customer_email: str
    customer_name: str
    order_number: str


@dataclass
class ReturnEmail:
    customer_email: str
    customer_name: str
    return_number: str
    order_number: str
    status: str = "requested"
    refund_amount: Decimal | None = None
    admin_notes: str | None = None
    currency: str = "INR"
    reason: str | None = None
    # [(name, quantity)]
    items: list[tuple[str, int]] = field(default_factory=list)
    instructions: str | None = None


@dataclass
class AbandonedCartEmail:
    customer_email: str
    customer_name: str
    items: list[EmailLineItem]
    total_value: Decimal
    recovery_url: str
    currency: str = "INR"


@dataclass
class LowStockEmail:
    admin_email: str
    product_name: str
    current_stock: int
    threshold: int
    variant_name: str | None = None
    sku: str | None = None


@dataclass
class NewOrderAdminEmail:
    admin_email: str
    order_number: str
    customer_name: str
    customer_email: str
    total: Decimal
    item_count: int
    currency: str = "INR"


@dataclass
class RefundRequiredAdminEmail:
    admin_email: str
    order_number: str
    payment_id: str
    total: Decimal
    currency: str = "INR"


@dataclass
class WelcomeEmail:
    customer_email: str
    customer_name: str


# =============================================================================
# EVENT SENDERS
# =============================================================================

def _item_lines(items: list[EmailLineItem], currency: str) -> str:
    lines = []
    for item in items:
        options = ", ".join(v for v in (item.size, item.color) if v)
        suffix = f" ({options})" if options else ""
        lines.append(f"  {item.name}{suffix} x {item.quantity}  {format_price(item.price * item.quantity, currency)}")
    return "\n".join(lines)


def send_order_confirmation(data: OrderConfirmationEmail) -> EmailResult:
    address = data.shipping_address or {}
    address_lines = [
        address.get("full_name"),
        address.get("address_line1"),
        address.get("address_line2"),
        ", ".join(str(v) for v in (address.get("city"), address.get("state"), address.get("pincode")) if v),
        address.get("phone"),
    ]
    text = "\n".join([
        f"Hi {data.customer_name}, we've received your order and will notify you when it ships.",
        "",
        f"Order #{data.order_number}",
        _item_lines(data.items, data.currency),
        "",
        f"Subtotal: {format_price(data.subtotal, data.currency)}",
        f"Shipping: {format_price(data.shipping_cost, data.currency)}",
        *([f"Discount: -{format_price(data.discount, data.currency)}"] if data.discount and data.discount > 0 else []),
        f"Total: {format_price(data.total, data.currency)}",
        "",
        "Shipping to:",
        *[f"  {line}" for line in address_lines if line],
        "",
        f"Thank you for shopping with {STORE_NAME}!",
    ])
    return _mailer().send(data.customer_email, f"Order Confirmed - #{data.order_number}", text)


def send_shipping_update(data: ShippingUpdateEmail) -> EmailResult:
    lines = [
        f"Hi {data.customer_name}, good news! Your order #{data.order_number} is on its way.",
    ]
    if data.tracking_number:
        lines.append(f"Tracking number: {data.tracking_number}")
    if data.tracking_url:
        lines.append(f"Track your package: {data.tracking_url}")
    return _mailer().send(data.customer_email, f"Your Order #{data.order_number} Has Shipped!", "\n".join(lines))


def send_order_delivered(data: OrderStatusEmail) -> EmailResult:
    text = (
        f"Hi {data.customer_name}, your order #{data.order_number} has been delivered.\n"
        f"We hope you love it! If anything is wrong you can request a return at {_store_url()}/account/orders."
    )
    return _mailer().send(data.customer_email, f"Your Order #{data.order_number} Has Been Delivered", text)


def send_order_cancelled(data: OrderStatusEmail) -> EmailResult:
    text = (
        f"Hi {data.customer_name}, your order #{data.order_number} has been cancelled.\n"
        "If you were charged, the refund will be processed to your original payment method."
    )
    return _mailer().send(data.customer_email, f"Your Order #{data.order_number} Has Been Cancelled", text)


def send_return_requested(data: ReturnEmail) -> EmailResult:
    text = "\n".join([
        f"Hi {data.customer_name}, we've received your return request {data.return_number} "
        f"for order #{data.order_number}.",
        *([f"Reason: {data.reason}"] if data.reason else []),
        *[f"  {name} x {quantity}" for name, quantity in data.items],
        "We'll review it and get back to you shortly.",
    ])
    return _mailer().send(data.customer_email, f"Return Request Received - {data.return_number}", text)


_RETURN_STATUS_COPY = {
    "approved": ("Approved", "Your return has been approved. Please ship the items back to us."),
    "rejected": ("Update", "Unfortunately your return request could not be approved."),
    "refunded": ("Refund Processed", "Your refund has been processed."),
}


def send_return_status_update(data: ReturnEmail) -> EmailResult:
    heading, body = _RETURN_STATUS_COPY.get(
        data.status, ("Update", f"Your return status is now: {data.status}.")
    )
    lines = [f"Hi {data.customer_name},", body, f"Return: {data.return_number} (order #{data.order_number})"]
    if data.status == "refunded" and data.refund_amount is not None:
        lines.append(f"Refund amount: {format_price(data.refund_amount, data.currency)}")
    if data.instructions:
        lines.append(data.instructions)
    if data.admin_notes:
        lines.append(f"Notes: {data.admin_notes}")
    return _mailer().send(data.customer_email, f"Return {heading} - {data.return_number}", "\n".join(lines))


def send_abandoned_cart(data: AbandonedCartEmail) -> EmailResult:
    text = "\n".join([
        f"Hi {data.customer_name}, you left something in your cart!",
        "",
        _item_lines(data.items, data.currency),
        "",
        f"Cart total: {format_price(data.total_value, data.currency)}",
        f"Complete your purchase: {data.recovery_url}",
        "",
        "This link expires in 7 days.",
    ])
    return _mailer().send(data.customer_email, "You left items in your cart", text)


def send_low_stock_alert(data: LowStockEmail) -> EmailResult:
    name = data.product_name + (f" - {data.variant_name}" if data.variant_name else "")
    text = "\n".join([
        f"Low stock: {name}",
        *([f"SKU: {data.sku}"] if data.sku else []),
        f"Current stock: {data.current_stock} (threshold {data.threshold})",
        f"Manage inventory: {_store_url()}/admin/inventory",
    ])
    return _mailer().send(data.admin_email, f"Low Stock Alert: {name}", text)


def send_new_order_admin(data: NewOrderAdminEmail) -> EmailResult:
    text = "\n".join([
        f"New order #{data.order_number}",
        f"Customer: {data.customer_name} <{data.customer_email}>",
        f"Items: {data.item_count}",
        f"Total: {format_price(data.total, data.currency)}",
        f"View: {_store_url()}/admin/orders",
    ])
    return _mailer().send(data.admin_email, f"New Order #{data.order_number}", text)


def send_refund_required_admin(data: RefundRequiredAdminEmail) -> EmailResult:
    text = "\n".join([
        f"Order #{data.order_number} was cancelled before its payment arrived.",
        f"Payment {data.payment_id} for {format_price(data.total, data.currency)} was captured and needs a refund.",
        f"View: {_store_url()}/admin/orders",
    ])
    return _mailer().send(data.admin_email, f"Refund Required - Order #{data.order_number}", text)


def send_welcome(data: WelcomeEmail) -> EmailResult:
    text = (
        f"Hi {data.customer_name}, welcome to {STORE_NAME}!\n"
        f"Start shopping at {_store_url()}"
    )
    return _mailer().send(data.customer_email, f"Welcome to {STORE_NAME}!", text)
