# Overview: Order workflow: checkout, payment verification, fulfilment status and admin tools.

"""
Order Workflow Service

WHY: An order moves from checkout to a gateway payment to fulfilment, and
every step must leave the order row and its timeline in agreement. Both
signed-in customers and guests check out through the same engine.

FLOW:
1. create / create_guest
   - referenced products/variants must exist before the gateway is called
   - order number generated and pre-checked (unique constraint is final)
   - gateway order created FIRST; a gateway failure writes nothing
   - order + items + "Order Created" timeline entry in one transaction
   - if that transaction fails the gateway order is orphaned; it is logged
     with its id and expires unpaid at the gateway
2. verify_payment (public; the HMAC signature is the authorization)
   - signature, gateway order id, and (optionally) amount/currency checked
   - pending -> confirmed / paid, one "payment" timeline entry, stock
     decremented, all in one transaction
   - replay of the same payment id is a successful no-op
   - a payment landing on a cancelled order is recorded as paid, the
     order stays cancelled and the admin is asked to refund
   - confirmation + admin emails dispatched after commit (fire-and-forget)
3. update_status / bulk_update_status (admin)
   - transition table enforced before anything is written
   - shipped_at / delivered_at stamped once, never overwritten
   - payment_status is never touched here

GUESTS: user_id is NULL and guest_email is the shipping address email.
Lookup needs order number + email and is throttled on failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db, gateway
from ..models import Order, OrderItem, OrderTimeline, Product, ProductVariant
from ..money import money_str, to_decimal, to_minor_units
from . import email_service, inventory_service, lifecycle_service, settings_service, throttle_service, timeline_service
from .auth_service import normalize_email, validate_email
from .concurrency import lock_for_update, run_with_retry, transaction
from .errors import (
    ConflictError,
    InvalidRequestError,
    NotFoundError,
    PaymentVerificationError,
    UpstreamError,
)
from .identifier_service import generate_order_number
from .notification_service import notify
from .payment_gateway import PaymentGatewayError
from storefront.time_utils import utcnow

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5
ADDRESS_FIELDS = (
    "full_name", "email", "phone", "address_line1", "address_line2",
    "city", "state", "pincode", "country",
)
REQUIRED_ADDRESS_FIELDS = ("full_name", "phone", "address_line1", "city", "state", "pincode")
NOTIFY_ON_STATUS = {"shipped", "delivered", "cancelled"}
# Razorpay payment states that mean the money is secured
SETTLED_PAYMENT_STATES = {"authorized", "captured"}
# verify_payment outcomes
PAYMENT_CONFIRMED = "confirmed"
PAYMENT_REPLAYED = "replayed"
PAYMENT_REFUND_REQUIRED = "refund_required"


# =============================================================================
# CHECKOUT INPUT
# =============================================================================

@dataclass
class CheckoutItem:
    product_id: int | None
    variant_id: int | None
    name: str
    sku: str | None
    price: Decimal
    quantity: int
    size: str | None = None
    color: str | None = None
    image_url: str | None = None

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass
class CheckoutRequest:
    items: list[CheckoutItem]
    shipping_address: dict
    billing_address: dict | None
    subtotal: Decimal
    total: Decimal
    shipping_cost: Decimal = Decimal("0.00")
    discount: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    coupon_code: str | None = None
    notes: str | None = None
    currency: str = "INR"
    metadata: dict = field(default_factory=dict)


def _optional_int(value, name: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidRequestError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"{name} must be an integer") from None


def _optional_str(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _money(value, name: str, *, default: str | None = None) -> Decimal:
    if value is None and default is not None:
        value = default
    try:
        amount = to_decimal(value, field=name)
    except ValueError as exc:
        raise InvalidRequestError(str(exc)) from None
    if amount < 0:
        raise InvalidRequestError(f"{name} cannot be negative")
    return amount


def _parse_item(raw, index: int) -> CheckoutItem:
    if not isinstance(raw, dict):
        raise InvalidRequestError(f"items[{index}] must be an object")
    name = _optional_str(raw.get("name"))
    if not name:
        raise InvalidRequestError(f"items[{index}].name is required")
    quantity = _optional_int(raw.get("quantity"), f"items[{index}].quantity")
    if quantity is None or quantity < 1:
        raise InvalidRequestError(f"items[{index}].quantity must be at least 1")
    return CheckoutItem(
        product_id=_optional_int(raw.get("product_id"), f"items[{index}].product_id"),
        variant_id=_optional_int(raw.get("variant_id"), f"items[{index}].variant_id"),
        name=name,
        sku=_optional_str(raw.get("sku")),
        price=_money(raw.get("price"), f"items[{index}].price"),
        quantity=quantity,
        size=_optional_str(raw.get("size")),
        color=_optional_str(raw.get("color")),
        image_url=_optional_str(raw.get("image")),
    )


def _parse_address(raw, name: str, *, require_email: bool) -> dict:
    if not isinstance(raw, dict):
        raise InvalidRequestError(f"{name} is required")
    address = {key: _optional_str(raw.get(key)) for key in ADDRESS_FIELDS}
    missing = [key for key in REQUIRED_ADDRESS_FIELDS if not address[key]]
    if missing:
        raise InvalidRequestError(f"{name} is missing: {', '.join(missing)}")
    if address["email"]:
        address["email"] = validate_email(address["email"])
    elif require_email:
        raise InvalidRequestError(f"{name}.email is required")
    return {key: value for key, value in address.items() if value is not None}


def parse_checkout(data: dict | None, *, guest: bool) -> CheckoutRequest:
    """
    Validate a checkout payload.

    Totals are accepted as submitted (not recomputed from catalog prices) but
    must be non-negative and the total must be payable.
    """
    if not isinstance(data, dict):
        raise InvalidRequestError("Request body must be a JSON object")

    raw_items = data.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise InvalidRequestError("Cart is empty")
    items = [_parse_item(raw, i) for i, raw in enumerate(raw_items)]

    shipping_address = _parse_address(data.get("shipping_address"), "shipping_address", require_email=guest)
    billing_raw = data.get("billing_address")
    billing_address = (
        _parse_address(billing_raw, "billing_address", require_email=False)
        if billing_raw else None
    )

    total = _money(data.get("total"), "total")
    if total <= 0:
        raise InvalidRequestError("Order total must be greater than zero")

    return CheckoutRequest(
        items=items,
        shipping_address=shipping_address,
        billing_address=billing_address,
        subtotal=_money(data.get("subtotal"), "subtotal"),
        shipping_cost=_money(data.get("shipping_cost"), "shipping_cost", default="0"),
        discount=_money(data.get("discount"), "discount", default="0"),
        tax=_money(data.get("tax"), "tax", default="0"),
        total=total,
        coupon_code=_optional_str(data.get("coupon_code")),
        notes=_optional_str(data.get("notes")),
        currency=current_app.config.get("PAYMENT_CURRENCY", "INR"),
    )


# =============================================================================
# CREATION
# =============================================================================

def _reserve_order_number() -> str:
    """Pre-check candidates against existing rows; the constraint settles races."""
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = generate_order_number()
        if not db.session.query(Order.id).filter_by(order_number=candidate).first():
            return candidate
    raise ConflictError("Could not allocate an order number, please retry")


def _check_catalog_refs(items: list[CheckoutItem]) -> None:
    """Every referenced product/variant must exist, and a variant must belong to its product."""
    product_ids = {item.product_id for item in items if item.product_id is not None}
    variant_ids = {item.variant_id for item in items if item.variant_id is not None}

    if product_ids:
        found = {row.id for row in db.session.query(Product.id).filter(Product.id.in_(product_ids))}
        missing = sorted(product_ids - found)
        if missing:
            raise InvalidRequestError(f"Unknown product_id: {missing[0]}")

    if variant_ids:
        owners = dict(
            db.session.query(ProductVariant.id, ProductVariant.product_id)
            .filter(ProductVariant.id.in_(variant_ids))
            .all()
        )
        missing = sorted(variant_ids - owners.keys())
        if missing:
            raise InvalidRequestError(f"Unknown variant_id: {missing[0]}")
        for item in items:
            if item.variant_id is not None and item.product_id is not None \
                    and owners[item.variant_id] != item.product_id:
                raise InvalidRequestError(
                    f"variant_id {item.variant_id} does not belong to product_id {item.product_id}"
                )


def _create_order(checkout: CheckoutRequest, *, user_id: int | None, guest_email: str | None) -> dict:
    _check_catalog_refs(checkout.items)
    order_number = _reserve_order_number()
    customer_email = checkout.shipping_address.get("email") or guest_email

    try:
        gateway_order = gateway.create_order(
            amount=checkout.total,
            currency=checkout.currency,
            receipt=order_number,
            notes={"order_number": order_number, "email": customer_email or ""},
        )
    except PaymentGatewayError as exc:
        logger.error("Gateway order creation failed", extra={"order_number": order_number, "error": str(exc)})
        raise UpstreamError("Failed to create payment order. Please try again.") from exc

    try:
        with transaction():
            order = Order(
                order_number=order_number,
                user_id=user_id,
                guest_email=guest_email,
                status="pending",
                payment_status="pending",
                subtotal=checkout.subtotal,
                discount=checkout.discount,
                shipping_cost=checkout.shipping_cost,
                tax=checkout.tax,
                total=checkout.total,
                currency=checkout.currency,
                coupon_code=checkout.coupon_code,
                shipping_address=checkout.shipping_address,
                billing_address=checkout.billing_address or checkout.shipping_address,
                razorpay_order_id=gateway_order.id,
                notes=checkout.notes,
                created_at=utcnow(),
            )
            db.session.add(order)
            for item in checkout.items:
                order.items.append(OrderItem(
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    name=item.name,
                    sku=item.sku,
                    size=item.size,
                    color=item.color,
                    image_url=item.image_url,
                    price=item.price,
                    quantity=item.quantity,
                    total=item.line_total,
                ))
            timeline_service.append(
                order,
                timeline_service.TYPE_STATUS_CHANGE,
                "Order Created",
                f"Order {order_number} was placed",
                {"status": "pending", "payment_status": "pending", "guest": user_id is None},
                created_by=user_id,
            )
    except IntegrityError as exc:
        logger.error(
            "Order insert failed after gateway order was created; gateway order orphaned",
            extra={"order_number": order_number, "gateway_order_id": gateway_order.id, "error": str(exc.orig)},
        )
        if "order_number" in str(exc.orig):
            raise ConflictError("Order number collision, please retry") from exc
        raise
    except Exception:
        logger.error(
            "Order insert failed after gateway order was created; gateway order orphaned",
            extra={"order_number": order_number, "gateway_order_id": gateway_order.id},
        )
        raise

    logger.info(
        "Order created",
        extra={"order_id": order.id, "order_number": order_number, "gateway_order_id": gateway_order.id},
    )
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "gateway_order_id": gateway_order.id,
        "gateway_key_id": gateway.key_id,
        "amount": gateway_order.amount,
        "currency": gateway_order.currency,
    }


def create_order(user_id: int, data: dict) -> dict:
    """Authenticated checkout. Returns the handle the client needs to open the payment UI."""
    checkout = parse_checkout(data, guest=False)
    return _create_order(checkout, user_id=user_id, guest_email=None)


def create_guest_order(data: dict) -> dict:
    """Guest checkout: no user; guest_email is the shipping address email."""
    checkout = parse_checkout(data, guest=True)
    return _create_order(checkout, user_id=None, guest_email=checkout.shipping_address["email"])


# =============================================================================
# PAYMENT VERIFICATION
# =============================================================================

def _get_order(order_id: int, *, for_update: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if for_update:
        query = lock_for_update(query).populate_existing()
    order = query.first()
    if not order:
        raise NotFoundError("Order not found")
    return order


def _cross_check_payment(order: Order, gateway_order_id: str, payment_id: str) -> str | None:
    """
    Compare the gateway's record of the payment with the stored order.

    Returns the payment method reported by the gateway.
    """
    try:
        payment = gateway.fetch_payment(payment_id)
    except PaymentGatewayError as exc:
        logger.error("Could not fetch payment for cross-check",
                     extra={"order_id": order.id, "payment_id": payment_id, "error": str(exc)})
        raise UpstreamError("Unable to confirm payment with the gateway. Please retry.") from exc

    expected_amount = to_minor_units(order.total)
    if payment.order_id and payment.order_id != gateway_order_id:
        raise PaymentVerificationError(f"payment belongs to gateway order {payment.order_id}")
    if payment.amount != expected_amount:
        raise PaymentVerificationError(f"amount mismatch: paid {payment.amount}, expected {expected_amount}")
    if payment.currency != order.currency:
        raise PaymentVerificationError(f"currency mismatch: paid {payment.currency}, expected {order.currency}")
    if payment.status not in SETTLED_PAYMENT_STATES:
        raise PaymentVerificationError(f"payment status is {payment.status}")
    return payment.method


def verify_payment(order_id: int, gateway_order_id: str, payment_id: str, signature: str) -> tuple[Order, bool]:
    """
    Confirm an order from the gateway's payment callback.

    Returns (order, newly_confirmed). newly_confirmed is False for an
    idempotent replay of an already-recorded payment.

    A payment for an order that was cancelled meanwhile is still recorded
    (payment_status paid, status stays cancelled, no stock movement) and
    the store admin is told a refund is due.

    Raises:
        PaymentVerificationError: bad signature, wrong gateway order,
            amount/currency mismatch (nothing is written)
        NotFoundError: unknown order
        ConflictError: order already paid by a different payment
        InvalidTransitionError: order status cannot move to confirmed
        UpstreamError: gateway unreachable during the amount cross-check
    """
    try:
        if not gateway.verify_signature(gateway_order_id, payment_id, signature):
            raise PaymentVerificationError("signature mismatch")

        order = _get_order(order_id)
        if order.razorpay_order_id != gateway_order_id:
            raise PaymentVerificationError("gateway order id does not match order")

        if order.payment_status == "paid":
            if order.razorpay_payment_id == payment_id:
                return order, False
            raise ConflictError("Order has already been paid")

        if order.status != "cancelled":
            lifecycle_service.require_order_transition(order.status, "confirmed")

        method = "razorpay"
        if current_app.config.get("PAYMENT_VERIFY_AMOUNT", True):
            method = _cross_check_payment(order, gateway_order_id, payment_id) or method
    except PaymentVerificationError as exc:
        logger.warning(
            "Payment verification rejected",
            extra={"order_id": order_id, "gateway_order_id": gateway_order_id,
                   "payment_id": payment_id, "reason": exc.reason},
        )
        raise

    def _apply() -> tuple[Order, str]:
        with transaction():
            locked = _get_order(order_id, for_update=True)
            if locked.payment_status == "paid":
                # A concurrent callback won the race
                if locked.razorpay_payment_id == payment_id:
                    return locked, PAYMENT_REPLAYED
                raise ConflictError("Order has already been paid")

            locked.payment_status = "paid"
            locked.razorpay_payment_id = payment_id
            locked.payment_method = method
            locked.updated_at = utcnow()

            if locked.status == "cancelled":
                # Money was captured for an order nobody will ship: keep it
                # cancelled, leave stock alone, flag the refund.
                timeline_service.append(
                    locked,
                    timeline_service.TYPE_PAYMENT,
                    "Payment Received After Cancellation",
                    "Payment captured for a cancelled order; refund required",
                    {"payment_id": payment_id, "amount": money_str(locked.total), "method": method,
                     "refund_required": True},
                )
                return locked, PAYMENT_REFUND_REQUIRED

            lifecycle_service.require_order_transition(locked.status, "confirmed")
            locked.status = "confirmed"
            timeline_service.append(
                locked,
                timeline_service.TYPE_PAYMENT,
                "Payment Confirmed",
                "Payment received via Razorpay",
                {"payment_id": payment_id, "amount": money_str(locked.total), "method": method},
            )
            inventory_service.decrement_for_order(locked)
            return locked, PAYMENT_CONFIRMED

    order, outcome = run_with_retry(_apply)

    if outcome == PAYMENT_CONFIRMED:
        logger.info("Payment confirmed",
                    extra={"order_id": order.id, "order_number": order.order_number, "payment_id": payment_id})
        _notify_payment_confirmed(order)
    elif outcome == PAYMENT_REFUND_REQUIRED:
        logger.warning("Payment recorded on cancelled order; refund required",
                       extra={"order_id": order.id, "order_number": order.order_number, "payment_id": payment_id})
        _notify_refund_required(order)
    return order, outcome != PAYMENT_REPLAYED

def _email_items(order: Order) -> list[email_service.EmailLineItem]:
    return [
        email_service.EmailLineItem(
            name=item.name, quantity=item.quantity, price=item.price, size=item.size, color=item.color,
        )
        for item in order.items
    ]


def _notify_payment_confirmed(order: Order) -> None:
    customer_email = order.customer_email
    if customer_email:
        notify(
            "order_confirmation",
            email_service.send_order_confirmation,
            email_service.OrderConfirmationEmail(
                customer_email=customer_email,
                customer_name=order.customer_name,
                order_number=order.order_number,
                items=_email_items(order),
                subtotal=order.subtotal,
                shipping_cost=order.shipping_cost,
                discount=order.discount,
                total=order.total,
                shipping_address=dict(order.shipping_address or {}),
                currency=order.currency,
            ),
        )

    admin_email = settings_service.get_store_settings().email
    if admin_email:
        notify(
            "new_order_admin",
            email_service.send_new_order_admin,
            email_service.NewOrderAdminEmail(
                admin_email=admin_email,
                order_number=order.order_number,
                customer_name=order.customer_name,
                customer_email=customer_email or "",
                total=order.total,
                item_count=len(order.items),
                currency=order.currency,
            ),
        )


def _notify_refund_required(order: Order) -> None:
    admin_email = settings_service.get_store_settings().email
    if not admin_email:
        return
    notify(
        "refund_required_admin",
        email_service.send_refund_required_admin,
        email_service.RefundRequiredAdminEmail(
            admin_email=admin_email,
            order_number=order.order_number,
            payment_id=order.razorpay_payment_id,
            total=order.total,
            currency=order.currency,
        ),
    )


# =============================================================================
# FULFILMENT STATUS (ADMIN)
# =============================================================================

def _apply_status(order: Order, status: str, *, tracking_number: str | None = None,
                  tracking_url: str | None = None) -> str:
    """Set status, tracking and first-time timestamps. Returns the previous status."""
    previous = order.status
    now = utcnow()
    order.status = status
    if tracking_number:
        order.tracking_number = tracking_number
    if tracking_url:
        order.tracking_url = tracking_url
    if status == "shipped" and order.shipped_at is None:
        order.shipped_at = now
    if status == "delivered" and order.delivered_at is None:
        order.delivered_at = now
    order.updated_at = now
    return previous


def _notify_status(order: Order) -> None:
    customer_email = order.customer_email
    if not customer_email or order.status not in NOTIFY_ON_STATUS:
        return
    if order.status == "shipped":
        notify(
            "order_shipped",
            email_service.send_shipping_update,
            email_service.ShippingUpdateEmail(
                customer_email=customer_email,
                customer_name=order.customer_name,
                order_number=order.order_number,
                tracking_number=order.tracking_number,
                tracking_url=order.tracking_url,
            ),
        )
        return
    payload = email_service.OrderStatusEmail(
        customer_email=customer_email,
        customer_name=order.customer_name,
        order_number=order.order_number,
    )
    if order.status == "delivered":
        notify("order_delivered", email_service.send_order_delivered, payload)
    else:
        notify("order_cancelled", email_service.send_order_cancelled, payload)


def update_status(
    order_id: int,
    status: str,
    *,
    admin_user_id: int | None = None,
    tracking_number: str | None = None,
    tracking_url: str | None = None,
    notify_customer: bool = False,
) -> Order:
    """
    Move an order to `status` (validated against the transition table).

    Re-applying the current status is allowed: timestamps are left alone and
    one timeline entry is still recorded.
    """
    lifecycle_service.validate_order_status(status)
    tracking_number = _optional_str(tracking_number)
    tracking_url = _optional_str(tracking_url)

    def _apply() -> Order:
        with transaction():
            order = _get_order(order_id, for_update=True)
            lifecycle_service.require_order_transition(order.status, status)
            previous = _apply_status(order, status, tracking_number=tracking_number, tracking_url=tracking_url)
            timeline_service.append(
                order,
                timeline_service.TYPE_STATUS_CHANGE,
                timeline_service.ORDER_STATUS_TITLES.get(status, "Status Updated"),
                f"Order status changed from {previous} to {status}",
                {"old_status": previous, "new_status": status, "tracking_number": tracking_number},
                created_by=admin_user_id,
            )
            return order

    order = run_with_retry(_apply)
    logger.info("Order status updated", extra={"order_id": order.id, "status": status})

    if notify_customer:
        _notify_status(order)
    return order


def bulk_update_status(order_ids: list[int], status: str, *, admin_user_id: int | None = None) -> int:
    """
    Apply one status to many orders. All transitions are validated first;
    either every order changes or none does.
    """
    lifecycle_service.validate_order_status(status)
    ids = sorted({int(i) for i in order_ids})
    if not ids:
        raise InvalidRequestError("No orders selected")

    def _apply() -> int:
        with transaction():
            orders = lock_for_update(db.session.query(Order).filter(Order.id.in_(ids))).all()
            found = {o.id for o in orders}
            missing = [i for i in ids if i not in found]
            if missing:
                raise NotFoundError(f"Orders not found: {', '.join(str(i) for i in missing)}")
            for order in orders:
                lifecycle_service.require_order_transition(order.status, status)
            for order in orders:
                previous = _apply_status(order, status)
                timeline_service.append(
                    order,
                    timeline_service.TYPE_STATUS_CHANGE,
                    "Bulk Status Update",
                    f"Status changed from {previous} to {status}",
                    {"old_status": previous, "new_status": status, "bulk_update": True},
                    created_by=admin_user_id,
                )
            return len(orders)

    return run_with_retry(_apply)


def append_admin_note(existing: str | None, note: str) -> str:
    """Append `[ISO timestamp] note` on a new line."""
    stamped = f"[{utcnow().isoformat(timespec='milliseconds')}Z] {note}"
    return f"{existing}\n{stamped}" if existing else stamped


def add_note(order_id: int, note: str, *, is_public: bool = False, admin_user_id: int | None = None) -> Order:
    note = _optional_str(note)
    if not note:
        raise InvalidRequestError("note is required")

    def _apply() -> Order:
        with transaction():
            order = _get_order(order_id, for_update=True)
            timeline_service.append(
                order,
                timeline_service.TYPE_NOTE,
                "Note Added" if is_public else "Internal Note",
                note,
                is_public=is_public,
                created_by=admin_user_id,
            )
            if not is_public:
                order.admin_notes = append_admin_note(order.admin_notes, note)
                order.updated_at = utcnow()
            return order

    return run_with_retry(_apply)


def update_tracking(
    order_id: int,
    tracking_number: str,
    *,
    tracking_url: str | None = None,
    carrier: str | None = None,
    notify_customer: bool = True,
    admin_user_id: int | None = None,
) -> Order:
    tracking_number = _optional_str(tracking_number)
    if not tracking_number:
        raise InvalidRequestError("tracking_number is required")
    tracking_url = _optional_str(tracking_url)
    carrier = _optional_str(carrier)

    def _apply() -> Order:
        with transaction():
            order = _get_order(order_id, for_update=True)
            order.tracking_number = tracking_number
            order.tracking_url = tracking_url
            order.updated_at = utcnow()
            timeline_service.append(
                order,
                timeline_service.TYPE_NOTE,
                "Tracking Updated",
                f"Tracking number: {tracking_number}" + (f" ({carrier})" if carrier else ""),
                {"tracking_number": tracking_number, "tracking_url": tracking_url, "carrier": carrier},
                created_by=admin_user_id,
            )
            return order

    order = run_with_retry(_apply)
    if notify_customer and order.customer_email:
        notify(
            "order_shipped",
            email_service.send_shipping_update,
            email_service.ShippingUpdateEmail(
                customer_email=order.customer_email,
                customer_name=order.customer_name,
                order_number=order.order_number,
                tracking_number=order.tracking_number,
                tracking_url=order.tracking_url,
            ),
        )
    return order


# =============================================================================
# READS
# =============================================================================

def page_args(page, limit, *, default_limit: int, max_limit: int) -> tuple[int, int]:
    page = _optional_int(page, "page") or 1
    limit = _optional_int(limit, "limit") or default_limit
    if page < 1:
        raise InvalidRequestError("page must be at least 1")
    if not 1 <= limit <= max_limit:
        raise InvalidRequestError(f"limit must be between 1 and {max_limit}")
    return page, limit


def lookup_guest_order(order_number: str, email: str, *, ip_address: str | None = None,
                       user_agent: str | None = None) -> Order:
    """
    Guest order by (order number, email). Both must match.

    Failed lookups are recorded and throttled per email and per client IP.
    """
    order_number = _optional_str(order_number)
    email = normalize_email(email)
    if not order_number or not email:
        raise InvalidRequestError("order_number and email are required")

    throttle_service.ensure_not_locked(throttle_service.GUEST_LOOKUP_FAILED, email, ip_address)

    order = db.session.query(Order).filter(
        Order.order_number == order_number,
        Order.user_id.is_(None),
        func.lower(Order.guest_email) == email,
    ).first()

    if not order:
        throttle_service.record_attempt(
            throttle_service.GUEST_LOOKUP_FAILED,
            email,
            success=False,
            resource="/api/orders/guest/lookup",
            ip_address=ip_address,
            user_agent=user_agent,
            reason="No guest order for number/email",
        )
        raise NotFoundError("Order not found. Please check your order number and email.")
    return order


def get_my_orders(user_id: int, page=1, limit=10) -> list[Order]:
    page, limit = page_args(page, limit, default_limit=10, max_limit=50)
    return (
        db.session.query(Order)
        .filter(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )


def get_order_for_user(order_id: int, user_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id, user_id=user_id).first()
    if not order:
        raise NotFoundError("Order not found")
    return order


def admin_list(page=1, limit=20, status: str | None = None) -> list[Order]:
    page, limit = page_args(page, limit, default_limit=20, max_limit=100)
    query = db.session.query(Order)
    if status:
        lifecycle_service.validate_order_status(status)
        query = query.filter(Order.status == status)
    return (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )


def admin_get(order_id: int) -> Order:
    return _get_order(order_id)


def timeline_entries(order_id: int) -> list[OrderTimeline]:
    return (
        db.session.query(OrderTimeline)
        .filter(OrderTimeline.order_id == order_id)
        .order_by(OrderTimeline.id)
        .all()
    )
