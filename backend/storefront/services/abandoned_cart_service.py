# Overview: Abandoned cart capture, recovery tokens and the cron-driven recovery email batch.

"""
Abandoned Cart Recovery Service

WHY: A shopper who leaves checkout can be brought back with an email that
links to a snapshot of their cart. This runs beside the order workflow,
mostly from a cron job, never from the customer's own request path.

RULES:
- One live (unrecovered) record per email: capture updates it in place and
  pushes expiry out ABANDONED_CART_TTL_DAYS from now. The partial unique
  index settles concurrent captures; the loser retries as an update.
- Snapshot pricing: variant price > product sale price > product base price
- recover(token) is read-only and repeatable until mark_recovered(token)
- The batch marks a cart as emailed only AFTER a successful send, so a
  crash mid-batch just re-sends to the same eligible set next run
- Per-recipient failures are collected; the batch never stops early and
  never retries within a run
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import AbandonedCart, Cart, User
from ..money import money_str, to_decimal
from . import email_service
from .auth_service import normalize_email, validate_email
from .errors import ConflictError, InvalidRequestError, NotFoundError, UpstreamError
from .identifier_service import generate_recovery_token
from .notification_service import NOTIFICATIONS_TOTAL, OUTCOME_ERROR, OUTCOME_FAILED, OUTCOME_SENT
from .order_service import page_args
from storefront.time_utils import utcnow

logger = logging.getLogger(__name__)

MIN_HOURS_THRESHOLD = 1
MAX_HOURS_THRESHOLD = 72
MAX_BATCH_LIMIT = 50
UPSERT_ATTEMPTS = 3


@dataclass
class ProcessResult:
    processed: int = 0
    sent: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {"success": True, "processed": self.processed, "sent": self.sent}
        if self.errors:
            data["errors"] = self.errors
        return data


def _ttl() -> timedelta:
    return timedelta(days=int(current_app.config.get("ABANDONED_CART_TTL_DAYS", 7)))


def recovery_url(token: str) -> str:
    base = current_app.config.get("STORE_URL", "").rstrip("/")
    return f"{base}/cart/recover?token={token}"


# =============================================================================
# CAPTURE
# =============================================================================

def _parse_cart_data(raw) -> list[dict]:
    if not isinstance(raw, list) or not raw:
        raise InvalidRequestError("cart_data must be a non-empty list")
    lines = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict) or not item.get("name"):
            raise InvalidRequestError(f"cart_data[{index}] needs a name")
        try:
            price = to_decimal(item.get("price"), field=f"cart_data[{index}].price")
            quantity = int(item.get("quantity"))
        except (TypeError, ValueError) as exc:
            raise InvalidRequestError(str(exc) or f"cart_data[{index}] is invalid") from None
        if price < 0 or quantity < 1:
            raise InvalidRequestError(f"cart_data[{index}] has an invalid price or quantity")
        lines.append({
            "product_id": item.get("product_id"),
            "variant_id": item.get("variant_id"),
            "name": str(item["name"]),
            "price": money_str(price),
            "quantity": quantity,
            "image": item.get("image"),
            "size": item.get("size"),
            "color": item.get("color"),
        })
    return lines


def _snapshot_total(lines: list[dict]) -> Decimal:
    return sum((Decimal(line["price"]) * line["quantity"] for line in lines), Decimal("0.00"))


def upsert(email: str, cart_data: list[dict], total_value: Decimal, user_id: int | None = None) -> AbandonedCart:
    """
    Create or refresh the single live record for `email`.

    Every call resets expiry; the recovery token is kept for an existing
    record so links already emailed stay valid.
    """
    email = normalize_email(email)
    for _ in range(UPSERT_ATTEMPTS):
        existing = db.session.query(AbandonedCart).filter(
            AbandonedCart.email == email,
            AbandonedCart.recovered.is_(False),
        ).first()
        now = utcnow()

        if existing is not None:
            existing.cart_data = cart_data
            existing.total_value = total_value
            if user_id is not None:
                existing.user_id = user_id
            existing.expires_at = now + _ttl()
            db.session.commit()
            return existing

        cart = AbandonedCart(
            email=email,
            user_id=user_id,
            cart_data=cart_data,
            total_value=total_value,
            recovery_token=generate_recovery_token(),
            expires_at=now + _ttl(),
            created_at=now,
        )
        db.session.add(cart)
        try:
            db.session.commit()
            return cart
        except IntegrityError:
            # A concurrent capture inserted first; update that row instead
            db.session.rollback()
    raise ConflictError("Could not save abandoned cart, please retry")


def capture(email: str, cart_data, total_value=None, user_id: int | None = None) -> AbandonedCart:
    """Admin/cron capture from an explicit snapshot."""
    email = validate_email(email)
    lines = _parse_cart_data(cart_data)
    if total_value is None:
        total = _snapshot_total(lines)
    else:
        try:
            total = to_decimal(total_value, field="total_value")
        except ValueError as exc:
            raise InvalidRequestError(str(exc)) from None
    if user_id is not None and db.session.get(User, user_id) is None:
        raise NotFoundError("User not found")
    return upsert(email, lines, total, user_id=user_id)


def _line_price(item) -> Decimal:
    if item.variant is not None and item.variant.price is not None:
        return Decimal(item.variant.price)
    if item.product.sale_price is not None:
        return Decimal(item.product.sale_price)
    return Decimal(item.product.base_price)


def capture_my_cart(user_id: int | None, email: str) -> dict:
    """
    Snapshot the signed-in customer's server-side cart.

    Guests have no server-side cart, so nothing is captured for them.
    """
    email = validate_email(email)
    if user_id is None:
        return {"success": False, "message": "Guest carts not supported yet"}

    cart = db.session.query(Cart).filter_by(user_id=user_id).first()
    if cart is None or not cart.items:
        return {"success": False, "message": "Cart is empty"}

    lines = []
    for item in cart.items:
        price = _line_price(item)
        lines.append({
            "product_id": item.product_id,
            "variant_id": item.variant_id,
            "name": item.product.name,
            "price": money_str(price),
            "quantity": item.quantity,
            "image": item.product.image_url,
            "size": item.variant.size if item.variant is not None else None,
            "color": item.variant.color if item.variant is not None else None,
        })

    record = upsert(email, lines, _snapshot_total(lines), user_id=user_id)
    return {"success": True, "id": record.id}


# =============================================================================
# RECOVERY
# =============================================================================

def _by_token(token: str) -> AbandonedCart | None:
    if not token:
        return None
    return db.session.query(AbandonedCart).filter_by(recovery_token=token).first()


def recover(token: str) -> AbandonedCart:
    """
    Look up a cart by recovery token. Repeatable; does not consume the token.

    Checked in order: unknown token, expired, already recovered.
    """
    cart = _by_token(token)
    if cart is None:
        raise NotFoundError("Invalid or expired recovery link")
    if cart.expires_at < utcnow():
        raise InvalidRequestError("This recovery link has expired")
    if cart.recovered:
        raise InvalidRequestError("This cart has already been recovered")
    return cart


def mark_recovered(token: str) -> AbandonedCart:
    cart = _by_token(token)
    if cart is None:
        raise NotFoundError("Recovery token not found")
    if cart.recovered:
        raise InvalidRequestError("This cart has already been recovered")
    cart.recovered = True
    cart.recovered_at = utcnow()
    db.session.commit()
    logger.info("Abandoned cart recovered", extra={"abandoned_cart_id": cart.id})
    return cart


# =============================================================================
# RECOVERY EMAILS
# =============================================================================

def _email_payload(cart: AbandonedCart) -> email_service.AbandonedCartEmail:
    items = [
        email_service.EmailLineItem(
            name=line.get("name", "Item"),
            quantity=int(line.get("quantity", 1)),
            price=Decimal(str(line.get("price", "0"))),
            size=line.get("size"),
            color=line.get("color"),
        )
        for line in (cart.cart_data or [])
    ]
    return email_service.AbandonedCartEmail(
        customer_email=cart.email,
        customer_name=(cart.user.name if cart.user is not None else None) or "Valued Customer",
        items=items,
        total_value=cart.total_value,
        recovery_url=recovery_url(cart.recovery_token),
    )


def _mark_emailed(cart: AbandonedCart) -> None:
    cart.recovery_email_sent = True
    cart.recovery_email_sent_at = utcnow()
    db.session.commit()


def _bounded(value, default: int, low: int, high: int, name: str) -> int:
    if value is None or value == "":
        return default
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"{name} must be an integer") from None
    if not low <= value <= high:
        raise InvalidRequestError(f"{name} must be between {low} and {high}")
    return value


def eligible_carts(hours_threshold: int, limit: int) -> list[AbandonedCart]:
    now = utcnow()
    return (
        db.session.query(AbandonedCart)
        .filter(
            AbandonedCart.created_at < now - timedelta(hours=hours_threshold),
            AbandonedCart.recovery_email_sent.is_(False),
            AbandonedCart.recovered.is_(False),
            AbandonedCart.expires_at > now,
        )
        .order_by(AbandonedCart.created_at, AbandonedCart.id)
        .limit(limit)
        .all()
    )


def process_abandoned_carts(hours_threshold=None, limit=None) -> ProcessResult:
    """
    Send recovery emails to eligible carts, oldest first, up to `limit`.

    Sends synchronously: the emailed flag depends on the send result.
    """
    hours_threshold = _bounded(
        hours_threshold, int(current_app.config.get("ABANDONED_CART_HOURS", 1)),
        MIN_HOURS_THRESHOLD, MAX_HOURS_THRESHOLD, "hours_threshold",
    )
    limit = _bounded(
        limit, int(current_app.config.get("ABANDONED_CART_BATCH_SIZE", 10)),
        1, MAX_BATCH_LIMIT, "limit",
    )

    result = ProcessResult()
    for cart in eligible_carts(hours_threshold, limit):
        result.processed += 1
        try:
            sent = email_service.send_abandoned_cart(_email_payload(cart))
        except Exception as exc:
            NOTIFICATIONS_TOTAL.labels(event="abandoned_cart", outcome=OUTCOME_ERROR).inc()
            logger.exception("Recovery email raised", extra={"abandoned_cart_id": cart.id})
            result.errors.append(f"Error sending to {cart.email}: {exc}")
            continue

        if sent.success:
            NOTIFICATIONS_TOTAL.labels(event="abandoned_cart", outcome=OUTCOME_SENT).inc()
            _mark_emailed(cart)
            result.sent += 1
        else:
            NOTIFICATIONS_TOTAL.labels(event="abandoned_cart", outcome=OUTCOME_FAILED).inc()
            logger.warning("Recovery email failed",
                           extra={"abandoned_cart_id": cart.id, "error": sent.error})
            result.errors.append(f"Failed to send to {cart.email}")

    logger.info("Abandoned cart batch finished",
                extra={"processed": result.processed, "sent": result.sent, "failed": len(result.errors)})
    return result


def send_recovery_email(cart_id: int) -> AbandonedCart:
    """Admin: send (or re-send) the recovery email for one cart now."""
    cart = db.session.get(AbandonedCart, cart_id)
    if cart is None:
        raise NotFoundError("Abandoned cart not found")
    if cart.recovered:
        raise InvalidRequestError("Cart has already been recovered")

    sent = email_service.send_abandoned_cart(_email_payload(cart))
    if not sent.success:
        NOTIFICATIONS_TOTAL.labels(event="abandoned_cart", outcome=OUTCOME_FAILED).inc()
        logger.warning("Recovery email failed", extra={"abandoned_cart_id": cart.id, "error": sent.error})
        raise UpstreamError("Failed to send recovery email")

    NOTIFICATIONS_TOTAL.labels(event="abandoned_cart", outcome=OUTCOME_SENT).inc()
    _mark_emailed(cart)
    return cart


def cleanup_expired() -> int:
    """Delete every cart past its expiry. Returns rows deleted."""
    deleted = db.session.query(AbandonedCart).filter(
        AbandonedCart.expires_at < utcnow()
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted


# =============================================================================
# ADMIN READS
# =============================================================================

def admin_list(page=1, limit=20, recovered: bool | None = None, email_sent: bool | None = None) -> list[AbandonedCart]:
    page, limit = page_args(page, limit, default_limit=20, max_limit=100)
    query = db.session.query(AbandonedCart)
    if recovered is not None:
        query = query.filter(AbandonedCart.recovered.is_(recovered))
    if email_sent is not None:
        query = query.filter(AbandonedCart.recovery_email_sent.is_(email_sent))
    return (
        query.order_by(AbandonedCart.created_at.desc(), AbandonedCart.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )


def stats() -> dict:
    total = db.session.query(func.count(AbandonedCart.id)).scalar() or 0
    recovered = db.session.query(func.count(AbandonedCart.id)).filter(AbandonedCart.recovered.is_(True)).scalar() or 0
    emails_sent = db.session.query(func.count(AbandonedCart.id)).filter(
        AbandonedCart.recovery_email_sent.is_(True)
    ).scalar() or 0
    pending_emails = db.session.query(func.count(AbandonedCart.id)).filter(
        AbandonedCart.recovery_email_sent.is_(False),
        AbandonedCart.recovered.is_(False),
    ).scalar() or 0
    total_value = db.session.query(func.coalesce(func.sum(AbandonedCart.total_value), 0)).scalar()
    recovered_value = db.session.query(func.coalesce(func.sum(AbandonedCart.total_value), 0)).filter(
        AbandonedCart.recovered.is_(True)
    ).scalar()

    return {
        "total": total,
        "recovered": recovered,
        "recovery_rate": f"{(recovered / total * 100):.1f}" if total else "0",
        "emails_sent": emails_sent,
        "pending_emails": pending_emails,
        "total_value": money_str(Decimal(str(total_value))),
        "recovered_value": money_str(Decimal(str(recovered_value))),
    }
