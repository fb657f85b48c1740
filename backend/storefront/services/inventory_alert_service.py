# Overview: Low-stock alert thresholds and the low-stock email sweep.

"""
Inventory Alert Service

One alert row per (product, variant). An alert is PENDING when it has not
been sent and the tracked stock is at or below its threshold; variant-less
alerts track the product's own stock.

The sent flag is a latch: it stays set until an admin resets it or changes
the threshold, so a product sitting at low stock is only emailed once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InventoryAlert, Product, ProductVariant
from . import email_service
from .errors import ConflictError, InvalidRequestError, NotFoundError
from .notification_service import NOTIFICATIONS_TOTAL, OUTCOME_ERROR, OUTCOME_FAILED, OUTCOME_SENT
from .settings_service import get_store_settings
from storefront.time_utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 5
DUPLICATE_MESSAGE = "Alert already exists for this item"


@dataclass
class AlertRunResult:
    processed: int = 0
    sent: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"processed": self.processed, "sent": self.sent, "errors": self.errors}


def _threshold(value, default: int | None = DEFAULT_THRESHOLD) -> int:
    if value is None and default is not None:
        return default
    if isinstance(value, bool):
        raise InvalidRequestError("threshold must be a non-negative integer")
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise InvalidRequestError("threshold must be a non-negative integer") from None
    if value < 0:
        raise InvalidRequestError("threshold must be a non-negative integer")
    return value


def _get(alert_id: int) -> InventoryAlert:
    alert = db.session.get(InventoryAlert, alert_id)
    if alert is None:
        raise NotFoundError("Inventory alert not found")
    return alert


def is_pending(alert: InventoryAlert) -> bool:
    return not alert.alert_sent and alert.current_stock <= alert.threshold


def list_alerts() -> list[InventoryAlert]:
    return (
        db.session.query(InventoryAlert)
        .order_by(InventoryAlert.created_at.desc(), InventoryAlert.id.desc())
        .all()
    )


def get_pending() -> list[InventoryAlert]:
    unsent = (
        db.session.query(InventoryAlert)
        .filter(InventoryAlert.alert_sent.is_(False))
        .order_by(InventoryAlert.id)
        .all()
    )
    return [alert for alert in unsent if is_pending(alert)]


def create_alert(product_id: int, variant_id: int | None = None, threshold=None) -> InventoryAlert:
    threshold = _threshold(threshold)
    product = db.session.get(Product, product_id) if product_id is not None else None
    if product is None:
        raise NotFoundError("Product not found")
    if variant_id is not None:
        variant = db.session.get(ProductVariant, variant_id)
        if variant is None or variant.product_id != product.id:
            raise NotFoundError("Variant not found")

    query = db.session.query(InventoryAlert).filter(InventoryAlert.product_id == product.id)
    if variant_id is None:
        query = query.filter(InventoryAlert.variant_id.is_(None))
    else:
        query = query.filter(InventoryAlert.variant_id == variant_id)
    if query.first() is not None:
        raise ConflictError(DUPLICATE_MESSAGE)

    alert = InventoryAlert(product_id=product.id, variant_id=variant_id, threshold=threshold)
    db.session.add(alert)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(DUPLICATE_MESSAGE) from None
    return alert


def update_threshold(alert_id: int, threshold) -> InventoryAlert:
    """Change the threshold. Re-arms the alert."""
    alert = _get(alert_id)
    alert.threshold = _threshold(threshold, default=None)
    alert.alert_sent = False
    alert.alert_sent_at = None
    db.session.commit()
    return alert


def delete_alert(alert_id: int) -> None:
    db.session.delete(_get(alert_id))
    db.session.commit()


def mark_sent(alert_id: int) -> InventoryAlert:
    alert = _get(alert_id)
    alert.alert_sent = True
    alert.alert_sent_at = utcnow()
    db.session.commit()
    return alert


def reset(alert_id: int) -> InventoryAlert:
    alert = _get(alert_id)
    alert.alert_sent = False
    alert.alert_sent_at = None
    db.session.commit()
    return alert


def low_stock_variants(threshold=None) -> list[dict]:
    """Variants at or below `threshold`, flagged with whether an unsent alert covers them."""
    threshold = _threshold(threshold)
    variants = (
        db.session.query(ProductVariant)
        .filter(ProductVariant.stock <= threshold)
        .order_by(ProductVariant.stock, ProductVariant.id)
        .all()
    )
    armed = {
        (alert.product_id, alert.variant_id): alert
        for alert in db.session.query(InventoryAlert).filter(InventoryAlert.alert_sent.is_(False))
    }
    rows = []
    for variant in variants:
        alert = armed.get((variant.product_id, variant.id))
        rows.append({
            "variant_id": variant.id,
            "product_id": variant.product_id,
            "product_name": variant.product.name,
            "variant_name": variant.name,
            "sku": variant.sku,
            "stock": variant.stock,
            "has_alert": alert is not None,
            "alert": alert.to_dict() if alert is not None else None,
        })
    return rows


def bulk_create(threshold=None) -> int:
    """Create alerts for every low-stock variant that has none. Returns rows created."""
    threshold = _threshold(threshold)
    existing = {
        (product_id, variant_id)
        for product_id, variant_id in db.session.query(InventoryAlert.product_id, InventoryAlert.variant_id)
    }
    variants = db.session.query(ProductVariant).filter(ProductVariant.stock <= threshold).all()

    created = 0
    for variant in variants:
        if (variant.product_id, variant.id) in existing:
            continue
        db.session.add(InventoryAlert(product_id=variant.product_id, variant_id=variant.id, threshold=threshold))
        created += 1
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Alerts changed concurrently, please retry") from None
    return created


def process_alerts() -> AlertRunResult:
    """
    Email the store admin about every pending alert.

    Each alert is marked sent only after its email succeeds; failures are
    collected and the sweep continues.
    """
    admin_email = get_store_settings().email
    if not admin_email:
        raise InvalidRequestError("Store email is not configured")

    result = AlertRunResult()
    for alert in get_pending():
        result.processed += 1
        payload = email_service.LowStockEmail(
            admin_email=admin_email,
            product_name=alert.product.name,
            current_stock=alert.current_stock,
            threshold=alert.threshold,
            variant_name=alert.variant.name if alert.variant is not None else None,
            sku=(alert.variant.sku if alert.variant is not None else None) or alert.product.sku,
        )
        try:
            sent = email_service.send_low_stock_alert(payload)
        except Exception as exc:
            NOTIFICATIONS_TOTAL.labels(event="low_stock", outcome=OUTCOME_ERROR).inc()
            logger.exception("Low stock email raised", extra={"inventory_alert_id": alert.id})
            result.errors.append(f"Error sending alert {alert.id}: {exc}")
            continue

        if not sent.success:
            NOTIFICATIONS_TOTAL.labels(event="low_stock", outcome=OUTCOME_FAILED).inc()
            result.errors.append(f"Failed to send alert {alert.id}")
            continue

        NOTIFICATIONS_TOTAL.labels(event="low_stock", outcome=OUTCOME_SENT).inc()
        alert.alert_sent = True
        alert.alert_sent_at = utcnow()
        db.session.commit()
        result.sent += 1

    return result


def stats() -> dict:
    alerts = db.session.query(InventoryAlert).all()
    total = len(alerts)
    sent = sum(1 for alert in alerts if alert.alert_sent)
    return {
        "total": total,
        "sent": sent,
        "pending": sum(1 for alert in alerts if is_pending(alert)),
        "active": total - sent,
    }
