# Overview: Append-only order timeline entries; callers commit with their own change.

from __future__ import annotations

from ..extensions import db
from ..models import Order, OrderTimeline
from storefront.time_utils import utcnow

TYPE_STATUS_CHANGE = "status_change"
TYPE_PAYMENT = "payment"
TYPE_NOTE = "note"

ORDER_STATUS_TITLES = {
    "pending": "Order Pending",
    "confirmed": "Order Confirmed",
    "processing": "Processing Order",
    "shipped": "Order Shipped",
    "delivered": "Order Delivered",
    "cancelled": "Order Cancelled",
}

RETURN_STATUS_TITLES = {
    "requested": "Return Requested",
    "approved": "Return Approved",
    "rejected": "Return Rejected",
    "shipped": "Return Items Shipped",
    "received": "Return Items Received",
    "refunded": "Refund Processed",
    "completed": "Return Completed",
}


def append(
    order: Order,
    type: str,
    title: str,
    description: str | None = None,
    metadata: dict | None = None,
    *,
    is_public: bool = True,
    created_by: int | None = None,
) -> OrderTimeline:
    """
    Stage one timeline entry for `order`.

    Does NOT commit: the entry must land in the same transaction as the
    change it describes.
    """
    entry = OrderTimeline(
        order=order,
        type=type,
        title=title,
        description=description,
        details={k: v for k, v in (metadata or {}).items() if v is not None} or None,
        is_public=is_public,
        created_by=created_by,
        created_at=utcnow(),
    )
    db.session.add(entry)
    return entry


def count_for_order(order_id: int, type: str | None = None) -> int:
    query = db.session.query(OrderTimeline).filter(OrderTimeline.order_id == order_id)
    if type is not None:
        query = query.filter(OrderTimeline.type == type)
    return query.count()
