# Overview: Stock movements driven by the order workflow.

"""
Inventory Service

WHY: A paid order consumes stock. Stock is decremented once, inside the
same transaction that marks the order paid, so a retried or replayed
payment callback can never decrement twice.

RULES:
- Variant lines decrement the variant's stock; other lines the product's
- Stock is floored at zero; a shortfall is logged (oversold), not raised,
  because the customer has already paid
- Lines whose product/variant no longer exists are skipped with a warning
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..extensions import db
from ..models import Order, Product, ProductVariant
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


@dataclass
class StockMovement:
    order_item_id: int
    product_id: int | None
    variant_id: int | None
    requested: int
    applied: int
    remaining: int

    @property
    def shortfall(self) -> int:
        return self.requested - self.applied


def _stock_row(item):
    if item.variant_id is not None:
        return lock_for_update(db.session.query(ProductVariant).filter_by(id=item.variant_id)).first()
    if item.product_id is not None:
        return lock_for_update(db.session.query(Product).filter_by(id=item.product_id)).first()
    return None


def decrement_for_order(order: Order) -> list[StockMovement]:
    """
    Decrement stock for every line of `order`. Does NOT commit.
    """
    movements: list[StockMovement] = []
    for item in order.items:
        row = _stock_row(item)
        if row is None:
            logger.warning(
                "Stock row missing for order item",
                extra={"order_number": order.order_number, "order_item_id": item.id,
                       "product_id": item.product_id, "variant_id": item.variant_id},
            )
            continue

        current = row.stock or 0
        applied = min(current, item.quantity)
        row.stock = current - applied
        if applied < item.quantity:
            logger.warning(
                "Order oversold: stock floored at zero",
                extra={"order_number": order.order_number, "order_item_id": item.id,
                       "requested": item.quantity, "available": current},
            )

        movements.append(StockMovement(
            order_item_id=item.id,
            product_id=item.product_id,
            variant_id=item.variant_id,
            requested=item.quantity,
            applied=applied,
            remaining=row.stock,
        ))
    return movements
