"""
Return Processing Service

WHY: Customers may return items from a delivered order. A return is its own
small state machine, but its audit trail is the ORDER's timeline, so the
order history shows the whole story in one place.

DESIGN PRINCIPLES:
- Only the order's owner may open a return, and only on a delivered order
- Claimed items must belong to the order, within the ordered quantity
- At most one non-completed return per (order, user), rejected included;
  the partial unique index decides races, IntegrityError -> ConflictError
- Transitions validated against lifecycle_service.RETURN_TRANSITIONS
- Admin notes are appended with a timestamp, never overwritten
- approved_at / approved_by and completed_at are stamped on first entry only
- Every create / status change writes one order timeline entry in the same
  transaction; customer emails go out after commit (fire-and-forget)

LIFECYCLE:
    requested -> approved | rejected
    approved  -> shipped | received | rejected
    shipped   -> received
    received  -> refunded | completed
    refunded  -> completed
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderReturn, User
from ..models.returns import RETURN_CLOSED_STATUS
from ..money import to_decimal
from . import email_service, lifecycle_service, timeline_service
from .concurrency import lock_for_update, run_with_retry, transaction
from .errors import ConflictError, InvalidRequestError, NotFoundError
from .identifier_service import generate_return_number
from .notification_service import notify
from .order_service import append_admin_note, page_args
from storefront.time_utils import utcnow

logger = logging.getLogger(__name__)

REASON_LABELS = {
    "defective": "Product is defective",
    "wrong_item": "Wrong item received",
    "not_as_described": "Item not as described",
    "changed_mind": "Changed my mind",
    "size_issue": "Size doesn't fit",
    "other": "Other reason",
}

# Statuses the customer is emailed about
NOTIFY_ON_STATUS = {"approved", "rejected", "refunded"}
APPROVED_INSTRUCTIONS = (
    "Please ship your return items to our warehouse. "
    "You will receive a refund once we receive and inspect the items."
)

DUPLICATE_MESSAGE = "A return request already exists for this order"


# =============================================================================
# RETURN CREATION
# =============================================================================

def _parse_claims(raw_items, order: Order) -> list[dict]:
    if not isinstance(raw_items, list) or not raw_items:
        raise InvalidRequestError("Select at least one item to return")

    order_items = {item.id: item for item in order.items}
    claimed: dict[int, int] = {}
    claims = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise InvalidRequestError(f"items[{index}] must be an object")
        try:
            item_id = int(raw.get("order_item_id"))
            quantity = int(raw.get("quantity"))
        except (TypeError, ValueError):
            raise InvalidRequestError(f"items[{index}] needs order_item_id and quantity") from None

        order_item = order_items.get(item_id)
        if order_item is None:
            raise InvalidRequestError(f"Item {item_id} is not part of this order")
        if quantity < 1:
            raise InvalidRequestError("Return quantity must be at least 1")

        claimed[item_id] = claimed.get(item_id, 0) + quantity
        if claimed[item_id] > order_item.quantity:
            raise InvalidRequestError(
                f"Cannot return {claimed[item_id]} of {order_item.name}; only {order_item.quantity} ordered"
            )
        reason = raw.get("reason")
        claims.append({
            "order_item_id": item_id,
            "quantity": quantity,
            "reason": str(reason).strip() if reason else None,
        })
    return claims


def _open_return_exists(order_id: int, user_id: int) -> bool:
    return db.session.query(OrderReturn.id).filter(
        OrderReturn.order_id == order_id,
        OrderReturn.user_id == user_id,
        OrderReturn.status != RETURN_CLOSED_STATUS,
    ).first() is not None


def create_return(
    user_id: int,
    order_id: int,
    reason: str,
    items: list,
    reason_details: str | None = None,
    customer_notes: str | None = None,
) -> OrderReturn:
    """
    Open a return request (status: requested) on a delivered order.

    Raises:
        NotFoundError: order absent or not owned by the caller
        InvalidRequestError: order not delivered, bad reason or item claims
        ConflictError: an open return already exists for this order
    """
    if reason not in lifecycle_service.RETURN_REASONS:
        raise InvalidRequestError(
            f"Invalid reason. Must be one of: {', '.join(lifecycle_service.RETURN_REASONS)}"
        )

    order = db.session.query(Order).filter_by(id=order_id, user_id=user_id).first()
    if not order:
        raise NotFoundError("Order not found")
    if order.status != "delivered":
        raise InvalidRequestError("Returns can only be requested for delivered orders")

    claims = _parse_claims(items, order)

    if _open_return_exists(order.id, user_id):
        raise ConflictError(DUPLICATE_MESSAGE)

    try:
        with transaction():
            return_doc = OrderReturn(
                return_number=generate_return_number(),
                order_id=order.id,
                user_id=user_id,
                reason=reason,
                reason_details=(reason_details or "").strip() or None,
                items=claims,
                status="requested",
                customer_notes=(customer_notes or "").strip() or None,
                created_at=utcnow(),
            )
            db.session.add(return_doc)
            db.session.flush()
            timeline_service.append(
                order,
                timeline_service.TYPE_NOTE,
                "Return Requested",
                f"Return request {return_doc.return_number} submitted",
                {"return_id": return_doc.id, "reason": reason},
                created_by=user_id,
            )
    except IntegrityError as exc:
        # Concurrent request won the partial unique index (or a number collision)
        logger.info("Return insert rejected by unique index", extra={"order_id": order_id, "user_id": user_id})
        raise ConflictError(DUPLICATE_MESSAGE) from exc

    user = db.session.get(User, user_id)
    if user is not None and user.email:
        names = {item.id: item.name for item in order.items}
        notify(
            "return_requested",
            email_service.send_return_requested,
            email_service.ReturnEmail(
                customer_email=user.email,
                customer_name=user.name or "Customer",
                return_number=return_doc.return_number,
                order_number=order.order_number,
                reason=REASON_LABELS.get(reason, reason),
                items=[(names.get(c["order_item_id"], "Unknown Product"), c["quantity"]) for c in claims],
            ),
        )
    return return_doc


# =============================================================================
# STATUS UPDATES (ADMIN)
# =============================================================================

def _get_return(return_id: int, *, for_update: bool = False) -> OrderReturn:
    query = db.session.query(OrderReturn).filter_by(id=return_id)
    if for_update:
        query = lock_for_update(query).populate_existing()
    return_doc = query.first()
    if not return_doc:
        raise NotFoundError("Return request not found")
    return return_doc


def _apply_status(return_doc: OrderReturn, status: str, admin_user_id: int | None) -> str:
    previous = return_doc.status
    now = utcnow()
    return_doc.status = status
    if status == "approved" and return_doc.approved_at is None:
        return_doc.approved_at = now
        return_doc.approved_by = admin_user_id
    if status == "completed" and return_doc.completed_at is None:
        return_doc.completed_at = now
    return_doc.updated_at = now
    return previous


def update_status(
    return_id: int,
    status: str,
    *,
    admin_user_id: int | None = None,
    refund_amount=None,
    refund_method: str | None = None,
    admin_notes: str | None = None,
) -> OrderReturn:
    """
    Move a return to `status`, validated against the transition table.

    refund_amount / refund_method are stored when supplied; the amount may
    not exceed the order total.
    """
    lifecycle_service.validate_return_status(status)
    amount = None
    if refund_amount is not None:
        try:
            amount = to_decimal(refund_amount, field="refund_amount")
        except ValueError as exc:
            raise InvalidRequestError(str(exc)) from None
        if amount < 0:
            raise InvalidRequestError("refund_amount cannot be negative")
    if refund_method is not None and refund_method not in lifecycle_service.REFUND_METHODS:
        raise InvalidRequestError(
            f"Invalid refund_method. Must be one of: {', '.join(lifecycle_service.REFUND_METHODS)}"
        )
    note = (admin_notes or "").strip() or None

    def _apply() -> tuple[OrderReturn, str]:
        with transaction():
            return_doc = _get_return(return_id, for_update=True)
            lifecycle_service.require_return_transition(return_doc.status, status)
            order = return_doc.order
            if amount is not None and amount > order.total:
                raise InvalidRequestError("refund_amount cannot exceed the order total")

            previous = _apply_status(return_doc, status, admin_user_id)
            if amount is not None:
                return_doc.refund_amount = amount
            if refund_method:
                return_doc.refund_method = refund_method
            if note:
                return_doc.admin_notes = append_admin_note(return_doc.admin_notes, note)

            timeline_service.append(
                order,
                timeline_service.TYPE_NOTE,
                timeline_service.RETURN_STATUS_TITLES.get(status, "Return Updated"),
                f"Return {return_doc.return_number} status: {status}",
                {
                    "return_id": return_doc.id,
                    "old_status": previous,
                    "new_status": status,
                    "refund_amount": str(amount) if amount is not None else None,
                },
                created_by=admin_user_id,
            )
            return return_doc, previous

    return_doc, previous = run_with_retry(_apply)
    logger.info("Return status updated",
                extra={"return_id": return_doc.id, "old_status": previous, "status": status})

    if status in NOTIFY_ON_STATUS and status != previous:
        _notify_status(return_doc, note)
    return return_doc


def _notify_status(return_doc: OrderReturn, note: str | None) -> None:
    user = return_doc.user
    if user is None or not user.email:
        return
    notify(
        "return_status",
        email_service.send_return_status_update,
        email_service.ReturnEmail(
            customer_email=user.email,
            customer_name=user.name or "Customer",
            return_number=return_doc.return_number,
            order_number=return_doc.order.order_number,
            status=return_doc.status,
            refund_amount=return_doc.refund_amount,
            admin_notes=note if return_doc.status == "rejected" else None,
            instructions=APPROVED_INSTRUCTIONS if return_doc.status == "approved" else None,
            currency=return_doc.order.currency,
        ),
    )


def bulk_update_status(return_ids: list[int], status: str, *, admin_user_id: int | None = None) -> int:
    """All-or-nothing status change; every transition is validated first."""
    lifecycle_service.validate_return_status(status)
    ids = sorted({int(i) for i in return_ids})
    if not ids:
        raise InvalidRequestError("No returns selected")

    def _apply() -> int:
        with transaction():
            returns = lock_for_update(
                db.session.query(OrderReturn).filter(OrderReturn.id.in_(ids))
            ).all()
            found = {r.id for r in returns}
            missing = [i for i in ids if i not in found]
            if missing:
                raise NotFoundError(f"Returns not found: {', '.join(str(i) for i in missing)}")
            for return_doc in returns:
                lifecycle_service.require_return_transition(return_doc.status, status)
            for return_doc in returns:
                previous = _apply_status(return_doc, status, admin_user_id)
                timeline_service.append(
                    return_doc.order,
                    timeline_service.TYPE_NOTE,
                    timeline_service.RETURN_STATUS_TITLES.get(status, "Return Updated"),
                    f"Return {return_doc.return_number} status: {status}",
                    {"return_id": return_doc.id, "old_status": previous, "new_status": status, "bulk_update": True},
                    created_by=admin_user_id,
                )
            return len(returns)

    return run_with_retry(_apply)


# =============================================================================
# READS
# =============================================================================

def get_my_returns(user_id: int) -> list[OrderReturn]:
    return (
        db.session.query(OrderReturn)
        .filter(OrderReturn.user_id == user_id)
        .order_by(OrderReturn.created_at.desc(), OrderReturn.id.desc())
        .all()
    )


def get_return_for_user(return_id: int, user_id: int) -> OrderReturn:
    return_doc = db.session.query(OrderReturn).filter_by(id=return_id, user_id=user_id).first()
    if not return_doc:
        raise NotFoundError("Return request not found")
    return return_doc


def admin_list(page=1, limit=20, status: str | None = None) -> list[OrderReturn]:
    page, limit = page_args(page, limit, default_limit=20, max_limit=100)
    query = db.session.query(OrderReturn)
    if status:
        lifecycle_service.validate_return_status(status)
        query = query.filter(OrderReturn.status == status)
    return (
        query.order_by(OrderReturn.created_at.desc(), OrderReturn.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )


def admin_get(return_id: int) -> OrderReturn:
    return _get_return(return_id)
