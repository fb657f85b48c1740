# Overview: Explicit status transition tables for orders and returns.

"""
Order and Return Lifecycle

================================================================================
PURPOSE: One place that says which status changes are legal
================================================================================

Every status write in order_service and return_service goes through
require_transition() BEFORE anything is persisted. Illegal moves raise
InvalidTransitionError and nothing is written.

ORDER STATE MACHINE (fulfilment; payment_status is tracked separately):

    pending -> confirmed -> processing -> shipped -> delivered
       \\           \\            \\           \\
        +-----------+------------+-----------+--> cancelled

    confirmed -> shipped is allowed (orders shipped without a packing step).
    delivered and cancelled are terminal.

RETURN STATE MACHINE:

    requested -> approved -> shipped -> received -> refunded -> completed
         \\           \\                      \\
          +-> rejected +-> rejected           +-> completed

    approved -> received is allowed (items dropped off in person).
    rejected and completed are terminal.

RULES:
1. Re-applying the current status is allowed and is a no-op for the state
   (callers still record it, e.g. updated tracking details)
2. Unknown statuses are rejected before the table is consulted
================================================================================
"""

from __future__ import annotations

from .errors import InvalidRequestError, InvalidTransitionError


ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled")

ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"processing", "shipped", "cancelled"}),
    "processing": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"delivered", "cancelled"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
}

RETURN_STATUSES = ("requested", "approved", "rejected", "shipped", "received", "refunded", "completed")

RETURN_TRANSITIONS: dict[str, frozenset[str]] = {
    "requested": frozenset({"approved", "rejected"}),
    "approved": frozenset({"shipped", "received", "rejected"}),
    "shipped": frozenset({"received"}),
    "received": frozenset({"refunded", "completed"}),
    "refunded": frozenset({"completed"}),
    "rejected": frozenset(),
    "completed": frozenset(),
}

RETURN_REASONS = ("defective", "wrong_item", "not_as_described", "changed_mind", "size_issue", "other")
REFUND_METHODS = ("original_payment", "store_credit")


def validate_order_status(status: str) -> None:
    if status not in ORDER_TRANSITIONS:
        raise InvalidRequestError(
            f"Invalid order status '{status}'. Must be one of: {', '.join(ORDER_STATUSES)}"
        )


def validate_return_status(status: str) -> None:
    if status not in RETURN_TRANSITIONS:
        raise InvalidRequestError(
            f"Invalid return status '{status}'. Must be one of: {', '.join(RETURN_STATUSES)}"
        )


def can_transition(table: dict[str, frozenset[str]], current: str, target: str) -> bool:
    """Same-state is allowed; otherwise target must be listed for current."""
    if current == target:
        return current in table
    return target in table.get(current, frozenset())


def require_order_transition(current: str, target: str) -> None:
    validate_order_status(target)
    if not can_transition(ORDER_TRANSITIONS, current, target):
        raise InvalidTransitionError(f"Cannot change order status from {current} to {target}")


def require_return_transition(current: str, target: str) -> None:
    validate_return_status(target)
    if not can_transition(RETURN_TRANSITIONS, current, target):
        raise InvalidTransitionError(f"Cannot change return status from {current} to {target}")


def is_terminal_order_status(status: str) -> bool:
    return not ORDER_TRANSITIONS.get(status)


def is_terminal_return_status(status: str) -> bool:
    return not RETURN_TRANSITIONS.get(status)
