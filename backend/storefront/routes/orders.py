# Overview: Flask API routes for checkout, payment verification and order administration.

# backend/storefront/routes/orders.py
"""
Order API Routes

WHY: Checkout, the gateway's payment callback, order history and the
admin fulfilment workflow.

ACCESS TIERS:
- Public: guest checkout, payment verification, guest order lookup
- Protected: authenticated checkout, own order history
- Admin: listing, status changes, notes, tracking

SECURITY:
- verify-payment is public; the gateway signature is its only authorization
- Guest lookup needs both order number and email, and failed attempts
  are throttled (429 with Retry-After)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import order_service
from ..services.errors import StorefrontError, TooManyAttemptsError
from ..decorators import require_auth, require_admin


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")
admin_orders_bp = Blueprint("admin_orders", __name__, url_prefix="/api/admin/orders")


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _flag(value, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


# =============================================================================
# CHECKOUT
# =============================================================================

@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Authenticated checkout.

    Request body:
    {
        "items": [{"product_id", "variant_id", "name", "price", "quantity", ...}],
        "shipping_address": {"full_name", "phone", "address_line1", "city", "state", "pincode", ...},
        "billing_address": {...},  (optional, defaults to shipping)
        "subtotal": "1200.00", "shipping_cost": "0", "discount": "0", "tax": "0",
        "total": "1200.00",
        "coupon_code": "...", "notes": "..."  (optional)
    }

    Returns:
        201: {order_id, order_number, gateway_order_id, gateway_key_id, amount, currency}
        400: Invalid input
        502: Payment gateway unavailable (nothing persisted)
    """
    try:
        result = order_service.create_order(g.current_user.id, _body())
        return jsonify(result), 201

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/guest")
def create_guest_order_route():
    """Guest checkout. shipping_address.email is required and becomes the order's guest email."""
    try:
        result = order_service.create_guest_order(_body())
        return jsonify(result), 201

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create guest order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/verify-payment")
def verify_payment_route(order_id: int):
    """
    Payment callback from the client after checkout.

    Request body:
    {
        "razorpay_order_id": "order_abc",
        "razorpay_payment_id": "pay_xyz",
        "razorpay_signature": "<hex hmac>"
    }

    Returns:
        200: {success: true, order}
        400: Verification failed (vague message) or order not payable
        404: Order not found
        409: Order already paid by a different payment
    """
    try:
        data = _body()
        gateway_order_id = data.get("razorpay_order_id")
        payment_id = data.get("razorpay_payment_id")
        signature = data.get("razorpay_signature")

        if not all([gateway_order_id, payment_id, signature]):
            return jsonify({"error": "razorpay_order_id, razorpay_payment_id and razorpay_signature required"}), 400

        order, _ = order_service.verify_payment(order_id, gateway_order_id, payment_id, signature)
        return jsonify({"success": True, "order": order.to_dict(include_items=True)}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify payment")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/guest/lookup")
def lookup_guest_order_route():
    """
    Guest order lookup by order number + email.

    Returns the order with items and its public timeline.
    """
    try:
        data = _body()
        order = order_service.lookup_guest_order(
            data.get("order_number"),
            data.get("email"),
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        return jsonify({
            "order": order.to_dict(include_items=True, include_timeline=True, public_timeline_only=True)
        }), 200

    except TooManyAttemptsError as e:
        response = jsonify({"error": str(e)})
        response.status_code = 429
        if e.retry_after:
            response.headers["Retry-After"] = str(e.retry_after)
        return response
    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to look up guest order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CUSTOMER READS
# =============================================================================

@orders_bp.get("/mine")
@require_auth
def my_orders_route():
    try:
        orders = order_service.get_my_orders(
            g.current_user.id,
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        return jsonify({"orders": [o.to_dict(include_items=True) for o in orders]}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    """Own order only; other customers' orders are reported as not found."""
    try:
        order = order_service.get_order_for_user(order_id, g.current_user.id)
        return jsonify({
            "order": order.to_dict(include_items=True, include_timeline=True, public_timeline_only=True)
        }), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADMIN
# =============================================================================

@admin_orders_bp.get("")
@require_admin
def admin_list_route():
    try:
        orders = order_service.admin_list(
            page=request.args.get("page"),
            limit=request.args.get("limit"),
            status=request.args.get("status"),
        )
        return jsonify({"orders": [o.to_dict(include_admin=True) for o in orders]}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.get("/<int:order_id>")
@require_admin
def admin_get_route(order_id: int):
    """Full order including internal notes and private timeline entries."""
    try:
        order = order_service.admin_get(order_id)
        return jsonify({
            "order": order.to_dict(include_items=True, include_timeline=True, include_admin=True)
        }), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.post("/<int:order_id>/status")
@require_admin
def update_status_route(order_id: int):
    """
    Move an order through the fulfilment workflow.

    Request body:
    {
        "status": "shipped",
        "tracking_number": "...",  (optional)
        "tracking_url": "...",  (optional)
        "notify_customer": true  (optional, default: false)
    }

    Returns:
        200: Updated order
        400: Unknown status or transition not allowed
        404: Order not found
    """
    try:
        data = _body()
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400

        order = order_service.update_status(
            order_id,
            status,
            admin_user_id=g.current_user.id,
            tracking_number=data.get("tracking_number"),
            tracking_url=data.get("tracking_url"),
            notify_customer=_flag(data.get("notify_customer")),
        )
        return jsonify({"order": order.to_dict(include_admin=True)}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.post("/bulk-status")
@require_admin
def bulk_status_route():
    """All-or-nothing: one illegal transition rejects the whole batch."""
    try:
        data = _body()
        order_ids = data.get("order_ids")
        status = data.get("status")
        if not isinstance(order_ids, list) or not status:
            return jsonify({"error": "order_ids (list) and status required"}), 400

        updated = order_service.bulk_update_status(order_ids, status, admin_user_id=g.current_user.id)
        return jsonify({"success": True, "updated": updated}), 200

    except (TypeError, ValueError):
        return jsonify({"error": "order_ids must be integers"}), 400
    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to bulk update orders")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.post("/<int:order_id>/notes")
@require_admin
def add_note_route(order_id: int):
    try:
        data = _body()
        order = order_service.add_note(
            order_id,
            data.get("note"),
            is_public=_flag(data.get("is_public")),
            admin_user_id=g.current_user.id,
        )
        return jsonify({"order": order.to_dict(include_admin=True, include_timeline=True)}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add order note")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.post("/<int:order_id>/tracking")
@require_admin
def update_tracking_route(order_id: int):
    try:
        data = _body()
        order = order_service.update_tracking(
            order_id,
            data.get("tracking_number"),
            tracking_url=data.get("tracking_url"),
            carrier=data.get("carrier"),
            notify_customer=_flag(data.get("notify_customer"), default=True),
            admin_user_id=g.current_user.id,
        )
        return jsonify({"order": order.to_dict(include_admin=True)}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update tracking")
        return jsonify({"error": "Internal server error"}), 500
