# Overview: Flask API routes for return requests and their admin workflow.

# backend/storefront/routes/returns.py
"""
Return Request API Routes

DESIGN:
- Customers open a return against their own delivered order
- Admins move it through approval, shipping, receipt and refund
- Every change lands on the order's timeline

SECURITY:
- Customers only see their own returns (others are reported as not found)
- Status changes are admin-only
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import return_service
from ..services.errors import StorefrontError
from ..decorators import require_auth, require_admin


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")
admin_returns_bp = Blueprint("admin_returns", __name__, url_prefix="/api/admin/returns")


# =============================================================================
# CUSTOMER
# =============================================================================

@returns_bp.post("")
@require_auth
def create_return_route():
    """
    Request body:
    {
        "order_id": 12,
        "reason": "defective",
        "reason_details": "...",  (optional)
        "items": [{"order_item_id": 31, "quantity": 1, "reason": "..."}],
        "customer_notes": "..."  (optional)
    }

    Returns:
        201: Return created (status: requested)
        400: Order not delivered, invalid reason or item claims
        404: Order not found
        409: An open return already exists for this order
    """
    try:
        data = request.get_json(silent=True) or {}
        order_id = data.get("order_id")
        if not isinstance(order_id, int) or isinstance(order_id, bool):
            return jsonify({"error": "order_id (integer) required"}), 400

        return_doc = return_service.create_return(
            user_id=g.current_user.id,
            order_id=order_id,
            reason=data.get("reason"),
            items=data.get("items"),
            reason_details=data.get("reason_details"),
            customer_notes=data.get("customer_notes"),
        )
        return jsonify({"return": return_doc.to_dict()}), 201

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/mine")
@require_auth
def my_returns_route():
    try:
        returns = return_service.get_my_returns(g.current_user.id)
        return jsonify({"returns": [r.to_dict(include_order=True) for r in returns]}), 200
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
@require_auth
def get_return_route(return_id: int):
    try:
        return_doc = return_service.get_return_for_user(return_id, g.current_user.id)
        return jsonify({"return": return_doc.to_dict(include_order=True)}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get return")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADMIN
# =============================================================================

@admin_returns_bp.get("")
@require_admin
def admin_list_route():
    try:
        returns = return_service.admin_list(
            page=request.args.get("page"),
            limit=request.args.get("limit"),
            status=request.args.get("status"),
        )
        return jsonify({"returns": [r.to_dict(include_order=True, include_admin=True) for r in returns]}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return jsonify({"error": "Internal server error"}), 500


@admin_returns_bp.get("/<int:return_id>")
@require_admin
def admin_get_route(return_id: int):
    try:
        return_doc = return_service.admin_get(return_id)
        return jsonify({"return": return_doc.to_dict(include_order=True, include_admin=True)}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get return")
        return jsonify({"error": "Internal server error"}), 500


@admin_returns_bp.post("/<int:return_id>/status")
@require_admin
def update_status_route(return_id: int):
    """
    Request body:
    {
        "status": "refunded",
        "refund_amount": "499.00",  (optional)
        "refund_method": "original_payment",  (optional)
        "admin_notes": "..."  (optional, appended with a timestamp)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400

        return_doc = return_service.update_status(
            return_id,
            status,
            admin_user_id=g.current_user.id,
            refund_amount=data.get("refund_amount"),
            refund_method=data.get("refund_method"),
            admin_notes=data.get("admin_notes"),
        )
        return jsonify({"return": return_doc.to_dict(include_admin=True)}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update return status")
        return jsonify({"error": "Internal server error"}), 500


@admin_returns_bp.post("/bulk-status")
@require_admin
def bulk_status_route():
    try:
        data = request.get_json(silent=True) or {}
        return_ids = data.get("return_ids")
        status = data.get("status")
        if not isinstance(return_ids, list) or not status:
            return jsonify({"error": "return_ids (list) and status required"}), 400

        updated = return_service.bulk_update_status(return_ids, status, admin_user_id=g.current_user.id)
        return jsonify({"success": True, "updated": updated}), 200

    except (TypeError, ValueError):
        return jsonify({"error": "return_ids must be integers"}), 400
    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to bulk update returns")
        return jsonify({"error": "Internal server error"}), 500
