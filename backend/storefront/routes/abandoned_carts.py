# Overview: Flask API routes for abandoned cart capture, recovery links and the recovery-email cron.

# backend/storefront/routes/abandoned_carts.py
"""
Abandoned Cart API Routes

ACCESS TIERS:
- Public: capture of the caller's own cart, recovery-link lookup and completion
- Admin: explicit capture, batch processing, listing, stats, manual send, cleanup
- Cron: shared secret (Authorization: Bearer <CRON_SECRET> or ?secret=)
"""

import hmac

from flask import Blueprint, request, jsonify, current_app

from ..services import abandoned_cart_service
from ..services.errors import StorefrontError
from ..decorators import optional_auth, require_admin, current_user_id
from storefront.time_utils import utcnow


abandoned_carts_bp = Blueprint("abandoned_carts", __name__, url_prefix="/api/abandoned-carts")
admin_abandoned_carts_bp = Blueprint(
    "admin_abandoned_carts", __name__, url_prefix="/api/admin/abandoned-carts"
)
cron_bp = Blueprint("cron", __name__, url_prefix="/api/cron")


def _optional_bool(value) -> bool | None:
    if value is None or value == "":
        return None
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


# =============================================================================
# PUBLIC
# =============================================================================

@abandoned_carts_bp.post("/capture-mine")
@optional_auth
def capture_my_cart_route():
    """
    Snapshot the caller's server-side cart for later recovery.

    Request body: {"email": "shopper@example.com"}

    Returns 200 with {success: false, message} for guests and empty carts.
    """
    try:
        data = request.get_json(silent=True) or {}
        result = abandoned_cart_service.capture_my_cart(current_user_id(), data.get("email"))
        return jsonify(result), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to capture cart")
        return jsonify({"error": "Internal server error"}), 500


@abandoned_carts_bp.get("/recover/<token>")
def recover_route(token: str):
    """Read-only; repeatable until the cart is marked recovered."""
    try:
        cart = abandoned_cart_service.recover(token)
        return jsonify({
            "id": cart.id,
            "email": cart.email,
            "cart_data": cart.cart_data,
            "total_value": cart.to_dict()["total_value"],
        }), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to recover cart")
        return jsonify({"error": "Internal server error"}), 500


@abandoned_carts_bp.post("/recover/<token>/complete")
def mark_recovered_route(token: str):
    try:
        abandoned_cart_service.mark_recovered(token)
        return jsonify({"success": True}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark cart recovered")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADMIN
# =============================================================================

@admin_abandoned_carts_bp.post("")
@require_admin
def capture_route():
    """
    Request body:
    {
        "email": "shopper@example.com",
        "cart_data": [{"product_id", "variant_id", "name", "price", "quantity", "image"}],
        "total_value": "1200.00",  (optional, computed from cart_data)
        "user_id": 3  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        cart = abandoned_cart_service.capture(
            data.get("email"),
            data.get("cart_data"),
            total_value=data.get("total_value"),
            user_id=data.get("user_id"),
        )
        return jsonify({"success": True, "id": cart.id}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to capture abandoned cart")
        return jsonify({"error": "Internal server error"}), 500


@admin_abandoned_carts_bp.post("/process")
@require_admin
def process_route():
    """Request body: {"hours_threshold": 1-72, "limit": 1-50} (both optional)."""
    try:
        data = request.get_json(silent=True) or {}
        result = abandoned_cart_service.process_abandoned_carts(
            hours_threshold=data.get("hours_threshold"),
            limit=data.get("limit"),
        )
        return jsonify(result.to_dict()), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process abandoned carts")
        return jsonify({"error": "Internal server error"}), 500


@admin_abandoned_carts_bp.get("")
@require_admin
def admin_list_route():
    try:
        carts = abandoned_cart_service.admin_list(
            page=request.args.get("page"),
            limit=request.args.get("limit"),
            recovered=_optional_bool(request.args.get("recovered")),
            email_sent=_optional_bool(request.args.get("email_sent")),
        )
        return jsonify({"carts": [c.to_dict() for c in carts]}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list abandoned carts")
        return jsonify({"error": "Internal server error"}), 500


@admin_abandoned_carts_bp.get("/stats")
@require_admin
def stats_route():
    try:
        return jsonify(abandoned_cart_service.stats()), 200
    except Exception:
        current_app.logger.exception("Failed to compute abandoned cart stats")
        return jsonify({"error": "Internal server error"}), 500


@admin_abandoned_carts_bp.post("/<int:cart_id>/send")
@require_admin
def send_recovery_email_route(cart_id: int):
    try:
        cart = abandoned_cart_service.send_recovery_email(cart_id)
        return jsonify({"success": True, "cart": cart.to_dict()}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to send recovery email")
        return jsonify({"error": "Internal server error"}), 500


@admin_abandoned_carts_bp.post("/cleanup")
@require_admin
def cleanup_route():
    try:
        deleted = abandoned_cart_service.cleanup_expired()
        return jsonify({"success": True, "deleted": deleted}), 200
    except Exception:
        current_app.logger.exception("Failed to clean up abandoned carts")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CRON
# =============================================================================

def _cron_authorized() -> bool:
    """
    Accept the secret as a bearer token or a `secret` query parameter.
    With no CRON_SECRET configured the endpoint stays closed.
    """
    secret = current_app.config.get("CRON_SECRET") or ""
    if not secret:
        return False
    supplied = request.args.get("secret") or ""
    auth_header = request.headers.get("Authorization") or ""
    if auth_header.startswith("Bearer "):
        supplied = auth_header.split(" ", 1)[1].strip()
    return hmac.compare_digest(supplied.encode("utf-8"), secret.encode("utf-8"))


@cron_bp.route("/abandoned-carts", methods=["GET", "POST"])
def abandoned_carts_cron_route():
    """
    Scheduled entry point: send recovery emails with the configured
    defaults, then delete expired carts.
    """
    if not _cron_authorized():
        return jsonify({"error": "Unauthorized"}), 401

    try:
        result = abandoned_cart_service.process_abandoned_carts()
        deleted = abandoned_cart_service.cleanup_expired()

        payload = result.to_dict()
        payload["deleted"] = deleted
        payload["timestamp"] = utcnow().isoformat() + "Z"
        current_app.logger.info(
            "Abandoned cart cron finished: processed=%s sent=%s deleted=%s",
            result.processed, result.sent, deleted,
        )
        return jsonify(payload), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Abandoned cart cron failed")
        return jsonify({"error": "Internal server error"}), 500
