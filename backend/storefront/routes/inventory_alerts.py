# Overview: Flask API routes for low-stock alert administration.

# backend/storefront/routes/inventory_alerts.py
"""
Inventory Alert API Routes (admin only)

An alert is pending when it has not been sent and stock is at or below its
threshold. Processing emails the store address for each pending alert.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import inventory_alert_service
from ..services.errors import StorefrontError
from ..decorators import require_admin


inventory_alerts_bp = Blueprint("inventory_alerts", __name__, url_prefix="/api/admin/inventory-alerts")


@inventory_alerts_bp.get("")
@require_admin
def list_alerts_route():
    try:
        alerts = inventory_alert_service.list_alerts()
        return jsonify({"alerts": [a.to_dict() for a in alerts]}), 200
    except Exception:
        current_app.logger.exception("Failed to list inventory alerts")
        return jsonify({"error": "Internal server error"}), 500


@inventory_alerts_bp.get("/pending")
@require_admin
def pending_alerts_route():
    try:
        alerts = inventory_alert_service.get_pending()
        return jsonify({"alerts": [a.to_dict() for a in alerts]}), 200
    except Exception:
        current_app.logger.exception("Failed to list pending inventory alerts")
        return jsonify({"error": "Internal server error"}), 500


@inventory_alerts_bp.get("/low-stock")
@require_admin
def low_stock_route():
    """Variants at or below ?threshold= (default 5), with their alert if any."""
    try:
        rows = inventory_alert_service.low_stock_variants(request.args.get("threshold"))
        return jsonify({"variants": rows}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list low stock variants")
        return jsonify({"error": "Internal server error"}), 500


@inventory_alerts_bp.post("")
@require_admin
def create_alert_route():
    """
    Request body:
    {
        "product_id": 4,
        "variant_id": 9,  (optional)
        "threshold": 5  (optional)
    }

    Returns:
        201: Alert created
        404: Product or variant not found
        409: Alert already exists for this item
    """
    try:
        data = request.get_json(silent=True) or {}
        alert = inventory_alert_service.create_alert(
            data.get("product_id"),
            variant_id=data.get("variant_id"),
            threshold=data.get("threshold"),
        )
        return jsonify({"alert": alert.to_dict()}), 201

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create inventory alert")
        return jsonify({"error": "Internal server error"}), 500


@inventory_alerts_bp.post("/bulk-create")
@require_admin
def bulk_create_route():
    try:
        data = request.get_json(silent=True) or {}
        created = inventory_alert_service.bulk_create(data.get("threshold"))
        return jsonify({"created": created}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to bulk create inventory alerts")
        return jsonify({"error": "Internal server error"}), 500


@inventory_alerts_bp.patch("/<int:alert_id>")
@require_admin
def update_alert_route(alert_id: int):
    try:
        data = request.get_json(silent=True) or {}
        if "threshold" not in data:
            return jsonify({"error": "threshold required"}), 400
        alert = inventory_alert_service.update_threshold(alert_id, data.get("threshold"))
        return jsonify({"alert": alert.to_dict()}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update inventory alert")
        return jsonify({"error": "Internal server error"}), 500


@inventory_alerts_bp.delete("/<int:alert_id>")
@require_admin
def delete_alert_route(alert_id: int):
    try:
        inventory_alert_service.delete_alert(alert_id)
        return jsonify({"success": True}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete inventory alert")
        return jsonify({"error": "Internal server error"}), 500


@inventory_alerts_bp.post("/<int:alert_id>/mark-sent")
@require_admin
def mark_sent_route(alert_id: int):
    try:
        alert = inventory_alert_service.mark_sent(alert_id)
        return jsonify({"alert": alert.to_dict()}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark inventory alert sent")
        return jsonify({"error": "Internal server error"}), 500


@inventory_alerts_bp.post("/<int:alert_id>/reset")
@require_admin
def reset_route(alert_id: int):
    try:
        alert = inventory_alert_service.reset(alert_id)
        return jsonify({"alert": alert.to_dict()}), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reset inventory alert")
        return jsonify({"error": "Internal server error"}), 500


@inventory_alerts_bp.post("/process")
@require_admin
def process_route():
    try:
        result = inventory_alert_service.process_alerts()
        return jsonify(result.to_dict()), 200

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process inventory alerts")
        return jsonify({"error": "Internal server error"}), 500


@inventory_alerts_bp.get("/stats")
@require_admin
def stats_route():
    try:
        return jsonify(inventory_alert_service.stats()), 200
    except Exception:
        current_app.logger.exception("Failed to compute inventory alert stats")
        return jsonify({"error": "Internal server error"}), 500
