# Overview: Flask API routes for typed store settings.

from __future__ import annotations

from dataclasses import asdict

from flask import Blueprint, jsonify, request, g, current_app

from ..decorators import require_admin
from ..services import settings_service
from ..services.errors import StorefrontError


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")
admin_settings_bp = Blueprint("admin_settings", __name__, url_prefix="/api/admin/settings")

PUBLIC_DOMAINS = ("store", "shipping", "payment", "seo")


@settings_bp.get("/<domain>")
def get_public_settings_route(domain: str):
    if domain not in PUBLIC_DOMAINS:
        return jsonify({"error": f"Unknown settings domain: {domain}"}), 404
    try:
        return jsonify({"settings": asdict(settings_service.get_settings(domain))}), 200
    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to read settings")
        return jsonify({"error": "Internal server error"}), 500


@admin_settings_bp.get("")
@require_admin
def get_all_settings_route():
    try:
        return jsonify({"settings": settings_service.get_all_settings()}), 200
    except Exception:
        current_app.logger.exception("Failed to read settings")
        return jsonify({"error": "Internal server error"}), 500


@admin_settings_bp.put("/<domain>")
@require_admin
def update_settings_route(domain: str):
    """Partial update: omitted keys keep their current value."""
    try:
        payload = request.get_json(silent=True)
        settings = settings_service.update_settings(domain, payload, user_id=g.current_user.id)
        return jsonify({"settings": asdict(settings)}), 200
    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update settings")
        return jsonify({"error": "Internal server error"}), 500
