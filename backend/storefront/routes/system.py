# backend/storefront/routes/system.py
"""
System health and metrics endpoints.

Health reports database connectivity plus whether the outbound
integrations (payment gateway, mail provider) have credentials.
"""

import time
from flask import Blueprint, Response, current_app
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from ..extensions import db, gateway, mailer
from storefront.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_integrations() -> dict:
    """
    Missing credentials degrade the service (checkout or email stops
    working) but do not make it unhealthy.
    """
    details = {
        "payment_gateway_configured": gateway.configured,
        "mailer_configured": mailer.configured,
    }
    if all(details.values()):
        return {"status": "healthy", "details": details}
    return {"status": "degraded", "details": details}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    integrations = check_integrations()

    all_checks = [database_health, integrations]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "integrations": integrations,
        }
    }

    return response, http_status


@system_bp.get("/metrics")
def metrics():
    """Prometheus exposition of the process-wide registry."""
    return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)
