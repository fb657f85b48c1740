# Overview: Flask API routes for customer registration, login and sessions.

# backend/storefront/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Password strength validation on registration
- Login throttling (per email and per client IP)
- Opaque bearer tokens; only their SHA-256 hash is stored
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..services import throttle_service
from ..services.errors import StorefrontError, TooManyAttemptsError
from ..decorators import require_auth
from storefront.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _too_many(e: TooManyAttemptsError):
    response = jsonify({"error": str(e), "retry_after_seconds": e.retry_after})
    response.status_code = 429
    if e.retry_after:
        response.headers["Retry-After"] = str(e.retry_after)
    return response


@auth_bp.post("/register")
def register_route():
    """
    Customer self-registration. Sends the welcome email (fire-and-forget)
    and returns a session token so the caller is signed in.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user = auth_service.register_customer(email=email, password=password, name=data.get("name"))
        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
        }), 201

    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    SECURITY:
    - Rejects with 429 while the email or IP is locked out
    - Records every attempt for throttling and audit
    """
    try:
        data = request.get_json(silent=True) or {}
        email = auth_service.normalize_email(data.get("email"))
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        throttle_service.ensure_not_locked(throttle_service.LOGIN_FAILED, email, ip_address)

        user = auth_service.authenticate(email, password)

        if not user:
            throttle_service.record_attempt(
                throttle_service.LOGIN_FAILED,
                email,
                success=False,
                resource=request.path,
                ip_address=ip_address,
                user_agent=user_agent,
                reason="Invalid credentials",
            )
            return jsonify({"error": "Invalid credentials"}), 401

        throttle_service.record_attempt(
            throttle_service.LOGIN_SUCCESS,
            email,
            success=True,
            user_id=user.id,
            resource=request.path,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=user_agent,
            ip_address=ip_address
        )

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
            "message": "Login successful"
        }), 200

    except TooManyAttemptsError as e:
        return _too_many(e)
    except StorefrontError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    token = request.headers.get("Authorization").split(" ", 1)[1].strip()
    session_service.revoke_session(token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200
