# Overview: Access-tier decorators for API routes (public, protected, admin).

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def _attach(context) -> None:
    g.current_user = context.user
    g.session_context = context


def current_user_id() -> int | None:
    user = getattr(g, "current_user", None)
    return user.id if user is not None else None


def optional_auth(f):
    """
    Public route that also recognises a signed-in caller.

    Sets g.current_user when a valid token is present, None otherwise.
    An invalid token is treated as anonymous, not rejected.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.current_user = None
        token = _bearer_token()
        if token:
            context = session_service.validate_session(token)
            if context:
                _attach(context)
        return f(*args, **kwargs)

    return decorated_function


def require_auth(f):
    """
    Require a valid session.

    Sets g.current_user and g.session_context.
    Returns 401 when the header is missing, or the token is unknown,
    expired, idle, revoked, or belongs to a deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        _attach(context)
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Require a valid session belonging to an admin (401 / 403)."""
    @wraps(f)
    @require_auth
    def decorated_function(*args, **kwargs):
        if not g.current_user.is_admin:
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)

    return decorated_function
