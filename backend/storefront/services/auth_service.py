# Overview: Service-layer operations for auth; password hashing and account creation.

"""
Authentication Service

WHY: Orders, returns and carts are attributed to customer accounts, and
back-office operations require an admin account. Uses bcrypt for password
hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters, mixed case and a digit required
- Emails are normalized (trimmed, lower-cased) before storage and lookup
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User
from . import email_service
from .errors import ConflictError, InvalidRequestError
from .notification_service import notify
from storefront.time_utils import utcnow

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
VALID_ROLES = {"customer", "admin"}


class PasswordValidationError(InvalidRequestError):
    """Raised when password doesn't meet strength requirements."""
    pass


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def validate_email(email: str | None) -> str:
    normalized = normalize_email(email)
    if not EMAIL_RE.match(normalized):
        raise InvalidRequestError("A valid email address is required")
    return normalized


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Hash password with bcrypt after validating its strength."""
    validate_password_strength(password)
    rounds = int(current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check. Malformed hashes never verify."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(email: str, password: str, name: str | None = None, role: str = "customer") -> User:
    """
    Create a user account.

    Raises:
        InvalidRequestError: invalid email or role
        PasswordValidationError: weak password
        ConflictError: email already registered (unique constraint is authoritative)
    """
    email = validate_email(email)
    if role not in VALID_ROLES:
        raise InvalidRequestError(f"Invalid role: {role}")

    if db.session.query(User.id).filter_by(email=email).first():
        raise ConflictError("An account with this email already exists")

    user = User(
        email=email,
        name=(name or "").strip() or None,
        password_hash=hash_password(password),
        role=role,
        created_at=utcnow(),
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("An account with this email already exists") from None
    return user


def register_customer(email: str, password: str, name: str | None = None) -> User:
    """Create a customer account and send the welcome email (fire-and-forget)."""
    user = create_user(email=email, password=password, name=name, role="customer")
    notify(
        "welcome",
        email_service.send_welcome,
        email_service.WelcomeEmail(customer_email=user.email, customer_name=user.name or "there"),
    )
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Returns the active User for valid credentials, None otherwise.
    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        User.email == normalize_email(email),
        User.is_active.is_(True),
    ).first()

    if not user or not verify_password(password or "", user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
