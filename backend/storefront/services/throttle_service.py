"""
Attempt Throttling Service

WHY: Two public entry points are guessable by brute force: password login
(email + password) and guest order lookup (order number + email). Failed
attempts are recorded as security events and counted over a window.

RULES:
- Failures are counted per identifier (normalized email) AND per client IP
- MAX_FAILED_ATTEMPTS failures within WINDOW locks that key for LOCKOUT
- A success is recorded but does not erase earlier failures
"""

from datetime import timedelta

from ..extensions import db
from ..models import SecurityEvent
from .errors import TooManyAttemptsError
from storefront.time_utils import utcnow

MAX_FAILED_ATTEMPTS = 10
WINDOW = timedelta(minutes=15)
LOCKOUT = timedelta(minutes=15)

LOGIN_FAILED = "LOGIN_FAILED"
LOGIN_SUCCESS = "LOGIN_SUCCESS"
GUEST_LOOKUP_FAILED = "GUEST_LOOKUP_FAILED"


def _failures(event_type: str, *, identifier: str | None = None, ip_address: str | None = None):
    query = db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == event_type,
        SecurityEvent.occurred_at >= utcnow() - WINDOW,
    )
    if identifier is not None:
        query = query.filter(SecurityEvent.identifier == identifier)
    if ip_address is not None:
        query = query.filter(SecurityEvent.ip_address == ip_address)
    return query


def seconds_until_unlock(event_type: str, *, identifier: str | None = None,
                         ip_address: str | None = None) -> int | None:
    """
    Remaining lockout in seconds for the key, or None when not locked.

    Pass exactly one of identifier / ip_address.
    """
    query = _failures(event_type, identifier=identifier, ip_address=ip_address)
    if query.count() < MAX_FAILED_ATTEMPTS:
        return None

    most_recent = query.order_by(SecurityEvent.occurred_at.desc()).first()
    lockout_end = most_recent.occurred_at + LOCKOUT
    now = utcnow()
    if now < lockout_end:
        return int((lockout_end - now).total_seconds()) or 1
    return None


def ensure_not_locked(event_type: str, identifier: str, ip_address: str | None) -> None:
    """Raise TooManyAttemptsError if either the identifier or the IP is locked out."""
    remaining = seconds_until_unlock(event_type, identifier=identifier)
    if remaining is None and ip_address:
        remaining = seconds_until_unlock(event_type, ip_address=ip_address)
    if remaining is not None:
        raise TooManyAttemptsError(
            f"Too many failed attempts. Try again in {remaining // 60 + 1} minutes.",
            retry_after=remaining,
        )


def record_attempt(
    event_type: str,
    identifier: str,
    *,
    success: bool,
    user_id: int | None = None,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    reason: str | None = None,
) -> None:
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        identifier=identifier,
        resource=resource,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    db.session.commit()


def cleanup_security_events(retention_days: int = 90) -> int:
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SecurityEvent).filter(
        SecurityEvent.occurred_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
