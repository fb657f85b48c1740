from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z, utcnow


class SecurityEvent(db.Model):
    """
    Security event audit log.

    WHY: Track failed logins and failed guest order lookups. Both are
    brute-forceable (email + password, email + order number), so
    the throttle service counts recent failures from this table.

    IMMUTABLE: Never update. Old rows are removed by the maintenance sweep.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_type_identifier", "event_type", "identifier", "occurred_at"),
        db.Index("ix_security_events_type_ip", "event_type", "ip_address", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # LOGIN_FAILED, LOGIN_SUCCESS, GUEST_LOOKUP_FAILED
    event_type = db.Column(db.String(64), nullable=False, index=True)
    # Normalized email (login) or email of the attempted guest lookup
    identifier = db.Column(db.String(255), nullable=True)
    resource = db.Column(db.String(128), nullable=True)

    success = db.Column(db.Boolean, nullable=False)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "identifier": self.identifier,
            "resource": self.resource,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
