from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z, utcnow


class Setting(db.Model):
    """
    Persisted store-wide settings, one row per domain ("store", "shipping",
    "payment", "seo"). The value is validated by settings_service before it
    is written; readers always go through the typed accessors there.
    """
    __tablename__ = "settings"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_settings_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(64), nullable=False)
    value = db.Column(db.JSON, nullable=False)

    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }
