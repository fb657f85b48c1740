from __future__ import annotations

from ..extensions import db
from storefront.money import money_str
from storefront.time_utils import to_utc_z, utcnow


class AbandonedCart(db.Model):
    """
    Snapshot of a cart left behind at checkout, plus its recovery token.

    UPSERT BY EMAIL: one live (unrecovered) record per email. The partial
    unique index makes a second concurrent insert fail instead of creating
    a duplicate; the service then updates the winner's row.
    """
    __tablename__ = "abandoned_carts"
    __table_args__ = (
        db.UniqueConstraint("recovery_token", name="uq_abandoned_carts_recovery_token"),
        db.Index(
            "uq_abandoned_carts_live_email",
            "email",
            unique=True,
            sqlite_where=db.text("recovered = 0"),
            postgresql_where=db.text("recovered = false"),
        ),
        db.Index("ix_abandoned_carts_pending", "recovered", "recovery_email_sent", "created_at"),
        db.Index("ix_abandoned_carts_expires", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=False)

    # [{"product_id", "variant_id", "name", "price", "quantity", "image"}]
    cart_data = db.Column(db.JSON, nullable=False)
    total_value = db.Column(db.Numeric(10, 2), nullable=False)

    recovery_token = db.Column(db.String(64), nullable=False)

    recovery_email_sent = db.Column(db.Boolean, nullable=False, default=False)
    recovery_email_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    recovered = db.Column(db.Boolean, nullable=False, default=False)
    recovered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    user = db.relationship("User")

    def to_dict(self, *, include_token: bool = False) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "email": self.email,
            "cart_data": self.cart_data,
            "total_value": money_str(self.total_value),
            "recovery_email_sent": self.recovery_email_sent,
            "recovery_email_sent_at": to_utc_z(self.recovery_email_sent_at),
            "recovered": self.recovered,
            "recovered_at": to_utc_z(self.recovered_at),
            "expires_at": to_utc_z(self.expires_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_token:
            data["recovery_token"] = self.recovery_token
        return data
