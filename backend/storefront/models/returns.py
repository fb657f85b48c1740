from __future__ import annotations

from ..extensions import db
from storefront.money import money_str
from storefront.time_utils import to_utc_z, utcnow


# Only a completed return frees the (order, user) slot; a rejected one
# still blocks a second request
RETURN_CLOSED_STATUS = "completed"


class OrderReturn(db.Model):
    """
    Return/refund request against a delivered order.

    UNIQUENESS: at most one non-completed return per (order, user).
    The partial unique index below is the authority; the service's
    existence check only produces a friendlier error in the common case.
    """
    __tablename__ = "order_returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_order_returns_return_number"),
        db.Index(
            "uq_order_returns_open_per_order_user",
            "order_id", "user_id",
            unique=True,
            sqlite_where=db.text("status <> 'completed'"),
            postgresql_where=db.text("status <> 'completed'"),
        ),
        db.Index("ix_order_returns_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(32), nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # defective | wrong_item | not_as_described | changed_mind | size_issue | other
    reason = db.Column(db.String(32), nullable=False)
    reason_details = db.Column(db.Text, nullable=True)
    # [{"order_item_id": int, "quantity": int, "reason": str | None}]
    items = db.Column(db.JSON, nullable=False)

    # requested | approved | rejected | shipped | received | refunded | completed
    status = db.Column(db.String(16), nullable=False, default="requested")

    refund_amount = db.Column(db.Numeric(10, 2), nullable=True)
    # original_payment | store_credit
    refund_method = db.Column(db.String(32), nullable=True)

    customer_notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    order = db.relationship("Order", backref=db.backref("returns", lazy=True))
    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self, *, include_order: bool = False, include_admin: bool = False) -> dict:
        data = {
            "id": self.id,
            "return_number": self.return_number,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "reason": self.reason,
            "reason_details": self.reason_details,
            "items": self.items,
            "status": self.status,
            "refund_amount": money_str(self.refund_amount),
            "refund_method": self.refund_method,
            "customer_notes": self.customer_notes,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "completed_at": to_utc_z(self.completed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_admin:
            data["admin_notes"] = self.admin_notes
        if include_order and self.order is not None:
            data["order"] = self.order.to_dict(include_items=True)
        return data
