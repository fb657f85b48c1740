from __future__ import annotations

from ..extensions import db
from storefront.money import money_str
from storefront.time_utils import to_utc_z, utcnow


class Order(db.Model):
    """
    A storefront purchase.

    WHY: `status` (fulfilment) and `payment_status` (money) are independent
    columns. A cancelled order may still be `paid` until it is refunded.

    Addresses are JSON snapshots taken at checkout, not references into the
    customer's address book, so later address edits never rewrite history.

    GUEST ORDERS: user_id is NULL and guest_email carries the shipping email.
    The check constraint guarantees every order has one or the other.

    CONCURRENCY: version_id is an optimistic lock. Two admins updating the
    same order concurrently raise StaleDataError for the loser, which
    run_with_retry replays against fresh state.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.CheckConstraint("user_id IS NOT NULL OR guest_email IS NOT NULL", name="ck_orders_owner"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_guest_lookup", "order_number", "guest_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    guest_email = db.Column(db.String(255), nullable=True)

    # pending | confirmed | processing | shipped | delivered | cancelled
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    # pending | paid | failed | refunded
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_method = db.Column(db.String(32), nullable=True)

    subtotal = db.Column(db.Numeric(10, 2), nullable=False)
    discount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    shipping_cost = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="INR")
    coupon_code = db.Column(db.String(64), nullable=True)

    shipping_address = db.Column(db.JSON, nullable=False)
    billing_address = db.Column(db.JSON, nullable=True)

    razorpay_order_id = db.Column(db.String(64), nullable=True, index=True)
    razorpay_payment_id = db.Column(db.String(64), nullable=True, index=True)

    tracking_number = db.Column(db.String(128), nullable=True)
    tracking_url = db.Column(db.String(512), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem", backref="order", lazy=True,
        cascade="all, delete-orphan", order_by="OrderItem.id",
    )
    timeline = db.relationship(
        "OrderTimeline", backref="order", lazy=True,
        cascade="all, delete-orphan", order_by="OrderTimeline.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @property
    def customer_email(self) -> str | None:
        address = self.shipping_address or {}
        if address.get("email"):
            return address["email"]
        if self.user is not None:
            return self.user.email
        return self.guest_email

    @property
    def customer_name(self) -> str:
        address = self.shipping_address or {}
        name = address.get("full_name")
        if name:
            return name
        if self.user is not None and self.user.name:
            return self.user.name
        return "Customer"

    def to_dict(self, *, include_items: bool = False, include_timeline: bool = False,
                public_timeline_only: bool = False, include_admin: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "guest_email": self.guest_email,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "subtotal": money_str(self.subtotal),
            "discount": money_str(self.discount),
            "shipping_cost": money_str(self.shipping_cost),
            "tax": money_str(self.tax),
            "total": money_str(self.total),
            "currency": self.currency,
            "coupon_code": self.coupon_code,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "razorpay_order_id": self.razorpay_order_id,
            "razorpay_payment_id": self.razorpay_payment_id,
            "tracking_number": self.tracking_number,
            "tracking_url": self.tracking_url,
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_admin:
            data["admin_notes"] = self.admin_notes
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_timeline:
            entries = self.timeline
            if public_timeline_only:
                entries = [e for e in entries if e.is_public]
            data["timeline"] = [e.to_dict() for e in entries]
        return data


class OrderItem(db.Model):
    """
    Line item snapshot. Written once with its order, never mutated.

    product_id/variant_id are soft references: catalog rows may be deleted
    later without touching historical orders (ON DELETE SET NULL).
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    size = db.Column(db.String(32), nullable=True)
    color = db.Column(db.String(32), nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    price = db.Column(db.Numeric(10, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    total = db.Column(db.Numeric(10, 2), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "name": self.name,
            "sku": self.sku,
            "size": self.size,
            "color": self.color,
            "image_url": self.image_url,
            "price": money_str(self.price),
            "quantity": self.quantity,
            "total": money_str(self.total),
        }


class OrderTimeline(db.Model):
    """
    Append-only audit log for an order.

    IMMUTABLE: Never update or delete. Every state-changing operation on an
    order writes exactly one row, in the same transaction as the change.
    """
    __tablename__ = "order_timeline"
    __table_args__ = (
        db.Index("ix_order_timeline_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    # status_change | payment | note
    type = db.Column(db.String(16), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    # "metadata" is reserved on declarative classes
    details = db.Column("metadata", db.JSON, nullable=True)
    is_public = db.Column(db.Boolean, nullable=False, default=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "metadata": self.details,
            "is_public": self.is_public,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
