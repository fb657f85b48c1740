from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z, utcnow


class InventoryAlert(db.Model):
    """
    Low-stock threshold per product, optionally narrowed to one variant.

    UNIQUENESS: one alert per (product, variant). NULL variant_id values are
    distinct under a plain unique constraint, so product-level alerts get
    their own partial unique index.
    """
    __tablename__ = "inventory_alerts"
    __table_args__ = (
        db.UniqueConstraint("product_id", "variant_id", name="uq_inventory_alerts_product_variant"),
        db.Index(
            "uq_inventory_alerts_product_only",
            "product_id",
            unique=True,
            sqlite_where=db.text("variant_id IS NULL"),
            postgresql_where=db.text("variant_id IS NULL"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=True)

    threshold = db.Column(db.Integer, nullable=False, default=5)
    alert_sent = db.Column(db.Boolean, nullable=False, default=False)
    alert_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    @property
    def current_stock(self) -> int:
        if self.variant is not None:
            return self.variant.stock
        return self.product.stock if self.product is not None else 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product.name if self.product is not None else None,
            "variant_name": self.variant.name if self.variant is not None else None,
            "threshold": self.threshold,
            "current_stock": self.current_stock,
            "alert_sent": self.alert_sent,
            "alert_sent_at": to_utc_z(self.alert_sent_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
