from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Return(db.Model):
    """
    A partial or full give-back against one sale order line.

    amount_cents is fixed at creation from the line's snapshotted unit price.
    status toggles ACTIVE <-> ANNULLED; only ACTIVE returns count toward the
    line's returned_quantity.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_returns_quantity_positive"),
        db.CheckConstraint("status IN ('ACTIVE', 'ANNULLED')", name="ck_returns_status"),
        db.Index("ix_returns_line_status", "order_line_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    order_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)

    # Refund bookkeeping (no money moves here)
    refunded = db.Column(db.Boolean, nullable=False, default=False)
    refund_method = db.Column(db.String(32), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    annul_reason = db.Column(db.String(255), nullable=True)
    annulled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sale_order = db.relationship("Order", backref=db.backref("returns", lazy=True))
    order_line = db.relationship("OrderLine", backref=db.backref("returns", lazy=True))
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Return id={self.id} line_id={self.order_line_id} qty={self.quantity} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_order_id": self.sale_order_id,
            "order_line_id": self.order_line_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "reason": self.reason,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "refunded": self.refunded,
            "refund_method": self.refund_method,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "annul_reason": self.annul_reason,
            "annulled_at": to_utc_z(self.annulled_at) if self.annulled_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
