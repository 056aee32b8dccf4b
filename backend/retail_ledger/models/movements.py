from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockMovement(db.Model):
    """
    Append-only journal of stock ledger adjustments.

    One row per successful adjustment, written in the same DB transaction.
    counter is VARIANT (variants.stock_quantity) or PRODUCT (the aggregate
    products.stock_quantity). Rows are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("counter IN ('VARIANT', 'PRODUCT')", name="ck_stock_movements_counter"),
        db.CheckConstraint("delta <> 0", name="ck_stock_movements_delta_nonzero"),
        db.Index("ix_stock_movements_variant_created", "variant_id", "created_at"),
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    counter = db.Column(db.String(16), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=True)

    delta = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False, index=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    order_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "counter": self.counter,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "delta": self.delta,
            "balance_after": self.balance_after,
            "reason": self.reason,
            "order_id": self.order_id,
            "order_line_id": self.order_line_id,
            "return_id": self.return_id,
            "created_at": to_utc_z(self.created_at),
        }
