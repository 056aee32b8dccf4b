from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Order(db.Model):
    """
    Purchase or sale header.

    kind decides the counterparty column: PURCHASE orders carry supplier_id,
    SALE orders carry customer_id. status moves ACTIVE -> CANCELLED only
    (see services/lifecycle.py).
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint("kind IN ('PURCHASE', 'SALE')", name="ck_orders_kind"),
        db.CheckConstraint("status IN ('ACTIVE', 'CANCELLED')", name="ck_orders_status"),
        db.CheckConstraint(
            "(kind = 'PURCHASE' AND supplier_id IS NOT NULL AND customer_id IS NULL)"
            " OR (kind = 'SALE' AND customer_id IS NOT NULL AND supplier_id IS NULL)",
            name="ck_orders_counterparty",
        ),
        db.Index("ix_orders_kind_status_created", "kind", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(16), nullable=False)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    # Cancellation audit trail
    cancel_reason = db.Column(db.String(255), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier", backref=db.backref("orders", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        lazy=True,
        order_by="OrderLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def counterparty_id(self) -> int | None:
        return self.supplier_id if self.kind == "PURCHASE" else self.customer_id

    def __repr__(self) -> str:
        return f"<Order id={self.id} kind={self.kind} status={self.status} total_cents={self.total_cents}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "kind": self.kind,
            "counterparty_id": self.counterparty_id,
            "supplier_id": self.supplier_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "cancel_reason": self.cancel_reason,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """
    One product/variant/quantity/price entry within an order.

    Immutable after creation except for returned_quantity and fully_returned,
    which only the return engine updates. Purchase lines keep returned_quantity
    NULL and fully_returned False.
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        db.CheckConstraint("unit_price_cents > 0", name="ck_order_lines_price_positive"),
        db.CheckConstraint(
            "returned_quantity IS NULL OR (returned_quantity >= 0 AND returned_quantity <= quantity)",
            name="ck_order_lines_returned_bounds",
        ),
        db.UniqueConstraint("order_id", "variant_id", name="uq_order_lines_order_variant"),
        db.Index("ix_order_lines_order_product", "order_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # Sale lines only
    returned_quantity = db.Column(db.Integer, nullable=True)
    fully_returned = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="lines")
    product = db.relationship("Product")
    variant = db.relationship("Variant")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def returnable_quantity(self) -> int:
        return self.quantity - (self.returned_quantity or 0)

    def set_returned_quantity(self, value: int) -> None:
        self.returned_quantity = value
        self.fully_returned = value == self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "returned_quantity": self.returned_quantity,
            "fully_returned": self.fully_returned,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
