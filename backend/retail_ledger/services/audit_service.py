"""
Read-only consistency checks over persisted ledger state.

Each check returns violation dicts of the form
    {"check": <name>, "entity": <table>, "id": <row id>, "message": <text>}
An empty list from check_invariants() means the ledger is consistent.
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Order, OrderLine, Product, Return, StockMovement, Variant
from .lifecycle import ORDER_KIND_SALE, RETURN_STATUS_ACTIVE
from .stock_ledger import COUNTER_PRODUCT, COUNTER_VARIANT


def _violation(check: str, entity: str, row_id: int, message: str) -> dict:
    return {"check": check, "entity": entity, "id": row_id, "message": message}


def check_non_negative_stock() -> list[dict]:
    violations = []
    for v in db.session.query(Variant).filter(Variant.stock_quantity < 0).all():
        violations.append(_violation(
            "non_negative_stock", "variants", v.id, f"Variant {v.id} stock is {v.stock_quantity}",
        ))
    for p in db.session.query(Product).filter(Product.stock_quantity < 0).all():
        violations.append(_violation(
            "non_negative_stock", "products", p.id, f"Product {p.id} aggregate stock is {p.stock_quantity}",
        ))
    return violations


def check_order_totals() -> list[dict]:
    violations = []
    rows = (
        db.session.query(Order.id, Order.total_cents, func.coalesce(func.sum(OrderLine.line_total_cents), 0))
        .outerjoin(OrderLine, OrderLine.order_id == Order.id)
        .group_by(Order.id, Order.total_cents)
        .all()
    )
    for order_id, total_cents, line_sum in rows:
        if total_cents != line_sum:
            violations.append(_violation(
                "order_total", "orders", order_id,
                f"Order {order_id} total {total_cents} != sum of lines {line_sum}",
            ))

    for line in db.session.query(OrderLine).all():
        if line.line_total_cents != line.quantity * line.unit_price_cents:
            violations.append(_violation(
                "line_total", "order_lines", line.id,
                f"Line {line.id} total {line.line_total_cents} != {line.quantity} x {line.unit_price_cents}",
            ))
    return violations


def check_return_bounds() -> list[dict]:
    """Cumulative returns per sale line: bounds, active sum and the fully_returned flag."""
    violations = []

    active_sums = dict(
        db.session.query(Return.order_line_id, func.sum(Return.quantity))
        .filter(Return.status == RETURN_STATUS_ACTIVE)
        .group_by(Return.order_line_id)
        .all()
    )

    sale_lines = (
        db.session.query(OrderLine)
        .join(Order, Order.id == OrderLine.order_id)
        .filter(Order.kind == ORDER_KIND_SALE)
        .order_by(OrderLine.id)
        .all()
    )
    for line in sale_lines:
        returned = line.returned_quantity
        if returned is None:
            violations.append(_violation(
                "returned_quantity", "order_lines", line.id, f"Sale line {line.id} has no returned_quantity",
            ))
            continue
        if returned < 0 or returned > line.quantity:
            violations.append(_violation(
                "returned_quantity", "order_lines", line.id,
                f"Sale line {line.id} returned {returned} outside 0..{line.quantity}",
            ))

        active = int(active_sums.get(line.id) or 0)
        if active != returned:
            violations.append(_violation(
                "active_returns_sum", "order_lines", line.id,
                f"Sale line {line.id} returned_quantity {returned} != active returns {active}",
            ))

        if line.fully_returned != (returned == line.quantity):
            violations.append(_violation(
                "fully_returned", "order_lines", line.id,
                f"Sale line {line.id} fully_returned={line.fully_returned} with {returned}/{line.quantity} returned",
            ))
    return violations


def check_return_amounts() -> list[dict]:
    violations = []
    rows = (
        db.session.query(Return, OrderLine.unit_price_cents)
        .join(OrderLine, OrderLine.id == Return.order_line_id)
        .all()
    )
    for ret, unit_price_cents in rows:
        expected = ret.quantity * unit_price_cents
        if ret.amount_cents != expected:
            violations.append(_violation(
                "return_amount", "returns", ret.id,
                f"Return {ret.id} amount {ret.amount_cents} != {ret.quantity} x {unit_price_cents}",
            ))
    return violations


def check_movement_balances() -> list[dict]:
    """The newest movement on each counter must match the counter's current value."""
    violations = []

    latest_variant = (
        db.session.query(StockMovement.variant_id, func.max(StockMovement.id).label("last_id"))
        .filter(StockMovement.counter == COUNTER_VARIANT)
        .group_by(StockMovement.variant_id)
        .subquery()
    )
    rows = (
        db.session.query(Variant.id, Variant.stock_quantity, StockMovement.balance_after)
        .join(latest_variant, latest_variant.c.variant_id == Variant.id)
        .join(StockMovement, StockMovement.id == latest_variant.c.last_id)
        .all()
    )
    for variant_id, stock, balance in rows:
        if stock != balance:
            violations.append(_violation(
                "movement_balance", "variants", variant_id,
                f"Variant {variant_id} stock {stock} != last movement balance {balance}",
            ))

    latest_product = (
        db.session.query(StockMovement.product_id, func.max(StockMovement.id).label("last_id"))
        .filter(StockMovement.counter == COUNTER_PRODUCT)
        .group_by(StockMovement.product_id)
        .subquery()
    )
    rows = (
        db.session.query(Product.id, Product.stock_quantity, StockMovement.balance_after)
        .join(latest_product, latest_product.c.product_id == Product.id)
        .join(StockMovement, StockMovement.id == latest_product.c.last_id)
        .all()
    )
    for product_id, stock, balance in rows:
        if stock != balance:
            violations.append(_violation(
                "movement_balance", "products", product_id,
                f"Product {product_id} aggregate stock {stock} != last movement balance {balance}",
            ))
    return violations


def check_invariants() -> list[dict]:
    violations = []
    violations.extend(check_non_negative_stock())
    violations.extend(check_order_totals())
    violations.extend(check_return_bounds())
    violations.extend(check_return_amounts())
    violations.extend(check_movement_balances())
    return violations
