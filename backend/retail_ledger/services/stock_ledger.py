# Overview: Stock ledger; the only writer of variant and product stock counters.

"""
Stock Ledger Invariants (authoritative)

- variants.stock_quantity and products.stock_quantity are changed ONLY here.
- Each change is a single conditional UPDATE:
      counter = counter + :delta WHERE id = :id AND counter + :delta >= 0
  so the non-negative check and the write cannot be separated by another
  writer. A miss means the row is absent or would go negative; nothing is
  written in either case.
- Every successful change appends a StockMovement in the same transaction.
- No commits here. Callers run inside concurrency.run_in_transaction().

The product counter is the aggregate that returns move. It is NOT derived
from the variant counters and the two are not reconciled; see
get_stock_position() for the side-by-side view.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, update

from ..extensions import db
from ..models import Product, Variant, StockMovement
from .errors import InsufficientStockError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


COUNTER_VARIANT = "VARIANT"
COUNTER_PRODUCT = "PRODUCT"

MOVEMENT_PURCHASE = "PURCHASE"
MOVEMENT_SALE = "SALE"
MOVEMENT_PURCHASE_CANCELLED = "PURCHASE_CANCELLED"
MOVEMENT_SALE_CANCELLED = "SALE_CANCELLED"
MOVEMENT_RETURN = "RETURN"
MOVEMENT_RETURN_ANNULLED = "RETURN_ANNULLED"
MOVEMENT_RETURN_REINSTATED = "RETURN_REINSTATED"

MOVEMENT_REASONS = {
    MOVEMENT_PURCHASE,
    MOVEMENT_SALE,
    MOVEMENT_PURCHASE_CANCELLED,
    MOVEMENT_SALE_CANCELLED,
    MOVEMENT_RETURN,
    MOVEMENT_RETURN_ANNULLED,
    MOVEMENT_RETURN_REINSTATED,
}


def _check_adjustment(delta: int, reason: str) -> None:
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("Stock delta must be an integer", details={"delta": delta})
    if delta == 0:
        raise ValidationError("Stock delta must be non-zero")
    if reason not in MOVEMENT_REASONS:
        raise ValidationError(f"Unknown stock movement reason '{reason}'")


def _conditional_increment(model, row_id: int, delta: int) -> bool:
    stmt = (
        update(model)
        .where(model.id == row_id, model.stock_quantity + delta >= 0)
        .values(
            stock_quantity=model.stock_quantity + delta,
            version_id=model.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def _append_movement(
    *,
    counter: str,
    product_id: int,
    variant_id: int | None,
    delta: int,
    balance_after: int,
    reason: str,
    order_id: int | None,
    order_line_id: int | None,
    return_id: int | None,
) -> StockMovement:
    movement = StockMovement(
        counter=counter,
        product_id=product_id,
        variant_id=variant_id,
        delta=delta,
        balance_after=balance_after,
        reason=reason,
        order_id=order_id,
        order_line_id=order_line_id,
        return_id=return_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def adjust_variant_stock(
    variant_id: int,
    delta: int,
    *,
    reason: str,
    order_id: int | None = None,
    order_line_id: int | None = None,
    return_id: int | None = None,
) -> Variant:
    """
    Atomically apply stock_quantity += delta to one variant.

    Raises:
        ValidationError: delta is zero or not an integer, or reason is unknown
        NotFoundError: variant does not exist
        InsufficientStockError: the result would be negative (no mutation applied)
    """
    _check_adjustment(delta, reason)

    applied = _conditional_increment(Variant, variant_id, delta)
    variant = db.session.get(Variant, variant_id, populate_existing=True)

    if variant is None:
        raise NotFoundError(f"Variant {variant_id} not found", details={"variant_id": variant_id})

    if not applied:
        requested = -delta
        logger.warning(
            "Rejected stock adjustment variant_id=%s delta=%s available=%s",
            variant_id,
            delta,
            variant.stock_quantity,
        )
        raise InsufficientStockError(
            f"Insufficient stock for variant {variant.label!r} of product {variant.product_id}: "
            f"requested {requested}, available {variant.stock_quantity}",
            details={
                "product_id": variant.product_id,
                "variant_id": variant.id,
                "requested_quantity": requested,
                "available_quantity": variant.stock_quantity,
                "deficit": requested - variant.stock_quantity,
            },
        )

    _append_movement(
        counter=COUNTER_VARIANT,
        product_id=variant.product_id,
        variant_id=variant.id,
        delta=delta,
        balance_after=variant.stock_quantity,
        reason=reason,
        order_id=order_id,
        order_line_id=order_line_id,
        return_id=return_id,
    )
    return variant


def adjust_product_stock(
    product_id: int,
    delta: int,
    *,
    reason: str,
    order_id: int | None = None,
    order_line_id: int | None = None,
    return_id: int | None = None,
) -> Product:
    """Same primitive as adjust_variant_stock(), applied to the product aggregate counter."""
    _check_adjustment(delta, reason)

    applied = _conditional_increment(Product, product_id, delta)
    product = db.session.get(Product, product_id, populate_existing=True)

    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

    if not applied:
        requested = -delta
        logger.warning(
            "Rejected aggregate stock adjustment product_id=%s delta=%s available=%s",
            product_id,
            delta,
            product.stock_quantity,
        )
        raise InsufficientStockError(
            f"Insufficient aggregate stock for {product.name}: "
            f"requested {requested}, available {product.stock_quantity}",
            details={
                "product_id": product.id,
                "requested_quantity": requested,
                "available_quantity": product.stock_quantity,
                "deficit": requested - product.stock_quantity,
            },
        )

    _append_movement(
        counter=COUNTER_PRODUCT,
        product_id=product.id,
        variant_id=None,
        delta=delta,
        balance_after=product.stock_quantity,
        reason=reason,
        order_id=order_id,
        order_line_id=order_line_id,
        return_id=return_id,
    )
    return product


# =============================================================================
# QUERIES
# =============================================================================

def get_variant_stock(variant_id: int) -> int:
    quantity = db.session.query(Variant.stock_quantity).filter(Variant.id == variant_id).scalar()
    if quantity is None:
        raise NotFoundError(f"Variant {variant_id} not found", details={"variant_id": variant_id})
    return int(quantity)


def get_stock_position(product_id: int) -> dict:
    """Both stock representations for a product, unreconciled."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

    variants = (
        db.session.query(Variant)
        .filter(Variant.product_id == product_id)
        .order_by(Variant.id)
        .all()
    )
    variant_total = (
        db.session.query(func.coalesce(func.sum(Variant.stock_quantity), 0))
        .filter(Variant.product_id == product_id)
        .scalar()
    )

    return {
        "product_id": product.id,
        "name": product.name,
        "aggregate_stock_quantity": product.stock_quantity,
        "variant_stock_total": int(variant_total or 0),
        "variants": [
            {"variant_id": v.id, "label": v.label, "stock_quantity": v.stock_quantity, "is_active": v.is_active}
            for v in variants
        ],
    }


def list_movements(
    *,
    variant_id: int | None = None,
    product_id: int | None = None,
    order_id: int | None = None,
    return_id: int | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    q = db.session.query(StockMovement)
    if variant_id is not None:
        q = q.filter(StockMovement.variant_id == variant_id)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if order_id is not None:
        q = q.filter(StockMovement.order_id == order_id)
    if return_id is not None:
        q = q.filter(StockMovement.return_id == return_id)

    return q.order_by(StockMovement.id.desc()).limit(limit).all()
