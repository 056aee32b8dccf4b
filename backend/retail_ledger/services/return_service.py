"""
Return Engine - give-backs against sale order lines

CUMULATIVE BOUND:
    For every sale line, the quantities of its ACTIVE returns sum to
    order_lines.returned_quantity, and that never exceeds the line quantity.
    The check and the update happen under the line's row lock.

STOCK:
    Returns move the product aggregate counter (products.stock_quantity).
    With RETURNS_RESTOCK_VARIANTS enabled the sold variant is restocked too.
    Annulling reverses exactly what the return applied, read back from the
    return's own stock movements, so flipping the setting later is safe.

LIFECYCLE:
    ACTIVE <-> ANNULLED (toggle). Reinstating is refused once the sale order
    is cancelled; annulling is always allowed.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Order, OrderLine, Product, Return, StockMovement
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .errors import NotFoundError, StateError, ValidationError, require_positive_int
from .lifecycle import (
    ORDER_KIND_SALE,
    ORDER_STATUS_CANCELLED,
    RETURN_STATUS_ACTIVE,
    RETURN_STATUS_ANNULLED,
    next_return_status,
    require_transition,
    validate_status,
)
from .stock_ledger import (
    COUNTER_VARIANT,
    MOVEMENT_RETURN,
    MOVEMENT_RETURN_ANNULLED,
    MOVEMENT_RETURN_REINSTATED,
    adjust_product_stock,
    adjust_variant_stock,
)

logger = logging.getLogger(__name__)


def _clean_reason(reason) -> str:
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("A return reason is required", details={"field": "reason"})
    return reason.strip()


# =============================================================================
# LOCKED LOOKUPS (call inside run_in_transaction)
# =============================================================================

def _lock_sale_order(sale_order_id: int) -> Order:
    order = lock_for_update(
        db.session.query(Order).filter_by(id=sale_order_id)
    ).populate_existing().first()
    if order is None:
        raise NotFoundError(f"Sale order {sale_order_id} not found", details={"sale_order_id": sale_order_id})
    if order.kind != ORDER_KIND_SALE:
        raise ValidationError(
            f"Order {sale_order_id} is not a sale order",
            details={"sale_order_id": sale_order_id, "kind": order.kind},
        )
    return order


def _lock_line(line_id: int) -> OrderLine:
    return lock_for_update(
        db.session.query(OrderLine).filter_by(id=line_id)
    ).populate_existing().one()


def _lock_return(return_id: int) -> Return:
    ret = lock_for_update(
        db.session.query(Return).filter_by(id=return_id)
    ).populate_existing().first()
    if ret is None:
        raise NotFoundError(f"Return {return_id} not found", details={"return_id": return_id})
    return ret


def _resolve_line(order: Order, product_id: int, variant_id: int | None) -> OrderLine:
    q = db.session.query(OrderLine).filter(
        OrderLine.order_id == order.id,
        OrderLine.product_id == product_id,
    )
    if variant_id is not None:
        q = q.filter(OrderLine.variant_id == variant_id)
    candidates = q.order_by(OrderLine.id).all()

    if not candidates:
        raise NotFoundError(
            f"Product {product_id} is not on sale order {order.id}",
            details={"sale_order_id": order.id, "product_id": product_id, "variant_id": variant_id},
        )
    if len(candidates) > 1:
        raise ValidationError(
            f"Product {product_id} appears on several lines of sale order {order.id}; variant_id is required",
            details={
                "sale_order_id": order.id,
                "product_id": product_id,
                "variant_ids": [line.variant_id for line in candidates],
            },
        )
    return candidates[0]


def _check_remaining(line: OrderLine, quantity: int) -> None:
    remaining = line.returnable_quantity
    if quantity > remaining:
        raise StateError(
            f"Cannot return {quantity} unit(s): only {remaining} of {line.quantity} "
            f"remain returnable on line {line.id}",
            details={
                "order_line_id": line.id,
                "line_quantity": line.quantity,
                "returned_quantity": line.returned_quantity or 0,
                "requested_quantity": quantity,
                "remaining_quantity": remaining,
            },
        )


def _variant_restocked(ret: Return) -> bool:
    net = (
        db.session.query(func.coalesce(func.sum(StockMovement.delta), 0))
        .filter(StockMovement.return_id == ret.id, StockMovement.counter == COUNTER_VARIANT)
        .scalar()
    )
    return int(net or 0) > 0


def _apply_stock(ret: Return, reason: str, *, restock_variant: bool) -> None:
    adjust_product_stock(
        ret.product_id, ret.quantity,
        reason=reason, order_id=ret.sale_order_id, order_line_id=ret.order_line_id, return_id=ret.id,
    )
    if restock_variant:
        adjust_variant_stock(
            ret.variant_id, ret.quantity,
            reason=reason, order_id=ret.sale_order_id, order_line_id=ret.order_line_id, return_id=ret.id,
        )


def _annul_locked(ret: Return, reason: str | None) -> None:
    require_transition("return", ret.status, RETURN_STATUS_ANNULLED, entity_id=ret.id, label="Return")

    restocked_variant = _variant_restocked(ret)

    line = _lock_line(ret.order_line_id)
    line.set_returned_quantity((line.returned_quantity or 0) - ret.quantity)

    adjust_product_stock(
        ret.product_id, -ret.quantity,
        reason=MOVEMENT_RETURN_ANNULLED,
        order_id=ret.sale_order_id, order_line_id=ret.order_line_id, return_id=ret.id,
    )
    if restocked_variant:
        adjust_variant_stock(
            ret.variant_id, -ret.quantity,
            reason=MOVEMENT_RETURN_ANNULLED,
            order_id=ret.sale_order_id, order_line_id=ret.order_line_id, return_id=ret.id,
        )

    ret.status = RETURN_STATUS_ANNULLED
    ret.annul_reason = (reason or "").strip() or None
    ret.annulled_at = utcnow()


def _reinstate_locked(ret: Return) -> None:
    require_transition("return", ret.status, RETURN_STATUS_ACTIVE, entity_id=ret.id, label="Return")

    order = _lock_sale_order(ret.sale_order_id)
    if order.status == ORDER_STATUS_CANCELLED:
        raise StateError(
            f"Return {ret.id} cannot be reinstated: sale order {order.id} is cancelled",
            details={"return_id": ret.id, "sale_order_id": order.id},
        )

    line = _lock_line(ret.order_line_id)
    _check_remaining(line, ret.quantity)
    line.set_returned_quantity((line.returned_quantity or 0) + ret.quantity)

    _apply_stock(
        ret, MOVEMENT_RETURN_REINSTATED,
        restock_variant=current_app.config["RETURNS_RESTOCK_VARIANTS"],
    )

    ret.status = RETURN_STATUS_ACTIVE
    ret.annul_reason = None
    ret.annulled_at = None


# =============================================================================
# OPERATIONS
# =============================================================================

def create_return(
    sale_order_id: int,
    product_id: int,
    quantity: int,
    reason: str,
    *,
    variant_id: int | None = None,
    attempts: int | None = None,
) -> Return:
    """
    Record a return of `quantity` units of a product against a sale order.

    The line is found by order + product (+ variant when given). The amount
    is quantity times the line's snapshotted unit price.

    Raises:
        ValidationError: bad input, not a sale, or ambiguous product without variant_id
        NotFoundError: unknown sale order, or product not on the order
        StateError: sale order cancelled, or quantity exceeds what remains returnable
    """
    require_positive_int(sale_order_id, "sale_order_id")
    require_positive_int(product_id, "product_id")
    require_positive_int(quantity, "quantity")
    if variant_id is not None:
        require_positive_int(variant_id, "variant_id")
    reason = _clean_reason(reason)

    def _op() -> Return:
        order = _lock_sale_order(sale_order_id)
        if order.status == ORDER_STATUS_CANCELLED:
            raise StateError(
                f"Sale order {order.id} is cancelled",
                details={"sale_order_id": order.id, "status": order.status},
            )

        line = _lock_line(_resolve_line(order, product_id, variant_id).id)
        _check_remaining(line, quantity)

        ret = Return(
            sale_order_id=order.id,
            order_line_id=line.id,
            product_id=line.product_id,
            variant_id=line.variant_id,
            quantity=quantity,
            reason=reason,
            amount_cents=quantity * line.unit_price_cents,
            status=RETURN_STATUS_ACTIVE,
            refunded=False,
            created_at=utcnow(),
        )
        db.session.add(ret)
        line.set_returned_quantity((line.returned_quantity or 0) + quantity)
        db.session.flush()

        _apply_stock(ret, MOVEMENT_RETURN, restock_variant=current_app.config["RETURNS_RESTOCK_VARIANTS"])
        return ret

    ret = run_in_transaction(_op, attempts=attempts)
    logger.info(
        "Created return %s: sale_order=%s line=%s quantity=%s amount_cents=%s",
        ret.id, ret.sale_order_id, ret.order_line_id, ret.quantity, ret.amount_cents,
    )
    return ret


def toggle_return(return_id: int, *, reason: str | None = None, attempts: int | None = None) -> Return:
    """
    Flip a return between ACTIVE and ANNULLED.

    ACTIVE -> ANNULLED reverses the stock adjustment and frees the quantity on
    the line. ANNULLED -> ACTIVE re-applies both, subject to the same bound as
    creation, and is refused when the sale order has been cancelled.
    """
    def _op() -> Return:
        ret = _lock_return(return_id)
        if next_return_status(ret.status) == RETURN_STATUS_ANNULLED:
            _annul_locked(ret, reason)
        else:
            _reinstate_locked(ret)
        return ret

    ret = run_in_transaction(_op, attempts=attempts)
    logger.info("Toggled return %s to %s", ret.id, ret.status)
    return ret


def annul_return(return_id: int, reason: str | None = None, *, attempts: int | None = None) -> Return:
    """Explicit ACTIVE -> ANNULLED. Annulling an annulled return raises StateError."""
    def _op() -> Return:
        ret = _lock_return(return_id)
        _annul_locked(ret, reason)
        return ret

    ret = run_in_transaction(_op, attempts=attempts)
    logger.info("Annulled return %s: %s", ret.id, ret.annul_reason or "-")
    return ret


def mark_refunded(return_id: int, method: str | None = None, *, attempts: int | None = None) -> Return:
    """Flag a return as refunded. Bookkeeping only; no money moves here."""
    method = (method or "").strip() or current_app.config["DEFAULT_REFUND_METHOD"]

    def _op() -> Return:
        ret = _lock_return(return_id)
        if ret.status != RETURN_STATUS_ACTIVE:
            raise StateError(
                f"Return {ret.id} is annulled and cannot be refunded",
                details={"return_id": ret.id, "status": ret.status},
            )
        if ret.refunded:
            raise StateError(
                f"Return {ret.id} is already refunded",
                details={"return_id": ret.id, "refund_method": ret.refund_method},
            )
        ret.refunded = True
        ret.refund_method = method
        ret.refunded_at = utcnow()
        return ret

    ret = run_in_transaction(_op, attempts=attempts)
    logger.info("Marked return %s refunded via %s", ret.id, ret.refund_method)
    return ret


def update_return_reason(return_id: int, reason: str, *, attempts: int | None = None) -> Return:
    min_length = current_app.config["RETURN_REASON_MIN_LENGTH"]
    if not isinstance(reason, str) or len(reason.strip()) < min_length:
        raise ValidationError(
            f"Reason must be at least {min_length} characters",
            details={"field": "reason", "min_length": min_length},
        )
    reason = reason.strip()

    def _op() -> Return:
        ret = _lock_return(return_id)
        ret.reason = reason
        return ret

    ret = run_in_transaction(_op, attempts=attempts)
    logger.info("Updated reason on return %s", ret.id)
    return ret


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int) -> Return:
    ret = db.session.get(Return, return_id)
    if ret is None:
        raise NotFoundError(f"Return {return_id} not found", details={"return_id": return_id})
    return ret


def get_sale_returns(sale_order_id: int, *, status: str | None = None) -> list[Return]:
    order = db.session.get(Order, sale_order_id)
    if order is None or order.kind != ORDER_KIND_SALE:
        raise NotFoundError(f"Sale order {sale_order_id} not found", details={"sale_order_id": sale_order_id})

    q = db.session.query(Return).filter(Return.sale_order_id == sale_order_id)
    if status is not None:
        validate_status("return", status)
        q = q.filter(Return.status == status)
    return q.order_by(Return.id).all()


def get_product_returns(product_id: int, *, status: str | None = None) -> list[Return]:
    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

    q = db.session.query(Return).filter(Return.product_id == product_id)
    if status is not None:
        validate_status("return", status)
        q = q.filter(Return.status == status)
    return q.order_by(Return.created_at.desc(), Return.id.desc()).all()
