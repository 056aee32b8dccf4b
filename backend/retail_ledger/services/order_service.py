"""
Order Engine - purchase and sale orders against the stock ledger

create_order():
    validate counterparty and every line (fail-fast, no writes)
    -> sales only: lock the variant rows, pre-check stock, report every deficit
    -> persist header (ACTIVE) + lines
    -> one ledger call per line: +quantity for purchases, -quantity for sales
    -> commit as one unit; a failing ledger call rolls back header and lines

cancel_order():
    lock the order -> ACTIVE -> CANCELLED through the transition table
    -> reverse each PERSISTED line through the ledger (catalog state is not consulted)
    -> stamp reason and timestamp -> commit as one unit

Unit prices are snapshotted onto the line at creation and never recomputed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Customer, Order, OrderLine, Product, Return, Supplier, Variant
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .errors import InsufficientStockError, NotFoundError, ValidationError, require_positive_int
from .lifecycle import (
    ORDER_KIND_PURCHASE,
    ORDER_KIND_SALE,
    ORDER_KINDS,
    ORDER_STATUS_ACTIVE,
    ORDER_STATUS_CANCELLED,
    RETURN_STATUS_ACTIVE,
    require_transition,
    validate_status,
)
from .stock_ledger import (
    MOVEMENT_PURCHASE,
    MOVEMENT_PURCHASE_CANCELLED,
    MOVEMENT_SALE,
    MOVEMENT_SALE_CANCELLED,
    adjust_variant_stock,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderLineRequest:
    """One requested line. unit_price_cents is required for purchases and optional for sales."""
    product_id: int
    variant_id: int
    quantity: int
    unit_price_cents: int | None = None

    @classmethod
    def from_mapping(cls, data: Mapping) -> "OrderLineRequest":
        return cls(
            product_id=data.get("product_id"),
            variant_id=data.get("variant_id"),
            quantity=data.get("quantity"),
            unit_price_cents=data.get("unit_price_cents"),
        )


@dataclass(frozen=True)
class _ResolvedLine:
    product: Product
    variant: Variant
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


def _order_label(kind: str | None) -> str:
    if kind == ORDER_KIND_PURCHASE:
        return "Purchase order"
    if kind == ORDER_KIND_SALE:
        return "Sale order"
    return "Order"


# =============================================================================
# VALIDATION (no writes)
# =============================================================================

def _resolve_counterparty(kind: str, counterparty_id: int) -> Supplier | Customer:
    model, label = (Supplier, "Supplier") if kind == ORDER_KIND_PURCHASE else (Customer, "Customer")

    party = db.session.get(model, counterparty_id)
    if party is None or not party.is_active:
        raise ValidationError(
            f"{label} {counterparty_id} is not valid",
            details={"counterparty_id": counterparty_id, "counterparty_type": label.lower()},
        )
    return party


def _resolve_unit_price(kind: str, product: Product, requested: int | None, line: int) -> int:
    if kind == ORDER_KIND_PURCHASE:
        if requested is None:
            raise ValidationError(
                f"unit_price_cents is required for purchase lines (line {line + 1})",
                details={"field": "unit_price_cents", "line": line},
            )
        return require_positive_int(requested, "unit_price_cents", line=line)

    if requested is not None:
        return require_positive_int(requested, "unit_price_cents", line=line)

    price = product.current_sale_price_cents()
    if not price or price <= 0:
        raise ValidationError(
            f"Product {product.name} has no sale price",
            details={"product_id": product.id, "line": line},
        )
    return price


def _resolve_lines(kind: str, lines: list) -> list[_ResolvedLine]:
    resolved: list[_ResolvedLine] = []
    seen_variants: set[int] = set()

    for index, raw in enumerate(lines):
        request = OrderLineRequest.from_mapping(raw) if isinstance(raw, Mapping) else raw
        if not isinstance(request, OrderLineRequest):
            raise ValidationError(f"Line {index + 1} is malformed", details={"line": index})

        product_id = require_positive_int(request.product_id, "product_id", line=index)
        variant_id = require_positive_int(request.variant_id, "variant_id", line=index)
        quantity = require_positive_int(request.quantity, "quantity", line=index)

        if variant_id in seen_variants:
            raise ValidationError(
                f"Variant {variant_id} appears on more than one line",
                details={"variant_id": variant_id, "line": index},
            )
        seen_variants.add(variant_id)

        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id, "line": index})

        variant = db.session.get(Variant, variant_id)
        if variant is None or variant.product_id != product.id:
            raise NotFoundError(
                f"Variant {variant_id} not found for product {product_id}",
                details={"product_id": product_id, "variant_id": variant_id, "line": index},
            )

        if kind == ORDER_KIND_SALE:
            if not product.is_active:
                raise ValidationError(f"Product {product.name} is inactive", details={"product_id": product.id})
            if not variant.is_active:
                raise ValidationError(
                    f"Variant {variant.label} of {product.name} is not available",
                    details={"product_id": product.id, "variant_id": variant.id},
                )

        unit_price_cents = _resolve_unit_price(kind, product, request.unit_price_cents, index)
        resolved.append(_ResolvedLine(product, variant, quantity, unit_price_cents))

    return resolved


def _check_sale_stock(resolved: list[_ResolvedLine]) -> None:
    """Lock every variant on the sale (ascending id) and report all shortfalls at once."""
    variant_ids = sorted(item.variant.id for item in resolved)
    locked = {
        v.id: v
        for v in lock_for_update(
            db.session.query(Variant).filter(Variant.id.in_(variant_ids)).order_by(Variant.id)
        ).populate_existing().all()
    }

    insufficient = []
    for item in resolved:
        available = locked[item.variant.id].stock_quantity
        if available < item.quantity:
            insufficient.append({
                "product_id": item.product.id,
                "product_name": item.product.name,
                "variant_id": item.variant.id,
                "variant_label": item.variant.label,
                "requested_quantity": item.quantity,
                "available_quantity": available,
                "deficit": item.quantity - available,
            })

    if insufficient:
        message = "; ".join(
            f"Insufficient stock for {d['product_name']} - {d['variant_label']}: "
            f"requested {d['requested_quantity']}, available {d['available_quantity']} (short {d['deficit']})"
            for d in insufficient
        )
        raise InsufficientStockError(message, details={"items": insufficient})


# =============================================================================
# CREATION
# =============================================================================

def create_order(
    kind: str,
    counterparty_id: int,
    lines: Iterable,
    *,
    payment_method: str | None = None,
    notes: str | None = None,
    attempts: int | None = None,
) -> Order:
    """
    Create a purchase or sale order and move stock for every line.

    Args:
        kind: PURCHASE or SALE
        counterparty_id: Supplier id for purchases, Customer id for sales
        lines: OrderLineRequest objects or mappings with the same keys
        payment_method: label stored on the header (defaults per kind)
        notes: free text
        attempts: opt-in retries on contention (default LEDGER_RETRY_ATTEMPTS)

    Raises:
        ValidationError, NotFoundError: before any write
        InsufficientStockError: a sale line exceeds available stock
        ConcurrencyError: contention detected at commit
    """
    if kind not in ORDER_KINDS:
        raise ValidationError(
            f"Invalid order kind '{kind}'. Must be one of: {', '.join(sorted(ORDER_KINDS))}",
            details={"kind": kind},
        )

    label = "Supplier" if kind == ORDER_KIND_PURCHASE else "Customer"
    if counterparty_id is None:
        raise ValidationError(f"{label} is required", details={"field": "counterparty_id"})
    require_positive_int(counterparty_id, "counterparty_id")

    lines = list(lines or [])
    if not lines:
        raise ValidationError("Order must include at least one line", details={"field": "lines"})

    if payment_method is None:
        payment_method = current_app.config[
            "DEFAULT_PURCHASE_PAYMENT_METHOD" if kind == ORDER_KIND_PURCHASE else "DEFAULT_SALE_PAYMENT_METHOD"
        ]

    def _op() -> Order:
        party = _resolve_counterparty(kind, counterparty_id)
        resolved = _resolve_lines(kind, lines)

        if kind == ORDER_KIND_SALE:
            _check_sale_stock(resolved)

        order = Order(
            kind=kind,
            supplier_id=party.id if kind == ORDER_KIND_PURCHASE else None,
            customer_id=party.id if kind == ORDER_KIND_SALE else None,
            status=ORDER_STATUS_ACTIVE,
            total_cents=sum(item.line_total_cents for item in resolved),
            payment_method=payment_method,
            notes=notes,
            created_at=utcnow(),
        )
        db.session.add(order)

        persisted = []
        for item in resolved:
            line = OrderLine(
                order=order,
                product_id=item.product.id,
                variant_id=item.variant.id,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                line_total_cents=item.line_total_cents,
                returned_quantity=0 if kind == ORDER_KIND_SALE else None,
            )
            db.session.add(line)
            persisted.append(line)
        db.session.flush()

        for line in sorted(persisted, key=lambda l: l.variant_id):
            if kind == ORDER_KIND_PURCHASE:
                adjust_variant_stock(
                    line.variant_id, line.quantity,
                    reason=MOVEMENT_PURCHASE, order_id=order.id, order_line_id=line.id,
                )
            else:
                adjust_variant_stock(
                    line.variant_id, -line.quantity,
                    reason=MOVEMENT_SALE, order_id=order.id, order_line_id=line.id,
                )

        return order

    order = run_in_transaction(_op, attempts=attempts)
    logger.info(
        "Created %s %s: %d line(s), total_cents=%s",
        _order_label(kind).lower(), order.id, len(lines), order.total_cents,
    )
    return order


def create_purchase_order(supplier_id: int, lines: Iterable, **kwargs) -> Order:
    """Record a purchase from a supplier; every line increases its variant's stock."""
    return create_order(ORDER_KIND_PURCHASE, supplier_id, lines, **kwargs)


def create_sale_order(customer_id: int, lines: Iterable, **kwargs) -> Order:
    """Record a sale to a customer; every line decreases its variant's stock."""
    return create_order(ORDER_KIND_SALE, customer_id, lines, **kwargs)


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_order(
    order_id: int,
    reason: str | None = None,
    *,
    kind: str | None = None,
    attempts: int | None = None,
) -> Order:
    """
    Cancel an active order and reverse its stock movements.

    The reversal is derived from the persisted lines only. Cancelling a
    purchase whose units have since been sold fails with
    InsufficientStockError and leaves the order active.

    Raises:
        NotFoundError: unknown order, or kind given and not matching
        StateError: order already cancelled
        InsufficientStockError: reversal would make a variant negative
    """
    label = _order_label(kind)

    def _op() -> Order:
        order = lock_for_update(
            db.session.query(Order).filter_by(id=order_id)
        ).populate_existing().first()
        if order is None or (kind is not None and order.kind != kind):
            raise NotFoundError(f"{label} {order_id} not found", details={"order_id": order_id})

        require_transition(
            "order", order.status, ORDER_STATUS_CANCELLED,
            entity_id=order.id, label=_order_label(order.kind),
        )

        lines = (
            db.session.query(OrderLine)
            .filter_by(order_id=order.id)
            .order_by(OrderLine.variant_id)
            .all()
        )
        for line in lines:
            if order.kind == ORDER_KIND_PURCHASE:
                adjust_variant_stock(
                    line.variant_id, -line.quantity,
                    reason=MOVEMENT_PURCHASE_CANCELLED, order_id=order.id, order_line_id=line.id,
                )
            else:
                adjust_variant_stock(
                    line.variant_id, line.quantity,
                    reason=MOVEMENT_SALE_CANCELLED, order_id=order.id, order_line_id=line.id,
                )

        order.status = ORDER_STATUS_CANCELLED
        order.cancel_reason = (reason or "").strip() or current_app.config["DEFAULT_CANCEL_REASON"]
        order.cancelled_at = utcnow()
        return order

    order = run_in_transaction(_op, attempts=attempts)
    logger.info("Cancelled %s %s: %s", _order_label(order.kind).lower(), order.id, order.cancel_reason)
    return order


def cancel_purchase_order(order_id: int, reason: str | None = None, **kwargs) -> Order:
    return cancel_order(order_id, reason, kind=ORDER_KIND_PURCHASE, **kwargs)


def cancel_sale_order(order_id: int, reason: str | None = None, **kwargs) -> Order:
    return cancel_order(order_id, reason, kind=ORDER_KIND_SALE, **kwargs)


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int, *, kind: str | None = None) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or (kind is not None and order.kind != kind):
        raise NotFoundError(f"{_order_label(kind)} {order_id} not found", details={"order_id": order_id})
    return order


def list_orders(
    *,
    kind: str | None = None,
    status: str | None = None,
    counterparty_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
) -> list[Order]:
    """Newest first. start/end are inclusive bounds on created_at."""
    q = db.session.query(Order)

    if kind is not None:
        if kind not in ORDER_KINDS:
            raise ValidationError(f"Invalid order kind '{kind}'", details={"kind": kind})
        q = q.filter(Order.kind == kind)

    if status is not None:
        validate_status("order", status)
        q = q.filter(Order.status == status)

    if counterparty_id is not None:
        if kind is None:
            raise ValidationError("kind is required when filtering by counterparty")
        column = Order.supplier_id if kind == ORDER_KIND_PURCHASE else Order.customer_id
        q = q.filter(column == counterparty_id)

    if start is not None:
        q = q.filter(Order.created_at >= start)
    if end is not None:
        q = q.filter(Order.created_at <= end)

    return q.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def get_order_summary(order_id: int) -> dict:
    """
    Order with its lines and, for sales, the value of active returns.

    Returns:
        - order: header with lines
        - returned_cents: sum of active return amounts (sales only, else 0)
        - net_total_cents: total_cents - returned_cents
    """
    order = get_order(order_id)

    returned_cents = 0
    if order.kind == ORDER_KIND_SALE:
        returned_cents = int(
            db.session.query(func.coalesce(func.sum(Return.amount_cents), 0))
            .filter(Return.sale_order_id == order.id, Return.status == RETURN_STATUS_ACTIVE)
            .scalar()
            or 0
        )

    return {
        "order": order.to_dict(include_lines=True),
        "returned_cents": returned_cents,
        "net_total_cents": order.total_cents - returned_cents,
    }
