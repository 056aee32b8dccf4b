# Overview: Flask API routes for purchase and sale orders; parses input and returns JSON responses.

"""
Order API Routes

Purchases and sales share one engine; the routes only differ in which
counterparty field they read and which order kind they enforce on cancel.

ERRORS:
- LedgerError subclasses render {"error", "kind", "details"} with their HTTP status
- anything else is logged and returned as 500
"""

from flask import Blueprint, current_app, jsonify, request

from ..services import order_service, return_service
from ..services.errors import LedgerError
from ..services.lifecycle import ORDER_KIND_PURCHASE, ORDER_KIND_SALE
from ..validation import (
    parse_datetime_arg,
    parse_int,
    parse_optional_str,
    parse_order_lines,
    require_json_object,
)

orders_bp = Blueprint("orders", __name__, url_prefix="/api")


def _create(kind: str, counterparty_field: str):
    data = require_json_object(request.get_json(silent=True))
    counterparty_id = parse_int(data.get(counterparty_field), counterparty_field)
    lines = parse_order_lines(data.get("lines"))

    order = order_service.create_order(
        kind,
        counterparty_id,
        lines,
        payment_method=parse_optional_str(data.get("payment_method"), "payment_method", max_length=32),
        notes=parse_optional_str(data.get("notes"), "notes", max_length=2000),
    )
    return jsonify({"order": order.to_dict(include_lines=True)}), 201


def _cancel(kind: str, order_id: int):
    data = request.get_json(silent=True) or {}
    reason = parse_optional_str(data.get("reason"), "reason")
    order = order_service.cancel_order(order_id, reason, kind=kind)
    return jsonify({"order": order.to_dict(include_lines=True)}), 200


# =============================================================================
# PURCHASES
# =============================================================================

@orders_bp.post("/purchases")
def create_purchase_route():
    """
    Record a purchase from a supplier.

    Request body:
    {
        "supplier_id": 1,
        "lines": [{"product_id": 1, "variant_id": 2, "quantity": 10, "unit_price_cents": 450}],
        "payment_method": "CREDIT",  (optional)
        "notes": "..."  (optional)
    }

    Returns:
        201: Order with lines
        400/404/409: typed ledger error
    """
    try:
        return _create(ORDER_KIND_PURCHASE, "supplier_id")
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create purchase")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/purchases/<int:order_id>/cancel")
def cancel_purchase_route(order_id: int):
    try:
        return _cancel(ORDER_KIND_PURCHASE, order_id)
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel purchase %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SALES
# =============================================================================

@orders_bp.post("/sales")
def create_sale_route():
    """
    Record a sale to a customer. unit_price_cents per line is optional;
    without it the product's current (offer or list) price is snapshotted.

    Returns:
        201: Order with lines
        409: insufficient stock, with every short line in details.items
    """
    try:
        return _create(ORDER_KIND_SALE, "customer_id")
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/sales/<int:order_id>/cancel")
def cancel_sale_route(order_id: int):
    try:
        return _cancel(ORDER_KIND_SALE, order_id)
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel sale %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/sales/<int:order_id>/returns")
def list_sale_returns_route(order_id: int):
    try:
        status = request.args.get("status") or None
        returns = return_service.get_sale_returns(order_id, status=status)
        return jsonify({"returns": [r.to_dict() for r in returns]}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list returns for sale %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@orders_bp.get("/orders")
def list_orders_route():
    """
    Query params: kind, status, counterparty_id, from, to (ISO-8601), limit (default 100)
    """
    try:
        orders = order_service.list_orders(
            kind=request.args.get("kind") or None,
            status=request.args.get("status") or None,
            counterparty_id=parse_int(request.args.get("counterparty_id"), "counterparty_id", required=False),
            start=parse_datetime_arg(request.args.get("from"), "from"),
            end=parse_datetime_arg(request.args.get("to"), "to"),
            limit=parse_int(request.args.get("limit"), "limit", required=False) or 100,
        )
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/orders/<int:order_id>")
def get_order_route(order_id: int):
    try:
        return jsonify(order_service.get_order_summary(order_id)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500
