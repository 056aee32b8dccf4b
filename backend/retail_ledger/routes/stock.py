# Overview: Read-only stock endpoints; counters and the movement journal.

from flask import Blueprint, current_app, jsonify, request

from ..services import stock_ledger
from ..services.errors import LedgerError
from ..validation import parse_int

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/products/<int:product_id>")
def stock_position_route(product_id: int):
    """Aggregate counter and per-variant counters side by side."""
    try:
        return jsonify(stock_ledger.get_stock_position(product_id)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get stock for product %s", product_id)
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/movements")
def list_movements_route():
    """
    Query params: variant_id, product_id, order_id, return_id, limit (default 200)
    """
    try:
        movements = stock_ledger.list_movements(
            variant_id=parse_int(request.args.get("variant_id"), "variant_id", required=False),
            product_id=parse_int(request.args.get("product_id"), "product_id", required=False),
            order_id=parse_int(request.args.get("order_id"), "order_id", required=False),
            return_id=parse_int(request.args.get("return_id"), "return_id", required=False),
            limit=parse_int(request.args.get("limit"), "limit", required=False) or 200,
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500
