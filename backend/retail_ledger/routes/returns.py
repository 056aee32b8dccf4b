# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..services import return_service
from ..services.errors import LedgerError, ValidationError
from ..validation import parse_int, parse_optional_str, require_json_object

returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("")
def create_return_route():
    """
    Record a return against a sale order.

    Request body:
    {
        "sale_order_id": 12,
        "product_id": 3,
        "variant_id": 7,  (optional unless the product is on several lines)
        "quantity": 2,
        "reason": "Wrong size"
    }

    Returns:
        201: Return created (ACTIVE)
        409: sale cancelled or quantity above what remains returnable
    """
    try:
        data = require_json_object(request.get_json(silent=True))

        ret = return_service.create_return(
            parse_int(data.get("sale_order_id"), "sale_order_id"),
            parse_int(data.get("product_id"), "product_id"),
            parse_int(data.get("quantity"), "quantity"),
            data.get("reason"),
            variant_id=parse_int(data.get("variant_id"), "variant_id", required=False),
        )
        return jsonify({"return": ret.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
def get_return_route(return_id: int):
    try:
        return jsonify({"return": return_service.get_return(return_id).to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get return %s", return_id)
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.patch("/<int:return_id>")
def update_return_route(return_id: int):
    """Only the reason is editable."""
    try:
        data = require_json_object(request.get_json(silent=True))
        if "reason" not in data:
            raise ValidationError("reason is required", details={"field": "reason"})

        ret = return_service.update_return_reason(return_id, data.get("reason"))
        return jsonify({"return": ret.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update return %s", return_id)
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/toggle")
def toggle_return_route(return_id: int):
    try:
        data = request.get_json(silent=True) or {}
        ret = return_service.toggle_return(return_id, reason=parse_optional_str(data.get("reason"), "reason"))
        return jsonify({"return": ret.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to toggle return %s", return_id)
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/annul")
def annul_return_route(return_id: int):
    try:
        data = request.get_json(silent=True) or {}
        ret = return_service.annul_return(return_id, parse_optional_str(data.get("reason"), "reason"))
        return jsonify({"return": ret.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to annul return %s", return_id)
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/refund")
def refund_return_route(return_id: int):
    """Marks the return refunded. No money moves."""
    try:
        data = request.get_json(silent=True) or {}
        method = parse_optional_str(data.get("method"), "method", max_length=32)
        ret = return_service.mark_refunded(return_id, method)
        return jsonify({"return": ret.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to refund return %s", return_id)
        return jsonify({"error": "Internal server error"}), 500
