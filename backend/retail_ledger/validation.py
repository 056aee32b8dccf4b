"""
Request-body parsing for the JSON routes.

Strict about types: integers must arrive as JSON integers or plain digit
strings; floats, booleans and scientific notation are rejected. Everything
raises services.errors.ValidationError so routes render one error shape.
"""

from __future__ import annotations

from typing import Any

from .services.errors import ValidationError
from .services.order_service import OrderLineRequest
from .time_utils import parse_iso_datetime


def require_json_object(data: Any) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def parse_int(value: Any, field: str, *, required: bool = True, positive: bool = True) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required", details={"field": field})
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={"field": field})

    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        stripped = value.strip()
        digits = stripped[1:] if stripped.startswith("-") else stripped
        if not digits.isdigit():
            raise ValidationError(f"{field} must be an integer", details={"field": field, "value": value})
        parsed = int(stripped)
    else:
        raise ValidationError(f"{field} must be an integer", details={"field": field, "value": value})

    if positive and parsed <= 0:
        raise ValidationError(f"{field} must be a positive integer", details={"field": field, "value": parsed})
    return parsed


def parse_optional_str(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={"field": field})
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", details={"field": field})
    return value or None


def parse_datetime_arg(value: str | None, field: str):
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date or datetime", details={"field": field, "value": value})


def parse_order_lines(raw: Any) -> list[OrderLineRequest]:
    """Turn the request's "lines" array into OrderLineRequest objects."""
    if not isinstance(raw, list) or not raw:
        raise ValidationError("lines must be a non-empty array", details={"field": "lines"})

    lines = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(f"Line {index + 1} must be an object", details={"line": index})
        lines.append(OrderLineRequest(
            product_id=parse_int(item.get("product_id"), f"lines[{index}].product_id"),
            variant_id=parse_int(item.get("variant_id"), f"lines[{index}].variant_id"),
            quantity=parse_int(item.get("quantity"), f"lines[{index}].quantity"),
            unit_price_cents=parse_int(item.get("unit_price_cents"), f"lines[{index}].unit_price_cents", required=False),
        ))
    return lines
