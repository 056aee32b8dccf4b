# Overview: Typed error taxonomy shared by the stock ledger, order engine and return engine.

"""
Every ledger failure is raised as a LedgerError subclass carrying a human
message plus a details dict (ids, requested vs. available quantities) so the
request layer can render a precise response. None of them are swallowed by
the services; the transaction coordinator rolls back and re-raises.

    ValidationError         bad input, caught before any write
    NotFoundError           unknown product, variant, order, line or return
    StateError              transition or cumulative-quantity rule violated
    InsufficientStockError  a counter would go negative
    ConcurrencyError        lock contention / concurrent modification
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for ledger operation errors."""

    kind = "ledger"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind, "details": self.details}


class ValidationError(LedgerError):
    kind = "validation"
    http_status = 400


class NotFoundError(LedgerError):
    kind = "not_found"
    http_status = 404


class StateError(LedgerError):
    kind = "state"
    http_status = 409


class InsufficientStockError(LedgerError):
    kind = "insufficient_stock"
    http_status = 409


class ConcurrencyError(LedgerError):
    kind = "concurrency"
    http_status = 409


def require_positive_int(value, field: str, *, line: int | None = None) -> int:
    """Return value unchanged, or raise ValidationError unless it is an int > 0 (bools rejected)."""
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        details = {"field": field, "value": value}
        if line is not None:
            details["line"] = line
        where = f" (line {line + 1})" if line is not None else ""
        raise ValidationError(f"{field} must be a positive integer{where}", details=details)
    return value
