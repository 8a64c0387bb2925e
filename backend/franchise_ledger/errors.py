"""
Domain errors shared by every service.

Each error carries a machine-readable ``kind``, a human-readable message and
an optional ``details`` dict. Routes map them to HTTP status codes with
``error_response``; bulk imports flatten them into per-row entries.
"""
from __future__ import annotations

from typing import Any

from flask import jsonify


class LedgerError(Exception):
    """Base class for failures raised by the ledger services."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None, *, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.field:
            payload["field"] = self.field
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LedgerError):
    """400-level input problem."""

    kind = "validation"
    status_code = 400


class AccessDeniedError(LedgerError):
    """Caller's scope does not cover the tenant or entity."""

    kind = "access_denied"
    status_code = 403


class NotFoundError(LedgerError):
    kind = "not_found"
    status_code = 404


class ConflictError(LedgerError):
    """409-level business rule conflict (e.g., illegal state transition)."""

    kind = "conflict"
    status_code = 409


class DuplicateKeyError(ConflictError):
    """Unique business key (SKU, invoice number) already taken."""

    kind = "duplicate_key"


class InsufficientStockError(ConflictError):
    kind = "insufficient_stock"

    def __init__(self, available: int, requested: int, message: str | None = None, *, field: str | None = None):
        super().__init__(
            message or f"Insufficient stock. Available: {available}, requested: {requested}",
            {"available": available, "requested": requested},
            field=field,
        )
        self.available = available
        self.requested = requested


def error_response(exc: LedgerError):
    return jsonify(exc.to_dict()), exc.status_code
