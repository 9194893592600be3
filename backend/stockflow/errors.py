# Overview: Error kinds raised by the services and their HTTP mapping.

"""
StockFlow error hierarchy.

Every service raises one of these from its boundary. Routes roll back the
session and turn the error into JSON with ``error_response``. Only
``TransientStorageError`` is worth retrying; the rest are business or input
problems that will fail again with the same request.
"""

from __future__ import annotations

from flask import jsonify


class StockFlowError(Exception):
    """Base class: human-readable message plus a stable machine code."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(StockFlowError, ValueError):
    """400-level input problem (shape, enum, range)."""

    code = "validation_error"
    status_code = 400


class NotFoundError(StockFlowError):
    code = "not_found"
    status_code = 404


class ConflictError(StockFlowError, ValueError):
    """409-level conflict: duplicate key or illegal state transition."""

    code = "conflict"
    status_code = 409


class InsufficientStockError(StockFlowError):
    code = "insufficient_stock"
    status_code = 409


class CreditLimitExceededError(StockFlowError):
    code = "credit_limit_exceeded"
    status_code = 409


class CapacityExceededError(StockFlowError):
    code = "capacity_exceeded"
    status_code = 409


class DependencyBlockedError(StockFlowError):
    """Deletion refused because other rows still reference the entity."""

    code = "dependency_blocked"
    status_code = 409


class TransientStorageError(StockFlowError):
    """Lock timeout or optimistic version conflict that outlived the retries."""

    code = "transient_storage_error"
    status_code = 503


def error_response(exc: StockFlowError):
    return jsonify(exc.to_dict()), exc.status_code
