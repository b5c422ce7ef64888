# Overview: Typed error taxonomy and the app-level handlers that map it to JSON responses.

"""
Typed error taxonomy for the fulfillment core.

Every error raised by a service that the transport layer may surface carries:
- status_code: HTTP status the API maps it to
- code: stable machine-readable identifier (clients switch on this, never on message text)
- details: structured payload (e.g. requested vs. available quantity)

Services raise; routes never catch. `register_error_handlers` installs one
Flask handler that serializes any CoreError via `to_dict()`.
"""
from __future__ import annotations

from typing import Any

from flask import Flask, current_app, jsonify
from werkzeug.exceptions import HTTPException


class CoreError(Exception):
    """Base class for all domain errors."""

    status_code = 400
    code = "core_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class ValidationError(CoreError, ValueError):
    """Malformed input; rejected before any side effect."""

    status_code = 400
    code = "validation_error"

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message, details)
        self.field = field


class NotFoundError(CoreError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} {entity_id} not found",
            {"entity": entity, "entity_id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class IllegalTransitionError(CoreError):
    """Status change outside the allowed table for the order's fulfillment type. Never retried."""

    status_code = 409
    code = "illegal_transition"

    def __init__(self, from_status: str, to_status: str, fulfillment_type: str):
        super().__init__(
            f"Cannot move {fulfillment_type} order from '{from_status}' to '{to_status}'",
            {
                "from": from_status,
                "to": to_status,
                "fulfillment_type": fulfillment_type,
            },
        )
        self.from_status = from_status
        self.to_status = to_status
        self.fulfillment_type = fulfillment_type


class InsufficientStockError(CoreError):
    """Requested quantity exceeds what the bucket can give; `available` lets the UI adjust."""

    status_code = 409
    code = "insufficient_stock"

    def __init__(self, *, variant_id: int, bucket: str, requested: int, available: int):
        super().__init__(
            f"Insufficient {bucket} stock for variant {variant_id}: "
            f"requested {requested}, available {available}",
            {
                "variant_id": variant_id,
                "bucket": bucket,
                "requested": requested,
                "available": available,
            },
        )
        self.variant_id = variant_id
        self.bucket = bucket
        self.requested = requested
        self.available = available


class MissingGuardDataError(CoreError):
    """Transition needs a field (rider, courier AWB, reason) that is not set yet."""

    status_code = 422
    code = "missing_guard_data"

    def __init__(self, field: str, target_status: str):
        super().__init__(
            f"'{field}' is required before moving to '{target_status}'",
            {"field": field, "target_status": target_status},
        )
        self.field = field
        self.target_status = target_status


class ConcurrentModificationError(CoreError):
    """Lock contention or version conflict survived all retries; caller may retry the whole operation once."""

    status_code = 409
    code = "concurrent_modification"

    def __init__(self, entity: str = "record", entity_id: Any = None):
        super().__init__(
            f"{entity} {entity_id} was modified concurrently; retry the operation"
            if entity_id is not None
            else f"{entity} was modified concurrently; retry the operation",
            {"entity": entity, "entity_id": entity_id},
        )


class InvalidTransactionStateError(CoreError):
    """Maker-checker action not permitted from the transaction's current status."""

    status_code = 409
    code = "invalid_transaction_state"

    def __init__(self, transaction_id: int, status: str, action: str):
        super().__init__(
            f"Cannot {action} inventory transaction {transaction_id}: current status is '{status}'",
            {"transaction_id": transaction_id, "status": status, "action": action},
        )
        self.transaction_id = transaction_id
        self.status = status
        self.action = action


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(CoreError)
    def handle_core_error(exc: CoreError):
        if exc.status_code >= 500:
            current_app.logger.error("Core error: %s", exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"error": exc.description, "code": exc.name.lower().replace(" ", "_")}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        current_app.logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error", "code": "internal_error"}), 500
