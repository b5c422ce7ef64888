# Overview: Flask API routes for maker-checker inventory transactions.

"""
Inventory Transaction API Routes

LIFECYCLE:
    POST /                      maker creates (pending), or auto_approve for trusted callers
    POST /<id>/approve          checker applies stock   (pending -> approved)
    POST /<id>/reject           checker refuses         (pending -> rejected, no stock effect)
    POST /<id>/void             reverse an approved one (approved -> voided)

Every status change is single-shot: repeating an approve/reject/void
returns 409 invalid_transaction_state and has no further effect.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import json_body, require_actor
from ..services import inventory_transaction_service
from ..validation import coerce_date, optional_int


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory/transactions")


@inventory_bp.post("/")
@require_actor
def create_transaction_route():
    """
    Create an inventory transaction.

    Request body:
    {
        "transaction_type": "purchase" | "purchase_return" | "damage" | "adjustment",
        "vendor_id": 3,                      (purchase / purchase_return)
        "reason": "Supplier sent wrong size", (required except purchase)
        "notes": "...",                      (optional)
        "transaction_date": "2025-01-15",    (optional, default: today in business timezone)
        "auto_approve": false,               (optional)
        "items": [
            {"variant_id": 1, "quantity": 5, "unit_cost_paisa": 120000,
             "source_type": "fresh" | "damaged"}
        ]
    }

    Quantities are entered positive; adjustments carry their own sign.

    Returns:
        201: Transaction created (pending, or approved when auto_approve)
        400: Invalid input
        404: Vendor or variant not found
        409: purchase_return exceeds current stock
    """
    data = json_body()
    tx = inventory_transaction_service.create_transaction(
        transaction_type=data.get("transaction_type"),
        items=data.get("items"),
        actor=g.actor,
        vendor_id=optional_int(data.get("vendor_id"), "vendor_id"),
        reason=data.get("reason"),
        notes=data.get("notes"),
        transaction_date=coerce_date(data.get("transaction_date"), "transaction_date"),
        auto_approve=bool(data.get("auto_approve", False)),
    )
    return jsonify({"transaction": tx.to_dict()}), 201


@inventory_bp.get("/")
def list_transactions_route():
    """
    Query params: status, transaction_type, vendor_id, limit, offset
    """
    rows, total = inventory_transaction_service.list_transactions(
        status=request.args.get("status"),
        transaction_type=request.args.get("transaction_type"),
        vendor_id=optional_int(request.args.get("vendor_id"), "vendor_id"),
        limit=optional_int(request.args.get("limit"), "limit") or 100,
        offset=optional_int(request.args.get("offset"), "offset") or 0,
    )
    return jsonify({
        "transactions": [tx.to_dict(include_items=False) for tx in rows],
        "total": total,
    })


@inventory_bp.get("/pending")
def pending_route():
    rows = inventory_transaction_service.list_pending_approvals()
    return jsonify({"transactions": [tx.to_dict() for tx in rows]})


@inventory_bp.get("/<int:transaction_id>")
def get_transaction_route(transaction_id: int):
    tx = inventory_transaction_service.get_transaction(transaction_id)
    return jsonify({"transaction": tx.to_dict()})


@inventory_bp.post("/<int:transaction_id>/approve")
@require_actor
def approve_route(transaction_id: int):
    tx = inventory_transaction_service.approve_transaction(transaction_id, actor=g.actor)
    return jsonify({"transaction": tx.to_dict()})


@inventory_bp.post("/<int:transaction_id>/reject")
@require_actor
def reject_route(transaction_id: int):
    """
    Request body: {"reason": "Quantities do not match the delivery note"}
    """
    data = json_body()
    tx = inventory_transaction_service.reject_transaction(
        transaction_id, actor=g.actor, reason=data.get("reason")
    )
    return jsonify({"transaction": tx.to_dict()})


@inventory_bp.post("/<int:transaction_id>/void")
@require_actor
def void_route(transaction_id: int):
    """
    Reverse an approved transaction's stock effect.

    Request body: {"reason": "Entered against the wrong vendor"}

    Returns:
        200: Voided
        409: Not approved, or reversal would drive stock negative
    """
    data = json_body()
    tx = inventory_transaction_service.void_transaction(
        transaction_id, actor=g.actor, reason=data.get("reason")
    )
    return jsonify({"transaction": tx.to_dict()})
