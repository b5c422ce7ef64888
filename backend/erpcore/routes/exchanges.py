# Overview: Flask API routes for post-sale exchanges, refunds and add-ons.

from flask import Blueprint, g, jsonify, request

from ..decorators import json_body, require_actor
from ..services import exchange_service, order_service


exchanges_bp = Blueprint("exchanges", __name__, url_prefix="/api/orders/<int:order_id>/exchanges")


@exchanges_bp.post("/")
@require_actor
def reconcile_route(order_id: int):
    """
    Record an exchange against a delivered order as a child order.

    Request body:
    {
        "reason": "Size too small",
        "return_items": [{"variant_id": 1, "quantity": 1}],
        "new_items": [{"variant_id": 2, "quantity": 1}],
        "idempotency_key": "..."    (optional; also read from Idempotency-Key header)
    }

    Returns:
        201: Child order created
        200: Same idempotency key replayed; existing child returned
        400: Parent not delivered, quantities exceed what can be returned
        409: Not enough stock for new items
    """
    data = json_body()
    result = exchange_service.reconcile(
        order_id,
        return_items=data.get("return_items"),
        new_items=data.get("new_items"),
        reason=data.get("reason"),
        actor=g.actor,
        idempotency_key=data.get("idempotency_key") or request.headers.get("Idempotency-Key"),
    )
    body = {
        "child_order": result["child_order"].to_dict(),
        "return_total_paisa": result["return_total"],
        "new_total_paisa": result["new_total"],
        "net_amount_paisa": result["net_amount"],
        "exchange_type": result["exchange_type"],
        "replayed": result["replayed"],
    }
    return jsonify(body), 200 if result["replayed"] else 201


@exchanges_bp.get("/")
def list_exchanges_route(order_id: int):
    children = order_service.list_exchange_children(order_id)
    return jsonify({"exchanges": [child.to_dict() for child in children]})
