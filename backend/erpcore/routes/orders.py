# Overview: Flask API routes for the order aggregate and its fulfillment lifecycle.

"""
Order API Routes

WHY: Single entry point for every order mutation. Status only ever changes
through POST /<id>/transition (and the RTO/lost helpers built on it), which
runs the fulfillment-type state machine and the matching stock effect in
one database transaction.

ERRORS (mapped centrally, see errors.register_error_handlers):
    400 validation_error        malformed input
    404 not_found               unknown or soft-deleted order
    409 illegal_transition      status not reachable from current status
    409 insufficient_stock      reservation/deduction would go negative
    409 concurrent_modification lock contention survived retries
    422 missing_guard_data      rider / courier / reason not supplied
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import json_body, require_actor
from ..services import order_service
from ..services.state_machine import LOGISTICS_FIELDS, get_transition_table
from ..validation import optional_int


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _logistics_from(data: dict) -> dict:
    return {field: data[field] for field in LOGISTICS_FIELDS if field in data}


# =============================================================================
# ORDER CREATION & READS
# =============================================================================

@orders_bp.post("/")
@require_actor
def create_order_route():
    """
    Create an order in `intake`.

    Request body:
    {
        "fulfillment_type": "inside_valley" | "outside_valley" | "store",
        "customer": {"name": "Sita", "phone": "98XXXXXXXX",
                     "address": "Baneshwor", "city": "Kathmandu"},
        "items": [{"variant_id": 1, "quantity": 2, "unit_price_paisa": 250000}],
        "payment_method": "cod",          (optional)
        "source": "facebook",             (optional, default: manual)
        "discount_paisa": 0,              (optional)
        "shipping_charge_paisa": 10000,   (optional)
        "destination_branch": "Pokhara"   (optional, outside_valley only)
    }

    Returns:
        201: Order created (no stock effect until conversion)
        400: Invalid input, inactive variant
    """
    data = json_body()
    order = order_service.create_order(
        fulfillment_type=data.get("fulfillment_type"),
        customer=data.get("customer"),
        items=data.get("items"),
        actor=g.actor,
        payment_method=data.get("payment_method"),
        payment_status=data.get("payment_status", "pending"),
        source=data.get("source", "manual"),
        discount_paisa=data.get("discount_paisa", 0),
        shipping_charge_paisa=data.get("shipping_charge_paisa", 0),
        destination_branch=data.get("destination_branch"),
    )
    return jsonify({"order": order.to_dict()}), 201


@orders_bp.get("/")
def list_orders_route():
    """
    Query params: status, fulfillment_type, include_deleted, limit, offset
    """
    rows, total = order_service.list_orders(
        status=request.args.get("status"),
        fulfillment_type=request.args.get("fulfillment_type"),
        include_deleted=request.args.get("include_deleted", "").lower() in ("1", "true", "yes"),
        limit=optional_int(request.args.get("limit"), "limit") or 100,
        offset=optional_int(request.args.get("offset"), "offset") or 0,
    )
    return jsonify({"orders": [o.to_dict(include_items=False) for o in rows], "total": total})


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    order = order_service.get_order(order_id)
    table = get_transition_table(order.fulfillment_type)
    return jsonify({
        "order": order.to_dict(),
        "allowed_transitions": sorted(table.allowed_from(order.status)),
    })


@orders_bp.get("/<int:order_id>/history")
def order_history_route(order_id: int):
    logs = order_service.get_order_history(order_id)
    return jsonify({"history": [entry.to_dict() for entry in logs]})


@orders_bp.get("/transitions/<fulfillment_type>")
def transition_table_route(fulfillment_type: str):
    table = get_transition_table(fulfillment_type)
    return jsonify({"fulfillment_type": fulfillment_type, "transitions": table.as_dict()})


# =============================================================================
# LIFECYCLE
# =============================================================================

@orders_bp.post("/<int:order_id>/transition")
@require_actor
def transition_route(order_id: int):
    """
    Move an order to a new status.

    Request body:
    {
        "status": "assigned",
        "reason": "...",                   (cancel / reject / returns / follow_up / lost)
        "followup_date": "2025-01-20T09:00:00Z",   (follow_up)
        "assigned_rider_id": 7,            (inside_valley)
        "courier_partner": "NCM", "awb_number": "NCM123",   (outside_valley)
        "courier_tracking_id": "...", "destination_branch": "Pokhara"
    }

    Logistics fields are written before guards run, so assigning a rider and
    moving to `assigned` is a single call.

    Returns:
        200: Transitioned
        409: Illegal transition or insufficient stock
        422: Guard data missing
    """
    data = json_body()
    order = order_service.transition_order(
        order_id,
        data.get("status"),
        actor=g.actor,
        reason=data.get("reason"),
        followup_date=data.get("followup_date"),
        **_logistics_from(data),
    )
    return jsonify({"order": order.to_dict()})


@orders_bp.post("/<int:order_id>/logistics")
@require_actor
def update_logistics_route(order_id: int):
    """
    Request body: any of assigned_rider_id, courier_partner, awb_number,
    courier_tracking_id, destination_branch (only those valid for the
    order's fulfillment type).
    """
    data = json_body()
    order = order_service.update_logistics(order_id, actor=g.actor, **_logistics_from(data))
    return jsonify({"order": order.to_dict()})


@orders_bp.post("/<int:order_id>/reassign")
@require_actor
def reassign_route(order_id: int):
    """
    Request body: {"fulfillment_type": "outside_valley", "reason": "Customer moved to Pokhara"}
    """
    data = json_body()
    order = order_service.reassign_fulfillment(
        order_id, data.get("fulfillment_type"), actor=g.actor, reason=data.get("reason")
    )
    return jsonify({"order": order.to_dict()})


@orders_bp.post("/<int:order_id>/rto/verify")
@require_actor
def verify_rto_route(order_id: int):
    """
    Warehouse check of a courier return parcel.

    Request body:
    {
        "condition": "GOOD" | "DAMAGED" | "MISSING_ITEMS" | "TAMPERED" | "UNKNOWN",
        "notes": "Seal intact"   (optional)
    }
    """
    data = json_body()
    order = order_service.verify_rto_return(
        order_id, condition=data.get("condition"), actor=g.actor, notes=data.get("notes")
    )
    return jsonify({"order": order.to_dict()})


@orders_bp.post("/<int:order_id>/lost")
@require_actor
def mark_lost_route(order_id: int):
    data = json_body()
    order = order_service.mark_order_lost(order_id, actor=g.actor, reason=data.get("reason"))
    return jsonify({"order": order.to_dict()})


# =============================================================================
# RETURN LOGISTICS
# =============================================================================

@orders_bp.post("/<int:order_id>/returns/pickup")
@require_actor
def pickup_route(order_id: int):
    """
    Request body: {"item_ids": [12, 13]}   (optional; default: every pending line)
    """
    data = json_body()
    order = order_service.mark_items_picked_up(order_id, actor=g.actor, item_ids=data.get("item_ids"))
    return jsonify({"order": order.to_dict()})


@orders_bp.post("/<int:order_id>/returns/settle")
@require_actor
def settle_route(order_id: int):
    """
    Hub QC.

    Request body: {"outcomes": {"12": "good", "13": "damaged"}}
    """
    data = json_body()
    order = order_service.settle_returned_items(order_id, outcomes=data.get("outcomes"), actor=g.actor)
    return jsonify({"order": order.to_dict()})


# =============================================================================
# NOTES & DELETION
# =============================================================================

@orders_bp.post("/<int:order_id>/notes")
@require_actor
def add_note_route(order_id: int):
    data = json_body()
    entry = order_service.add_note(order_id, actor=g.actor, note=data.get("note"))
    return jsonify({"log": entry.to_dict()}), 201


@orders_bp.delete("/<int:order_id>")
@require_actor
def delete_order_route(order_id: int):
    """
    Soft delete. Only orders holding no stock (none / released) can be deleted.

    Request body: {"reason": "Duplicate entry"}
    """
    data = json_body()
    order = order_service.soft_delete_order(order_id, actor=g.actor, reason=data.get("reason"))
    return jsonify({"order": order.to_dict(include_items=False)})
