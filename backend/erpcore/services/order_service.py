# Overview: Order aggregate operations; every status change runs through transition_order.

"""
Order Service

================================================================================
PURPOSE: Create orders and move them through the fulfillment state machine
================================================================================

ONE UNIT OF WORK PER CALL:
    lock order row
    -> TransitionTable membership (IllegalTransitionError)
    -> apply logistics supplied with the request
    -> guards (MissingGuardDataError)
    -> Reservation Coordinator stock effects (InsufficientStockError)
    -> status + lifecycle timestamp
    -> one OrderLog row
    -> commit
    -> (after commit) fire-and-forget notification

Any failure before commit rolls back everything: no status without its stock
effect, no stock effect without its status.
================================================================================
"""

from __future__ import annotations

from datetime import datetime

from ..constants import (
    FULFILLMENT_INSIDE_VALLEY,
    FULFILLMENT_OUTSIDE_VALLEY,
    FULFILLMENT_STORE,
    FULFILLMENT_TYPES,
    LOG_CREATED,
    LOG_DELETED,
    LOG_FULFILLMENT_REASSIGNED,
    LOG_LOGISTICS_UPDATED,
    LOG_NOTE,
    LOG_RETURN_SETTLED,
    LOG_STATUS_CHANGE,
    ORDER_SOURCES,
    ORDER_STATUSES,
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    PRE_DISPATCH_STATUSES,
    QC_DAMAGED,
    QC_GOOD,
    QC_MISSING,
    RETURN_STATUS_NONE,
    RTO_CONDITIONS,
    STATUS_ASSIGNED,
    STATUS_CANCELLED,
    STATUS_CONVERTED,
    STATUS_DELIVERED,
    STATUS_HANDOVER_TO_COURIER,
    STATUS_LOST_IN_TRANSIT,
    STATUS_PACKED,
    STATUS_REJECTED,
    STATUS_RETURNED,
    STATUS_RTO_INITIATED,
    STATUS_RTO_VERIFICATION_PENDING,
    STATUS_STORE_SALE,
    STOCK_STATE_NONE,
    STOCK_STATE_RELEASED,
)
from ..errors import IllegalTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..logging_config import get_logger
from ..models import Order, OrderItem, OrderLog, Variant
from ..time_utils import utcnow
from ..validation import (
    MAX_LINE_QUANTITY,
    clean_text,
    coerce_datetime,
    coerce_int,
    optional_int,
    require_choice,
    require_items,
    require_money,
    require_positive_int,
    require_text,
)
from . import notification_service, reservation_service
from .concurrency import run_with_retry
from .document_service import next_document_number
from .order_log_service import append_order_log, lock_order
from .state_machine import LOGISTICS_FIELDS, check_guards, get_transition_table

logger = get_logger("orders")

REASSIGNABLE_TYPES = frozenset({FULFILLMENT_INSIDE_VALLEY, FULFILLMENT_OUTSIDE_VALLEY})

_TIMESTAMP_FIELDS = {
    STATUS_CONVERTED: "converted_at",
    STATUS_PACKED: "packed_at",
    STATUS_ASSIGNED: "dispatched_at",
    STATUS_HANDOVER_TO_COURIER: "dispatched_at",
    STATUS_STORE_SALE: "dispatched_at",
    STATUS_DELIVERED: "delivered_at",
    STATUS_CANCELLED: "cancelled_at",
    STATUS_REJECTED: "cancelled_at",
    STATUS_RETURNED: "returned_at",
}

# Whole-parcel RTO condition -> per-line QC outcome (None: leave lines pending)
_RTO_CONDITION_OUTCOMES = {
    "GOOD": QC_GOOD,
    "DAMAGED": QC_DAMAGED,
    "TAMPERED": QC_DAMAGED,
    "MISSING_ITEMS": QC_MISSING,
    "UNKNOWN": None,
}


# =============================================================================
# Creation
# =============================================================================

def _build_items(raw_items: list[dict]) -> list[OrderItem]:
    lines = []
    for index, raw in enumerate(require_items(raw_items)):
        field = f"items[{index}]"
        variant_id = coerce_int(raw.get("variant_id"), f"{field}.variant_id")
        quantity = require_positive_int(raw.get("quantity"), f"{field}.quantity", maximum=MAX_LINE_QUANTITY)

        variant = db.session.get(Variant, variant_id)
        if variant is None:
            raise NotFoundError("Variant", variant_id)
        if not variant.is_active or not variant.product.is_active:
            raise ValidationError(f"Variant {variant.sku} is inactive", field=f"{field}.variant_id")

        unit_price = raw.get("unit_price_paisa")
        unit_price = variant.selling_price_paisa if unit_price is None else require_money(
            unit_price, f"{field}.unit_price_paisa"
        )
        lines.append(
            OrderItem(
                variant_id=variant.id,
                sku=variant.sku,
                product_name=variant.product.name,
                quantity=quantity,
                unit_price_paisa=unit_price,
                unit_cost_paisa=variant.cost_price_paisa,
                total_price_paisa=unit_price * quantity,
            )
        )
    return lines


def create_order(
    *,
    fulfillment_type: str,
    customer: dict,
    items: list[dict],
    actor: str | None,
    payment_method: str | None = None,
    payment_status: str = "pending",
    source: str = "manual",
    discount_paisa: int = 0,
    shipping_charge_paisa: int = 0,
    destination_branch: str | None = None,
) -> Order:
    """
    Create an order in `intake`. No stock effect until conversion.

    customer: {"name", "phone", "address", "city", "customer_id"}; copied onto
    the order as the shipping snapshot.
    """
    require_choice(fulfillment_type, "fulfillment_type", FULFILLMENT_TYPES)
    if payment_method is None:
        payment_method = "cash" if fulfillment_type == FULFILLMENT_STORE else "cod"
    require_choice(payment_method, "payment_method", PAYMENT_METHODS)
    require_choice(payment_status, "payment_status", PAYMENT_STATUSES)
    require_choice(source, "source", ORDER_SOURCES)
    discount_paisa = require_money(discount_paisa, "discount_paisa")
    shipping_charge_paisa = require_money(shipping_charge_paisa, "shipping_charge_paisa")

    if not isinstance(customer, dict):
        raise ValidationError("customer must be an object", field="customer")
    shipping_name = require_text(customer.get("name"), "customer.name")
    shipping_phone = require_text(customer.get("phone"), "customer.phone")
    shipping_address = clean_text(customer.get("address"))
    if fulfillment_type != FULFILLMENT_STORE and not shipping_address:
        raise ValidationError("customer.address is required for delivery orders", field="customer.address")
    if destination_branch and fulfillment_type != FULFILLMENT_OUTSIDE_VALLEY:
        raise ValidationError("destination_branch only applies to outside_valley orders", field="destination_branch")

    def _op():
        lines = _build_items(items)
        subtotal = sum(line.total_price_paisa for line in lines)
        if discount_paisa > subtotal + shipping_charge_paisa:
            raise ValidationError("discount exceeds order value", field="discount_paisa")

        order = Order(
            order_number=next_document_number(document_type="ORDER", prefix="ORD"),
            fulfillment_type=fulfillment_type,
            source=source,
            payment_method=payment_method,
            payment_status=payment_status,
            customer_id=optional_int(customer.get("customer_id"), "customer.customer_id"),
            shipping_name=shipping_name,
            shipping_phone=shipping_phone,
            shipping_address=shipping_address,
            shipping_city=clean_text(customer.get("city")),
            subtotal_paisa=subtotal,
            discount_paisa=discount_paisa,
            shipping_charge_paisa=shipping_charge_paisa,
            total_paisa=subtotal - discount_paisa + shipping_charge_paisa,
            destination_branch=clean_text(destination_branch),
            stock_state=STOCK_STATE_NONE,
            created_by=actor,
        )
        order.items.extend(lines)
        db.session.add(order)
        db.session.flush()

        append_order_log(order, action=LOG_CREATED, actor=actor, new_status=order.status)
        db.session.commit()
        return order

    order = run_with_retry(_op, entity="Order")
    logger.info(
        "Order %s created (%s, %d lines, total=%s)",
        order.order_number, fulfillment_type, len(order.items), order.total_paisa,
    )
    return order


# =============================================================================
# Transitions
# =============================================================================

def _normalize_logistics(fields: dict) -> dict:
    unknown = set(fields) - LOGISTICS_FIELDS
    if unknown:
        raise ValidationError(f"Unknown logistics fields: {', '.join(sorted(unknown))}", field="logistics")
    cleaned = {}
    for key, value in fields.items():
        if value is None:
            continue
        cleaned[key] = coerce_int(value, key) if key == "assigned_rider_id" else clean_text(value)
    return cleaned


def _apply_logistics(order: Order, fields: dict) -> dict:
    """Write permitted logistics values; returns what actually changed."""
    table = get_transition_table(order.fulfillment_type)
    not_allowed = set(fields) - table.logistics_fields
    if not_allowed:
        raise ValidationError(
            f"{', '.join(sorted(not_allowed))} not applicable to {order.fulfillment_type} orders",
            field="logistics",
        )
    changed = {}
    for key, value in fields.items():
        if getattr(order, key) != value:
            setattr(order, key, value)
            changed[key] = value
    return changed


def _transition_inner(
    order: Order,
    target_status: str,
    *,
    actor: str | None,
    reason: str | None,
    logistics: dict | None = None,
    followup_date: datetime | None = None,
    payload: dict | None = None,
) -> OrderLog:
    from_status = order.status
    table = get_transition_table(order.fulfillment_type)
    table.assert_transition(from_status, target_status)

    changed = _apply_logistics(order, logistics or {})
    if followup_date is not None:
        order.followup_date = followup_date
    check_guards(order, target_status, reason)

    reservation_service.apply_transition_effects(order, from_status, target_status, actor)

    order.status = target_status
    if reason:
        order.status_reason = reason
    stamp = _TIMESTAMP_FIELDS.get(target_status)
    if stamp:
        setattr(order, stamp, utcnow())

    log_payload = dict(payload or {})
    if changed:
        log_payload["logistics"] = changed
    if followup_date is not None:
        log_payload["followup_date"] = followup_date.isoformat()
    return append_order_log(
        order,
        action=LOG_STATUS_CHANGE,
        actor=actor,
        reason=reason,
        old_status=from_status,
        new_status=target_status,
        payload=log_payload or None,
    )


def transition_order(
    order_id: int,
    target_status: str,
    *,
    actor: str | None,
    reason: str | None = None,
    followup_date=None,
    **logistics,
) -> Order:
    """
    Move an order to `target_status`.

    logistics may carry assigned_rider_id / courier_partner / awb_number /
    courier_tracking_id / destination_branch; they are written before guards
    run, so "assign rider and move to assigned" is one call.

    Raises:
        NotFoundError, ValidationError, IllegalTransitionError,
        MissingGuardDataError, InsufficientStockError, ConcurrentModificationError
    """
    if target_status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown order status '{target_status}'", field="status")
    reason = clean_text(reason)
    followup_dt = coerce_datetime(followup_date, "followup_date")
    logistics = _normalize_logistics(logistics)

    def _op():
        order = lock_order(order_id)
        from_status = order.status
        _transition_inner(
            order,
            target_status,
            actor=actor,
            reason=reason,
            logistics=logistics,
            followup_date=followup_dt,
        )
        snapshot = order.to_dict(include_items=False)
        db.session.commit()
        return order, from_status, snapshot

    order, from_status, snapshot = run_with_retry(_op, entity="Order", entity_id=order_id)
    logger.info(
        "Order %s: %s -> %s by %s (stock_state=%s)",
        order_id, from_status, target_status, actor, snapshot["stock_state"],
    )
    notification_service.notify_status_change(snapshot)
    return order


def mark_order_lost(order_id: int, *, actor: str | None, reason: str) -> Order:
    """Courier lost the parcel. No stock restoration; the shrink stays visible in the log."""
    return transition_order(order_id, STATUS_LOST_IN_TRANSIT, actor=actor, reason=reason)


def verify_rto_return(
    order_id: int,
    *,
    condition: str,
    actor: str | None,
    notes: str | None = None,
) -> Order:
    """
    Warehouse receives a courier RTO parcel: rto_initiated / rto_verification_pending -> returned.

    The recorded parcel condition settles every pending line through QC in
    the same unit (GOOD restocks, DAMAGED/TAMPERED quarantines, MISSING_ITEMS
    restores nothing). UNKNOWN leaves lines pending for settle_returned_items.
    """
    condition = require_choice(str(condition or "").upper(), "condition", RTO_CONDITIONS)
    notes = clean_text(notes)

    def _op():
        order = lock_order(order_id)
        if order.status not in (STATUS_RTO_INITIATED, STATUS_RTO_VERIFICATION_PENDING):
            raise IllegalTransitionError(order.status, STATUS_RETURNED, order.fulfillment_type)

        _transition_inner(
            order,
            STATUS_RETURNED,
            actor=actor,
            reason=notes or f"RTO verified: {condition}",
            payload={"return_condition": condition},
        )
        order.return_condition = condition
        order.return_notes = notes
        order.return_verified_by = actor
        order.return_received_at = utcnow()

        outcome = _RTO_CONDITION_OUTCOMES[condition]
        pending = reservation_service.pending_return_lines(order)
        if outcome is not None and pending:
            reservation_service.settle_return_lines(
                order, {item.id: outcome for item in pending}, actor
            )
        db.session.commit()
        return order

    order = run_with_retry(_op, entity="Order", entity_id=order_id)
    logger.info("Order %s RTO verified as %s by %s", order_id, condition, actor)
    return order


# =============================================================================
# Non-status mutations
# =============================================================================

def update_logistics(order_id: int, *, actor: str | None, **fields) -> Order:
    """Set rider / courier / branch data without changing status. Terminal orders are frozen."""
    fields = _normalize_logistics(fields)
    if not fields:
        raise ValidationError("No logistics fields supplied", field="logistics")

    def _op():
        order = lock_order(order_id)
        table = get_transition_table(order.fulfillment_type)
        if table.is_terminal(order.status):
            raise ValidationError(
                f"Order {order_id} is {order.status}; logistics can no longer change", field="status"
            )
        changed = _apply_logistics(order, fields)
        if changed:
            append_order_log(order, action=LOG_LOGISTICS_UPDATED, actor=actor, payload=changed)
        db.session.commit()
        return order

    return run_with_retry(_op, entity="Order", entity_id=order_id)


def reassign_fulfillment(order_id: int, new_type: str, *, actor: str | None, reason: str) -> Order:
    """
    Administrative swap between inside_valley and outside_valley before dispatch.

    Never to or from store. Logistics belonging to the old path are cleared.
    """
    require_choice(new_type, "fulfillment_type", FULFILLMENT_TYPES)
    reason = require_text(reason, "reason")
    if new_type not in REASSIGNABLE_TYPES:
        raise ValidationError("Orders cannot be reassigned to store fulfillment", field="fulfillment_type")

    def _op():
        order = lock_order(order_id)
        old_type = order.fulfillment_type
        if old_type not in REASSIGNABLE_TYPES:
            raise ValidationError("Store orders cannot be reassigned", field="fulfillment_type")
        if old_type == new_type:
            raise ValidationError(f"Order {order_id} is already {new_type}", field="fulfillment_type")
        if order.status not in PRE_DISPATCH_STATUSES:
            raise ValidationError(
                f"Cannot reassign fulfillment after dispatch (status={order.status})", field="status"
            )

        new_table = get_transition_table(new_type)
        cleared = {}
        for field in LOGISTICS_FIELDS - new_table.logistics_fields:
            if getattr(order, field) is not None:
                cleared[field] = getattr(order, field)
                setattr(order, field, None)

        order.fulfillment_type = new_type
        append_order_log(
            order,
            action=LOG_FULFILLMENT_REASSIGNED,
            actor=actor,
            reason=reason,
            old_status=order.status,
            new_status=order.status,
            payload={"from": old_type, "to": new_type, "cleared": cleared},
        )
        db.session.commit()
        return order

    order = run_with_retry(_op, entity="Order", entity_id=order_id)
    logger.info("Order %s fulfillment reassigned to %s by %s", order_id, new_type, actor)
    return order


def mark_items_picked_up(order_id: int, *, actor: str | None, item_ids: list[int] | None = None) -> Order:
    def _op():
        order = lock_order(order_id)
        lines = reservation_service.mark_lines_picked_up(order, item_ids)
        if lines:
            append_order_log(
                order,
                action=LOG_NOTE,
                actor=actor,
                reason="Return picked up from customer",
                payload={"item_ids": [item.id for item in lines]},
            )
        db.session.commit()
        return order

    return run_with_retry(_op, entity="Order", entity_id=order_id)


def settle_returned_items(order_id: int, *, outcomes: dict, actor: str | None) -> Order:
    """
    Hub QC for returned lines: {order_item_id: good | damaged | missing | wrong_item}.

    This is the only point where returned goods re-enter stock.
    """
    if not isinstance(outcomes, dict):
        raise ValidationError("outcomes must be an object", field="outcomes")
    parsed = {coerce_int(key, "outcomes.item_id"): str(value) for key, value in outcomes.items()}

    def _op():
        order = lock_order(order_id)
        settled = reservation_service.settle_return_lines(order, parsed, actor)
        append_order_log(
            order,
            action=LOG_RETURN_SETTLED,
            actor=actor,
            payload={str(item.id): item.return_condition for item in settled},
        )
        if order.has_exchange_pickup and not reservation_service.pending_return_lines(order):
            order.has_exchange_pickup = False
        db.session.commit()
        return order

    return run_with_retry(_op, entity="Order", entity_id=order_id)


def add_note(order_id: int, *, actor: str | None, note: str) -> OrderLog:
    note = require_text(note, "note")

    def _op():
        order = lock_order(order_id)
        entry = append_order_log(order, action=LOG_NOTE, actor=actor, reason=note)
        db.session.commit()
        return entry

    return run_with_retry(_op, entity="Order", entity_id=order_id)


def soft_delete_order(order_id: int, *, actor: str | None, reason: str) -> Order:
    """Hide an order that holds no stock. Rows are never removed."""
    reason = require_text(reason, "reason")

    def _op():
        order = lock_order(order_id)
        if order.stock_state not in (STOCK_STATE_NONE, STOCK_STATE_RELEASED):
            raise ValidationError(
                f"Order {order_id} still holds stock ({order.stock_state}); cancel it first",
                field="stock_state",
            )
        if any(item.return_status != RETURN_STATUS_NONE for item in order.items):
            raise ValidationError(
                f"Order {order_id} has return lines in progress or settled; it cannot be deleted",
                field="return_status",
            )
        order.is_deleted = True
        order.deleted_at = utcnow()
        order.deleted_by = actor
        append_order_log(order, action=LOG_DELETED, actor=actor, reason=reason)
        db.session.commit()
        return order

    order = run_with_retry(_op, entity="Order", entity_id=order_id)
    logger.info("Order %s soft-deleted by %s", order_id, actor)
    return order


# =============================================================================
# Reads
# =============================================================================

def get_order(order_id: int, *, include_deleted: bool = False) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or (order.is_deleted and not include_deleted):
        raise NotFoundError("Order", order_id)
    return order


def get_order_history(order_id: int) -> list[OrderLog]:
    order = get_order(order_id, include_deleted=True)
    return order.logs.order_by(OrderLog.id.asc()).all()


def list_exchange_children(order_id: int) -> list[Order]:
    get_order(order_id)
    return (
        db.session.query(Order)
        .filter(Order.parent_order_id == order_id, Order.is_deleted.is_(False))
        .order_by(Order.id.asc())
        .all()
    )


def list_orders(
    *,
    status: str | None = None,
    fulfillment_type: str | None = None,
    include_deleted: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Order], int]:
    query = db.session.query(Order)
    if not include_deleted:
        query = query.filter(Order.is_deleted.is_(False))
    if status:
        require_choice(status, "status", ORDER_STATUSES)
        query = query.filter(Order.status == status)
    if fulfillment_type:
        require_choice(fulfillment_type, "fulfillment_type", FULFILLMENT_TYPES)
        query = query.filter(Order.fulfillment_type == fulfillment_type)

    total = query.count()
    limit = max(1, min(limit, 500))
    rows = query.order_by(Order.id.desc()).offset(max(offset, 0)).limit(limit).all()
    return rows, total
