# Overview: Reservation Coordinator; binds order status transitions to Stock Ledger effects.

"""
Reservation Coordinator

================================================================================
PURPOSE: Turn an accepted status transition into the matching stock effect
================================================================================

Order.stock_state records what has already been done for an order, so every
effect fires at most once no matter which path the order takes:

    none --convert--> reserved --dispatch--> deducted
      |                  |                      |
      |                  +--cancel--> released  +--cancel (goods never left)--> released
      +--walk-in store_sale--> deducted

TRANSITION -> EFFECT
    -> converted                      reserve every line (all lines or none)
    -> packed                         nothing; reservation persists
    -> assigned / handover_to_courier
       / store_sale                   consume reservation: reserved -q, sellable -q
                                      (walk-in store_sale with no reservation:
                                      sellable -q against available stock)
    -> cancelled / rejected           reserved: release reserved -q
                                      deducted: sellable +q (restocked at origin)
    -> return_initiated / rto_initiated
                                      lines flagged pending_pickup, no stock
    -> returned                       nothing until QC: settle_return_lines()
    -> lost_in_transit                pending return lines written off as missing
    -> delivered                      fulfilled_quantity = quantity

Units already taken back through exchange children are not flagged again
on the parent, so a physical unit is restocked at most once.

QC SETTLEMENT (per returned line, exactly once):
    good               sellable +q   -> received_hub
    damaged            damaged  +q   -> damaged_hub
    missing/wrong_item nothing       -> missing

None of the functions here commit. Callers (order_service, exchange_service)
run them inside the same unit of work as the status change, so a stock
failure aborts the transition and vice versa.
================================================================================
"""

from __future__ import annotations

from collections import defaultdict

from sqlalchemy import or_

from ..constants import (
    BUCKET_DAMAGED,
    BUCKET_RESERVED,
    BUCKET_SELLABLE,
    CAUSAL_ORDER,
    QC_DAMAGED,
    QC_GOOD,
    QC_MISSING,
    QC_OUTCOMES,
    RETURN_STATUS_DAMAGED_HUB,
    RETURN_STATUS_MISSING,
    RETURN_STATUS_NONE,
    RETURN_STATUS_PENDING_PICKUP,
    RETURN_STATUS_PICKED_UP,
    RETURN_STATUS_RECEIVED_HUB,
    STATUS_ASSIGNED,
    STATUS_CANCELLED,
    STATUS_CONVERTED,
    STATUS_DELIVERED,
    STATUS_HANDOVER_TO_COURIER,
    STATUS_LOST_IN_TRANSIT,
    STATUS_REJECTED,
    STATUS_RETURN_INITIATED,
    STATUS_RTO_INITIATED,
    STATUS_STORE_SALE,
    STOCK_STATE_DEDUCTED,
    STOCK_STATE_NONE,
    STOCK_STATE_RELEASED,
    STOCK_STATE_RESERVED,
)
from ..errors import ValidationError
from ..extensions import db
from ..logging_config import get_logger
from ..models import Order, OrderItem
from ..time_utils import utcnow
from .stock_ledger_service import apply_adjustment, get_variant_for_update

logger = get_logger("reservations")

DISPATCH_STATUSES = frozenset({STATUS_ASSIGNED, STATUS_HANDOVER_TO_COURIER, STATUS_STORE_SALE})
RELEASE_STATUSES = frozenset({STATUS_CANCELLED, STATUS_REJECTED})
PICKUP_STATUSES = frozenset({STATUS_RETURN_INITIATED, STATUS_RTO_INITIATED})
PENDING_RETURN_STATUSES = frozenset({RETURN_STATUS_PENDING_PICKUP, RETURN_STATUS_PICKED_UP})


def _outbound_lines(order: Order) -> list[OrderItem]:
    return [item for item in order.items if item.quantity > 0]


def _quantities_by_variant(items: list[OrderItem]) -> dict[int, int]:
    """Aggregate per variant, sorted by variant id so concurrent orders lock rows in the same order."""
    totals: dict[int, int] = defaultdict(int)
    for item in items:
        totals[item.variant_id] += abs(item.quantity)
    return dict(sorted(totals.items()))


def _ledger(order: Order, variant_id: int, bucket: str, delta: int, reason: str, actor: str | None) -> None:
    apply_adjustment(
        variant_id=variant_id,
        bucket=bucket,
        delta=delta,
        causal_type=CAUSAL_ORDER,
        causal_id=order.id,
        reason=f"{reason} {order.order_number}",
        actor=actor,
    )


# =============================================================================
# Order-level effects
# =============================================================================

def reserve_order(order: Order, actor: str | None) -> None:
    """Reserve every outbound line. Raises InsufficientStockError on the first short variant."""
    if order.stock_state != STOCK_STATE_NONE:
        return
    for variant_id, quantity in _quantities_by_variant(_outbound_lines(order)).items():
        _ledger(order, variant_id, BUCKET_RESERVED, quantity, "Reserved for order", actor)
    order.stock_state = STOCK_STATE_RESERVED


def deduct_order(order: Order, actor: str | None) -> None:
    """
    Goods leave the shelf. Consumes the reservation when there is one,
    otherwise deducts straight from available stock (walk-in store sale).
    """
    if order.stock_state == STOCK_STATE_DEDUCTED:
        return
    if order.stock_state == STOCK_STATE_RELEASED:
        raise ValidationError(f"Order {order.id} stock was already released", field="stock_state")

    consume_reservation = order.stock_state == STOCK_STATE_RESERVED
    for variant_id, quantity in _quantities_by_variant(_outbound_lines(order)).items():
        variant = get_variant_for_update(variant_id)
        if consume_reservation:
            apply_adjustment(
                variant_id=variant_id,
                bucket=BUCKET_RESERVED,
                delta=-quantity,
                causal_type=CAUSAL_ORDER,
                causal_id=order.id,
                reason=f"Reservation consumed {order.order_number}",
                actor=actor,
                variant=variant,
            )
        apply_adjustment(
            variant_id=variant_id,
            bucket=BUCKET_SELLABLE,
            delta=-quantity,
            causal_type=CAUSAL_ORDER,
            causal_id=order.id,
            reason=f"Dispatched {order.order_number}",
            actor=actor,
            variant=variant,
        )
    order.stock_state = STOCK_STATE_DEDUCTED


def release_order(order: Order, actor: str | None) -> None:
    """
    Undo whatever the order holds:
    - reserved: give the reservation back (sellable unchanged)
    - deducted: goods were picked but never left our hands, put them back on the shelf
    """
    if order.stock_state == STOCK_STATE_RESERVED:
        for variant_id, quantity in _quantities_by_variant(_outbound_lines(order)).items():
            _ledger(order, variant_id, BUCKET_RESERVED, -quantity, "Reservation released", actor)
        order.stock_state = STOCK_STATE_RELEASED
    elif order.stock_state == STOCK_STATE_DEDUCTED:
        for variant_id, quantity in _quantities_by_variant(_outbound_lines(order)).items():
            _ledger(order, variant_id, BUCKET_SELLABLE, quantity, "Restocked after cancellation", actor)
        order.stock_state = STOCK_STATE_RELEASED


def returnable_quantity(item: OrderItem) -> int:
    """Units this line sends back when it settles."""
    if item.return_quantity is not None:
        return item.return_quantity
    return abs(item.quantity)


def exchange_returned_quantities(order: Order) -> dict[int, int]:
    """
    Units per variant taken back through the order's exchange children.

    Deleted children still count once any of their return lines has moved
    past `none`.
    """
    returned: dict[int, int] = defaultdict(int)
    rows = (
        db.session.query(OrderItem.variant_id, OrderItem.quantity)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            Order.parent_order_id == order.id,
            OrderItem.quantity < 0,
            or_(Order.is_deleted.is_(False), OrderItem.return_status != RETURN_STATUS_NONE),
        )
        .all()
    )
    for variant_id, quantity in rows:
        returned[variant_id] += -quantity
    return returned


def flag_return_pickup(order: Order) -> int:
    """
    Mark outbound lines as awaiting pickup, less whatever exchange children
    already took back. Returns how many lines were flagged.

    Raises ValidationError when exchanges already cover every unit.
    """
    covered = exchange_returned_quantities(order)
    flagged = 0
    skipped = 0
    for item in sorted(_outbound_lines(order), key=lambda line: line.id):
        if item.return_status != RETURN_STATUS_NONE:
            continue
        taken = min(covered.get(item.variant_id, 0), item.quantity)
        covered[item.variant_id] = covered.get(item.variant_id, 0) - taken
        if taken == item.quantity:
            skipped += 1
            continue
        item.return_status = RETURN_STATUS_PENDING_PICKUP
        item.return_quantity = item.quantity - taken if taken else None
        flagged += 1

    if not flagged and skipped:
        raise ValidationError(
            f"Order {order.order_number} was already returned in full through exchanges",
            field="status",
        )
    return flagged


def write_off_return_lines(order: Order, actor: str | None) -> list[OrderItem]:
    """Parcel lost: lines still awaiting return settle as missing with no stock effect."""
    now = utcnow()
    lines = pending_return_lines(order)
    for item in lines:
        item.return_status = RETURN_STATUS_MISSING
        item.return_condition = QC_MISSING
        item.return_settled_at = now
        item.return_settled_by = actor
    if lines:
        logger.info("Order %s lost in transit: %d return lines written off", order.id, len(lines))
    return lines


def apply_transition_effects(order: Order, from_status: str, to_status: str, actor: str | None) -> None:
    """
    Dispatch on the target status. Called with the order row locked and
    before the new status is written.
    """
    if to_status == STATUS_CONVERTED:
        reserve_order(order, actor)
    elif to_status in DISPATCH_STATUSES:
        deduct_order(order, actor)
    elif to_status in RELEASE_STATUSES:
        release_order(order, actor)
    elif to_status in PICKUP_STATUSES:
        flag_return_pickup(order)
    elif to_status == STATUS_LOST_IN_TRANSIT:
        write_off_return_lines(order, actor)
    elif to_status == STATUS_DELIVERED:
        for item in _outbound_lines(order):
            item.fulfilled_quantity = item.quantity

    logger.debug(
        "Order %s %s -> %s stock_state=%s", order.id, from_status, to_status, order.stock_state
    )


# =============================================================================
# Return logistics
# =============================================================================

def mark_lines_picked_up(order: Order, item_ids: list[int] | None) -> list[OrderItem]:
    """pending_pickup -> picked_up for the given lines (all pending lines when item_ids is None)."""
    lines = [item for item in order.items if item.return_status == RETURN_STATUS_PENDING_PICKUP]
    if item_ids is not None:
        wanted = set(item_ids)
        lines = [item for item in lines if item.id in wanted]
        missing = wanted - {item.id for item in lines}
        if missing:
            raise ValidationError(
                f"Items {sorted(missing)} are not awaiting pickup on order {order.id}", field="item_ids"
            )
    for item in lines:
        item.return_status = RETURN_STATUS_PICKED_UP
    return lines


def settle_return_lines(order: Order, outcomes: dict[int, str], actor: str | None) -> list[OrderItem]:
    """
    Hub QC for returned lines. Each line settles exactly once.

    outcomes maps order_item id -> good | damaged | missing | wrong_item.
    """
    if not outcomes:
        raise ValidationError("outcomes must name at least one item", field="outcomes")

    lines_by_id = {item.id: item for item in order.items}
    settled = []
    now = utcnow()

    for item_id, outcome in sorted(outcomes.items()):
        if outcome not in QC_OUTCOMES:
            raise ValidationError(
                f"outcome for item {item_id} must be one of: {', '.join(QC_OUTCOMES)}", field="outcomes"
            )
        item = lines_by_id.get(item_id)
        if item is None:
            raise ValidationError(f"Item {item_id} does not belong to order {order.id}", field="outcomes")
        if item.return_status not in PENDING_RETURN_STATUSES:
            raise ValidationError(
                f"Item {item_id} is not awaiting return settlement (return_status={item.return_status})",
                field="outcomes",
            )

        quantity = returnable_quantity(item)
        if outcome == QC_GOOD:
            _ledger(order, item.variant_id, BUCKET_SELLABLE, quantity, "Return QC good", actor)
            item.return_status = RETURN_STATUS_RECEIVED_HUB
        elif outcome == QC_DAMAGED:
            _ledger(order, item.variant_id, BUCKET_DAMAGED, quantity, "Return QC damaged", actor)
            item.return_status = RETURN_STATUS_DAMAGED_HUB
        else:
            item.return_status = RETURN_STATUS_MISSING

        item.return_condition = outcome
        item.return_settled_at = now
        item.return_settled_by = actor
        settled.append(item)

    logger.info(
        "Order %s return lines settled: %s",
        order.id, {item.id: item.return_condition for item in settled},
    )
    return settled


def pending_return_lines(order: Order) -> list[OrderItem]:
    return [item for item in order.items if item.return_status in PENDING_RETURN_STATUSES]
