# Overview: Exchange/Reconciliation; post-sale exchanges as signed child orders.

"""
Exchange / Reconciliation Service

================================================================================
PURPOSE: Swap, refund or top up a delivered sale without touching the original
================================================================================

The original order is never edited. Each exchange becomes a CHILD order:
    quantity < 0  goods coming back  (return_status=pending_pickup, no stock yet)
    quantity > 0  replacement goods  (deducted immediately)

    net_amount = new_total - return_total
        > 0  addon     customer pays the difference
        < 0  refund    customer is owed the difference
        = 0  exchange  like for like

Returned goods only re-enter stock through hub QC
(order_service.settle_returned_items on the child).

ATOMICITY:
Header, lines, deduction and both exchange_link log rows are ONE transaction.
A retried call with the same idempotency_key returns the child already
created instead of creating a second one.
================================================================================
"""

from __future__ import annotations

from collections import defaultdict

from ..constants import (
    FULFILLMENT_STORE,
    LOG_CREATED,
    LOG_EXCHANGE_LINK,
    RETURN_STATUS_NONE,
    RETURN_STATUS_PENDING_PICKUP,
    STATUS_DELIVERED,
    STATUS_STORE_SALE,
    STOCK_STATE_NONE,
)
from ..errors import CoreError, ValidationError
from ..extensions import db
from ..logging_config import get_logger
from ..models import Order, OrderItem
from ..validation import (
    MAX_LINE_QUANTITY,
    clean_text,
    coerce_int,
    require_money,
    require_positive_int,
    require_text,
)
from . import reservation_service
from .concurrency import run_with_retry
from .document_service import next_document_number
from .order_log_service import append_order_log, lock_order
from .stock_ledger_service import get_variant_for_update

logger = get_logger("exchanges")

EXCHANGEABLE_STATUSES = frozenset({STATUS_DELIVERED, STATUS_STORE_SALE})
MAX_IDEMPOTENCY_KEY_LENGTH = 64


def classify_net_amount(net_amount: int) -> str:
    if net_amount > 0:
        return "addon"
    if net_amount < 0:
        return "refund"
    return "exchange"


def _parse_legs(raw_items, field: str) -> list[dict]:
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        raise ValidationError(f"{field} must be a list", field=field)
    legs = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"{field}[{index}] must be an object", field=f"{field}[{index}]")
        leg = {
            "variant_id": coerce_int(raw.get("variant_id"), f"{field}[{index}].variant_id"),
            "quantity": require_positive_int(
                raw.get("quantity"), f"{field}[{index}].quantity", maximum=MAX_LINE_QUANTITY
            ),
            "unit_price_paisa": None,
        }
        if raw.get("unit_price_paisa") is not None:
            leg["unit_price_paisa"] = require_money(
                raw["unit_price_paisa"], f"{field}[{index}].unit_price_paisa"
            )
        legs.append(leg)
    return legs


def _already_returned(parent: Order) -> dict[int, int]:
    """Units per variant already sent back, through earlier exchange children or the parent's own return."""
    returned = defaultdict(int, reservation_service.exchange_returned_quantities(parent))
    for item in parent.items:
        if item.quantity > 0 and item.return_status != RETURN_STATUS_NONE:
            returned[item.variant_id] += reservation_service.returnable_quantity(item)
    return returned


def _return_lines(parent: Order, legs: list[dict]) -> list[OrderItem]:
    ordered: dict[int, OrderItem] = {}
    ordered_qty: dict[int, int] = defaultdict(int)
    for item in parent.items:
        if item.quantity > 0:
            ordered.setdefault(item.variant_id, item)
            ordered_qty[item.variant_id] += item.quantity

    returned = _already_returned(parent)
    requested: dict[int, int] = defaultdict(int)
    lines = []
    for leg in legs:
        variant_id = leg["variant_id"]
        source = ordered.get(variant_id)
        if source is None:
            raise ValidationError(
                f"Variant {variant_id} is not on order {parent.order_number}", field="return_items"
            )
        requested[variant_id] += leg["quantity"]
        remaining = ordered_qty[variant_id] - returned[variant_id]
        if requested[variant_id] > remaining:
            raise ValidationError(
                f"Cannot return {requested[variant_id]} x {source.sku}; only {remaining} left to return",
                field="return_items",
            )

        unit_price = leg["unit_price_paisa"]
        if unit_price is None:
            unit_price = source.unit_price_paisa
        lines.append(
            OrderItem(
                variant_id=variant_id,
                sku=source.sku,
                product_name=source.product_name,
                quantity=-leg["quantity"],
                unit_price_paisa=unit_price,
                unit_cost_paisa=source.unit_cost_paisa,
                total_price_paisa=-unit_price * leg["quantity"],
                return_status=RETURN_STATUS_PENDING_PICKUP,
            )
        )
    return lines


def _new_lines(legs: list[dict]) -> list[OrderItem]:
    lines = []
    for leg in legs:
        variant = get_variant_for_update(leg["variant_id"])
        if not variant.is_active or not variant.product.is_active:
            raise ValidationError(f"Variant {variant.sku} is inactive", field="new_items")
        unit_price = leg["unit_price_paisa"]
        if unit_price is None:
            unit_price = variant.selling_price_paisa
        lines.append(
            OrderItem(
                variant_id=variant.id,
                sku=variant.sku,
                product_name=variant.product.name,
                quantity=leg["quantity"],
                unit_price_paisa=unit_price,
                unit_cost_paisa=variant.cost_price_paisa,
                total_price_paisa=unit_price * leg["quantity"],
            )
        )
    return lines


def _existing_child(idempotency_key: str | None, parent_id: int) -> Order | None:
    if not idempotency_key:
        return None
    child = db.session.query(Order).filter_by(idempotency_key=idempotency_key).first()
    if child is None:
        return None
    if child.parent_order_id != parent_id:
        raise ValidationError(
            "idempotency_key already used for a different order", field="idempotency_key"
        )
    return child


def reconcile(
    original_order_id: int,
    *,
    return_items: list[dict] | None,
    new_items: list[dict] | None,
    reason: str,
    actor: str | None,
    idempotency_key: str | None = None,
) -> dict:
    """
    Record a post-sale exchange against a delivered (or store_sale) order.

    Returns:
        {"child_order": Order, "return_total": int, "new_total": int,
         "net_amount": int, "exchange_type": str, "replayed": bool}

    Raises:
        NotFoundError, ValidationError, InsufficientStockError,
        ConcurrentModificationError
    """
    reason = require_text(reason, "reason")
    idempotency_key = clean_text(idempotency_key)
    if idempotency_key and len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise ValidationError("idempotency_key is too long", field="idempotency_key")
    return_legs = _parse_legs(return_items, "return_items")
    new_legs = _parse_legs(new_items, "new_items")
    if not return_legs and not new_legs:
        raise ValidationError("An exchange needs at least one return or new item", field="items")

    def _op():
        existing = _existing_child(idempotency_key, original_order_id)
        if existing is not None:
            return existing, True

        parent = lock_order(original_order_id)
        if parent.status not in EXCHANGEABLE_STATUSES:
            raise ValidationError(
                f"Order {parent.order_number} is {parent.status}; only delivered orders can be exchanged",
                field="status",
            )
        if parent.status == STATUS_STORE_SALE and parent.fulfillment_type != FULFILLMENT_STORE:
            raise ValidationError("Only store orders can be exchanged at store_sale", field="status")

        returns = _return_lines(parent, return_legs)
        replacements = _new_lines(new_legs)
        return_total = -sum(line.total_price_paisa for line in returns)
        new_total = sum(line.total_price_paisa for line in replacements)
        net_amount = new_total - return_total

        child = Order(
            order_number=next_document_number(document_type="EXCHANGE", prefix="EXC"),
            status=STATUS_STORE_SALE if parent.fulfillment_type == FULFILLMENT_STORE else STATUS_DELIVERED,
            fulfillment_type=parent.fulfillment_type,
            stock_state=STOCK_STATE_NONE,
            source=parent.source,
            payment_method=parent.payment_method,
            payment_status="pending" if net_amount else "paid",
            customer_id=parent.customer_id,
            shipping_name=parent.shipping_name,
            shipping_phone=parent.shipping_phone,
            shipping_address=parent.shipping_address,
            shipping_city=parent.shipping_city,
            subtotal_paisa=net_amount,
            total_paisa=net_amount,
            destination_branch=parent.destination_branch,
            parent_order_id=parent.id,
            exchange_type=classify_net_amount(net_amount),
            has_exchange_pickup=bool(returns),
            idempotency_key=idempotency_key,
            status_reason=reason,
            created_by=actor,
        )
        child.items.extend(returns + replacements)
        db.session.add(child)
        db.session.flush()

        if replacements:
            reservation_service.deduct_order(child, actor)
            for line in replacements:
                line.fulfilled_quantity = line.quantity
        if returns:
            parent.has_exchange_pickup = True

        append_order_log(child, action=LOG_CREATED, actor=actor, reason=reason, new_status=child.status)
        link = {
            "parent_order_id": parent.id,
            "child_order_id": child.id,
            "return_total_paisa": return_total,
            "new_total_paisa": new_total,
            "net_amount_paisa": net_amount,
            "exchange_type": child.exchange_type,
        }
        append_order_log(parent, action=LOG_EXCHANGE_LINK, actor=actor, reason=reason, payload=link)
        append_order_log(child, action=LOG_EXCHANGE_LINK, actor=actor, reason=reason, payload=link)
        db.session.commit()
        return child, False

    try:
        child, replayed = run_with_retry(_op, entity="Order", entity_id=original_order_id)
    except CoreError as exc:
        logger.error("Exchange against order %s rejected: %s", original_order_id, exc)
        raise
    except Exception:
        logger.exception("Exchange against order %s failed", original_order_id)
        raise

    return_total = -sum(item.total_price_paisa for item in child.items if item.quantity < 0)
    new_total = sum(item.total_price_paisa for item in child.items if item.quantity > 0)
    if not replayed:
        logger.info(
            "Exchange %s created for order %s: %s net=%s",
            child.order_number, original_order_id, child.exchange_type, child.total_paisa,
        )
    return {
        "child_order": child,
        "return_total": return_total,
        "new_total": new_total,
        "net_amount": new_total - return_total,
        "exchange_type": child.exchange_type,
        "replayed": replayed,
    }
