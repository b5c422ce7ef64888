# Overview: Append-only order history and order row locking shared by order-mutating services.

from __future__ import annotations

from ..errors import NotFoundError
from ..extensions import db
from ..models import Order, OrderLog
from .concurrency import lock_for_update
"""
Order Log Invariants (authoritative)

- Append-only: rows are inserted, never updated or deleted.
- Written inside the same DB transaction as the change they describe.
- Every accepted status transition writes exactly one `status_change` row.
"""


def lock_order(order_id: int, *, include_deleted: bool = False) -> Order:
    """
    SELECT ... FOR UPDATE the order row (fresh values, not the identity-map copy).

    Soft-deleted orders are treated as missing unless include_deleted is set.
    """
    order = (
        lock_for_update(db.session.query(Order).filter_by(id=order_id))
        .populate_existing()
        .first()
    )
    if order is None or (order.is_deleted and not include_deleted):
        raise NotFoundError("Order", order_id)
    return order


def append_order_log(
    order: Order,
    *,
    action: str,
    actor: str | None,
    reason: str | None = None,
    old_status: str | None = None,
    new_status: str | None = None,
    payload: dict | None = None,
) -> OrderLog:
    entry = OrderLog(
        order_id=order.id,
        action=action,
        old_status=old_status,
        new_status=new_status,
        actor=actor,
        reason=reason,
        payload=payload,
    )
    db.session.add(entry)
    db.session.flush()
    return entry
