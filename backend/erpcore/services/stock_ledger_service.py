# Overview: Stock Ledger; the only writer of Variant stock counters.

from __future__ import annotations

from sqlalchemy import func

from ..constants import (
    BUCKET_DAMAGED,
    BUCKET_RESERVED,
    BUCKET_SELLABLE,
    BUCKETS,
    CAUSAL_MANUAL,
    CAUSAL_TYPES,
)
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..logging_config import get_logger
from ..models import StockMovement, Variant
from .concurrency import lock_for_update, run_with_retry
"""
Stock Ledger Invariants (authoritative)

Counters:
- sellable_stock, damaged_stock, reserved_stock are all >= 0.
- reserved_stock <= sellable_stock at all times.
- A sellable decrement may only consume UNRESERVED stock: the resulting
  sellable_stock must stay >= reserved_stock. Reserved units leave sellable
  only after the reservation itself has been consumed (reserved -q first).

Audit:
- Every counter change writes exactly one StockMovement in the same DB
  transaction; there is no counter change without a movement and no movement
  without a counter change.
- Opening stock is booked as a movement too, so
  SUM(movements.delta WHERE bucket=X) == current counter X for every variant.

Concurrency:
- The variant row is locked (SELECT ... FOR UPDATE) before it is read.
- Variant.version_id turns any lost update into StaleDataError, which the
  public entry points retry as a whole unit.

Composition:
- apply_adjustment() never commits. Inventory transactions, order transitions
  and exchange reconciliation call it repeatedly inside ONE unit of work, so a
  failure on item N rolls back items 1..N-1 together with the status change.
- adjust() is the standalone committing entry point.
"""

logger = get_logger("stock_ledger")

_COUNTER_FIELDS = {
    BUCKET_SELLABLE: "sellable_stock",
    BUCKET_DAMAGED: "damaged_stock",
    BUCKET_RESERVED: "reserved_stock",
}


def get_variant_for_update(variant_id: int) -> Variant:
    variant = (
        lock_for_update(db.session.query(Variant).filter_by(id=variant_id))
        .populate_existing()
        .first()
    )
    if variant is None:
        raise NotFoundError("Variant", variant_id)
    return variant


def _check_bounds(variant: Variant, bucket: str, delta: int) -> None:
    sellable = variant.sellable_stock
    reserved = variant.reserved_stock
    damaged = variant.damaged_stock

    if bucket == BUCKET_SELLABLE and delta < 0:
        # only unreserved units can leave the sellable bucket directly
        available = sellable - reserved
        if -delta > available:
            raise InsufficientStockError(
                variant_id=variant.id, bucket=bucket, requested=-delta, available=available
            )
    elif bucket == BUCKET_DAMAGED and delta < 0:
        if -delta > damaged:
            raise InsufficientStockError(
                variant_id=variant.id, bucket=bucket, requested=-delta, available=damaged
            )
    elif bucket == BUCKET_RESERVED:
        if delta > 0 and reserved + delta > sellable:
            raise InsufficientStockError(
                variant_id=variant.id, bucket=bucket, requested=delta, available=sellable - reserved
            )
        if delta < 0 and -delta > reserved:
            raise InsufficientStockError(
                variant_id=variant.id, bucket=bucket, requested=-delta, available=reserved
            )


def apply_adjustment(
    *,
    variant_id: int,
    bucket: str,
    delta: int,
    causal_type: str,
    causal_id: int | None,
    reason: str,
    actor: str | None = None,
    variant: Variant | None = None,
) -> tuple[int, StockMovement]:
    """
    Core ledger mutation without retry or commit.

    Locks the variant (unless an already-locked instance is passed), validates
    bounds, updates the counter and inserts the StockMovement.

    Returns (new bucket value, movement).

    Raises:
        ValidationError: bad bucket/causal type, zero delta, missing reason
        NotFoundError: unknown variant
        InsufficientStockError: bucket cannot absorb the delta
    """
    if bucket not in BUCKETS:
        raise ValidationError(f"bucket must be one of: {', '.join(BUCKETS)}", field="bucket")
    if causal_type not in CAUSAL_TYPES:
        raise ValidationError(f"causal_type must be one of: {', '.join(CAUSAL_TYPES)}", field="causal_type")
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise ValidationError("delta must be a non-zero integer", field="delta")
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required", field="reason")

    if variant is None or variant.id != variant_id:
        variant = get_variant_for_update(variant_id)

    _check_bounds(variant, bucket, delta)

    field = _COUNTER_FIELDS[bucket]
    new_value = getattr(variant, field) + delta
    setattr(variant, field, new_value)

    movement = StockMovement(
        variant_id=variant.id,
        bucket=bucket,
        delta=delta,
        stock_after=new_value,
        causal_type=causal_type,
        causal_id=causal_id,
        reason=str(reason).strip()[:255],
        actor=actor,
    )
    db.session.add(movement)
    db.session.flush()

    logger.debug(
        "variant=%s bucket=%s delta=%+d after=%s cause=%s:%s",
        variant.id, bucket, delta, new_value, causal_type, causal_id,
    )
    return new_value, movement


def adjust(
    *,
    variant_id: int,
    bucket: str,
    delta: int,
    reason: str,
    actor: str | None = None,
    causal_type: str = CAUSAL_MANUAL,
    causal_id: int | None = None,
) -> tuple[int, int]:
    """
    Apply one ledger mutation as its own committed unit.

    Returns (new bucket value, movement id).
    """
    def _op():
        new_value, movement = apply_adjustment(
            variant_id=variant_id,
            bucket=bucket,
            delta=delta,
            causal_type=causal_type,
            causal_id=causal_id,
            reason=reason,
            actor=actor,
        )
        movement_id = movement.id
        db.session.commit()
        return new_value, movement_id

    new_value, movement_id = run_with_retry(_op, entity="Variant", entity_id=variant_id)
    logger.info(
        "Stock adjusted: variant=%s bucket=%s delta=%+d -> %s (movement %s)",
        variant_id, bucket, delta, new_value, movement_id,
    )
    return new_value, movement_id


def move_between_buckets(
    *,
    variant_id: int,
    from_bucket: str,
    to_bucket: str,
    quantity: int,
    causal_type: str,
    causal_id: int | None,
    reason: str,
    actor: str | None = None,
) -> tuple[StockMovement, StockMovement]:
    """Two movements, one physical unit set: e.g. sellable -> damaged. No commit."""
    if quantity <= 0:
        raise ValidationError("quantity must be greater than zero", field="quantity")
    variant = get_variant_for_update(variant_id)
    _, out_movement = apply_adjustment(
        variant_id=variant_id,
        bucket=from_bucket,
        delta=-quantity,
        causal_type=causal_type,
        causal_id=causal_id,
        reason=reason,
        actor=actor,
        variant=variant,
    )
    _, in_movement = apply_adjustment(
        variant_id=variant_id,
        bucket=to_bucket,
        delta=quantity,
        causal_type=causal_type,
        causal_id=causal_id,
        reason=reason,
        actor=actor,
        variant=variant,
    )
    return out_movement, in_movement


def get_stock_levels(variant_id: int) -> dict:
    variant = db.session.get(Variant, variant_id)
    if variant is None:
        raise NotFoundError("Variant", variant_id)
    return {
        "variant_id": variant.id,
        "sku": variant.sku,
        "sellable_stock": variant.sellable_stock,
        "damaged_stock": variant.damaged_stock,
        "reserved_stock": variant.reserved_stock,
        "available_stock": variant.available_stock,
    }


def list_movements(
    *,
    variant_id: int | None = None,
    causal_type: str | None = None,
    causal_id: int | None = None,
    bucket: str | None = None,
    limit: int = 100,
) -> list[StockMovement]:
    query = db.session.query(StockMovement)
    if variant_id is not None:
        query = query.filter(StockMovement.variant_id == variant_id)
    if causal_type is not None:
        query = query.filter(StockMovement.causal_type == causal_type)
    if causal_id is not None:
        query = query.filter(StockMovement.causal_id == causal_id)
    if bucket is not None:
        query = query.filter(StockMovement.bucket == bucket)
    limit = max(1, min(limit, 1000))
    return query.order_by(StockMovement.id.asc()).limit(limit).all()


def verify_variant(variant_id: int) -> dict:
    """
    Re-derive every bucket from movements and compare with the counters.

    Returns a report dict; `ok` is False when any bucket drifted or
    reserved_stock exceeds sellable_stock.
    """
    variant = db.session.get(Variant, variant_id)
    if variant is None:
        raise NotFoundError("Variant", variant_id)

    rows = (
        db.session.query(StockMovement.bucket, func.coalesce(func.sum(StockMovement.delta), 0))
        .filter(StockMovement.variant_id == variant_id)
        .group_by(StockMovement.bucket)
        .all()
    )
    derived = {bucket: 0 for bucket in BUCKETS}
    derived.update({bucket: int(total) for bucket, total in rows})

    drift = {}
    for bucket, field in _COUNTER_FIELDS.items():
        actual = getattr(variant, field)
        if derived[bucket] != actual:
            drift[bucket] = {"counter": actual, "movements": derived[bucket]}

    reservation_ok = variant.reserved_stock <= variant.sellable_stock
    return {
        "variant_id": variant.id,
        "sku": variant.sku,
        "ok": not drift and reservation_ok,
        "drift": drift,
        "reservation_ok": reservation_ok,
    }


def verify_all() -> list[dict]:
    """Reports for every variant that fails verification (empty list == healthy)."""
    failures = []
    for (variant_id,) in db.session.query(Variant.id).order_by(Variant.id).all():
        report = verify_variant(variant_id)
        if not report["ok"]:
            logger.error("Stock ledger drift on variant %s: %s", variant_id, report)
            failures.append(report)
    return failures
