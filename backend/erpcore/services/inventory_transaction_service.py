# Overview: Inventory Transaction Engine; maker-checker gated purchase/return/damage/adjustment batches.

"""
Inventory Transaction Engine

================================================================================
PURPOSE: Batch stock-affecting events behind a maker-checker approval gate
================================================================================

STATE MACHINE (TransactionStatus, closed enum):
    PENDING -> APPROVED -> VOIDED
    PENDING -> REJECTED

    PENDING:  recorded, invoice number allocated, NO stock effect
    APPROVED: one ledger call per item (two for damage); immutable
    REJECTED: terminal, never touched stock
    VOIDED:   compensating ledger calls referencing the same transaction id

TYPE RULES:
    purchase         vendor required; qty > 0; unit cost > 0;   +qty sellable
    purchase_return  vendor required; reason >= 5 chars; qty > 0 stored as -qty;
                     checked against CURRENT stock (sellable - reserved, or
                     damaged for source_type=damaged); no purchase-invoice link
    damage           reason required; -qty sellable, +qty damaged
    adjustment       reason required; signed non-zero qty;       +/-qty sellable

RULES (NON-NEGOTIABLE):
1. Per variant, SUM(item.quantity) equals the net ledger delta applied.
2. Approval is all-or-nothing: item N failing rolls back items 1..N-1.
3. Invoice numbers come from the per-day DocumentSequence inside the same
   DB transaction; a failed create consumes no number.
4. Vendor balance moves only on approve (and back on void).
================================================================================
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Iterable

from ..constants import (
    BUCKET_DAMAGED,
    BUCKET_SELLABLE,
    CAUSAL_INVENTORY_TRANSACTION,
    INVOICE_PREFIXES,
    SOURCE_DAMAGED,
    SOURCE_FRESH,
    SOURCE_TYPES,
    TRANSACTION_TYPES,
    TXN_ADJUSTMENT,
    TXN_DAMAGE,
    TXN_PURCHASE,
    TXN_PURCHASE_RETURN,
)
from ..errors import (
    InsufficientStockError,
    InvalidTransactionStateError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..logging_config import get_logger
from ..models import (
    ALLOWED_TRANSACTION_TRANSITIONS,
    InventoryTransaction,
    TransactionItem,
    TransactionStatus,
    Variant,
    Vendor,
)
from ..time_utils import business_date, utcnow
from ..validation import (
    MAX_LINE_QUANTITY,
    MIN_RETURN_REASON_LENGTH,
    clean_text,
    coerce_int,
    require_choice,
    require_items,
    require_money,
    require_text,
)
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .stock_ledger_service import apply_adjustment, get_variant_for_update, move_between_buckets

logger = get_logger("inventory_transactions")

VENDOR_REQUIRED_TYPES = frozenset({TXN_PURCHASE, TXN_PURCHASE_RETURN})
REASON_REQUIRED_TYPES = frozenset({TXN_PURCHASE_RETURN, TXN_DAMAGE, TXN_ADJUSTMENT})


def can_transition(from_status: TransactionStatus, to_status: TransactionStatus) -> bool:
    return to_status in ALLOWED_TRANSACTION_TRANSITIONS[from_status]


def _require_transition(tx: InventoryTransaction, to_status: TransactionStatus, action: str) -> None:
    if not can_transition(tx.status_enum, to_status):
        raise InvalidTransactionStateError(tx.id, tx.status, action)


# =============================================================================
# Validation
# =============================================================================

def _normalize_items(transaction_type: str, raw_items: Iterable[dict]) -> list[dict]:
    """
    Validate raw item dicts and return normalized dicts with SIGNED quantity.

    Input quantity is always entered as a positive number except for
    adjustments, which carry their own sign.
    """
    normalized = []
    for index, raw in enumerate(require_items(raw_items)):
        field = f"items[{index}]"
        variant_id = coerce_int(raw.get("variant_id"), f"{field}.variant_id")
        quantity = coerce_int(raw.get("quantity"), f"{field}.quantity")
        source_type = raw.get("source_type") or SOURCE_FRESH
        source_type = require_choice(source_type, f"{field}.source_type", SOURCE_TYPES)
        unit_cost = require_money(raw.get("unit_cost_paisa", 0), f"{field}.unit_cost_paisa")

        if abs(quantity) > MAX_LINE_QUANTITY:
            raise ValidationError(f"{field}.quantity must not exceed {MAX_LINE_QUANTITY}", field=f"{field}.quantity")

        if transaction_type == TXN_ADJUSTMENT:
            if quantity == 0:
                raise ValidationError(f"{field}.quantity must be non-zero", field=f"{field}.quantity")
            signed = quantity
        else:
            if quantity <= 0:
                raise ValidationError(f"{field}.quantity must be greater than zero", field=f"{field}.quantity")
            signed = -quantity if transaction_type in (TXN_PURCHASE_RETURN, TXN_DAMAGE) else quantity

        if transaction_type == TXN_PURCHASE and unit_cost <= 0:
            raise ValidationError(f"{field}.unit_cost_paisa must be greater than zero", field=f"{field}.unit_cost_paisa")
        if source_type == SOURCE_DAMAGED and transaction_type != TXN_PURCHASE_RETURN:
            raise ValidationError(
                f"{field}.source_type 'damaged' is only valid for purchase returns",
                field=f"{field}.source_type",
            )

        normalized.append({
            "variant_id": variant_id,
            "quantity": signed,
            "unit_cost_paisa": unit_cost,
            "source_type": source_type,
        })
    return normalized


def _check_return_stock(items: list[dict], *, lock: bool) -> None:
    """
    purchase_return: validate against CURRENT stock, aggregated per (variant, bucket)
    so two lines of the same variant cannot each pass on their own.
    """
    demand: dict[tuple[int, str], int] = defaultdict(int)
    for item in items:
        demand[(item["variant_id"], item["source_type"])] += -item["quantity"]

    for (variant_id, source_type), requested in demand.items():
        variant = get_variant_for_update(variant_id) if lock else db.session.get(Variant, variant_id)
        if variant is None:
            raise NotFoundError("Variant", variant_id)
        if source_type == SOURCE_DAMAGED:
            available, bucket = variant.damaged_stock, BUCKET_DAMAGED
        else:
            available, bucket = variant.available_stock, BUCKET_SELLABLE
        if requested > available:
            raise InsufficientStockError(
                variant_id=variant_id, bucket=bucket, requested=requested, available=available
            )


def _validate_header(transaction_type: str, vendor_id: int | None, reason: str | None) -> Vendor | None:
    require_choice(transaction_type, "transaction_type", TRANSACTION_TYPES)

    vendor = None
    if transaction_type in VENDOR_REQUIRED_TYPES:
        if vendor_id is None:
            raise ValidationError(f"vendor_id is required for {transaction_type}", field="vendor_id")
    if vendor_id is not None:
        vendor = db.session.get(Vendor, vendor_id)
        if vendor is None:
            raise NotFoundError("Vendor", vendor_id)
        if not vendor.is_active:
            raise ValidationError(f"Vendor {vendor_id} is inactive", field="vendor_id")

    if transaction_type == TXN_PURCHASE_RETURN:
        require_text(reason, "reason", min_length=MIN_RETURN_REASON_LENGTH)
    elif transaction_type in REASON_REQUIRED_TYPES:
        require_text(reason, "reason")
    return vendor


# =============================================================================
# Stock application
# =============================================================================

def _apply_item(tx: InventoryTransaction, item: TransactionItem, *, actor: str | None, reverse: bool) -> None:
    """
    Apply (or reverse) one item. Records stock snapshots on forward application.
    """
    sign = -1 if reverse else 1
    label = f"{'Void of ' if reverse else ''}{tx.transaction_type} {tx.invoice_no}"

    if tx.transaction_type == TXN_DAMAGE:
        quantity = -item.quantity  # stored negative from the sellable perspective
        from_bucket, to_bucket = (BUCKET_DAMAGED, BUCKET_SELLABLE) if reverse else (BUCKET_SELLABLE, BUCKET_DAMAGED)
        variant = get_variant_for_update(item.variant_id)
        before = variant.sellable_stock
        move_between_buckets(
            variant_id=item.variant_id,
            from_bucket=from_bucket,
            to_bucket=to_bucket,
            quantity=quantity,
            causal_type=CAUSAL_INVENTORY_TRANSACTION,
            causal_id=tx.id,
            reason=label,
            actor=actor,
        )
        if not reverse:
            item.stock_before = before
            item.stock_after = variant.sellable_stock
        return

    bucket = BUCKET_DAMAGED if item.source_type == SOURCE_DAMAGED else BUCKET_SELLABLE
    variant = get_variant_for_update(item.variant_id)
    before = variant.damaged_stock if bucket == BUCKET_DAMAGED else variant.sellable_stock
    after, _ = apply_adjustment(
        variant_id=item.variant_id,
        bucket=bucket,
        delta=sign * item.quantity,
        causal_type=CAUSAL_INVENTORY_TRANSACTION,
        causal_id=tx.id,
        reason=label,
        actor=actor,
        variant=variant,
    )
    if not reverse:
        item.stock_before = before
        item.stock_after = after


def _vendor_balance_delta(tx: InventoryTransaction) -> int:
    if tx.transaction_type == TXN_PURCHASE:
        return tx.total_cost_paisa
    if tx.transaction_type == TXN_PURCHASE_RETURN:
        return -tx.total_cost_paisa
    return 0


def _adjust_vendor_balance(tx: InventoryTransaction, *, reverse: bool) -> None:
    delta = _vendor_balance_delta(tx)
    if not delta or tx.vendor_id is None:
        return
    vendor = lock_for_update(db.session.query(Vendor).filter_by(id=tx.vendor_id)).first()
    vendor.balance_paisa += -delta if reverse else delta


def _approve_inner(tx: InventoryTransaction, actor: str | None) -> None:
    _require_transition(tx, TransactionStatus.APPROVED, "approve")
    if tx.transaction_type == TXN_PURCHASE_RETURN:
        _check_return_stock(
            [{"variant_id": i.variant_id, "quantity": i.quantity, "source_type": i.source_type} for i in tx.items],
            lock=True,
        )
    for item in tx.items:
        _apply_item(tx, item, actor=actor, reverse=False)
    _adjust_vendor_balance(tx, reverse=False)

    tx.status = TransactionStatus.APPROVED.value
    tx.approved_by = actor
    tx.approved_at = utcnow()


def _load_for_update(transaction_id: int) -> InventoryTransaction:
    tx = (
        lock_for_update(db.session.query(InventoryTransaction).filter_by(id=transaction_id))
        .populate_existing()
        .first()
    )
    if tx is None:
        raise NotFoundError("InventoryTransaction", transaction_id)
    return tx


# =============================================================================
# Public operations
# =============================================================================

def create_transaction(
    *,
    transaction_type: str,
    items: list[dict],
    actor: str | None,
    vendor_id: int | None = None,
    reason: str | None = None,
    notes: str | None = None,
    transaction_date: date | None = None,
    auto_approve: bool = False,
) -> InventoryTransaction:
    """
    Record a PENDING transaction (or APPROVED in the same unit with auto_approve).

    Validation happens before any write; purchase_return stock is checked here
    (fail fast) and again under lock at approval.

    Raises:
        ValidationError, NotFoundError, InsufficientStockError
    """
    reason = clean_text(reason)
    notes = clean_text(notes)

    def _op():
        _validate_header(transaction_type, vendor_id, reason)
        normalized = _normalize_items(transaction_type, items)

        for item in normalized:
            if db.session.get(Variant, item["variant_id"]) is None:
                raise NotFoundError("Variant", item["variant_id"])
        if transaction_type == TXN_PURCHASE_RETURN:
            _check_return_stock(normalized, lock=False)

        invoice_no = next_document_number(
            document_type=f"INV_{transaction_type.upper()}",
            prefix=INVOICE_PREFIXES[transaction_type],
        )

        tx = InventoryTransaction(
            invoice_no=invoice_no,
            transaction_type=transaction_type,
            status=TransactionStatus.PENDING.value,
            vendor_id=vendor_id,
            reason=reason,
            notes=notes,
            transaction_date=transaction_date or business_date(),
            total_quantity=sum(abs(i["quantity"]) for i in normalized),
            total_cost_paisa=sum(abs(i["quantity"]) * i["unit_cost_paisa"] for i in normalized),
            created_by=actor,
        )
        for position, item in enumerate(normalized):
            tx.items.append(TransactionItem(position=position, **item))
        db.session.add(tx)
        db.session.flush()

        if auto_approve:
            _approve_inner(tx, actor)

        db.session.commit()
        return tx

    tx = run_with_retry(_op, entity="InventoryTransaction")
    logger.info(
        "Inventory transaction %s created: %s %s (%d items, auto_approve=%s)",
        tx.id, tx.transaction_type, tx.invoice_no, len(tx.items), auto_approve,
    )
    return tx


def approve_transaction(transaction_id: int, *, actor: str | None) -> InventoryTransaction:
    """
    PENDING -> APPROVED. Applies every item to the Stock Ledger in one unit.

    Raises:
        NotFoundError, InvalidTransactionStateError, InsufficientStockError
    """
    def _op():
        tx = _load_for_update(transaction_id)
        _approve_inner(tx, actor)
        db.session.commit()
        return tx

    tx = run_with_retry(_op, entity="InventoryTransaction", entity_id=transaction_id)
    logger.info("Inventory transaction %s approved by %s", transaction_id, actor)
    return tx


def reject_transaction(transaction_id: int, *, actor: str | None, reason: str) -> InventoryTransaction:
    """
    PENDING -> REJECTED. No stock effect.

    Rejecting an already-rejected transaction raises InvalidTransactionStateError
    and changes nothing.
    """
    reason = require_text(reason, "reason")

    def _op():
        tx = _load_for_update(transaction_id)
        _require_transition(tx, TransactionStatus.REJECTED, "reject")
        tx.status = TransactionStatus.REJECTED.value
        tx.rejected_by = actor
        tx.rejected_at = utcnow()
        tx.rejection_reason = reason
        db.session.commit()
        return tx

    tx = run_with_retry(_op, entity="InventoryTransaction", entity_id=transaction_id)
    logger.info("Inventory transaction %s rejected by %s", transaction_id, actor)
    return tx


def void_transaction(transaction_id: int, *, actor: str | None, reason: str) -> InventoryTransaction:
    """
    APPROVED -> VOIDED. Reverses every item via compensating ledger calls that
    reference the same transaction id, and reverses the vendor balance change.

    Voiding a purchase whose units were already sold raises InsufficientStockError.
    """
    reason = require_text(reason, "reason")

    def _op():
        tx = _load_for_update(transaction_id)
        _require_transition(tx, TransactionStatus.VOIDED, "void")
        for item in reversed(tx.items):
            _apply_item(tx, item, actor=actor, reverse=True)
        _adjust_vendor_balance(tx, reverse=True)
        tx.status = TransactionStatus.VOIDED.value
        tx.voided_by = actor
        tx.voided_at = utcnow()
        tx.void_reason = reason
        db.session.commit()
        return tx

    tx = run_with_retry(_op, entity="InventoryTransaction", entity_id=transaction_id)
    logger.info("Inventory transaction %s voided by %s", transaction_id, actor)
    return tx


def get_transaction(transaction_id: int) -> InventoryTransaction:
    tx = db.session.get(InventoryTransaction, transaction_id)
    if tx is None:
        raise NotFoundError("InventoryTransaction", transaction_id)
    return tx


def list_transactions(
    *,
    status: str | None = None,
    transaction_type: str | None = None,
    vendor_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[InventoryTransaction], int]:
    query = db.session.query(InventoryTransaction)
    if status:
        require_choice(status, "status", [s.value for s in TransactionStatus])
        query = query.filter(InventoryTransaction.status == status)
    if transaction_type:
        require_choice(transaction_type, "transaction_type", TRANSACTION_TYPES)
        query = query.filter(InventoryTransaction.transaction_type == transaction_type)
    if vendor_id is not None:
        query = query.filter(InventoryTransaction.vendor_id == vendor_id)

    total = query.count()
    limit = max(1, min(limit, 500))
    rows = (
        query.order_by(InventoryTransaction.id.desc())
        .offset(max(offset, 0))
        .limit(limit)
        .all()
    )
    return rows, total


def list_pending_approvals() -> list[InventoryTransaction]:
    """Oldest first, the order a checker works through them."""
    return (
        db.session.query(InventoryTransaction)
        .filter(InventoryTransaction.status == TransactionStatus.PENDING.value)
        .order_by(InventoryTransaction.created_at.asc(), InventoryTransaction.id.asc())
        .all()
    )
