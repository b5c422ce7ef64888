from __future__ import annotations

from enum import Enum

from ..constants import (
    BUCKETS,
    CAUSAL_TYPES,
    SOURCE_FRESH,
    SOURCE_TYPES,
    TRANSACTION_TYPES,
    sql_in,
)
from ..extensions import db
from ..time_utils import to_utc_z


class TransactionStatus(str, Enum):
    """
    Maker-checker state of an InventoryTransaction.

        PENDING --approve--> APPROVED --void--> VOIDED
           |
           +----reject-----> REJECTED

    Only APPROVED and VOIDED transactions have ever touched stock; VOIDED
    carries the compensating movements that cancel the approval.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    VOIDED = "voided"


ALLOWED_TRANSACTION_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.APPROVED, TransactionStatus.REJECTED}),
    TransactionStatus.APPROVED: frozenset({TransactionStatus.VOIDED}),
    TransactionStatus.REJECTED: frozenset(),
    TransactionStatus.VOIDED: frozenset(),
}


class StockMovement(db.Model):
    """
    Immutable audit row: one per Stock Ledger mutation.

    WHY: Counters on Variant are fast to read but say nothing about history.
    Movements answer "why is this number what it is" and let us re-derive
    and verify the counters at any time.

    RULES:
    - Inserted in the same DB transaction as the counter change it records
    - Never updated, never deleted
    - stock_after is the bucket value immediately after this delta
    - causal_type/causal_id point at the order or inventory transaction that caused it
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint(sql_in("bucket", BUCKETS), name="bucket_valid"),
        db.CheckConstraint(sql_in("causal_type", CAUSAL_TYPES), name="causal_type_valid"),
        db.CheckConstraint("delta <> 0", name="delta_non_zero"),
        db.Index("ix_stock_movements_variant_bucket", "variant_id", "bucket", "id"),
        db.Index("ix_stock_movements_causal", "causal_type", "causal_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)

    bucket = db.Column(db.String(16), nullable=False)
    delta = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    causal_type = db.Column(db.String(32), nullable=False)
    causal_id = db.Column(db.Integer, nullable=True)

    reason = db.Column(db.String(255), nullable=False)
    actor = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    variant = db.relationship("Variant", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "bucket": self.bucket,
            "delta": self.delta,
            "stock_after": self.stock_after,
            "causal_type": self.causal_type,
            "causal_id": self.causal_id,
            "reason": self.reason,
            "actor": self.actor,
            "created_at": to_utc_z(self.created_at),
        }


class Vendor(db.Model):
    """
    Supplier master data plus running payable balance.

    balance_paisa is what we owe the vendor. It moves only when a purchase or
    purchase_return is approved (or that approval is voided).
    """
    __tablename__ = "vendors"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)
    balance_paisa = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "balance_paisa": self.balance_paisa,
            "is_active": self.is_active,
        }


class InventoryTransaction(db.Model):
    """
    Header for one stock-affecting business event (purchase, purchase_return,
    damage, adjustment) gated by maker-checker approval.

    LIFECYCLE: see TransactionStatus.
    - Created PENDING: no stock effect, items editable only by re-creating
    - APPROVED: one ledger call per item (two for damage); immutable afterwards
    - REJECTED: terminal, never touched stock
    - VOIDED: compensating ledger calls referencing this same transaction id

    invoice_no comes from the per-day DocumentSequence, allocated inside the
    same DB transaction that inserts this row.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.UniqueConstraint("invoice_no", name="uq_inventory_transactions_invoice_no"),
        db.CheckConstraint(sql_in("transaction_type", TRANSACTION_TYPES), name="type_valid"),
        db.CheckConstraint(
            sql_in("status", [s.value for s in TransactionStatus]), name="status_valid"
        ),
        db.Index("ix_inventory_transactions_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_no = db.Column(db.String(32), nullable=False)
    transaction_type = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=TransactionStatus.PENDING.value, index=True)

    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=True, index=True)
    reason = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    transaction_date = db.Column(db.Date, nullable=False)

    total_quantity = db.Column(db.Integer, nullable=False, default=0)
    total_cost_paisa = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    approved_by = db.Column(db.String(64), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    rejected_by = db.Column(db.String(64), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    voided_by = db.Column(db.String(64), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    vendor = db.relationship("Vendor", backref=db.backref("transactions", lazy="dynamic"))
    items = db.relationship(
        "TransactionItem",
        backref="transaction",
        order_by="TransactionItem.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def status_enum(self) -> TransactionStatus:
        return TransactionStatus(self.status)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_no": self.invoice_no,
            "transaction_type": self.transaction_type,
            "status": self.status,
            "vendor_id": self.vendor_id,
            "reason": self.reason,
            "notes": self.notes,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "total_quantity": self.total_quantity,
            "total_cost_paisa": self.total_cost_paisa,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "rejected_by": self.rejected_by,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "voided_by": self.voided_by,
            "voided_at": to_utc_z(self.voided_at),
            "void_reason": self.void_reason,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransactionItem(db.Model):
    """
    One line of an InventoryTransaction.

    quantity is SIGNED as recorded (purchase +q, purchase_return -q, adjustment
    either sign, damage -q from the sellable perspective). stock_before and
    stock_after snapshot the source bucket at approval time.
    """
    __tablename__ = "inventory_transaction_items"
    __table_args__ = (
        db.CheckConstraint(sql_in("source_type", SOURCE_TYPES), name="source_type_valid"),
        db.CheckConstraint("quantity <> 0", name="quantity_non_zero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(
        db.Integer, db.ForeignKey("inventory_transactions.id"), nullable=False, index=True
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_paisa = db.Column(db.Integer, nullable=False, default=0)
    source_type = db.Column(db.String(16), nullable=False, default=SOURCE_FRESH)

    stock_before = db.Column(db.Integer, nullable=True)
    stock_after = db.Column(db.Integer, nullable=True)

    variant = db.relationship("Variant")

    @property
    def line_cost_paisa(self) -> int:
        return abs(self.quantity) * self.unit_cost_paisa

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "position": self.position,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_cost_paisa": self.unit_cost_paisa,
            "line_cost_paisa": self.line_cost_paisa,
            "source_type": self.source_type,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
        }
