from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog product; groups sellable variants (size/colour) under one display name.

    Never hard-deleted. Deactivating a product hides it from new orders but keeps
    every historical order line and stock movement resolvable.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    brand = db.Column(db.String(128), nullable=True)
    category = db.Column(db.String(128), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self, include_variants: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "brand": self.brand,
            "category": self.category,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
        if include_variants:
            data["variants"] = [v.to_dict() for v in self.variants]
        return data


class Variant(db.Model):
    """
    A sellable SKU and the owner of the three stock counters.

    BUCKETS:
    - sellable_stock: physically on the shelf and fit to sell
    - damaged_stock:  physically present but quarantined (QC fail, damage write-off)
    - reserved_stock: portion of sellable_stock promised to converted orders

    INVARIANTS (enforced twice: stock_ledger_service + CHECK constraints):
    - all three counters >= 0
    - reserved_stock <= sellable_stock
    - available to promise = sellable_stock - reserved_stock

    WRITE PATH:
    Counters are written ONLY by services/stock_ledger_service.py, which pairs each
    counter change with exactly one StockMovement row in the same DB transaction.
    No other module may assign to these columns.

    version_id gives optimistic-lock protection on backends where
    SELECT ... FOR UPDATE is a no-op (SQLite).
    """
    __tablename__ = "variants"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_variants_sku"),
        db.CheckConstraint("sellable_stock >= 0", name="sellable_non_negative"),
        db.CheckConstraint("damaged_stock >= 0", name="damaged_non_negative"),
        db.CheckConstraint("reserved_stock >= 0", name="reserved_non_negative"),
        db.CheckConstraint("reserved_stock <= sellable_stock", name="reserved_within_sellable"),
        db.Index("ix_variants_product_active", "product_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    attributes = db.Column(db.JSON, nullable=True)  # {"size": "M", "color": "black"}

    # NPR in paisa
    cost_price_paisa = db.Column(db.Integer, nullable=False, default=0)
    selling_price_paisa = db.Column(db.Integer, nullable=False, default=0)

    sellable_stock = db.Column(db.Integer, nullable=False, default=0)
    damaged_stock = db.Column(db.Integer, nullable=False, default=0)
    reserved_stock = db.Column(db.Integer, nullable=False, default=0)

    reorder_level = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("variants", lazy=True, order_by="Variant.id"))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_stock(self) -> int:
        return self.sellable_stock - self.reserved_stock

    @property
    def needs_reorder(self) -> bool:
        return self.available_stock <= self.reorder_level

    def __repr__(self) -> str:
        return (
            f"<Variant id={self.id} sku={self.sku!r} sellable={self.sellable_stock} "
            f"reserved={self.reserved_stock} damaged={self.damaged_stock}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "attributes": self.attributes or {},
            "cost_price_paisa": self.cost_price_paisa,
            "selling_price_paisa": self.selling_price_paisa,
            "sellable_stock": self.sellable_stock,
            "damaged_stock": self.damaged_stock,
            "reserved_stock": self.reserved_stock,
            "available_stock": self.available_stock,
            "reorder_level": self.reorder_level,
            "needs_reorder": self.needs_reorder,
            "is_active": self.is_active,
            "version_id": self.version_id,
        }
