# Overview: Product, variant and vendor master data; opening stock goes through the ledger.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..constants import BUCKET_SELLABLE, CAUSAL_OPENING
from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..logging_config import get_logger
from ..models import Product, Variant, Vendor
from ..validation import require_money, require_text
from .concurrency import run_with_retry
from .stock_ledger_service import apply_adjustment

logger = get_logger("catalog")


def create_product(*, name: str, brand: str | None = None, category: str | None = None) -> Product:
    product = Product(name=require_text(name, "name"), brand=brand, category=category)
    db.session.add(product)
    db.session.commit()
    return product


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product", product_id)
    return product


def create_variant(
    *,
    product_id: int,
    sku: str,
    selling_price_paisa: int,
    cost_price_paisa: int = 0,
    opening_stock: int = 0,
    reorder_level: int = 0,
    attributes: dict | None = None,
    actor: str | None = None,
) -> Variant:
    """
    Create a variant with zeroed counters, then book opening stock as an
    `opening` ledger movement so movement sums always equal the counters.
    """
    sku = require_text(sku, "sku").upper()
    selling_price_paisa = require_money(selling_price_paisa, "selling_price_paisa")
    cost_price_paisa = require_money(cost_price_paisa, "cost_price_paisa")
    if opening_stock < 0:
        raise ValidationError("opening_stock must be >= 0", field="opening_stock")
    if reorder_level < 0:
        raise ValidationError("reorder_level must be >= 0", field="reorder_level")

    def _op():
        product = get_product(product_id)
        variant = Variant(
            product_id=product.id,
            sku=sku,
            attributes=attributes,
            selling_price_paisa=selling_price_paisa,
            cost_price_paisa=cost_price_paisa,
            reorder_level=reorder_level,
        )
        db.session.add(variant)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise ValidationError(f"SKU {sku} already exists", field="sku")

        if opening_stock:
            apply_adjustment(
                variant_id=variant.id,
                bucket=BUCKET_SELLABLE,
                delta=opening_stock,
                causal_type=CAUSAL_OPENING,
                causal_id=variant.id,
                reason="Opening stock",
                actor=actor,
            )
        db.session.commit()
        return variant

    variant = run_with_retry(_op, entity="Variant")
    logger.info("Variant created: %s (%s) opening=%s", variant.id, variant.sku, opening_stock)
    return variant


def get_variant(variant_id: int) -> Variant:
    variant = db.session.get(Variant, variant_id)
    if variant is None:
        raise NotFoundError("Variant", variant_id)
    return variant


def deactivate_variant(variant_id: int) -> Variant:
    """Variants are never deleted; deactivation blocks new orders only."""
    def _op():
        variant = get_variant(variant_id)
        variant.is_active = False
        db.session.commit()
        return variant

    return run_with_retry(_op, entity="Variant", entity_id=variant_id)


def list_low_stock(limit: int = 100) -> list[Variant]:
    return (
        db.session.query(Variant)
        .filter(
            Variant.is_active.is_(True),
            (Variant.sellable_stock - Variant.reserved_stock) <= Variant.reorder_level,
        )
        .order_by(Variant.sku)
        .limit(limit)
        .all()
    )


def create_vendor(*, name: str, phone: str | None = None, address: str | None = None) -> Vendor:
    vendor = Vendor(name=require_text(name, "name"), phone=phone, address=address)
    db.session.add(vendor)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError(f"Vendor {name} already exists", field="name")
    return vendor


def get_vendor(vendor_id: int) -> Vendor:
    vendor = db.session.get(Vendor, vendor_id)
    if vendor is None:
        raise NotFoundError("Vendor", vendor_id)
    return vendor
