# Overview: Flask API routes for products, variants, stock levels and movements.

"""
Catalog & Stock API Routes

DESIGN:
- Products group variants; variants own the three stock counters
- Counters are read-only here; manual corrections go through /adjust,
  which writes a ledger movement like every other stock change
- Movements are the audit trail: filter by variant, bucket or cause
"""

from flask import Blueprint, g, jsonify, request

from ..constants import BUCKET_RESERVED, BUCKETS, CAUSAL_TYPES
from ..decorators import json_body, require_actor
from ..services import catalog_service, stock_ledger_service
from ..validation import coerce_int, optional_int, require_choice, require_text


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


# =============================================================================
# PRODUCTS & VARIANTS
# =============================================================================

@catalog_bp.post("/products")
@require_actor
def create_product_route():
    """
    Create a product.

    Request body:
    {
        "name": "Cotton Kurta",
        "brand": "Seetara",      (optional)
        "category": "Apparel"    (optional)
    }

    Returns:
        201: Product created
        400: Invalid input
    """
    data = json_body()
    product = catalog_service.create_product(
        name=data.get("name"),
        brand=data.get("brand"),
        category=data.get("category"),
    )
    return jsonify({"product": product.to_dict()}), 201


@catalog_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    product = catalog_service.get_product(product_id)
    return jsonify({"product": product.to_dict(include_variants=True)})


@catalog_bp.post("/products/<int:product_id>/variants")
@require_actor
def create_variant_route(product_id: int):
    """
    Create a variant under a product.

    Request body:
    {
        "sku": "KURTA-RED-M",
        "selling_price_paisa": 250000,
        "cost_price_paisa": 120000,   (optional, default: 0)
        "opening_stock": 10,          (optional, booked as an opening movement)
        "reorder_level": 3,           (optional)
        "attributes": {"size": "M", "color": "red"}   (optional)
    }

    Returns:
        201: Variant created
        400: Invalid input or duplicate SKU
        404: Product not found
    """
    data = json_body()
    variant = catalog_service.create_variant(
        product_id=product_id,
        sku=data.get("sku"),
        selling_price_paisa=data.get("selling_price_paisa"),
        cost_price_paisa=data.get("cost_price_paisa", 0),
        opening_stock=coerce_int(data.get("opening_stock", 0), "opening_stock"),
        reorder_level=coerce_int(data.get("reorder_level", 0), "reorder_level"),
        attributes=data.get("attributes"),
        actor=g.actor,
    )
    return jsonify({"variant": variant.to_dict()}), 201


@catalog_bp.get("/variants/<int:variant_id>")
def get_variant_route(variant_id: int):
    variant = catalog_service.get_variant(variant_id)
    return jsonify({"variant": variant.to_dict()})


@catalog_bp.post("/variants/<int:variant_id>/deactivate")
@require_actor
def deactivate_variant_route(variant_id: int):
    variant = catalog_service.deactivate_variant(variant_id)
    return jsonify({"variant": variant.to_dict()})


@catalog_bp.get("/variants/low-stock")
def low_stock_route():
    limit = optional_int(request.args.get("limit"), "limit") or 100
    variants = catalog_service.list_low_stock(limit=limit)
    return jsonify({"variants": [v.to_dict() for v in variants]})


# =============================================================================
# STOCK LEDGER
# =============================================================================

@catalog_bp.get("/variants/<int:variant_id>/stock")
def stock_levels_route(variant_id: int):
    return jsonify({"stock": stock_ledger_service.get_stock_levels(variant_id)})


@catalog_bp.post("/variants/<int:variant_id>/adjust")
@require_actor
def adjust_stock_route(variant_id: int):
    """
    Manual stock correction on one bucket.

    Request body:
    {
        "bucket": "sellable" | "damaged",
        "delta": -2,
        "reason": "Shelf count correction"
    }

    Reservations are owned by orders and cannot be adjusted by hand.

    Returns:
        200: {"new_value": 8, "movement_id": 17}
        400: Invalid input
        409: Adjustment would break a stock invariant
    """
    data = json_body()
    bucket = require_choice(data.get("bucket"), "bucket", [b for b in BUCKETS if b != BUCKET_RESERVED])
    new_value, movement_id = stock_ledger_service.adjust(
        variant_id=variant_id,
        bucket=bucket,
        delta=coerce_int(data.get("delta"), "delta"),
        reason=require_text(data.get("reason"), "reason"),
        actor=g.actor,
    )
    return jsonify({"new_value": new_value, "movement_id": movement_id})


@catalog_bp.get("/movements")
def list_movements_route():
    """
    Query params: variant_id, bucket, causal_type, causal_id, limit
    """
    bucket = request.args.get("bucket")
    causal_type = request.args.get("causal_type")
    movements = stock_ledger_service.list_movements(
        variant_id=optional_int(request.args.get("variant_id"), "variant_id"),
        bucket=require_choice(bucket, "bucket", BUCKETS) if bucket else None,
        causal_type=require_choice(causal_type, "causal_type", CAUSAL_TYPES) if causal_type else None,
        causal_id=optional_int(request.args.get("causal_id"), "causal_id"),
        limit=optional_int(request.args.get("limit"), "limit") or 100,
    )
    return jsonify({"movements": [m.to_dict() for m in movements]})


@catalog_bp.get("/variants/<int:variant_id>/verify")
def verify_variant_route(variant_id: int):
    return jsonify({"report": stock_ledger_service.verify_variant(variant_id)})


# =============================================================================
# VENDORS
# =============================================================================

@catalog_bp.post("/vendors")
@require_actor
def create_vendor_route():
    data = json_body()
    vendor = catalog_service.create_vendor(
        name=data.get("name"),
        phone=data.get("phone"),
        address=data.get("address"),
    )
    return jsonify({"vendor": vendor.to_dict()}), 201


@catalog_bp.get("/vendors/<int:vendor_id>")
def get_vendor_route(vendor_id: int):
    return jsonify({"vendor": catalog_service.get_vendor(vendor_id).to_dict()})
