# Overview: Closed value sets shared by models (CHECK constraints), services and routes.
"""
Single source of truth for every enumerated column.

Models build their CHECK constraints from these tuples, services validate
against them and routes reject anything else, so the three layers can never
drift apart.
"""
from __future__ import annotations


# =============================================================================
# ORDER STATUS (database-schema superset)
# =============================================================================

STATUS_INTAKE = "intake"
STATUS_FOLLOW_UP = "follow_up"
STATUS_CONVERTED = "converted"
STATUS_HOLD = "hold"
STATUS_PACKED = "packed"
STATUS_ASSIGNED = "assigned"
STATUS_OUT_FOR_DELIVERY = "out_for_delivery"
STATUS_HANDOVER_TO_COURIER = "handover_to_courier"
STATUS_IN_TRANSIT = "in_transit"
STATUS_STORE_SALE = "store_sale"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"
STATUS_REJECTED = "rejected"
STATUS_RETURN_INITIATED = "return_initiated"
STATUS_RETURNED = "returned"
STATUS_RTO_INITIATED = "rto_initiated"
STATUS_RTO_VERIFICATION_PENDING = "rto_verification_pending"
STATUS_LOST_IN_TRANSIT = "lost_in_transit"

ORDER_STATUSES = (
    STATUS_INTAKE,
    STATUS_FOLLOW_UP,
    STATUS_CONVERTED,
    STATUS_HOLD,
    STATUS_PACKED,
    STATUS_ASSIGNED,
    STATUS_OUT_FOR_DELIVERY,
    STATUS_HANDOVER_TO_COURIER,
    STATUS_IN_TRANSIT,
    STATUS_STORE_SALE,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
    STATUS_REJECTED,
    STATUS_RETURN_INITIATED,
    STATUS_RETURNED,
    STATUS_RTO_INITIATED,
    STATUS_RTO_VERIFICATION_PENDING,
    STATUS_LOST_IN_TRANSIT,
)


# Before any stock has physically left; fulfillment type may still be reassigned
PRE_DISPATCH_STATUSES = frozenset({
    STATUS_INTAKE,
    STATUS_FOLLOW_UP,
    STATUS_CONVERTED,
    STATUS_PACKED,
})


# =============================================================================
# FULFILLMENT
# =============================================================================

FULFILLMENT_INSIDE_VALLEY = "inside_valley"
FULFILLMENT_OUTSIDE_VALLEY = "outside_valley"
FULFILLMENT_STORE = "store"

FULFILLMENT_TYPES = (
    FULFILLMENT_INSIDE_VALLEY,
    FULFILLMENT_OUTSIDE_VALLEY,
    FULFILLMENT_STORE,
)

PAYMENT_METHODS = ("cod", "esewa", "khalti", "bank_transfer", "cash")
PAYMENT_STATUSES = ("pending", "paid", "partial", "refunded", "cod")

ORDER_SOURCES = (
    "manual", "website", "facebook", "instagram", "store",
    "todaytrend", "seetara", "shopify", "woocommerce", "api",
)


# =============================================================================
# ORDER STOCK STATE (what the Reservation Coordinator has done to this order)
# =============================================================================

STOCK_STATE_NONE = "none"
STOCK_STATE_RESERVED = "reserved"
STOCK_STATE_DEDUCTED = "deducted"
STOCK_STATE_RELEASED = "released"

STOCK_STATES = (
    STOCK_STATE_NONE,
    STOCK_STATE_RESERVED,
    STOCK_STATE_DEDUCTED,
    STOCK_STATE_RELEASED,
)


# =============================================================================
# ORDER ITEM RETURN LOGISTICS
# =============================================================================

RETURN_STATUS_NONE = "none"
RETURN_STATUS_PENDING_PICKUP = "pending_pickup"
RETURN_STATUS_PICKED_UP = "picked_up"
RETURN_STATUS_RECEIVED_HUB = "received_hub"
RETURN_STATUS_DAMAGED_HUB = "damaged_hub"
RETURN_STATUS_MISSING = "missing"

RETURN_STATUSES = (
    RETURN_STATUS_NONE,
    RETURN_STATUS_PENDING_PICKUP,
    RETURN_STATUS_PICKED_UP,
    RETURN_STATUS_RECEIVED_HUB,
    RETURN_STATUS_DAMAGED_HUB,
    RETURN_STATUS_MISSING,
)

# Physical QC outcome per returned line
QC_GOOD = "good"
QC_DAMAGED = "damaged"
QC_MISSING = "missing"
QC_WRONG_ITEM = "wrong_item"

QC_OUTCOMES = (QC_GOOD, QC_DAMAGED, QC_MISSING, QC_WRONG_ITEM)

# Whole-parcel condition recorded when a courier RTO reaches the warehouse
RTO_CONDITIONS = ("GOOD", "DAMAGED", "MISSING_ITEMS", "TAMPERED", "UNKNOWN")


# =============================================================================
# ORDER LOG ACTIONS
# =============================================================================

LOG_CREATED = "created"
LOG_STATUS_CHANGE = "status_change"
LOG_NOTE = "note"
LOG_EXCHANGE_LINK = "exchange_link"
LOG_FULFILLMENT_REASSIGNED = "fulfillment_reassigned"
LOG_LOGISTICS_UPDATED = "logistics_updated"
LOG_RETURN_SETTLED = "return_settled"
LOG_DELETED = "deleted"

LOG_ACTIONS = (
    LOG_CREATED,
    LOG_STATUS_CHANGE,
    LOG_NOTE,
    LOG_EXCHANGE_LINK,
    LOG_FULFILLMENT_REASSIGNED,
    LOG_LOGISTICS_UPDATED,
    LOG_RETURN_SETTLED,
    LOG_DELETED,
)

EXCHANGE_TYPES = ("exchange", "refund", "addon")


# =============================================================================
# STOCK LEDGER
# =============================================================================

BUCKET_SELLABLE = "sellable"
BUCKET_DAMAGED = "damaged"
BUCKET_RESERVED = "reserved"

BUCKETS = (BUCKET_SELLABLE, BUCKET_DAMAGED, BUCKET_RESERVED)

CAUSAL_ORDER = "order"
CAUSAL_INVENTORY_TRANSACTION = "inventory_transaction"
CAUSAL_OPENING = "opening"
CAUSAL_MANUAL = "manual"

CAUSAL_TYPES = (CAUSAL_ORDER, CAUSAL_INVENTORY_TRANSACTION, CAUSAL_OPENING, CAUSAL_MANUAL)


# =============================================================================
# INVENTORY TRANSACTIONS
# =============================================================================

TXN_PURCHASE = "purchase"
TXN_PURCHASE_RETURN = "purchase_return"
TXN_DAMAGE = "damage"
TXN_ADJUSTMENT = "adjustment"

TRANSACTION_TYPES = (TXN_PURCHASE, TXN_PURCHASE_RETURN, TXN_DAMAGE, TXN_ADJUSTMENT)

INVOICE_PREFIXES = {
    TXN_PURCHASE: "PUR",
    TXN_PURCHASE_RETURN: "RET",
    TXN_DAMAGE: "DMG",
    TXN_ADJUSTMENT: "ADJ",
}

SOURCE_FRESH = "fresh"
SOURCE_DAMAGED = "damaged"

SOURCE_TYPES = (SOURCE_FRESH, SOURCE_DAMAGED)


def sql_in(column: str, values) -> str:
    """Render `column IN ('a','b')` for CHECK constraints."""
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"
