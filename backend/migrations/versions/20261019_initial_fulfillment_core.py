"""Initial fulfillment core schema: catalog, stock ledger, inventory transactions, orders

Revision ID: 20261019_initial_core
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

from erpcore.constants import (
    BUCKETS,
    CAUSAL_TYPES,
    EXCHANGE_TYPES,
    FULFILLMENT_TYPES,
    LOG_ACTIONS,
    ORDER_SOURCES,
    ORDER_STATUSES,
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    RETURN_STATUSES,
    SOURCE_TYPES,
    STOCK_STATES,
    TRANSACTION_TYPES,
    sql_in,
)


# revision identifiers, used by Alembic.
revision = "20261019_initial_core"
down_revision = None
branch_labels = None
depends_on = None

TRANSACTION_STATUSES = ("pending", "approved", "rejected", "voided")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("brand", sa.String(length=128), nullable=True),
        sa.Column("category", sa.String(length=128), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_products")),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_products_active_name", "products", ["is_active", "name"])

    op.create_table(
        "variants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("attributes", sa.JSON(), nullable=True),
        sa.Column("cost_price_paisa", sa.Integer(), nullable=False),
        sa.Column("selling_price_paisa", sa.Integer(), nullable=False),
        sa.Column("sellable_stock", sa.Integer(), nullable=False),
        sa.Column("damaged_stock", sa.Integer(), nullable=False),
        sa.Column("reserved_stock", sa.Integer(), nullable=False),
        sa.Column("reorder_level", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("sellable_stock >= 0", name=op.f("ck_variants_sellable_non_negative")),
        sa.CheckConstraint("damaged_stock >= 0", name=op.f("ck_variants_damaged_non_negative")),
        sa.CheckConstraint("reserved_stock >= 0", name=op.f("ck_variants_reserved_non_negative")),
        sa.CheckConstraint("reserved_stock <= sellable_stock", name=op.f("ck_variants_reserved_within_sellable")),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name=op.f("fk_variants_product_id_products")),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_variants")),
        sa.UniqueConstraint("sku", name="uq_variants_sku"),
        sqlite_autoincrement=True,
    )
    op.create_index(op.f("ix_variants_product_id"), "variants", ["product_id"])
    op.create_index("ix_variants_product_active", "variants", ["product_id", "is_active"])

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("bucket", sa.String(length=16), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("stock_after", sa.Integer(), nullable=False),
        sa.Column("causal_type", sa.String(length=32), nullable=False),
        sa.Column("causal_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("actor", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint(sql_in("bucket", BUCKETS), name=op.f("ck_stock_movements_bucket_valid")),
        sa.CheckConstraint(sql_in("causal_type", CAUSAL_TYPES), name=op.f("ck_stock_movements_causal_type_valid")),
        sa.CheckConstraint("delta <> 0", name=op.f("ck_stock_movements_delta_non_zero")),
        sa.ForeignKeyConstraint(["variant_id"], ["variants.id"], name=op.f("fk_stock_movements_variant_id_variants")),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_stock_movements")),
        sqlite_autoincrement=True,
    )
    op.create_index(op.f("ix_stock_movements_variant_id"), "stock_movements", ["variant_id"])
    op.create_index(op.f("ix_stock_movements_created_at"), "stock_movements", ["created_at"])
    op.create_index("ix_stock_movements_variant_bucket", "stock_movements", ["variant_id", "bucket", "id"])
    op.create_index("ix_stock_movements_causal", "stock_movements", ["causal_type", "causal_id"])

    op.create_table(
        "vendors",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("balance_paisa", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_vendors")),
        sa.UniqueConstraint("name", name=op.f("uq_vendors_name")),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "inventory_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_no", sa.String(length=32), nullable=False),
        sa.Column("transaction_type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("vendor_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("total_quantity", sa.Integer(), nullable=False),
        sa.Column("total_cost_paisa", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("approved_by", sa.String(length=64), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.String(length=64), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("voided_by", sa.String(length=64), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.CheckConstraint(sql_in("transaction_type", TRANSACTION_TYPES), name=op.f("ck_inventory_transactions_type_valid")),
        sa.CheckConstraint(sql_in("status", TRANSACTION_STATUSES), name=op.f("ck_inventory_transactions_status_valid")),
        sa.ForeignKeyConstraint(["vendor_id"], ["vendors.id"], name=op.f("fk_inventory_transactions_vendor_id_vendors")),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_inventory_transactions")),
        sa.UniqueConstraint("invoice_no", name="uq_inventory_transactions_invoice_no"),
        sqlite_autoincrement=True,
    )
    op.create_index(op.f("ix_inventory_transactions_transaction_type"), "inventory_transactions", ["transaction_type"])
    op.create_index(op.f("ix_inventory_transactions_status"), "inventory_transactions", ["status"])
    op.create_index(op.f("ix_inventory_transactions_vendor_id"), "inventory_transactions", ["vendor_id"])
    op.create_index("ix_inventory_transactions_status_created", "inventory_transactions", ["status", "created_at"])

    op.create_table(
        "inventory_transaction_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_cost_paisa", sa.Integer(), nullable=False),
        sa.Column("source_type", sa.String(length=16), nullable=False),
        sa.Column("stock_before", sa.Integer(), nullable=True),
        sa.Column("stock_after", sa.Integer(), nullable=True),
        sa.CheckConstraint(sql_in("source_type", SOURCE_TYPES), name=op.f("ck_inventory_transaction_items_source_type_valid")),
        sa.CheckConstraint("quantity <> 0", name=op.f("ck_inventory_transaction_items_quantity_non_zero")),
        sa.ForeignKeyConstraint(
            ["transaction_id"], ["inventory_transactions.id"],
            name=op.f("fk_inventory_transaction_items_transaction_id_inventory_transactions"),
        ),
        sa.ForeignKeyConstraint(["variant_id"], ["variants.id"], name=op.f("fk_inventory_transaction_items_variant_id_variants")),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_inventory_transaction_items")),
        sqlite_autoincrement=True,
    )
    op.create_index(op.f("ix_inventory_transaction_items_transaction_id"), "inventory_transaction_items", ["transaction_id"])
    op.create_index(op.f("ix_inventory_transaction_items_variant_id"), "inventory_transaction_items", ["variant_id"])

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(length=32), nullable=False),
        sa.Column("sequence_date", sa.Date(), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_document_sequences")),
        sa.UniqueConstraint("document_type", "sequence_date", name="uq_document_sequences_type_date"),
        sqlite_autoincrement=True,
    )
    op.create_index(op.f("ix_document_sequences_document_type"), "document_sequences", ["document_type"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("fulfillment_type", sa.String(length=16), nullable=False),
        sa.Column("stock_state", sa.String(length=16), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("payment_method", sa.String(length=16), nullable=False),
        sa.Column("payment_status", sa.String(length=16), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("shipping_name", sa.String(length=255), nullable=False),
        sa.Column("shipping_phone", sa.String(length=32), nullable=False),
        sa.Column("shipping_address", sa.Text(), nullable=True),
        sa.Column("shipping_city", sa.String(length=128), nullable=True),
        sa.Column("subtotal_paisa", sa.Integer(), nullable=False),
        sa.Column("discount_paisa", sa.Integer(), nullable=False),
        sa.Column("shipping_charge_paisa", sa.Integer(), nullable=False),
        sa.Column("total_paisa", sa.Integer(), nullable=False),
        sa.Column("assigned_rider_id", sa.Integer(), nullable=True),
        sa.Column("courier_partner", sa.String(length=64), nullable=True),
        sa.Column("awb_number", sa.String(length=64), nullable=True),
        sa.Column("courier_tracking_id", sa.String(length=64), nullable=True),
        sa.Column("destination_branch", sa.String(length=128), nullable=True),
        sa.Column("followup_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status_reason", sa.Text(), nullable=True),
        sa.Column("parent_order_id", sa.Integer(), nullable=True),
        sa.Column("exchange_type", sa.String(length=16), nullable=True),
        sa.Column("has_exchange_pickup", sa.Boolean(), nullable=False),
        sa.Column("idempotency_key", sa.String(length=64), nullable=True),
        sa.Column("return_condition", sa.String(length=16), nullable=True),
        sa.Column("return_notes", sa.Text(), nullable=True),
        sa.Column("return_verified_by", sa.String(length=64), nullable=True),
        sa.Column("return_received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.Column("converted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("packed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.String(length=64), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.CheckConstraint(sql_in("status", ORDER_STATUSES), name=op.f("ck_orders_status_valid")),
        sa.CheckConstraint(sql_in("fulfillment_type", FULFILLMENT_TYPES), name=op.f("ck_orders_fulfillment_type_valid")),
        sa.CheckConstraint(sql_in("stock_state", STOCK_STATES), name=op.f("ck_orders_stock_state_valid")),
        sa.CheckConstraint(sql_in("payment_method", PAYMENT_METHODS), name=op.f("ck_orders_payment_method_valid")),
        sa.CheckConstraint(sql_in("payment_status", PAYMENT_STATUSES), name=op.f("ck_orders_payment_status_valid")),
        sa.CheckConstraint(sql_in("source", ORDER_SOURCES), name=op.f("ck_orders_source_valid")),
        sa.CheckConstraint(
            f"exchange_type IS NULL OR {sql_in('exchange_type', EXCHANGE_TYPES)}",
            name=op.f("ck_orders_exchange_type_valid"),
        ),
        sa.ForeignKeyConstraint(["parent_order_id"], ["orders.id"], name=op.f("fk_orders_parent_order_id_orders")),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_orders")),
        sa.UniqueConstraint("order_number", name="uq_orders_order_number"),
        sa.UniqueConstraint("idempotency_key", name="uq_orders_idempotency_key"),
        sqlite_autoincrement=True,
    )
    op.create_index(op.f("ix_orders_status"), "orders", ["status"])
    op.create_index(op.f("ix_orders_customer_id"), "orders", ["customer_id"])
    op.create_index(op.f("ix_orders_assigned_rider_id"), "orders", ["assigned_rider_id"])
    op.create_index(op.f("ix_orders_parent_order_id"), "orders", ["parent_order_id"])
    op.create_index(op.f("ix_orders_created_at"), "orders", ["created_at"])
    op.create_index("ix_orders_status_fulfillment", "orders", ["status", "fulfillment_type"])
    op.create_index("ix_orders_deleted_created", "orders", ["is_deleted", "created_at"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_paisa", sa.Integer(), nullable=False),
        sa.Column("unit_cost_paisa", sa.Integer(), nullable=False),
        sa.Column("total_price_paisa", sa.Integer(), nullable=False),
        sa.Column("fulfilled_quantity", sa.Integer(), nullable=False),
        sa.Column("return_status", sa.String(length=16), nullable=False),
        sa.Column("return_quantity", sa.Integer(), nullable=True),
        sa.Column("return_condition", sa.String(length=16), nullable=True),
        sa.Column("return_settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("return_settled_by", sa.String(length=64), nullable=True),
        sa.CheckConstraint("quantity <> 0", name=op.f("ck_order_items_quantity_non_zero")),
        sa.CheckConstraint(sql_in("return_status", RETURN_STATUSES), name=op.f("ck_order_items_return_status_valid")),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], name=op.f("fk_order_items_order_id_orders")),
        sa.ForeignKeyConstraint(["variant_id"], ["variants.id"], name=op.f("fk_order_items_variant_id_variants")),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_order_items")),
        sqlite_autoincrement=True,
    )
    op.create_index(op.f("ix_order_items_order_id"), "order_items", ["order_id"])
    op.create_index(op.f("ix_order_items_variant_id"), "order_items", ["variant_id"])

    op.create_table(
        "order_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("old_status", sa.String(length=32), nullable=True),
        sa.Column("new_status", sa.String(length=32), nullable=True),
        sa.Column("actor", sa.String(length=64), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint(sql_in("action", LOG_ACTIONS), name=op.f("ck_order_logs_action_valid")),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], name=op.f("fk_order_logs_order_id_orders")),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_order_logs")),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_order_logs_order_id_id", "order_logs", ["order_id", "id"])


def downgrade():
    op.drop_table("order_logs")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("document_sequences")
    op.drop_table("inventory_transaction_items")
    op.drop_table("inventory_transactions")
    op.drop_table("vendors")
    op.drop_table("stock_movements")
    op.drop_table("variants")
    op.drop_table("products")
