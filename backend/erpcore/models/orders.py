from __future__ import annotations

from ..constants import (
    EXCHANGE_TYPES,
    FULFILLMENT_TYPES,
    LOG_ACTIONS,
    ORDER_SOURCES,
    ORDER_STATUSES,
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    RETURN_STATUS_NONE,
    RETURN_STATUSES,
    STATUS_INTAKE,
    STOCK_STATE_NONE,
    STOCK_STATES,
    sql_in,
)
from ..extensions import db
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Order aggregate root.

    STATUS:
    Mutated ONLY by services/order_service.transition_order (and the RTO helpers
    built on it), which consults the fulfillment-type TransitionTable first.
    Every accepted change appends exactly one OrderLog row.

    FULFILLMENT TYPE:
    inside_valley (own riders), outside_valley (couriers), store (POS).
    Fixed at creation; only reassign_fulfillment may swap inside <-> outside
    before dispatch. Never to or from store.

    STOCK STATE:
    Records what the Reservation Coordinator has done for this order:
        none -> reserved -> deducted
        reserved -> released   (cancel before dispatch)
    Effects key off this column rather than off status history so that every
    stock effect is applied at most once.

    SNAPSHOTS:
    Shipping address and line prices are copied at creation time and never
    re-derived from the customer or the live variant.

    Soft-deleted only (is_deleted); rows are never removed.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.UniqueConstraint("idempotency_key", name="uq_orders_idempotency_key"),
        db.CheckConstraint(sql_in("status", ORDER_STATUSES), name="status_valid"),
        db.CheckConstraint(sql_in("fulfillment_type", FULFILLMENT_TYPES), name="fulfillment_type_valid"),
        db.CheckConstraint(sql_in("stock_state", STOCK_STATES), name="stock_state_valid"),
        db.CheckConstraint(sql_in("payment_method", PAYMENT_METHODS), name="payment_method_valid"),
        db.CheckConstraint(sql_in("payment_status", PAYMENT_STATUSES), name="payment_status_valid"),
        db.CheckConstraint(sql_in("source", ORDER_SOURCES), name="source_valid"),
        db.CheckConstraint(
            f"exchange_type IS NULL OR {sql_in('exchange_type', EXCHANGE_TYPES)}",
            name="exchange_type_valid",
        ),
        db.Index("ix_orders_status_fulfillment", "status", "fulfillment_type"),
        db.Index("ix_orders_deleted_created", "is_deleted", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(32), nullable=False, default=STATUS_INTAKE, index=True)
    fulfillment_type = db.Column(db.String(16), nullable=False)
    stock_state = db.Column(db.String(16), nullable=False, default=STOCK_STATE_NONE)
    source = db.Column(db.String(32), nullable=False, default="manual")

    payment_method = db.Column(db.String(16), nullable=False, default="cod")
    payment_status = db.Column(db.String(16), nullable=False, default="pending")

    # Shipping snapshot (copied at creation)
    customer_id = db.Column(db.Integer, nullable=True, index=True)
    shipping_name = db.Column(db.String(255), nullable=False)
    shipping_phone = db.Column(db.String(32), nullable=False)
    shipping_address = db.Column(db.Text, nullable=True)
    shipping_city = db.Column(db.String(128), nullable=True)

    # NPR in paisa
    subtotal_paisa = db.Column(db.Integer, nullable=False, default=0)
    discount_paisa = db.Column(db.Integer, nullable=False, default=0)
    shipping_charge_paisa = db.Column(db.Integer, nullable=False, default=0)
    total_paisa = db.Column(db.Integer, nullable=False, default=0)

    # Logistics
    assigned_rider_id = db.Column(db.Integer, nullable=True, index=True)
    courier_partner = db.Column(db.String(64), nullable=True)
    awb_number = db.Column(db.String(64), nullable=True)
    courier_tracking_id = db.Column(db.String(64), nullable=True)
    destination_branch = db.Column(db.String(128), nullable=True)

    followup_date = db.Column(db.DateTime(timezone=True), nullable=True)
    status_reason = db.Column(db.Text, nullable=True)

    # Exchange lineage
    parent_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    exchange_type = db.Column(db.String(16), nullable=True)
    has_exchange_pickup = db.Column(db.Boolean, nullable=False, default=False)
    idempotency_key = db.Column(db.String(64), nullable=True)

    # Courier RTO verification at warehouse
    return_condition = db.Column(db.String(16), nullable=True)
    return_notes = db.Column(db.Text, nullable=True)
    return_verified_by = db.Column(db.String(64), nullable=True)
    return_received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Lifecycle timestamps
    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    packed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_by = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    logs = db.relationship(
        "OrderLog",
        backref="order",
        order_by="OrderLog.id",
        lazy="dynamic",
    )
    parent_order = db.relationship(
        "Order",
        remote_side=[id],
        backref=db.backref("exchange_children", lazy=True, order_by="Order.id"),
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_exchange(self) -> bool:
        return self.parent_order_id is not None

    def __repr__(self) -> str:
        return (
            f"<Order id={self.id} number={self.order_number!r} status={self.status!r} "
            f"fulfillment={self.fulfillment_type!r} stock_state={self.stock_state!r}>"
        )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "status": self.status,
            "fulfillment_type": self.fulfillment_type,
            "stock_state": self.stock_state,
            "source": self.source,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "customer_id": self.customer_id,
            "shipping": {
                "name": self.shipping_name,
                "phone": self.shipping_phone,
                "address": self.shipping_address,
                "city": self.shipping_city,
            },
            "subtotal_paisa": self.subtotal_paisa,
            "discount_paisa": self.discount_paisa,
            "shipping_charge_paisa": self.shipping_charge_paisa,
            "total_paisa": self.total_paisa,
            "assigned_rider_id": self.assigned_rider_id,
            "courier_partner": self.courier_partner,
            "awb_number": self.awb_number,
            "courier_tracking_id": self.courier_tracking_id,
            "destination_branch": self.destination_branch,
            "followup_date": to_utc_z(self.followup_date),
            "status_reason": self.status_reason,
            "parent_order_id": self.parent_order_id,
            "exchange_type": self.exchange_type,
            "has_exchange_pickup": self.has_exchange_pickup,
            "return_condition": self.return_condition,
            "return_notes": self.return_notes,
            "return_verified_by": self.return_verified_by,
            "return_received_at": to_utc_z(self.return_received_at),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "converted_at": to_utc_z(self.converted_at),
            "packed_at": to_utc_z(self.packed_at),
            "dispatched_at": to_utc_z(self.dispatched_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "returned_at": to_utc_z(self.returned_at),
            "is_deleted": self.is_deleted,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Order line with price/cost snapshot.

    quantity is signed: exchange children carry negative lines for goods coming
    back and positive lines for replacements. return_status tracks the physical
    return leg (pending_pickup -> picked_up -> received_hub | damaged_hub | missing).
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity <> 0", name="quantity_non_zero"),
        db.CheckConstraint(sql_in("return_status", RETURN_STATUSES), name="return_status_valid"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_paisa = db.Column(db.Integer, nullable=False)
    unit_cost_paisa = db.Column(db.Integer, nullable=False, default=0)
    total_price_paisa = db.Column(db.Integer, nullable=False)
    fulfilled_quantity = db.Column(db.Integer, nullable=False, default=0)

    return_status = db.Column(db.String(16), nullable=False, default=RETURN_STATUS_NONE)
    # Units expected back when fewer than the whole line (part already returned through exchanges).
    return_quantity = db.Column(db.Integer, nullable=True)
    return_condition = db.Column(db.String(16), nullable=True)
    return_settled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    return_settled_by = db.Column(db.String(64), nullable=True)

    variant = db.relationship("Variant")

    @property
    def is_return_leg(self) -> bool:
        return self.quantity < 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "variant_id": self.variant_id,
            "sku": self.sku,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_paisa": self.unit_price_paisa,
            "unit_cost_paisa": self.unit_cost_paisa,
            "total_price_paisa": self.total_price_paisa,
            "fulfilled_quantity": self.fulfilled_quantity,
            "return_status": self.return_status,
            "return_quantity": self.return_quantity,
            "return_condition": self.return_condition,
            "return_settled_at": to_utc_z(self.return_settled_at),
            "return_settled_by": self.return_settled_by,
        }


class OrderLog(db.Model):
    """Append-only order history. The only historical source of truth for status changes."""
    __tablename__ = "order_logs"
    __table_args__ = (
        db.CheckConstraint(sql_in("action", LOG_ACTIONS), name="action_valid"),
        db.Index("ix_order_logs_order_id_id", "order_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    action = db.Column(db.String(32), nullable=False)
    old_status = db.Column(db.String(32), nullable=True)
    new_status = db.Column(db.String(32), nullable=True)
    actor = db.Column(db.String(64), nullable=True)
    reason = db.Column(db.Text, nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "action": self.action,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "actor": self.actor,
            "reason": self.reason,
            "payload": self.payload,
            "created_at": to_utc_z(self.created_at),
        }
