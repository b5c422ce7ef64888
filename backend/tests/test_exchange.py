# Overview: Pytest coverage for post-sale exchanges recorded as signed child orders.

import pytest

from erpcore.errors import InsufficientStockError, ValidationError
from erpcore.models import Order, Variant
from erpcore.services import exchange_service, order_service

from conftest import ACTOR


def _sellable(db_session, variant):
    return db_session.get(Variant, variant.id).sellable_stock


@pytest.fixture
def blue(make_variant):
    """Variant Y: priced above X so a swap is an add-on."""
    return make_variant("KURTA-BLUE-L", opening_stock=5, price=400000)


@pytest.fixture
def delivered_order(variant, make_order, deliver):
    """Order for 2 x X (250000 each), delivered inside the valley."""
    return deliver(make_order(variant, quantity=2))


class TestReconcile:
    def test_addon_exchange(self, db_session, variant, blue, delivered_order):
        """Return 1 x X, take 1 x Y: customer owes the difference."""
        assert _sellable(db_session, variant) == 8

        result = exchange_service.reconcile(
            delivered_order.id,
            return_items=[{"variant_id": variant.id, "quantity": 1}],
            new_items=[{"variant_id": blue.id, "quantity": 1}],
            reason="Size swap",
            actor=ACTOR,
        )

        assert result["return_total"] == 250000
        assert result["new_total"] == 400000
        assert result["net_amount"] == 150000
        assert result["exchange_type"] == "addon"
        assert result["replayed"] is False

        child = result["child_order"]
        assert child.order_number.startswith("EXC-")
        assert child.parent_order_id == delivered_order.id
        assert child.status == "delivered"
        assert child.total_paisa == 150000
        assert child.payment_status == "pending"
        assert sorted(item.quantity for item in child.items) == [-1, 1]

        # replacement leaves at once, the returned unit waits for QC
        assert _sellable(db_session, blue) == 4
        assert _sellable(db_session, variant) == 8

    def test_original_order_is_not_edited(self, db_session, variant, blue, delivered_order):
        exchange_service.reconcile(
            delivered_order.id,
            return_items=[{"variant_id": variant.id, "quantity": 1}],
            new_items=[{"variant_id": blue.id, "quantity": 1}],
            reason="Size swap",
            actor=ACTOR,
        )
        parent = db_session.get(Order, delivered_order.id)
        assert parent.status == "delivered"
        assert parent.total_paisa == 500000
        assert [(item.quantity, item.return_status) for item in parent.items] == [(2, "none")]
        assert parent.has_exchange_pickup is True

    def test_both_orders_carry_the_link(self, db_session, variant, blue, delivered_order):
        result = exchange_service.reconcile(
            delivered_order.id,
            return_items=[{"variant_id": variant.id, "quantity": 1}],
            new_items=[{"variant_id": blue.id, "quantity": 1}],
            reason="Size swap",
            actor=ACTOR,
        )
        child = result["child_order"]

        parent_links = [log for log in order_service.get_order_history(delivered_order.id) if log.action == "exchange_link"]
        child_links = [log for log in order_service.get_order_history(child.id) if log.action == "exchange_link"]
        assert len(parent_links) == len(child_links) == 1
        assert parent_links[0].payload["child_order_id"] == child.id
        assert child_links[0].payload["net_amount_paisa"] == 150000
        assert [c.id for c in order_service.list_exchange_children(delivered_order.id)] == [child.id]

    def test_returned_unit_restocked_after_qc_on_child(self, db_session, variant, blue, delivered_order):
        result = exchange_service.reconcile(
            delivered_order.id,
            return_items=[{"variant_id": variant.id, "quantity": 1}],
            new_items=[{"variant_id": blue.id, "quantity": 1}],
            reason="Size swap",
            actor=ACTOR,
        )
        child = result["child_order"]
        return_line = next(item for item in child.items if item.quantity < 0)
        assert return_line.return_status == "pending_pickup"

        child = order_service.settle_returned_items(child.id, outcomes={return_line.id: "good"}, actor=ACTOR)
        assert _sellable(db_session, variant) == 9
        assert child.has_exchange_pickup is False

    def test_refund_only(self, db_session, variant, delivered_order):
        result = exchange_service.reconcile(
            delivered_order.id,
            return_items=[{"variant_id": variant.id, "quantity": 2}],
            new_items=None,
            reason="Quality complaint",
            actor=ACTOR,
        )
        assert result["exchange_type"] == "refund"
        assert result["net_amount"] == -500000
        assert result["child_order"].total_paisa == -500000
        assert _sellable(db_session, variant) == 8

    def test_like_for_like_is_paid(self, db_session, variant, delivered_order):
        result = exchange_service.reconcile(
            delivered_order.id,
            return_items=[{"variant_id": variant.id, "quantity": 1}],
            new_items=[{"variant_id": variant.id, "quantity": 1}],
            reason="Defective stitching",
            actor=ACTOR,
        )
        assert result["exchange_type"] == "exchange"
        assert result["child_order"].payment_status == "paid"
        assert _sellable(db_session, variant) == 7

    def test_store_parent_child_is_store_sale(self, db_session, variant, blue, make_order, drive):
        parent = drive(make_order(variant, quantity=1, fulfillment_type="store").id, "store_sale")
        result = exchange_service.reconcile(
            parent.id,
            return_items=[{"variant_id": variant.id, "quantity": 1}],
            new_items=[{"variant_id": blue.id, "quantity": 1}],
            reason="Walk-in swap",
            actor=ACTOR,
        )
        assert result["child_order"].status == "store_sale"
        assert result["child_order"].fulfillment_type == "store"


class TestReconcileRejections:
    def test_parent_must_be_delivered(self, db_session, variant, blue, make_order, drive):
        order = make_order(variant, quantity=2)
        drive(order.id, "converted", "packed")
        with pytest.raises(ValidationError):
            exchange_service.reconcile(
                order.id,
                return_items=[{"variant_id": variant.id, "quantity": 1}],
                new_items=None,
                reason="Too early",
                actor=ACTOR,
            )

    def test_cannot_return_more_than_ordered(self, db_session, variant, delivered_order):
        with pytest.raises(ValidationError):
            exchange_service.reconcile(
                delivered_order.id,
                return_items=[{"variant_id": variant.id, "quantity": 3}],
                new_items=None,
                reason="Over return",
                actor=ACTOR,
            )

    def test_earlier_exchanges_count_against_returnable(self, db_session, variant, delivered_order):
        exchange_service.reconcile(
            delivered_order.id,
            return_items=[{"variant_id": variant.id, "quantity": 2}],
            new_items=None,
            reason="First return",
            actor=ACTOR,
        )
        with pytest.raises(ValidationError):
            exchange_service.reconcile(
                delivered_order.id,
                return_items=[{"variant_id": variant.id, "quantity": 1}],
                new_items=None,
                reason="Second return",
                actor=ACTOR,
            )

    def test_return_variant_must_be_on_parent(self, db_session, blue, delivered_order):
        with pytest.raises(ValidationError):
            exchange_service.reconcile(
                delivered_order.id,
                return_items=[{"variant_id": blue.id, "quantity": 1}],
                new_items=None,
                reason="Not ours",
                actor=ACTOR,
            )

    def test_empty_exchange_rejected(self, db_session, delivered_order):
        with pytest.raises(ValidationError):
            exchange_service.reconcile(
                delivered_order.id, return_items=[], new_items=[], reason="Nothing", actor=ACTOR
            )

    def test_insufficient_replacement_stock_rolls_back(self, db_session, variant, make_variant, delivered_order):
        sold_out = make_variant("KURTA-GREEN-S", opening_stock=0)
        with pytest.raises(InsufficientStockError):
            exchange_service.reconcile(
                delivered_order.id,
                return_items=[{"variant_id": variant.id, "quantity": 1}],
                new_items=[{"variant_id": sold_out.id, "quantity": 1}],
                reason="Colour swap",
                actor=ACTOR,
            )

        assert order_service.list_exchange_children(delivered_order.id) == []
        assert db_session.get(Order, delivered_order.id).has_exchange_pickup is False
        assert _sellable(db_session, variant) == 8


class TestIdempotency:
    def test_replay_returns_the_same_child(self, db_session, variant, blue, delivered_order):
        kwargs = dict(
            return_items=[{"variant_id": variant.id, "quantity": 1}],
            new_items=[{"variant_id": blue.id, "quantity": 1}],
            reason="Size swap",
            actor=ACTOR,
            idempotency_key="exc-7f3a",
        )
        first = exchange_service.reconcile(delivered_order.id, **kwargs)
        second = exchange_service.reconcile(delivered_order.id, **kwargs)

        assert second["replayed"] is True
        assert second["child_order"].id == first["child_order"].id
        assert second["net_amount"] == first["net_amount"]
        assert _sellable(db_session, blue) == 4
        assert len(order_service.list_exchange_children(delivered_order.id)) == 1

    def test_key_bound_to_one_parent(self, db_session, variant, make_order, deliver, delivered_order):
        other = deliver(make_order(variant, quantity=1))
        exchange_service.reconcile(
            delivered_order.id,
            return_items=[{"variant_id": variant.id, "quantity": 1}],
            new_items=None,
            reason="Return",
            actor=ACTOR,
            idempotency_key="shared-key",
        )
        with pytest.raises(ValidationError):
            exchange_service.reconcile(
                other.id,
                return_items=[{"variant_id": variant.id, "quantity": 1}],
                new_items=None,
                reason="Return",
                actor=ACTOR,
                idempotency_key="shared-key",
            )


def _refund_and_restock(delivered_id, variant, quantity):
    child = exchange_service.reconcile(
        delivered_id,
        return_items=[{"variant_id": variant.id, "quantity": quantity}],
        new_items=None,
        reason="Refund",
        actor=ACTOR,
    )["child_order"]
    return_line = next(item for item in child.items if item.quantity < 0)
    return order_service.settle_returned_items(child.id, outcomes={return_line.id: "good"}, actor=ACTOR)


class TestReturnAccounting:
    """A unit that came back through an exchange is never restocked a second time."""

    def test_parent_return_refused_when_exchanges_took_everything(self, db_session, variant, delivered_order, drive):
        _refund_and_restock(delivered_order.id, variant, 2)
        assert _sellable(db_session, variant) == 10

        with pytest.raises(ValidationError):
            drive(delivered_order.id, "return_initiated", reason="Customer wants a refund")

        parent = order_service.get_order(delivered_order.id)
        assert parent.status == "delivered"
        assert [item.return_status for item in parent.items] == ["none"]
        assert _sellable(db_session, variant) == 10

    def test_parent_return_covers_only_units_not_exchanged(self, db_session, variant, delivered_order, drive):
        _refund_and_restock(delivered_order.id, variant, 1)
        assert _sellable(db_session, variant) == 9

        parent = drive(delivered_order.id, "return_initiated", "returned", reason="Rest of the order back")
        line = parent.items[0]
        assert line.return_status == "pending_pickup"
        assert line.return_quantity == 1

        order_service.settle_returned_items(parent.id, outcomes={line.id: "good"}, actor=ACTOR)
        assert _sellable(db_session, variant) == 10

    def test_parent_return_counts_against_exchanges(self, db_session, variant, delivered_order):
        line = db_session.get(Order, delivered_order.id).items[0]
        line.return_status = "received_hub"
        line.return_quantity = 1
        db_session.commit()

        with pytest.raises(ValidationError):
            exchange_service.reconcile(
                delivered_order.id,
                return_items=[{"variant_id": variant.id, "quantity": 2}],
                new_items=None,
                reason="Second return",
                actor=ACTOR,
            )
        result = exchange_service.reconcile(
            delivered_order.id,
            return_items=[{"variant_id": variant.id, "quantity": 1}],
            new_items=None,
            reason="Last unit",
            actor=ACTOR,
        )
        assert result["return_total"] == 250000

    def test_child_with_returned_goods_cannot_be_deleted(self, db_session, variant, make_order, deliver):
        parent = deliver(make_order(variant, quantity=1))
        child = _refund_and_restock(parent.id, variant, 1)
        assert _sellable(db_session, variant) == 10

        with pytest.raises(ValidationError):
            order_service.soft_delete_order(child.id, actor=ACTOR, reason="Cleanup")
        with pytest.raises(ValidationError):
            _refund_and_restock(parent.id, variant, 1)

        assert order_service.get_order(child.id).is_deleted is False
        assert _sellable(db_session, variant) == 10

    def test_deleted_child_with_settled_return_still_counts(self, db_session, variant, make_order, deliver):
        parent = deliver(make_order(variant, quantity=1))
        child = _refund_and_restock(parent.id, variant, 1)
        db_session.get(Order, child.id).is_deleted = True
        db_session.commit()

        with pytest.raises(ValidationError):
            _refund_and_restock(parent.id, variant, 1)
        assert _sellable(db_session, variant) == 10


@pytest.mark.parametrize("net,expected", [(1, "addon"), (-1, "refund"), (0, "exchange")])
def test_classify_net_amount(net, expected):
    assert exchange_service.classify_net_amount(net) == expected
