# Overview: Pytest coverage for stock effects bound to order status transitions.

"""
Reservation Coordinator Tests

Walks real orders through each fulfillment flow and checks the stock ledger
after every hop:
- convert reserves, dispatch consumes, cancel releases
- effects fire once even when an order goes back and forth
- returned goods re-enter stock only through QC settlement
"""

import pytest

from erpcore.errors import IllegalTransitionError, InsufficientStockError, ValidationError
from erpcore.models import Order, Variant
from erpcore.services import order_service, stock_ledger_service

from conftest import ACTOR, DELIVERY_PATHS


def _stock(db_session, variant):
    fresh = db_session.get(Variant, variant.id)
    assert fresh.reserved_stock <= fresh.sellable_stock
    return fresh.sellable_stock, fresh.reserved_stock, fresh.damaged_stock


def _outside_to_transit(drive, order):
    return drive(order.id, *DELIVERY_PATHS["outside_valley"][:4])


class TestReserveAndRelease:
    def test_convert_then_cancel_restores_availability(self, db_session, variant, make_order, drive):
        order = make_order(variant, quantity=3)
        assert _stock(db_session, variant) == (10, 0, 0)

        drive(order.id, "converted")
        assert _stock(db_session, variant) == (10, 3, 0)
        assert stock_ledger_service.get_stock_levels(variant.id)["available_stock"] == 7

        order = drive(order.id, "cancelled", reason="Customer changed mind")
        assert _stock(db_session, variant) == (10, 0, 0)
        assert order.stock_state == "released"

    def test_dispatch_consumes_reservation(self, db_session, variant, make_order, drive):
        order = make_order(variant, quantity=3)
        drive(order.id, "converted", "packed", ("assigned", {"assigned_rider_id": 7}))

        assert _stock(db_session, variant) == (7, 0, 0)
        assert db_session.get(Order, order.id).stock_state == "deducted"

    def test_courier_handover_consumes_reservation(self, db_session, variant, make_order, drive):
        order = make_order(variant, quantity=2, fulfillment_type="outside_valley")
        drive(order.id, *DELIVERY_PATHS["outside_valley"][:3])
        assert _stock(db_session, variant) == (8, 0, 0)

    def test_multi_line_reservation_is_all_or_nothing(self, db_session, variant, make_variant, make_order):
        scarce = make_variant("DUPATTA-GOLD", opening_stock=1)
        order = make_order(variant, quantity=3, extra_items=[{"variant_id": scarce.id, "quantity": 2}])

        with pytest.raises(InsufficientStockError) as exc_info:
            order_service.transition_order(order.id, "converted", actor=ACTOR)

        assert exc_info.value.variant_id == scarce.id
        assert _stock(db_session, variant) == (10, 0, 0)
        assert _stock(db_session, scarce) == (1, 0, 0)
        reloaded = order_service.get_order(order.id)
        assert reloaded.status == "intake"
        assert reloaded.stock_state == "none"

    def test_same_variant_on_two_lines_reserves_the_sum(self, db_session, variant, make_order, drive):
        order = make_order(variant, quantity=4, extra_items=[{"variant_id": variant.id, "quantity": 7}])
        with pytest.raises(InsufficientStockError) as exc_info:
            drive(order.id, "converted")
        assert exc_info.value.requested == 11

    def test_second_order_cannot_take_reserved_units(self, db_session, variant, make_order, drive):
        first = make_order(variant, quantity=8)
        drive(first.id, "converted")
        second = make_order(variant, quantity=3)

        with pytest.raises(InsufficientStockError) as exc_info:
            drive(second.id, "converted")
        assert exc_info.value.available == 2

    def test_cancel_after_dispatch_restocks(self, db_session, variant, make_order, drive):
        order = make_order(variant, quantity=3)
        drive(order.id, "converted", "packed", ("assigned", {"assigned_rider_id": 7}))
        assert _stock(db_session, variant) == (7, 0, 0)

        order = drive(order.id, "cancelled", reason="Rider could not reach customer")
        assert _stock(db_session, variant) == (10, 0, 0)
        assert order.stock_state == "released"

    def test_cancel_from_intake_has_no_stock_effect(self, db_session, variant, make_order, drive):
        order = make_order(variant)
        order = drive(order.id, "cancelled", reason="Duplicate lead")
        assert order.stock_state == "none"
        assert _stock(db_session, variant) == (10, 0, 0)


class TestIdempotentEffects:
    def test_unassign_and_reassign_deducts_once(self, db_session, variant, make_order, drive):
        order = make_order(variant, quantity=3)
        drive(order.id, "converted", "packed", ("assigned", {"assigned_rider_id": 7}))
        drive(order.id, "packed", ("assigned", {"assigned_rider_id": 9}))

        assert _stock(db_session, variant) == (7, 0, 0)
        assert db_session.get(Order, order.id).assigned_rider_id == 9

    def test_follow_up_loop_reserves_once(self, db_session, variant, make_order, drive):
        order = make_order(variant, quantity=3)
        drive(
            order.id,
            ("follow_up", {"followup_date": "2026-10-20T05:00:00Z"}),
            ("follow_up", {"followup_date": "2026-10-21T05:00:00Z"}),
            "converted",
        )
        assert _stock(db_session, variant) == (10, 3, 0)

    def test_round_trip_returns_to_starting_levels(self, db_session, variant, make_order, drive):
        for quantity in (1, 4, 10):
            order = make_order(variant, quantity=quantity)
            drive(order.id, "converted", "packed", "cancelled")
            assert _stock(db_session, variant) == (10, 0, 0)


class TestStoreFlow:
    def test_walk_in_sale_deducts_available_stock(self, db_session, variant, make_order, drive):
        order = make_order(variant, quantity=3, fulfillment_type="store")
        order = drive(order.id, "store_sale")
        assert order.stock_state == "deducted"
        assert order.payment_method == "cash"
        assert _stock(db_session, variant) == (7, 0, 0)

    def test_walk_in_sale_respects_other_reservations(self, db_session, variant, make_order, drive):
        held = make_order(variant, quantity=8)
        drive(held.id, "converted")
        walk_in = make_order(variant, quantity=3, fulfillment_type="store")

        with pytest.raises(InsufficientStockError):
            drive(walk_in.id, "store_sale")
        assert _stock(db_session, variant) == (10, 8, 0)

    def test_store_pick_then_sale_consumes_reservation(self, db_session, variant, make_order, drive):
        order = make_order(variant, quantity=2, fulfillment_type="store")
        drive(order.id, "converted")
        assert _stock(db_session, variant) == (10, 2, 0)
        drive(order.id, "packed", "store_sale", "delivered")
        assert _stock(db_session, variant) == (8, 0, 0)


class TestReturns:
    def test_customer_return_waits_for_qc(self, db_session, variant, make_order, deliver, drive):
        order = deliver(make_order(variant, quantity=3))
        assert _stock(db_session, variant) == (7, 0, 0)
        assert all(item.fulfilled_quantity == item.quantity for item in order.items)

        order = drive(order.id, "return_initiated", reason="Wrong size")
        assert [item.return_status for item in order.items] == ["pending_pickup"]
        order_service.mark_items_picked_up(order.id, actor=ACTOR)
        drive(order.id, "returned")
        assert _stock(db_session, variant) == (7, 0, 0)

        item_id = order.items[0].id
        order = order_service.settle_returned_items(order.id, outcomes={str(item_id): "good"}, actor=ACTOR)
        assert _stock(db_session, variant) == (10, 0, 0)
        assert order.items[0].return_status == "received_hub"
        assert order.items[0].return_settled_by == ACTOR

    def test_damaged_return_goes_to_damaged_bucket(self, db_session, variant, make_order, deliver, drive):
        order = deliver(make_order(variant, quantity=3))
        drive(order.id, "return_initiated", "returned", reason="Torn")
        item_id = order.items[0].id

        order_service.settle_returned_items(order.id, outcomes={item_id: "damaged"}, actor=ACTOR)
        assert _stock(db_session, variant) == (7, 0, 3)

    def test_line_settles_exactly_once(self, db_session, variant, make_order, deliver, drive):
        order = deliver(make_order(variant, quantity=3))
        drive(order.id, "return_initiated", reason="Wrong colour")
        item_id = order.items[0].id
        order_service.settle_returned_items(order.id, outcomes={item_id: "good"}, actor=ACTOR)

        with pytest.raises(ValidationError):
            order_service.settle_returned_items(order.id, outcomes={item_id: "good"}, actor=ACTOR)
        assert _stock(db_session, variant) == (10, 0, 0)

    def test_missing_items_restore_nothing(self, db_session, variant, make_order, deliver, drive):
        order = deliver(make_order(variant, quantity=3))
        drive(order.id, "return_initiated", reason="Customer return")
        order_service.settle_returned_items(order.id, outcomes={order.items[0].id: "missing"}, actor=ACTOR)
        assert _stock(db_session, variant) == (7, 0, 0)

    def test_settle_rejects_unknown_outcome(self, db_session, variant, make_order, deliver, drive):
        order = deliver(make_order(variant, quantity=3))
        drive(order.id, "return_initiated", reason="Customer return")
        with pytest.raises(ValidationError):
            order_service.settle_returned_items(order.id, outcomes={order.items[0].id: "fine"}, actor=ACTOR)


class TestRto:
    @pytest.mark.parametrize(
        "condition,expected_stock,expected_return_status",
        [
            ("GOOD", (10, 0, 0), "received_hub"),
            ("DAMAGED", (7, 0, 3), "damaged_hub"),
            ("TAMPERED", (7, 0, 3), "damaged_hub"),
            ("MISSING_ITEMS", (7, 0, 0), "missing"),
        ],
    )
    def test_verified_rto_settles_lines(
        self, db_session, variant, make_order, drive, condition, expected_stock, expected_return_status
    ):
        order = make_order(variant, quantity=3, fulfillment_type="outside_valley")
        _outside_to_transit(drive, order)
        drive(order.id, "rto_initiated", reason="Customer unreachable")

        order = order_service.verify_rto_return(order.id, condition=condition.lower(), actor="hub-1")

        assert order.status == "returned"
        assert order.return_condition == condition
        assert order.return_verified_by == "hub-1"
        assert order.items[0].return_status == expected_return_status
        assert _stock(db_session, variant) == expected_stock

    def test_unknown_condition_leaves_lines_pending(self, db_session, variant, make_order, drive):
        order = make_order(variant, quantity=3, fulfillment_type="outside_valley")
        _outside_to_transit(drive, order)
        drive(order.id, "rto_initiated", "rto_verification_pending", reason="Refused at door")

        order = order_service.verify_rto_return(order.id, condition="UNKNOWN", actor="hub-1", notes="Box sealed")
        assert order.items[0].return_status == "pending_pickup"
        assert _stock(db_session, variant) == (7, 0, 0)

        order_service.settle_returned_items(order.id, outcomes={order.items[0].id: "good"}, actor="hub-1")
        assert _stock(db_session, variant) == (10, 0, 0)

    def test_verify_requires_rto_status(self, db_session, variant, make_order, drive):
        order = make_order(variant, quantity=3, fulfillment_type="outside_valley")
        _outside_to_transit(drive, order)
        with pytest.raises(IllegalTransitionError):
            order_service.verify_rto_return(order.id, condition="GOOD", actor="hub-1")
        assert order_service.get_order(order.id).status == "in_transit"

    def test_verify_rejects_unknown_condition(self, db_session, variant, make_order):
        order = make_order(variant, fulfillment_type="outside_valley")
        with pytest.raises(ValidationError):
            order_service.verify_rto_return(order.id, condition="SOGGY", actor="hub-1")

    def test_lost_parcel_keeps_deduction(self, db_session, variant, make_order, drive):
        order = make_order(variant, quantity=3, fulfillment_type="outside_valley")
        drive(order.id, *DELIVERY_PATHS["outside_valley"][:3])

        order = order_service.mark_order_lost(order.id, actor=ACTOR, reason="Courier lost parcel")
        assert order.status == "lost_in_transit"
        assert order.stock_state == "deducted"
        assert _stock(db_session, variant) == (7, 0, 0)

    def test_parcel_lost_during_rto_cannot_be_restocked(self, db_session, variant, make_order, drive):
        order = make_order(variant, quantity=2, fulfillment_type="outside_valley")
        drive(order.id, *DELIVERY_PATHS["outside_valley"][:3])
        drive(order.id, "rto_initiated", reason="Customer refused")

        order = order_service.mark_order_lost(order.id, actor=ACTOR, reason="Courier lost parcel on the way back")
        line = order.items[0]
        assert line.return_status == "missing"
        assert line.return_condition == "missing"

        with pytest.raises(ValidationError):
            order_service.settle_returned_items(order.id, outcomes={line.id: "good"}, actor="hub-1")
        assert _stock(db_session, variant) == (8, 0, 0)
