# Overview: Pytest coverage for fulfillment transition tables and transition guards.

import pytest

from erpcore.constants import FULFILLMENT_TYPES, ORDER_STATUSES, STATUS_HOLD
from erpcore.errors import IllegalTransitionError, MissingGuardDataError, ValidationError
from erpcore.models import Order, OrderLog
from erpcore.services import order_service
from erpcore.services.state_machine import (
    INSIDE_VALLEY_TABLE,
    OUTSIDE_VALLEY_TABLE,
    STORE_TABLE,
    TransitionTable,
    get_transition_table,
)

from conftest import ACTOR


class TestTransitionTables:
    def test_factory_returns_one_table_per_type(self):
        assert get_transition_table("inside_valley") is INSIDE_VALLEY_TABLE
        assert get_transition_table("outside_valley") is OUTSIDE_VALLEY_TABLE
        assert get_transition_table("store") is STORE_TABLE

    def test_unknown_fulfillment_type(self):
        with pytest.raises(ValidationError):
            get_transition_table("drone")

    def test_table_rejects_unknown_statuses(self):
        with pytest.raises(ValueError):
            TransitionTable("test", {"intake": {"teleported"}})

    def test_hold_is_unreachable_everywhere(self):
        for fulfillment_type in FULFILLMENT_TYPES:
            assert STATUS_HOLD not in get_transition_table(fulfillment_type).statuses()

    def test_terminal_statuses_have_no_exits(self):
        for table in (INSIDE_VALLEY_TABLE, OUTSIDE_VALLEY_TABLE, STORE_TABLE):
            for status in ("cancelled", "rejected", "returned"):
                assert table.is_terminal(status)
        assert OUTSIDE_VALLEY_TABLE.is_terminal("lost_in_transit")

    def test_paths_are_type_specific(self):
        assert INSIDE_VALLEY_TABLE.can_transition("packed", "assigned")
        assert not INSIDE_VALLEY_TABLE.can_transition("packed", "handover_to_courier")
        assert OUTSIDE_VALLEY_TABLE.can_transition("packed", "handover_to_courier")
        assert not OUTSIDE_VALLEY_TABLE.can_transition("packed", "assigned")
        assert STORE_TABLE.can_transition("intake", "store_sale")
        assert not STORE_TABLE.can_transition("intake", "follow_up")

    def test_rto_only_for_couriers(self):
        assert OUTSIDE_VALLEY_TABLE.can_transition("in_transit", "rto_initiated")
        assert "rto_initiated" not in INSIDE_VALLEY_TABLE.statuses()
        assert "rto_initiated" not in STORE_TABLE.statuses()

    def test_every_flow_allows_post_delivery_return(self):
        for table in (INSIDE_VALLEY_TABLE, OUTSIDE_VALLEY_TABLE, STORE_TABLE):
            assert table.can_transition("delivered", "return_initiated")
            assert table.can_transition("return_initiated", "returned")

    @pytest.mark.parametrize("fulfillment_type", FULFILLMENT_TYPES)
    def test_every_pair_outside_table_is_illegal(self, fulfillment_type):
        """Exhaustive: assert_transition raises for every (from, to) the table does not list."""
        table = get_transition_table(fulfillment_type)
        for from_status in ORDER_STATUSES:
            for to_status in ORDER_STATUSES:
                if table.can_transition(from_status, to_status):
                    table.assert_transition(from_status, to_status)
                    continue
                with pytest.raises(IllegalTransitionError):
                    table.assert_transition(from_status, to_status)


class TestTransitionOrder:
    def test_packed_to_in_transit_skipping_handover_is_illegal(self, db_session, variant, make_order, drive):
        """outside_valley packed -> in_transit must go through handover_to_courier."""
        order = make_order(variant, fulfillment_type="outside_valley")
        drive(order.id, "converted", "packed")
        logs_before = len(order_service.get_order_history(order.id))

        with pytest.raises(IllegalTransitionError) as exc_info:
            order_service.transition_order(order.id, "in_transit", actor=ACTOR)

        assert exc_info.value.from_status == "packed"
        assert exc_info.value.fulfillment_type == "outside_valley"
        reloaded = order_service.get_order(order.id)
        assert reloaded.status == "packed"
        assert reloaded.stock_state == "reserved"
        assert len(order_service.get_order_history(order.id)) == logs_before

    def test_unknown_target_status(self, db_session, variant, make_order):
        order = make_order(variant)
        with pytest.raises(ValidationError):
            order_service.transition_order(order.id, "teleported", actor=ACTOR)

    def test_each_accepted_transition_logs_once(self, db_session, variant, make_order, deliver):
        order = make_order(variant)
        deliver(order)

        changes = [
            (log.old_status, log.new_status)
            for log in order_service.get_order_history(order.id)
            if log.action == "status_change"
        ]
        assert changes == [
            ("intake", "converted"),
            ("converted", "packed"),
            ("packed", "assigned"),
            ("assigned", "out_for_delivery"),
            ("out_for_delivery", "delivered"),
        ]

    def test_lifecycle_timestamps(self, db_session, variant, make_order, deliver):
        order = deliver(make_order(variant, fulfillment_type="store"))
        assert order.status == "delivered"
        assert order.dispatched_at is not None
        assert order.delivered_at is not None


class TestGuards:
    def test_cancel_requires_reason(self, db_session, variant, make_order):
        order = make_order(variant)
        with pytest.raises(MissingGuardDataError) as exc_info:
            order_service.transition_order(order.id, "cancelled", actor=ACTOR)
        assert exc_info.value.field == "reason"

    def test_assigned_requires_rider(self, db_session, variant, make_order, drive):
        order = make_order(variant)
        drive(order.id, "converted", "packed")
        with pytest.raises(MissingGuardDataError) as exc_info:
            order_service.transition_order(order.id, "assigned", actor=ACTOR)
        assert exc_info.value.field == "assigned_rider_id"

        reloaded = order_service.get_order(order.id)
        assert reloaded.status == "packed"
        assert reloaded.stock_state == "reserved"

    def test_rider_supplied_in_same_call(self, db_session, variant, make_order, drive):
        order = make_order(variant)
        drive(order.id, "converted", "packed")
        order = order_service.transition_order(order.id, "assigned", actor=ACTOR, assigned_rider_id=12)
        assert order.status == "assigned"
        assert order.assigned_rider_id == 12

    def test_handover_requires_courier_and_awb(self, db_session, variant, make_order, drive):
        order = make_order(variant, fulfillment_type="outside_valley")
        drive(order.id, "converted", "packed")

        with pytest.raises(MissingGuardDataError) as exc_info:
            order_service.transition_order(order.id, "handover_to_courier", actor=ACTOR)
        assert exc_info.value.field == "courier_partner"

        with pytest.raises(MissingGuardDataError) as exc_info:
            order_service.transition_order(
                order.id, "handover_to_courier", actor=ACTOR, courier_partner="Pathao"
            )
        assert exc_info.value.field == "awb_number"
        assert order_service.get_order(order.id).courier_partner is None

        order = order_service.transition_order(
            order.id, "handover_to_courier", actor=ACTOR,
            courier_partner="Pathao", courier_tracking_id="PTH-88",
        )
        assert order.status == "handover_to_courier"

    def test_follow_up_requires_date(self, db_session, variant, make_order):
        order = make_order(variant)
        with pytest.raises(MissingGuardDataError) as exc_info:
            order_service.transition_order(order.id, "follow_up", actor=ACTOR, reason="No answer")
        assert exc_info.value.field == "followup_date"

        order = order_service.transition_order(
            order.id, "follow_up", actor=ACTOR, reason="No answer", followup_date="2026-10-21T04:00:00Z"
        )
        assert order.status == "follow_up"
        assert order.followup_date is not None

    def test_courier_fields_rejected_for_rider_flow(self, db_session, variant, make_order, drive):
        order = make_order(variant)
        drive(order.id, "converted", "packed")
        with pytest.raises(ValidationError):
            order_service.transition_order(
                order.id, "assigned", actor=ACTOR, assigned_rider_id=3, awb_number="X-1"
            )

    def test_failed_guard_leaves_no_log(self, db_session, variant, make_order):
        order = make_order(variant)
        with pytest.raises(MissingGuardDataError):
            order_service.transition_order(order.id, "rejected", actor=ACTOR)
        assert db_session.query(OrderLog).filter_by(order_id=order.id, action="status_change").count() == 0
        assert db_session.get(Order, order.id).status == "intake"
