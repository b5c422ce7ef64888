# Overview: Fulfillment State Machine; transition tables per fulfillment type plus guard rules.

"""
Order Fulfillment State Machine

================================================================================
Three flows, one interface:

  INSIDE VALLEY (own riders)
    intake -> [follow_up] -> converted -> packed -> assigned -> out_for_delivery -> delivered

  OUTSIDE VALLEY (third-party couriers)
    intake -> [follow_up] -> converted -> packed -> handover_to_courier -> in_transit -> delivered
                                                           +-> rto_initiated -> rto_verification_pending -> returned
                                                           +-> lost_in_transit

  STORE (walk-in POS)
    intake -> [converted -> packed] -> store_sale -> delivered

Every flow: delivered -> return_initiated -> returned

Each flow is a TransitionTable instance; callers obtain the right one through
get_transition_table(fulfillment_type) and never branch on fulfillment type
themselves.

GUARDS (checked after table membership):
- cancelled / rejected / return_initiated / rto_initiated / lost_in_transit need a reason
- follow_up needs followup_date and a reason
- assigned / out_for_delivery need assigned_rider_id
- handover_to_courier needs courier_partner and awb_number or courier_tracking_id
================================================================================
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from ..constants import (
    FULFILLMENT_INSIDE_VALLEY,
    FULFILLMENT_OUTSIDE_VALLEY,
    FULFILLMENT_STORE,
    FULFILLMENT_TYPES,
    ORDER_STATUSES,
    STATUS_ASSIGNED,
    STATUS_CANCELLED,
    STATUS_CONVERTED,
    STATUS_DELIVERED,
    STATUS_FOLLOW_UP,
    STATUS_HANDOVER_TO_COURIER,
    STATUS_IN_TRANSIT,
    STATUS_INTAKE,
    STATUS_LOST_IN_TRANSIT,
    STATUS_OUT_FOR_DELIVERY,
    STATUS_PACKED,
    STATUS_REJECTED,
    STATUS_RETURN_INITIATED,
    STATUS_RETURNED,
    STATUS_RTO_INITIATED,
    STATUS_RTO_VERIFICATION_PENDING,
    STATUS_STORE_SALE,
)
from ..errors import IllegalTransitionError, MissingGuardDataError, ValidationError


class TransitionTable:
    """
    Immutable map of current status -> legal next statuses for one fulfillment type.

    Statuses absent from the map are terminal for this fulfillment type.
    """

    def __init__(
        self,
        fulfillment_type: str,
        transitions: Mapping[str, set[str]],
        *,
        logistics_fields: frozenset[str] = frozenset(),
    ):
        for source, targets in transitions.items():
            unknown = ({source} | set(targets)) - set(ORDER_STATUSES)
            if unknown:
                raise ValueError(f"Unknown statuses in {fulfillment_type} table: {sorted(unknown)}")
        self.fulfillment_type = fulfillment_type
        # Order columns this flow may carry (rider vs courier data)
        self.logistics_fields = frozenset(logistics_fields)
        self._transitions = MappingProxyType(
            {source: frozenset(targets) for source, targets in transitions.items()}
        )

    def allowed_from(self, status: str) -> frozenset[str]:
        return self._transitions.get(status, frozenset())

    def can_transition(self, from_status: str, to_status: str) -> bool:
        return to_status in self.allowed_from(from_status)

    def is_terminal(self, status: str) -> bool:
        return not self.allowed_from(status)

    def statuses(self) -> frozenset[str]:
        """Every status reachable or departable in this flow."""
        seen = set(self._transitions)
        for targets in self._transitions.values():
            seen |= targets
        return frozenset(seen)

    def assert_transition(self, from_status: str, to_status: str) -> None:
        if to_status not in ORDER_STATUSES:
            raise ValidationError(f"Unknown order status '{to_status}'", field="status")
        if not self.can_transition(from_status, to_status):
            raise IllegalTransitionError(from_status, to_status, self.fulfillment_type)

    def as_dict(self) -> dict[str, list[str]]:
        return {source: sorted(targets) for source, targets in self._transitions.items()}

    def __repr__(self) -> str:
        return f"<TransitionTable {self.fulfillment_type} ({len(self._transitions)} states)>"


RIDER_FIELDS = frozenset({"assigned_rider_id"})
COURIER_FIELDS = frozenset({"courier_partner", "awb_number", "courier_tracking_id", "destination_branch"})
LOGISTICS_FIELDS = RIDER_FIELDS | COURIER_FIELDS

_RETURN_TAIL = {
    STATUS_DELIVERED: {STATUS_RETURN_INITIATED},
    STATUS_RETURN_INITIATED: {STATUS_RETURNED},
}

_LEAD_QUALIFICATION = {
    STATUS_INTAKE: {STATUS_FOLLOW_UP, STATUS_CONVERTED, STATUS_CANCELLED, STATUS_REJECTED},
    STATUS_FOLLOW_UP: {STATUS_FOLLOW_UP, STATUS_CONVERTED, STATUS_CANCELLED, STATUS_REJECTED},
}

INSIDE_VALLEY_TABLE = TransitionTable(
    FULFILLMENT_INSIDE_VALLEY,
    {
        **_LEAD_QUALIFICATION,
        STATUS_CONVERTED: {STATUS_PACKED, STATUS_CANCELLED},
        STATUS_PACKED: {STATUS_ASSIGNED, STATUS_CANCELLED},
        STATUS_ASSIGNED: {STATUS_OUT_FOR_DELIVERY, STATUS_PACKED, STATUS_CANCELLED},
        STATUS_OUT_FOR_DELIVERY: {STATUS_DELIVERED, STATUS_RETURN_INITIATED, STATUS_ASSIGNED},
        **_RETURN_TAIL,
    },
    logistics_fields=RIDER_FIELDS,
)

OUTSIDE_VALLEY_TABLE = TransitionTable(
    FULFILLMENT_OUTSIDE_VALLEY,
    {
        **_LEAD_QUALIFICATION,
        STATUS_CONVERTED: {STATUS_PACKED, STATUS_CANCELLED},
        STATUS_PACKED: {STATUS_HANDOVER_TO_COURIER, STATUS_CANCELLED},
        STATUS_HANDOVER_TO_COURIER: {
            STATUS_IN_TRANSIT,
            STATUS_DELIVERED,
            STATUS_RETURN_INITIATED,
            STATUS_RTO_INITIATED,
            STATUS_LOST_IN_TRANSIT,
        },
        STATUS_IN_TRANSIT: {
            STATUS_DELIVERED,
            STATUS_RETURN_INITIATED,
            STATUS_RTO_INITIATED,
            STATUS_LOST_IN_TRANSIT,
        },
        STATUS_RTO_INITIATED: {STATUS_RTO_VERIFICATION_PENDING, STATUS_RETURNED, STATUS_LOST_IN_TRANSIT},
        STATUS_RTO_VERIFICATION_PENDING: {STATUS_RETURNED, STATUS_LOST_IN_TRANSIT},
        **_RETURN_TAIL,
    },
    logistics_fields=COURIER_FIELDS,
)

STORE_TABLE = TransitionTable(
    FULFILLMENT_STORE,
    {
        STATUS_INTAKE: {STATUS_CONVERTED, STATUS_STORE_SALE, STATUS_CANCELLED, STATUS_REJECTED},
        STATUS_CONVERTED: {STATUS_PACKED, STATUS_STORE_SALE, STATUS_CANCELLED},
        STATUS_PACKED: {STATUS_STORE_SALE, STATUS_CANCELLED},
        STATUS_STORE_SALE: {STATUS_DELIVERED},
        **_RETURN_TAIL,
    },
)

_TABLES = {
    FULFILLMENT_INSIDE_VALLEY: INSIDE_VALLEY_TABLE,
    FULFILLMENT_OUTSIDE_VALLEY: OUTSIDE_VALLEY_TABLE,
    FULFILLMENT_STORE: STORE_TABLE,
}


def get_transition_table(fulfillment_type: str) -> TransitionTable:
    try:
        return _TABLES[fulfillment_type]
    except KeyError:
        raise ValidationError(
            f"fulfillment_type must be one of: {', '.join(FULFILLMENT_TYPES)}",
            field="fulfillment_type",
        )


# =============================================================================
# Guards
# =============================================================================

REASON_REQUIRED_STATUSES = frozenset({
    STATUS_CANCELLED,
    STATUS_REJECTED,
    STATUS_RETURN_INITIATED,
    STATUS_RTO_INITIATED,
    STATUS_LOST_IN_TRANSIT,
    STATUS_FOLLOW_UP,
})

RIDER_REQUIRED_STATUSES = frozenset({STATUS_ASSIGNED, STATUS_OUT_FOR_DELIVERY})


def check_guards(order, target_status: str, reason: str | None) -> None:
    """
    Raise MissingGuardDataError naming the first missing field.

    `order` must already carry any logistics values supplied with the request.
    """
    if target_status in REASON_REQUIRED_STATUSES and not (reason and reason.strip()):
        raise MissingGuardDataError("reason", target_status)

    if target_status == STATUS_FOLLOW_UP and order.followup_date is None:
        raise MissingGuardDataError("followup_date", target_status)

    if target_status in RIDER_REQUIRED_STATUSES and not order.assigned_rider_id:
        raise MissingGuardDataError("assigned_rider_id", target_status)

    if target_status == STATUS_HANDOVER_TO_COURIER:
        if not order.courier_partner:
            raise MissingGuardDataError("courier_partner", target_status)
        if not (order.awb_number or order.courier_tracking_id):
            raise MissingGuardDataError("awb_number", target_status)
