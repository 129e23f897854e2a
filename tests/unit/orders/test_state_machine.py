"""Unit tests for the order lifecycle state machine.

Covers:
- ``decide``: authorization before transition validity, effect lists per
  target status, assignment validation.
- ``decide_dispute_resolution`` / ``decide_return``: check order and
  resulting decisions.
- ``OrderLifecycleStateMachine.apply``: fatal vs non-fatal effects,
  ``last_status_update`` metadata and the ``OrderStatusChanged`` event.
"""

from __future__ import annotations

from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from modules.core.authentication import Principal
from modules.inventory.exceptions import InsufficientStock, StockEntryNotFound
from modules.inventory.services import StockMovement
from modules.orders.constants import OrderStatus, PaymentStatus
from modules.orders.events import OrderStatusChanged
from modules.orders.exceptions import (
    InvalidAssignment,
    InvalidReturnAction,
    OrderAccessDenied,
    OrderNotDisputed,
    OrderNotReturning,
)
from modules.orders.models import Order
from modules.orders.state_machine import (
    Effect,
    OrderLifecycleStateMachine,
    TransitionRequest,
    decide,
    decide_dispute_resolution,
    decide_return,
)
from shared.domain.exceptions import InvalidTransitionError

pytestmark = pytest.mark.unit

RETAILER = Principal("retailer-1", "retailer")
WHOLESALER = Principal("wholesaler-1", "wholesaler")
TRANSPORTER = Principal("transporter-1", "transporter")


def _order(status, transporter_id=None) -> Order:
    return Order(
        retailer_id=RETAILER.user_id,
        wholesaler_id=WHOLESALER.user_id,
        transporter_id=transporter_id,
        status=status,
        quantity=4,
    )


def _movement(**overrides) -> StockMovement:
    values = {
        "ledger_id": uuid4(),
        "previous_quantity": 10,
        "new_quantity": 6,
        "delta": -4,
        "low_stock_alert": False,
    }
    values.update(overrides)
    return StockMovement(**values)


# ---------------------------------------------------------------------------
# decide()
# ---------------------------------------------------------------------------


class TestDecideChecks:
    def test_stranger_is_denied_before_transition_is_checked(self):
        stranger = Principal("retailer-2", "retailer")
        with pytest.raises(OrderAccessDenied):
            decide(stranger, _order(OrderStatus.PENDING), TransitionRequest(OrderStatus.DELIVERED))

    def test_admin_is_denied(self):
        with pytest.raises(OrderAccessDenied):
            decide(
                Principal("admin-1", "admin"),
                _order(OrderStatus.PENDING),
                TransitionRequest(OrderStatus.ACCEPTED),
            )

    def test_invalid_transition_carries_from_to_role(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            decide(WHOLESALER, _order(OrderStatus.PENDING), TransitionRequest(OrderStatus.PROCESSING))
        assert exc_info.value.from_status == OrderStatus.PENDING
        assert exc_info.value.to_status == OrderStatus.PROCESSING
        assert exc_info.value.role == "wholesaler"

    def test_certify_twice_is_an_invalid_transition(self):
        with pytest.raises(InvalidTransitionError):
            decide(RETAILER, _order(OrderStatus.CERTIFIED), TransitionRequest(OrderStatus.CERTIFIED))

    def test_decision_records_statuses(self):
        decision = decide(WHOLESALER, _order(OrderStatus.PENDING), TransitionRequest(OrderStatus.ACCEPTED))
        assert decision.from_status == OrderStatus.PENDING
        assert decision.to_status == OrderStatus.ACCEPTED
        assert decision.effects == ()


class TestDecideEffects:
    def test_certification_effects(self):
        decision = decide(RETAILER, _order(OrderStatus.DELIVERED), TransitionRequest(OrderStatus.CERTIFIED))
        assert decision.effects == (
            Effect.CERTIFY,
            Effect.DECREMENT_STOCK,
            Effect.MIRROR_SYSTEM_STOCK,
        )

    def test_dispute_with_reason_opens_dispute(self):
        decision = decide(
            RETAILER,
            _order(OrderStatus.DELIVERED),
            TransitionRequest(OrderStatus.DISPUTED, reason="Short by two bags"),
        )
        assert decision.effects == (Effect.OPEN_DISPUTE,)

    def test_dispute_without_reason_changes_status_only(self):
        decision = decide(RETAILER, _order(OrderStatus.DELIVERED), TransitionRequest(OrderStatus.DISPUTED))
        assert decision.effects == ()

    def test_transporter_rejection_with_reason(self):
        order = _order(OrderStatus.ASSIGNED_TO_TRANSPORTER, transporter_id=TRANSPORTER.user_id)
        decision = decide(
            TRANSPORTER,
            order,
            TransitionRequest(OrderStatus.REJECTED_BY_TRANSPORTER, reason="Truck broke down"),
        )
        assert decision.effects == (Effect.RECORD_TRANSPORTER_EXIT,)

    def test_transporter_cancellation_without_reason(self):
        order = _order(OrderStatus.IN_TRANSIT, transporter_id=TRANSPORTER.user_id)
        decision = decide(TRANSPORTER, order, TransitionRequest(OrderStatus.CANCELLED_BY_TRANSPORTER))
        assert decision.effects == ()

    def test_return_request_with_reason(self):
        order = _order(OrderStatus.DISPUTED, transporter_id=TRANSPORTER.user_id)
        decision = decide(
            TRANSPORTER,
            order,
            TransitionRequest(OrderStatus.RETURN_TO_WHOLESALER, reason="Damaged"),
        )
        assert decision.effects == (Effect.REQUEST_RETURN,)

    def test_return_accepted_restores_stock(self):
        decision = decide(
            WHOLESALER,
            _order(OrderStatus.RETURN_TO_WHOLESALER),
            TransitionRequest(OrderStatus.RETURN_ACCEPTED),
        )
        assert decision.effects == (Effect.ACCEPT_RETURN, Effect.RESTORE_STOCK)

    def test_return_rejected(self):
        decision = decide(
            WHOLESALER,
            _order(OrderStatus.RETURN_TO_WHOLESALER),
            TransitionRequest(OrderStatus.RETURN_REJECTED),
        )
        assert decision.effects == (Effect.REJECT_RETURN,)

    def test_first_assignment_does_not_clear_records(self):
        decision = decide(
            WHOLESALER,
            _order(OrderStatus.PROCESSING),
            TransitionRequest(OrderStatus.ASSIGNED_TO_TRANSPORTER, transporter_id="transporter-1"),
        )
        assert decision.effects == (Effect.ASSIGN_TRANSPORTER,)

    @pytest.mark.parametrize(
        "source",
        [
            OrderStatus.REJECTED_BY_TRANSPORTER,
            OrderStatus.CANCELLED_BY_TRANSPORTER,
            OrderStatus.DISPUTED,
            OrderStatus.RETURN_REJECTED,
        ],
    )
    def test_reassignment_clears_sub_records(self, source):
        decision = decide(
            WHOLESALER,
            _order(source),
            TransitionRequest(OrderStatus.ASSIGNED_TO_TRANSPORTER, transporter_id="transporter-2"),
        )
        assert decision.effects == (Effect.CLEAR_SUB_RECORDS, Effect.ASSIGN_TRANSPORTER)

    def test_transporter_acceptance(self):
        decision = decide(
            TRANSPORTER,
            _order(OrderStatus.ASSIGNED_TO_TRANSPORTER),
            TransitionRequest(OrderStatus.ACCEPTED_BY_TRANSPORTER),
        )
        assert decision.effects == (Effect.TRANSPORTER_ACCEPTS,)

    def test_delivery_stamps_date(self):
        order = _order(OrderStatus.IN_TRANSIT, transporter_id=TRANSPORTER.user_id)
        decision = decide(TRANSPORTER, order, TransitionRequest(OrderStatus.DELIVERED))
        assert decision.effects == (Effect.STAMP_DELIVERY,)


class TestAssignmentValidation:
    def test_specific_assignment_requires_transporter(self):
        with pytest.raises(InvalidAssignment):
            decide(
                WHOLESALER,
                _order(OrderStatus.PROCESSING),
                TransitionRequest(OrderStatus.ASSIGNED_TO_TRANSPORTER),
            )

    def test_free_assignment_without_transporter(self):
        decision = decide(
            WHOLESALER,
            _order(OrderStatus.PROCESSING),
            TransitionRequest(OrderStatus.ASSIGNED_TO_TRANSPORTER, assignment_type="free"),
        )
        assert decision.has(Effect.ASSIGN_TRANSPORTER)

    def test_free_assignment_naming_transporter_is_rejected(self):
        with pytest.raises(InvalidAssignment):
            decide(
                WHOLESALER,
                _order(OrderStatus.PROCESSING),
                TransitionRequest(
                    OrderStatus.ASSIGNED_TO_TRANSPORTER,
                    transporter_id="transporter-1",
                    assignment_type="free",
                ),
            )


# ---------------------------------------------------------------------------
# Dispute resolution / returns
# ---------------------------------------------------------------------------


class TestDecideDisputeResolution:
    def test_only_wholesaler_resolves(self):
        with pytest.raises(OrderAccessDenied):
            decide_dispute_resolution(RETAILER, _order(OrderStatus.DISPUTED), "", reassign=True)

    def test_order_must_be_disputed(self):
        with pytest.raises(OrderNotDisputed):
            decide_dispute_resolution(WHOLESALER, _order(OrderStatus.DELIVERED), "", reassign=True)

    def test_reassign_goes_to_free_pool(self):
        decision = decide_dispute_resolution(
            WHOLESALER, _order(OrderStatus.DISPUTED), "Send a new driver", reassign=True
        )
        assert decision.to_status == OrderStatus.ASSIGNED_TO_TRANSPORTER
        assert decision.effects == (Effect.RESOLVE_DISPUTE, Effect.ASSIGN_TRANSPORTER)
        assert decision.request.assignment_type == "free"
        assert decision.request.transporter_id is None

    def test_no_reassign_certifies(self):
        decision = decide_dispute_resolution(
            WHOLESALER, _order(OrderStatus.DISPUTED), "Goods were fine", reassign=False
        )
        assert decision.to_status == OrderStatus.CERTIFIED
        assert decision.effects == (
            Effect.RESOLVE_DISPUTE,
            Effect.CERTIFY,
            Effect.DECREMENT_STOCK,
            Effect.MIRROR_SYSTEM_STOCK,
        )


class TestDecideReturn:
    def test_only_wholesaler_handles_returns(self):
        order = _order(OrderStatus.RETURN_TO_WHOLESALER, transporter_id=TRANSPORTER.user_id)
        with pytest.raises(OrderAccessDenied):
            decide_return(TRANSPORTER, order, "accept")

    def test_state_is_checked_before_action(self):
        with pytest.raises(OrderNotReturning):
            decide_return(WHOLESALER, _order(OrderStatus.DELIVERED), "bogus")

    def test_unknown_action(self):
        with pytest.raises(InvalidReturnAction):
            decide_return(WHOLESALER, _order(OrderStatus.RETURN_TO_WHOLESALER), "bogus")

    def test_accept(self):
        decision = decide_return(
            WHOLESALER, _order(OrderStatus.RETURN_TO_WHOLESALER), "accept", return_notes="Recounted"
        )
        assert decision.to_status == OrderStatus.RETURN_ACCEPTED
        assert decision.request.notes == "Recounted"

    def test_reject(self):
        decision = decide_return(
            WHOLESALER,
            _order(OrderStatus.RETURN_TO_WHOLESALER),
            "reject",
            rejection_reason="No damage found",
        )
        assert decision.to_status == OrderStatus.RETURN_REJECTED
        assert decision.request.rejection_reason == "No damage found"


# ---------------------------------------------------------------------------
# apply()
# ---------------------------------------------------------------------------


class TestApply:
    def _certify(self, synchronizer):
        order = _order(OrderStatus.DELIVERED)
        decision = decide(RETAILER, order, TransitionRequest(OrderStatus.CERTIFIED, notes="All good"))
        warnings = OrderLifecycleStateMachine(synchronizer).apply(order, decision)
        return order, warnings

    def test_certification_updates_order(self):
        synchronizer = MagicMock()
        synchronizer.decrement.return_value = _movement()
        synchronizer.mirror_to_system_stock.return_value = MagicMock(id=uuid4(), quantity=4)

        order, warnings = self._certify(synchronizer)

        assert warnings == []
        assert order.status == OrderStatus.CERTIFIED
        assert order.payment_status == PaymentStatus.PAID
        assert order.delivery_certification_date is not None
        assert order.metadata["stock_update"]["new_quantity"] == 6
        synchronizer.decrement.assert_called_once_with(order)
        synchronizer.mirror_to_system_stock.assert_called_once_with(order)

    def test_decrement_failure_propagates(self):
        synchronizer = MagicMock()
        synchronizer.decrement.side_effect = InsufficientStock("only 2 left")

        order = _order(OrderStatus.DELIVERED)
        decision = decide(RETAILER, order, TransitionRequest(OrderStatus.CERTIFIED))
        with pytest.raises(InsufficientStock):
            OrderLifecycleStateMachine(synchronizer).apply(order, decision)

        assert order.status == OrderStatus.DELIVERED
        synchronizer.mirror_to_system_stock.assert_not_called()

    def test_mirror_failure_is_reported_as_warning(self):
        synchronizer = MagicMock()
        synchronizer.decrement.return_value = _movement()
        synchronizer.mirror_to_system_stock.side_effect = StockEntryNotFound("gone")

        order, warnings = self._certify(synchronizer)

        assert order.status == OrderStatus.CERTIFIED
        assert warnings == ["mirror_system_stock: gone"]
        failure = order.metadata["mirror_system_stock"]
        assert failure["success"] is False
        assert failure["requires_manual_intervention"] is True

    def test_last_status_update_and_event(self):
        synchronizer = MagicMock()
        synchronizer.decrement.return_value = _movement()
        synchronizer.mirror_to_system_stock.return_value = MagicMock(id=uuid4(), quantity=4)

        order, _ = self._certify(synchronizer)

        update = order.metadata["last_status_update"]
        assert update["previous_status"] == OrderStatus.DELIVERED
        assert update["new_status"] == OrderStatus.CERTIFIED
        assert update["changed_by"] == RETAILER.user_id
        assert update["notes"] == "All good"

        events = [e for e in order.domain_events if isinstance(e, OrderStatusChanged)]
        assert len(events) == 1
        assert events[0].old_status == OrderStatus.DELIVERED
        assert events[0].new_status == OrderStatus.CERTIFIED
        assert events[0].actor_id == RETAILER.user_id

    def test_open_dispute_writes_sub_record(self):
        order = _order(OrderStatus.DELIVERED)
        decision = decide(
            RETAILER, order, TransitionRequest(OrderStatus.DISPUTED, reason="Wet bags")
        )
        OrderLifecycleStateMachine(MagicMock()).apply(order, decision)

        assert order.delivery_dispute["reason"] == "Wet bags"
        assert order.delivery_dispute["resolved"] is False
        assert order.delivery_dispute["disputed_by"] == RETAILER.user_id

    def test_delivery_is_stamped(self):
        order = _order(OrderStatus.IN_TRANSIT, transporter_id=TRANSPORTER.user_id)
        decision = decide(TRANSPORTER, order, TransitionRequest(OrderStatus.DELIVERED))
        OrderLifecycleStateMachine(MagicMock()).apply(order, decision)
        assert order.actual_delivery_date is not None
