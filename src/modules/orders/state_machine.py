"""Order lifecycle state machine.

Two steps, kept apart:

1. ``decide`` (pure, no I/O): checks the actor's standing on the order and
   the transition table, and lists the effects entering the target status
   requires.
2. ``OrderLifecycleStateMachine.apply``: mutates the aggregate and runs the
   effects in order.

Stock decrement on certification is fatal: its exception propagates and the
caller's transaction rolls back.  The system stock mirror and the restore on
an accepted return are not: each runs in its own savepoint and a failure is
logged and returned as a warning while the status change still commits.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple

import structlog
from django.db import DatabaseError, transaction
from django.utils import timezone

from modules.core.authentication import ActorRole
from modules.orders.assignment_history import AssignmentHistoryLog
from modules.orders.constants import (
    REASSIGNMENT_SOURCES,
    TRANSPORTER_EXIT_STATUSES,
    AssignmentOutcome,
    AssignmentType,
    OrderStatus,
    PaymentStatus,
)
from modules.orders.events import OrderStatusChanged
from modules.orders.exceptions import (
    InvalidAssignment,
    InvalidReturnAction,
    OrderAccessDenied,
    OrderNotDisputed,
    OrderNotReturning,
)
from modules.orders.models import last_status_update, stamp
from modules.orders.permissions import capabilities_for
from shared.domain.exceptions import (
    DomainError,
    InvalidTransitionError,
    SideEffectFailure,
)

if TYPE_CHECKING:
    from modules.core.authentication import Principal
    from modules.inventory.services import StockSynchronizer
    from modules.orders.models import Order

logger = structlog.get_logger(__name__)


class Effect(str, enum.Enum):
    RECORD_TRANSPORTER_EXIT = "record_transporter_exit"
    CERTIFY = "certify"
    DECREMENT_STOCK = "decrement_stock"
    MIRROR_SYSTEM_STOCK = "mirror_system_stock"
    OPEN_DISPUTE = "open_dispute"
    RESOLVE_DISPUTE = "resolve_dispute"
    REQUEST_RETURN = "request_return"
    ACCEPT_RETURN = "accept_return"
    RESTORE_STOCK = "restore_stock"
    REJECT_RETURN = "reject_return"
    CLEAR_SUB_RECORDS = "clear_sub_records"
    ASSIGN_TRANSPORTER = "assign_transporter"
    TRANSPORTER_ACCEPTS = "transporter_accepts"
    STAMP_DELIVERY = "stamp_delivery"


NON_FATAL_EFFECTS = frozenset({Effect.MIRROR_SYSTEM_STOCK, Effect.RESTORE_STOCK})

RETURN_ACTIONS = {
    "accept": OrderStatus.RETURN_ACCEPTED,
    "reject": OrderStatus.RETURN_REJECTED,
}


@dataclass(frozen=True)
class TransitionRequest:
    target: str
    reason: str = ""
    notes: str = ""
    transporter_id: Optional[str] = None
    assignment_type: Optional[str] = None
    rejection_reason: str = ""
    resolution_notes: str = ""
    resolution_type: str = "standard"
    compensation_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class TransitionDecision:
    """Validated outcome of a transition request; no I/O has happened yet."""

    actor: Principal
    from_status: str
    to_status: str
    request: TransitionRequest
    effects: Tuple[Effect, ...] = field(default_factory=tuple)

    def has(self, effect: Effect) -> bool:
        return effect in self.effects


# ---------------------------------------------------------------------------
# Decision step (pure)
# ---------------------------------------------------------------------------


def decide(actor: Principal, order: Order, request: TransitionRequest) -> TransitionDecision:
    """Validate *request* against the actor's capabilities and the table.

    Raises:
        OrderAccessDenied: the actor has no standing on the order.
        InvalidTransitionError: the target is not reachable for the role.
        InvalidAssignment: an assignment names no transporter (specific) or
            names one for the free pool.
    """
    capabilities = capabilities_for(actor, order)
    if not capabilities.can_act:
        raise OrderAccessDenied("Not authorized to update this order.")

    current = order.status
    target = request.target
    if not capabilities.can_transition(target):
        raise InvalidTransitionError(current, target, actor.role)

    effects: List[Effect] = []
    if target in TRANSPORTER_EXIT_STATUSES and request.reason:
        effects.append(Effect.RECORD_TRANSPORTER_EXIT)
    if target == OrderStatus.CERTIFIED:
        effects.extend(_certification_effects())
    if target == OrderStatus.DISPUTED and request.reason:
        effects.append(Effect.OPEN_DISPUTE)
    if target == OrderStatus.RETURN_TO_WHOLESALER and request.reason:
        effects.append(Effect.REQUEST_RETURN)
    if target == OrderStatus.RETURN_ACCEPTED:
        effects.extend([Effect.ACCEPT_RETURN, Effect.RESTORE_STOCK])
    if target == OrderStatus.RETURN_REJECTED:
        effects.append(Effect.REJECT_RETURN)
    if target == OrderStatus.ASSIGNED_TO_TRANSPORTER:
        _validate_assignment(request)
        if current in REASSIGNMENT_SOURCES:
            effects.append(Effect.CLEAR_SUB_RECORDS)
        effects.append(Effect.ASSIGN_TRANSPORTER)
    if target == OrderStatus.ACCEPTED_BY_TRANSPORTER and actor.role == ActorRole.TRANSPORTER:
        effects.append(Effect.TRANSPORTER_ACCEPTS)
    if target == OrderStatus.DELIVERED:
        effects.append(Effect.STAMP_DELIVERY)

    return TransitionDecision(
        actor=actor,
        from_status=current,
        to_status=target,
        request=request,
        effects=tuple(effects),
    )


def decide_dispute_resolution(
    actor: Principal,
    order: Order,
    resolution_notes: str,
    reassign: bool,
    resolution_type: str = "standard",
    compensation_amount: Optional[Decimal] = None,
) -> TransitionDecision:
    """Resolve a dispute by reassigning to the free pool or certifying.

    Raises:
        OrderAccessDenied: the actor is not the order's wholesaler.
        OrderNotDisputed: the order is not in ``disputed``.
    """
    _require_wholesaler(actor, order)
    if order.status != OrderStatus.DISPUTED:
        raise OrderNotDisputed(
            f"Order {order.id} is {order.status}; only disputed orders can be resolved."
        )
    if reassign:
        target = OrderStatus.ASSIGNED_TO_TRANSPORTER
        effects = (Effect.RESOLVE_DISPUTE, Effect.ASSIGN_TRANSPORTER)
        assignment_type: Optional[str] = AssignmentType.FREE
    else:
        target = OrderStatus.CERTIFIED
        effects = (Effect.RESOLVE_DISPUTE, *_certification_effects())
        assignment_type = None
    return TransitionDecision(
        actor=actor,
        from_status=order.status,
        to_status=target,
        request=TransitionRequest(
            target=target,
            notes=resolution_notes,
            assignment_type=assignment_type,
            resolution_notes=resolution_notes,
            resolution_type=resolution_type,
            compensation_amount=compensation_amount,
        ),
        effects=effects,
    )


def decide_return(
    actor: Principal,
    order: Order,
    action: str,
    return_notes: str = "",
    rejection_reason: str = "",
) -> TransitionDecision:
    """Accept or reject a return handed back by the transporter.

    Raises:
        OrderAccessDenied: the actor is not the order's wholesaler.
        OrderNotReturning: the order is not in ``return_to_wholesaler``.
        InvalidReturnAction: *action* is neither ``accept`` nor ``reject``.
    """
    _require_wholesaler(actor, order)
    if order.status != OrderStatus.RETURN_TO_WHOLESALER:
        raise OrderNotReturning(
            f"Order {order.id} is {order.status}; no return is pending."
        )
    target = RETURN_ACTIONS.get(action)
    if target is None:
        raise InvalidReturnAction(
            f"Invalid return action '{action}'; expected 'accept' or 'reject'."
        )
    return decide(
        actor,
        order,
        TransitionRequest(
            target=target,
            notes=return_notes,
            rejection_reason=rejection_reason,
        ),
    )


def _certification_effects() -> Tuple[Effect, ...]:
    return (Effect.CERTIFY, Effect.DECREMENT_STOCK, Effect.MIRROR_SYSTEM_STOCK)


def _require_wholesaler(actor: Principal, order: Order) -> None:
    capabilities = capabilities_for(actor, order)
    if actor.role != ActorRole.WHOLESALER or not capabilities.can_act:
        raise OrderAccessDenied("Only the order's wholesaler can do this.")


def _validate_assignment(request: TransitionRequest) -> None:
    if request.assignment_type == AssignmentType.FREE:
        if request.transporter_id:
            raise InvalidAssignment("Free-pool assignments cannot name a transporter.")
        return
    if not request.transporter_id:
        raise InvalidAssignment(
            "transporter_id is required unless assignment_type is 'free'."
        )


# ---------------------------------------------------------------------------
# Effect execution
# ---------------------------------------------------------------------------


class OrderLifecycleStateMachine:
    """Applies a ``TransitionDecision`` to the order aggregate.

    Expects to run inside the caller's ``transaction.atomic`` block with the
    order row already locked.  Does not save the order.
    """

    def __init__(self, stock_synchronizer: StockSynchronizer) -> None:
        self._stock = stock_synchronizer

    def apply(self, order: Order, decision: TransitionDecision) -> List[str]:
        """Mutate *order* according to *decision*; return non-fatal warnings."""
        log = logger.bind(
            order_id=str(order.id),
            from_status=decision.from_status,
            to_status=decision.to_status,
            actor_role=decision.actor.role,
        )
        warnings: List[str] = []
        request = decision.request
        history = AssignmentHistoryLog(order)

        for effect in decision.effects:
            handler: Callable[[Order, TransitionDecision, AssignmentHistoryLog], None]
            handler = getattr(self, f"_{effect.value}")
            if effect in NON_FATAL_EFFECTS:
                failure = self._run_non_fatal(effect, handler, order, decision, history)
                if failure is not None:
                    log.warning(
                        "order.side_effect_failed",
                        effect=failure.effect,
                        error=str(failure),
                    )
                    warnings.append(f"{failure.effect}: {failure}")
            else:
                handler(order, decision, history)

        order.status = decision.to_status
        order.metadata = dict(order.metadata or {})
        order.metadata["last_status_update"] = last_status_update(
            decision.from_status,
            decision.to_status,
            decision.actor.user_id,
            decision.actor.role,
            request.notes or request.reason,
        )
        order._status_change_notes = request.notes or request.reason
        order._status_changed_by = decision.actor.user_id
        order._status_changed_role = decision.actor.role
        order.add_domain_event(
            OrderStatusChanged(
                aggregate_id=order.id,
                actor_id=decision.actor.user_id,
                old_status=decision.from_status,
                new_status=decision.to_status,
                role=decision.actor.role,
                transporter_id=order.transporter_id,
            )
        )
        log.info("order.transition_applied", warnings=len(warnings))
        return warnings

    def _run_non_fatal(
        self,
        effect: Effect,
        handler: Callable[[Order, TransitionDecision, AssignmentHistoryLog], None],
        order: Order,
        decision: TransitionDecision,
        history: AssignmentHistoryLog,
    ) -> Optional[SideEffectFailure]:
        try:
            with transaction.atomic():
                handler(order, decision, history)
        except (DomainError, DatabaseError) as exc:
            order.metadata = dict(order.metadata or {})
            order.metadata[effect.value] = {
                "success": False,
                "error": str(exc),
                "failed_at": stamp(),
                "requires_manual_intervention": True,
            }
            return SideEffectFailure(effect.value, str(exc))
        return None

    # ------------------------------------------------------------------
    # Transporter exits
    # ------------------------------------------------------------------

    def _record_transporter_exit(self, order, decision, history) -> None:
        actor = decision.actor
        order.cancellation_details = {
            **(order.cancellation_details or {}),
            "cancelled_by": actor.user_id,
            "cancelled_at": stamp(),
            "reason": decision.request.reason,
            "previous_status": decision.from_status,
            "role": actor.role,
        }
        last = history.last_assignment()
        outcome = (
            AssignmentOutcome.REJECTED
            if decision.to_status == OrderStatus.REJECTED_BY_TRANSPORTER
            else AssignmentOutcome.CANCELLED
        )
        history.append(
            outcome=outcome,
            transporter_id=actor.user_id,
            assignment_type=last.assignment_type if last else AssignmentType.SPECIFIC,
            reason=decision.request.reason,
        )
        order.transporter_id = None

    # ------------------------------------------------------------------
    # Certification
    # ------------------------------------------------------------------

    def _certify(self, order, decision, history) -> None:
        order.delivery_certification_date = timezone.now()
        order.payment_status = PaymentStatus.PAID

    def _decrement_stock(self, order, decision, history) -> None:
        movement = self._stock.decrement(order)
        order.metadata = dict(order.metadata or {})
        order.metadata["stock_update"] = {
            "effect": "decrement",
            "success": True,
            "updated_at": stamp(),
            **movement.as_metadata(),
        }

    def _mirror_system_stock(self, order, decision, history) -> None:
        entry = self._stock.mirror_to_system_stock(order)
        order.metadata = dict(order.metadata or {})
        order.metadata[Effect.MIRROR_SYSTEM_STOCK.value] = {
            "success": True,
            "system_stock_id": str(entry.id),
            "quantity": entry.quantity,
        }

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    def _open_dispute(self, order, decision, history) -> None:
        order.delivery_dispute = {
            **(order.delivery_dispute or {}),
            "disputed_by": decision.actor.user_id,
            "disputed_at": stamp(),
            "reason": decision.request.reason,
            "resolved": False,
        }

    def _resolve_dispute(self, order, decision, history) -> None:
        order.delivery_dispute = {
            **(order.delivery_dispute or {}),
            "resolved": True,
            "resolved_at": stamp(),
            "resolved_by": decision.actor.user_id,
            "resolution_notes": decision.request.resolution_notes,
            "reassigned": decision.to_status == OrderStatus.ASSIGNED_TO_TRANSPORTER,
            "resolution_type": decision.request.resolution_type,
        }
        if decision.request.compensation_amount is not None:
            order.delivery_dispute["compensation_amount"] = str(
                decision.request.compensation_amount
            )

    # ------------------------------------------------------------------
    # Returns
    # ------------------------------------------------------------------

    def _request_return(self, order, decision, history) -> None:
        now = timezone.now()
        order.return_details = {
            **(order.return_details or {}),
            "returned_by": decision.actor.user_id,
            "return_requested_at": now.isoformat(),
            "return_reason": decision.request.reason,
        }
        order.return_reason = decision.request.reason
        order.return_requested_at = now

    def _accept_return(self, order, decision, history) -> None:
        now = stamp()
        details = {
            **(order.return_details or {}),
            "return_accepted_at": now,
            "return_completed_at": now,
            "handled_by": decision.actor.user_id,
        }
        if decision.request.notes:
            details["return_notes"] = decision.request.notes
        order.return_details = details
        order.payment_status = PaymentStatus.REFUNDED

    def _restore_stock(self, order, decision, history) -> None:
        movement = self._stock.restore(order)
        order.metadata = dict(order.metadata or {})
        order.metadata["stock_update"] = {
            "effect": "restore",
            "success": True,
            "updated_at": stamp(),
            **movement.as_metadata(),
        }

    def _reject_return(self, order, decision, history) -> None:
        details = {
            **(order.return_details or {}),
            "return_rejected_at": stamp(),
            "handled_by": decision.actor.user_id,
        }
        if decision.request.rejection_reason:
            details["return_rejection_reason"] = decision.request.rejection_reason
        order.return_details = details

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def _clear_sub_records(self, order, decision, history) -> None:
        order.cancellation_details = None
        order.delivery_dispute = None
        order.return_details = None
        order.return_reason = ""
        order.return_requested_at = None

    def _assign_transporter(self, order, decision, history) -> None:
        request = decision.request
        assignment_type = request.assignment_type or AssignmentType.SPECIFIC
        order.transporter_id = request.transporter_id
        history.append(
            outcome=AssignmentOutcome.ASSIGNED,
            transporter_id=request.transporter_id,
            assignment_type=assignment_type,
            reason=f"Order assigned by {decision.actor.role}",
        )

    def _transporter_accepts(self, order, decision, history) -> None:
        last = history.last_assignment()
        order.transporter_id = decision.actor.user_id
        history.append(
            outcome=AssignmentOutcome.ACCEPTED,
            transporter_id=decision.actor.user_id,
            assignment_type=last.assignment_type if last else AssignmentType.SPECIFIC,
            reason=decision.request.notes,
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _stamp_delivery(self, order, decision, history) -> None:
        order.actual_delivery_date = timezone.now()
