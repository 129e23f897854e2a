"""Capability checks: what an actor may do with a given order.

Every role comparison for order access lives here, so services and views
ask one question (``capabilities_for(actor, order)``) instead of branching
on role strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from rest_framework.permissions import BasePermission

from modules.core.authentication import ActorRole
from modules.orders.constants import OrderStatus
from modules.orders.transitions import allowed_targets

if TYPE_CHECKING:
    from modules.core.authentication import Principal
    from modules.orders.models import Order


@dataclass(frozen=True)
class OrderCapabilities:
    role: str
    status: str
    can_read: bool
    can_act: bool

    def can_transition(self, target: str) -> bool:
        return self.can_act and target in allowed_targets(self.role, self.status)

    @property
    def allowed_targets(self) -> frozenset[str]:
        if not self.can_act:
            return frozenset()
        return allowed_targets(self.role, self.status)


def is_party(actor: Principal, order: Order) -> bool:
    """Whether *actor* stands in the order's retailer/wholesaler/transporter seat."""
    if actor.role == ActorRole.RETAILER:
        return order.retailer_id == actor.user_id
    if actor.role == ActorRole.WHOLESALER:
        return order.wholesaler_id == actor.user_id
    if actor.role == ActorRole.TRANSPORTER:
        if order.transporter_id:
            return order.transporter_id == actor.user_id
        # Free pool: any transporter may pick up an unassigned order.
        return order.status == OrderStatus.ASSIGNED_TO_TRANSPORTER
    return False


def capabilities_for(actor: Principal, order: Order) -> OrderCapabilities:
    party = is_party(actor, order)
    return OrderCapabilities(
        role=actor.role,
        status=order.status,
        can_read=party or actor.role == ActorRole.ADMIN,
        can_act=party,
    )


class HasTradeRole(BasePermission):
    """Request must come from an authenticated principal with a trade role."""

    message = "A trade role is required."

    def has_permission(self, request, view) -> bool:
        user = request.user
        return bool(
            user
            and getattr(user, "is_authenticated", False)
            and getattr(user, "role", None) in ActorRole.values
        )
