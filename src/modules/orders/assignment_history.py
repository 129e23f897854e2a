"""Append-only transporter assignment log of a single order."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, List, Optional

import structlog
from django.conf import settings
from django.utils import timezone

from modules.orders.constants import (
    AssignmentOutcome,
    AssignmentState,
    AssignmentType,
    OrderStatus,
)
from modules.orders.models import OrderAssignment

if TYPE_CHECKING:
    from modules.orders.models import Order

logger = structlog.get_logger(__name__)


def expiry_for(outcome: str) -> timedelta:
    """Offers stay open for hours; rejections and cancellations for minutes."""
    if outcome == AssignmentOutcome.ASSIGNED:
        return timedelta(hours=settings.ASSIGNMENT_EXPIRY_HOURS)
    return timedelta(minutes=settings.REJECTION_EXPIRY_MINUTES)


class AssignmentHistoryLog:
    """View over an order's ``OrderAssignment`` rows.

    Entries are only ever appended; nothing here updates or removes one.
    """

    def __init__(self, order: Order) -> None:
        self._order = order

    def append(
        self,
        outcome: str,
        transporter_id: Optional[str] = None,
        assignment_type: str = AssignmentType.SPECIFIC,
        reason: str = "",
    ) -> OrderAssignment:
        entry = OrderAssignment.objects.create(
            order=self._order,
            transporter_id=transporter_id,
            assignment_type=assignment_type,
            outcome=outcome,
            reason=reason or "",
            expires_at=timezone.now() + expiry_for(outcome),
        )
        logger.info(
            "order.assignment_appended",
            order_id=str(self._order.id),
            outcome=outcome,
            assignment_type=assignment_type,
            transporter_id=transporter_id,
        )
        return entry

    def entries(self) -> List[OrderAssignment]:
        return list(
            OrderAssignment.objects.filter(order=self._order).order_by("created_at", "id")
        )

    def last_assignment(self) -> Optional[OrderAssignment]:
        return (
            OrderAssignment.objects.filter(order=self._order)
            .order_by("-created_at", "-id")
            .first()
        )

    def assignment_status(self) -> Optional[str]:
        """State of the open offer, or ``None`` unless the order awaits a transporter.

        An offer past its ``expires_at`` needs re-assignment; a free-pool
        offer waits for any transporter, a specific one for its addressee.
        """
        if self._order.status != OrderStatus.ASSIGNED_TO_TRANSPORTER:
            return None
        last = self.last_assignment()
        if last is None:
            return AssignmentState.NOT_ASSIGNED
        if last.is_expired:
            return AssignmentState.EXPIRED
        if last.assignment_type == AssignmentType.FREE:
            return AssignmentState.AWAITING_ANY_TRANSPORTER
        return AssignmentState.AWAITING_TRANSPORTER

    def __len__(self) -> int:
        return OrderAssignment.objects.filter(order=self._order).count()
