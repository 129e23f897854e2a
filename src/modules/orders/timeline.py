"""Chronological timeline of everything that happened to an order.

Built from the order's own fields, its status history and its assignment
history.  Read-only; nothing here touches the database beyond the two
related managers.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from django.utils.dateparse import parse_datetime

if TYPE_CHECKING:
    from modules.orders.models import Order

TimelineEntry = Dict[str, Any]


def _as_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return parse_datetime(value)


def _entry(event: str, timestamp, description: str, **extra: Any) -> Optional[TimelineEntry]:
    when = _as_datetime(timestamp)
    if when is None:
        return None
    return {"event": event, "timestamp": when, "description": description, **extra}


def build_timeline(order: Order) -> List[TimelineEntry]:
    entries: List[Optional[TimelineEntry]] = [
        _entry(
            "order_created",
            order.created_at,
            "Order placed by retailer",
            user=order.retailer_id,
            status="pending",
        )
    ]

    for change in order.status_history.all():
        if change.old_status is None:
            continue
        entries.append(
            _entry(
                "status_updated",
                change.created_at,
                f"Status changed from {change.old_status} to {change.new_status}",
                user=change.changed_by,
                role=change.role,
                status=change.new_status,
            )
        )

    for assignment in order.assignments.all():
        entries.append(
            _entry(
                f"transporter_{assignment.outcome}",
                assignment.created_at,
                f"Order {assignment.outcome} ({assignment.assignment_type})",
                user=assignment.transporter_id,
                assignment_type=assignment.assignment_type,
                reason=assignment.reason,
            )
        )

    cancellation = order.cancellation_details or {}
    if cancellation:
        entries.append(
            _entry(
                "order_cancelled",
                cancellation.get("cancelled_at"),
                f"Order cancelled: {cancellation.get('reason', '')}",
                user=cancellation.get("cancelled_by"),
                previous_status=cancellation.get("previous_status"),
            )
        )

    entries.append(
        _entry(
            "order_delivered",
            order.actual_delivery_date,
            "Order delivered to retailer",
            user=order.transporter_id,
        )
    )
    entries.append(
        _entry(
            "order_certified",
            order.delivery_certification_date,
            "Order certified by retailer",
            user=order.retailer_id,
        )
    )

    dispute = order.delivery_dispute or {}
    if dispute:
        entries.append(
            _entry(
                "order_disputed",
                dispute.get("disputed_at"),
                f"Order disputed: {dispute.get('reason', '')}",
                user=dispute.get("disputed_by"),
            )
        )
        entries.append(
            _entry(
                "dispute_resolved",
                dispute.get("resolved_at"),
                f"Dispute resolved: {dispute.get('resolution_notes', '')}",
                user=dispute.get("resolved_by"),
                resolution_type=dispute.get("resolution_type"),
                compensation_amount=dispute.get("compensation_amount"),
            )
        )

    returns = order.return_details or {}
    if returns:
        entries.append(
            _entry(
                "return_requested",
                returns.get("return_requested_at"),
                f"Return requested: {returns.get('return_reason', '')}",
                user=returns.get("returned_by"),
            )
        )
        entries.append(
            _entry(
                "return_accepted",
                returns.get("return_accepted_at"),
                "Return accepted by wholesaler",
                user=returns.get("handled_by"),
            )
        )
        entries.append(
            _entry(
                "return_rejected",
                returns.get("return_rejected_at"),
                f"Return rejected: {returns.get('return_rejection_reason', '')}",
                user=returns.get("handled_by"),
            )
        )

    present = [entry for entry in entries if entry is not None]
    return sorted(present, key=lambda entry: entry["timestamp"])
