"""Event handlers for Orders domain events.

Handlers run in-process when the outbox relay publishes an event.  They
only log; notification delivery is owned by another service that reads the
outbox topic.
"""

from __future__ import annotations

import structlog

from modules.orders.events import (
    DisputeResolved,
    OrderCreated,
    OrderDeleted,
    OrderStatusChanged,
    ReturnHandled,
)
from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)


class OrderCreatedHandler(IEventHandler[OrderCreated]):
    def handle(self, event: OrderCreated) -> None:
        logger.info(
            "order.event.created",
            order_id=str(event.aggregate_id),
            retailer_id=event.retailer_id,
            wholesaler_id=event.wholesaler_id,
        )


class OrderStatusChangedHandler(IEventHandler[OrderStatusChanged]):
    def handle(self, event: OrderStatusChanged) -> None:
        logger.info(
            "order.event.status_changed",
            order_id=str(event.aggregate_id),
            old_status=event.old_status,
            new_status=event.new_status,
            role=event.role,
        )


class DisputeResolvedHandler(IEventHandler[DisputeResolved]):
    def handle(self, event: DisputeResolved) -> None:
        logger.info(
            "order.event.dispute_resolved",
            order_id=str(event.aggregate_id),
            reassigned=event.reassigned,
        )


class ReturnHandledHandler(IEventHandler[ReturnHandled]):
    def handle(self, event: ReturnHandled) -> None:
        logger.info(
            "order.event.return_handled",
            order_id=str(event.aggregate_id),
            action=event.action,
        )


class OrderDeletedHandler(IEventHandler[OrderDeleted]):
    def handle(self, event: OrderDeleted) -> None:
        logger.info(
            "order.event.deleted",
            order_id=str(event.aggregate_id),
            order_number=event.order_number,
        )


order_created_handler = OrderCreatedHandler()
order_status_changed_handler = OrderStatusChangedHandler()
dispute_resolved_handler = DisputeResolvedHandler()
return_handled_handler = ReturnHandledHandler()
order_deleted_handler = OrderDeletedHandler()
