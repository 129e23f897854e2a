"""Django ORM implementation of the Order repository.

Satisfies ``IOrderRepository`` using Django's QuerySet API.  ``save``
writes the order and one ``OutboxEvent`` per pending domain event in the
same transaction (transactional outbox).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Avg, Count, Q, QuerySet, Sum

from modules.core.authentication import ActorRole
from modules.core.models import OutboxEvent
from modules.orders.constants import OrderStatus
from modules.orders.models import Order
from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")

OUTBOX_TOPIC = "orders"


class OrderDjangoRepository(IOrderRepository):
    """Concrete Order repository backed by Django ORM."""

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(self, data: Dict[str, Any]) -> Order:
        order = Order(**data)
        self.save(order)
        logger.info(
            "order.persisted",
            order_id=str(order.id),
            order_number=order.order_number,
        )
        return order

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve an order with its product and histories.

        Returns ``None`` for non-existent or invalid IDs.
        """
        try:
            return (
                Order.objects.select_related("product")
                .prefetch_related("status_history", "assignments")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order with a row-level lock (SELECT FOR UPDATE).

        Only the order row is locked (``of=("self",)``); the product row is
        locked later by the stock synchronizer, keeping lock order fixed.
        """
        try:
            return (
                Order.objects.select_for_update(of=("self",))
                .select_related("product")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        return Order.objects.select_related("product").filter(idempotency_key=key).first()

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Order]:
        queryset = Order.objects.select_related("product")
        if filters:
            queryset = queryset.filter(**filters)
        return list(queryset)

    def scoped_queryset(
        self, role: str, user_id: str, include_free_pool: bool = True
    ) -> QuerySet:
        """Orders visible to *user_id* acting as *role*.

        Transporters also see unclaimed ``assigned_to_transporter`` orders
        unless *include_free_pool* is false.
        """
        queryset = Order.objects.select_related("product")
        if role == ActorRole.RETAILER:
            return queryset.filter(retailer_id=user_id)
        if role == ActorRole.WHOLESALER:
            return queryset.filter(wholesaler_id=user_id)
        if role == ActorRole.TRANSPORTER:
            owned = Q(transporter_id=user_id)
            if include_free_pool:
                owned |= Q(
                    transporter_id__isnull=True,
                    status=OrderStatus.ASSIGNED_TO_TRANSPORTER,
                )
            return queryset.filter(owned)
        if role == ActorRole.ADMIN:
            return queryset
        return queryset.none()

    def statistics(
        self, role: str, user_id: str, since: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        queryset = self.scoped_queryset(role, user_id, include_free_pool=False)
        if since is not None:
            queryset = queryset.filter(created_at__gte=since)
        rows = (
            queryset.order_by()
            .values("status")
            .annotate(
                count=Count("id"),
                revenue=Sum("total_price"),
                average_value=Avg("total_price"),
                quantity=Sum("quantity"),
            )
        )
        return [
            {
                "status": row["status"],
                "count": row["count"],
                "revenue": row["revenue"] or Decimal("0.00"),
                "average_value": Decimal(str(row["average_value"] or 0)).quantize(CENTS),
                "quantity": row["quantity"] or 0,
            }
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Save / Delete (IRepository contract)
    # ------------------------------------------------------------------

    @transaction.atomic
    def save(self, entity: Order) -> Order:
        """Persist (create or update) an order and its pending events."""
        entity.save()
        event_count = self.record_events(entity)

        logger.info(
            "order.saved",
            order_id=str(entity.id),
            version=entity.version,
            event_count=event_count,
        )
        return entity

    @transaction.atomic
    def delete(self, id: str) -> bool:
        """Hard-delete an order; status history and assignments cascade."""
        deleted, _ = Order.objects.filter(id=id).delete()
        if deleted:
            logger.info("order.deleted", order_id=str(id))
        return bool(deleted)

    @transaction.atomic
    def record_events(self, entity: Order) -> int:
        """Write pending events to the outbox without saving the order.

        Called by ``save`` and directly before a hard delete.
        """
        events = entity.domain_events
        for event in events:
            OutboxEvent.objects.create(
                event_type=event.event_name,
                aggregate_id=str(event.aggregate_id),
                payload=event.to_payload(),
                topic=OUTBOX_TOPIC,
            )
        entity.clear_domain_events()
        return len(events)

