"""Order service layer (Use Cases).

Orchestrates authorization, transition validation, side-effect execution
and persistence for every order operation.  All write operations are
atomic: the service defines the unit-of-work boundary.

Lock ordering inside a transaction is always order row first, product
row second (the latter taken by the stock synchronizer).

Business rules enforced:
- Only retailers place orders; the product must exist, be active, meet its
  minimum order quantity and hold enough stock.
- Status transitions follow the role-aware transition table.
- Certification decrements stock exactly once per order (fatal on
  shortfall); system stock mirror and return restore are best-effort.
- Only the owning retailer deletes, and only from deletable statuses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, List, Optional

import structlog
from django.db import IntegrityError, transaction
from django.db.models import QuerySet
from django.utils import timezone

from modules.core.authentication import ActorRole
from modules.inventory.exceptions import InsufficientStock
from modules.orders.constants import (
    COMPLETED_STATUSES,
    DELETABLE_STATUSES,
    OPEN_STATUSES,
    OrderStatus,
)
from modules.orders.dtos import OrderStatisticsDTO, StatusBucketDTO
from modules.orders.events import (
    DisputeResolved,
    OrderCreated,
    OrderDeleted,
    ReturnHandled,
)
from modules.orders.exceptions import (
    BelowMinOrderQuantity,
    InactiveProduct,
    OrderAccessDenied,
    OrderNotDeletable,
    OrderNotFound,
    ProductNotFound,
    StaleOrderVersion,
)
from modules.orders.permissions import capabilities_for
from modules.orders.state_machine import (
    TransitionRequest,
    decide,
    decide_dispute_resolution,
    decide_return,
)
from modules.orders.timeline import TimelineEntry, build_timeline
from shared.domain.exceptions import InputValidationError, PersistenceConflictError

if TYPE_CHECKING:
    from modules.core.authentication import Principal
    from modules.orders.dtos import (
        CreateOrderDTO,
        HandleReturnDTO,
        ResolveDisputeDTO,
        UpdateOrderStatusDTO,
    )
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.orders.state_machine import (
        OrderLifecycleStateMachine,
        TransitionDecision,
    )
    from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)

TIME_RANGES = ("today", "week", "month", "year", "all")


@dataclass
class OrderTransitionResult:
    """A committed order plus notes about effects that did not succeed."""

    order: Order
    warnings: List[str] = field(default_factory=list)


class OrderService:
    """Application service for Order use-cases.

    Receives repositories and the state machine via constructor injection
    (DIP).
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        product_repository: IProductRepository,
        state_machine: OrderLifecycleStateMachine,
    ) -> None:
        self._order_repo = order_repository
        self._product_repo = product_repository
        self._machine = state_machine

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @transaction.atomic
    def create_order(self, actor: Principal, dto: CreateOrderDTO) -> Order:
        """Place a new ``pending`` order for *actor* (a retailer).

        Stock is checked but not reserved; it moves on certification.

        Raises:
            OrderAccessDenied: the actor is not a retailer.
            ProductNotFound: the product does not exist.
            InactiveProduct: the product is inactive.
            BelowMinOrderQuantity: quantity below the product minimum.
            InsufficientStock: the product holds fewer units than ordered.
        """
        log = logger.bind(retailer_id=actor.user_id, product_id=str(dto.product_id))
        log.info("order.creation_started", quantity=dto.quantity)

        if actor.role != ActorRole.RETAILER:
            raise OrderAccessDenied("Only retailers can place orders.")

        # 0. Idempotency check
        if dto.idempotency_key:
            existing = self._idempotent_hit(actor, dto.idempotency_key)
            if existing is not None:
                return existing

        # 1. Validate product
        product = self._product_repo.get_by_id(str(dto.product_id))
        if product is None:
            raise ProductNotFound(f"Product {dto.product_id} not found.")
        if not product.is_active:
            raise InactiveProduct(f"Product {product.sku} is not available.")
        if dto.quantity < product.min_order_quantity:
            raise BelowMinOrderQuantity(
                f"Minimum order quantity for {product.sku} is "
                f"{product.min_order_quantity} {product.measurement_unit}."
            )
        if product.quantity < dto.quantity:
            log.warning("order.insufficient_stock", available=product.quantity)
            raise InsufficientStock(
                f"Product {product.sku}: requested {dto.quantity}, "
                f"available {product.quantity}."
            )

        # 2. Price snapshot + bulk discount
        discount = product.bulk_discount_for(dto.quantity)
        fields = {
            "retailer_id": actor.user_id,
            "wholesaler_id": product.wholesaler_id,
            "product": product,
            "quantity": dto.quantity,
            "unit_price": product.price,
            "measurement_unit": product.measurement_unit,
            "delivery_place": dto.delivery_place,
            "delivery_latitude": dto.delivery_latitude,
            "delivery_longitude": dto.delivery_longitude,
            "payment_method": dto.payment_method,
            "order_notes": dto.order_notes,
            "estimated_delivery_date": dto.estimated_delivery_date,
            "idempotency_key": dto.idempotency_key,
        }
        if discount is not None:
            fields.update(
                bulk_discount_min_quantity=discount["min_quantity"],
                bulk_discount_percentage=discount["discount_percentage"],
                bulk_discount_applied=True,
            )

        # 3. Persist
        try:
            with transaction.atomic():
                order = self._order_repo.create(fields)
        except IntegrityError as exc:
            if dto.idempotency_key:
                existing = self._idempotent_hit(actor, dto.idempotency_key)
                if existing is not None:
                    return existing
            raise PersistenceConflictError("Order could not be created; retry.") from exc

        order.add_domain_event(
            OrderCreated(
                aggregate_id=order.id,
                actor_id=actor.user_id,
                retailer_id=order.retailer_id,
                wholesaler_id=order.wholesaler_id,
                product_id=str(product.id),
                quantity=order.quantity,
                total_price=str(order.total_price),
            )
        )
        self._order_repo.record_events(order)

        log.info(
            "order.created",
            order_id=str(order.id),
            order_number=order.order_number,
            total_price=str(order.total_price),
            bulk_discount_applied=order.bulk_discount_applied,
        )
        return order

    @transaction.atomic
    def update_status(
        self, actor: Principal, order_id: str, dto: UpdateOrderStatusDTO
    ) -> OrderTransitionResult:
        """Move an order to ``dto.status`` and run the entry effects.

        Acquires a row-level lock (``SELECT FOR UPDATE``) on the order
        before validating the transition.

        Raises:
            OrderNotFound: order does not exist.
            OrderAccessDenied: the actor has no standing on the order.
            InvalidTransitionError: the transition is not allowed.
            StaleOrderVersion: ``expected_version`` is out of date.
            InsufficientStock: certification found too little stock.
        """
        order = self._locked_order(order_id)
        decision = decide(
            actor,
            order,
            TransitionRequest(
                target=dto.status,
                reason=dto.reason,
                notes=dto.notes,
                transporter_id=dto.transporter_id,
                assignment_type=dto.assignment_type,
            ),
        )
        self._check_version(order, dto.expected_version)
        return self._commit(order, decision)

    @transaction.atomic
    def resolve_dispute(
        self, actor: Principal, order_id: str, dto: ResolveDisputeDTO
    ) -> OrderTransitionResult:
        """Close a dispute: back to the free pool, or certify the delivery.

        Raises:
            OrderNotFound: order does not exist.
            OrderAccessDenied: the actor is not the order's wholesaler.
            OrderNotDisputed: the order is not disputed.
        """
        order = self._locked_order(order_id)
        decision = decide_dispute_resolution(
            actor,
            order,
            dto.resolution_notes,
            dto.reassign,
            resolution_type=dto.resolution_type,
            compensation_amount=dto.compensation_amount,
        )
        self._check_version(order, dto.expected_version)
        order.add_domain_event(
            DisputeResolved(
                aggregate_id=order.id,
                actor_id=actor.user_id,
                reassigned=dto.reassign,
                resolution_notes=dto.resolution_notes,
                resolution_type=dto.resolution_type,
                compensation_amount=(
                    str(dto.compensation_amount)
                    if dto.compensation_amount is not None
                    else None
                ),
            )
        )
        return self._commit(order, decision)

    @transaction.atomic
    def handle_return(
        self, actor: Principal, order_id: str, dto: HandleReturnDTO
    ) -> OrderTransitionResult:
        """Accept (restore stock, refund) or reject a returned order.

        Raises:
            OrderNotFound: order does not exist.
            OrderAccessDenied: the actor is not the order's wholesaler.
            OrderNotReturning: no return is pending.
            InvalidReturnAction: action is not accept/reject.
        """
        order = self._locked_order(order_id)
        decision = decide_return(
            actor,
            order,
            dto.action,
            return_notes=dto.return_notes,
            rejection_reason=dto.rejection_reason,
        )
        self._check_version(order, dto.expected_version)
        order.add_domain_event(
            ReturnHandled(
                aggregate_id=order.id,
                actor_id=actor.user_id,
                action=dto.action,
                new_status=decision.to_status,
            )
        )
        return self._commit(order, decision)

    @transaction.atomic
    def delete_order(self, actor: Principal, order_id: str) -> None:
        """Hard-delete an order owned by *actor*.

        Raises:
            OrderNotFound: order does not exist.
            OrderAccessDenied: the actor is not the owning retailer.
            OrderNotDeletable: the status does not allow deletion.
        """
        order = self._locked_order(order_id)
        log = logger.bind(order_id=str(order.id), status=order.status)

        if actor.role != ActorRole.RETAILER or order.retailer_id != actor.user_id:
            log.warning("order.delete_denied", actor_id=actor.user_id)
            raise OrderAccessDenied("Only the retailer who placed the order can delete it.")
        if order.status not in DELETABLE_STATUSES:
            log.warning("order.delete_not_allowed")
            raise OrderNotDeletable(f"Cannot delete an order in status {order.status}.")

        order.add_domain_event(
            OrderDeleted(
                aggregate_id=order.id,
                actor_id=actor.user_id,
                order_number=order.order_number,
                status=order.status,
            )
        )
        self._order_repo.record_events(order)
        self._order_repo.delete(str(order.id))
        log.info("order.deleted_by_retailer")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, actor: Principal, order_id: str) -> Order:
        """Retrieve a single order the actor may read.

        Raises:
            OrderNotFound: if the order does not exist.
            OrderAccessDenied: if the actor may not read it.
        """
        order = self._order_repo.get_by_id(str(order_id))
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found.")
        if not capabilities_for(actor, order).can_read:
            raise OrderAccessDenied("Not authorized to view this order.")
        return order

    def list_orders(self, actor: Principal, status: Optional[str] = None) -> QuerySet:
        """Orders visible to *actor*, newest first."""
        queryset = self._order_repo.scoped_queryset(actor.role, actor.user_id)
        if status:
            if status not in OrderStatus.values:
                raise InputValidationError(f"Unknown order status '{status}'.")
            queryset = queryset.filter(status=status)
        return queryset

    def order_statistics(
        self, actor: Principal, time_range: str = "all"
    ) -> OrderStatisticsDTO:
        """Per-status counts and revenue of the orders visible to *actor*."""
        since = self._range_start(time_range)
        rows = self._order_repo.statistics(actor.role, actor.user_id, since)

        by_status: Dict[str, StatusBucketDTO] = {}
        total_orders = 0
        total_revenue = completed = pending = Decimal("0.00")
        for row in rows:
            by_status[row["status"]] = StatusBucketDTO(
                count=row["count"],
                revenue=row["revenue"],
                average_value=row["average_value"],
                quantity=row["quantity"],
            )
            total_orders += row["count"]
            total_revenue += row["revenue"]
            if row["status"] in COMPLETED_STATUSES:
                completed += row["revenue"]
            if row["status"] in OPEN_STATUSES:
                pending += row["revenue"]

        return OrderStatisticsDTO(
            time_range=time_range,
            since=since,
            total_orders=total_orders,
            total_revenue=total_revenue,
            completed_revenue=completed,
            pending_revenue=pending,
            average_order_value=(
                (total_revenue / total_orders).quantize(Decimal("0.01"))
                if total_orders
                else Decimal("0.00")
            ),
            by_status=by_status,
        )

    def order_timeline(self, actor: Principal, order_id: str) -> List[TimelineEntry]:
        return build_timeline(self.get_order(actor, order_id))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _idempotent_hit(self, actor: Principal, key: str) -> Optional[Order]:
        existing = self._order_repo.get_by_idempotency_key(key)
        if existing is None:
            return None
        if existing.retailer_id != actor.user_id:
            raise PersistenceConflictError("Idempotency key already used by another order.")
        logger.info("order.idempotency_hit", order_id=str(existing.id), key=key)
        return existing

    def _locked_order(self, order_id: str) -> Order:
        order = self._order_repo.get_for_update(str(order_id))
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    def _check_version(self, order: Order, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != order.version:
            logger.info(
                "order.version_conflict",
                order_id=str(order.id),
                expected_version=expected_version,
                current_version=order.version,
            )
            raise StaleOrderVersion(
                f"Order {order.id} is at version {order.version}, "
                f"not {expected_version}; reload and retry."
            )

    def _commit(self, order: Order, decision: TransitionDecision) -> OrderTransitionResult:
        warnings = self._machine.apply(order, decision)
        self._order_repo.save(order)
        logger.info(
            "order.status_updated",
            order_id=str(order.id),
            old_status=decision.from_status,
            new_status=decision.to_status,
            actor_id=decision.actor.user_id,
            version=order.version,
            warnings=warnings,
        )
        return OrderTransitionResult(order=order, warnings=warnings)

    @staticmethod
    def _range_start(time_range: str) -> Optional[datetime]:
        if time_range not in TIME_RANGES:
            raise InputValidationError(
                f"Unknown time_range '{time_range}'; expected one of {', '.join(TIME_RANGES)}."
            )
        now = timezone.now()
        if time_range == "today":
            return timezone.localtime(now).replace(hour=0, minute=0, second=0, microsecond=0)
        if time_range == "week":
            return now - timedelta(days=7)
        if time_range == "month":
            return now - timedelta(days=30)
        if time_range == "year":
            return now - timedelta(days=365)
        return None
