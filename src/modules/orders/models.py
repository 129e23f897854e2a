"""Order, OrderAssignment, and OrderStatusHistory models.

Business rules implemented:
- Each status change generates exactly one history record (signals).
- ``total_price`` is always ``quantity * unit_price - discount_applied``,
  recalculated before every save.
- Idempotency via ``idempotency_key`` unique constraint.
- Order number auto-generated as human-readable identifier.
- Product FK uses PROTECT to preserve financial history.
- ``version`` grows on every update (optimistic concurrency for clients).
- Cancellation, dispute and return sub-records are JSON documents created
  lazily and only extended; a fresh transporter reassignment clears them.
- Orders are hard-deleted; history and assignments cascade.
"""

from __future__ import annotations

import secrets
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import structlog
from django.core.serializers.json import DjangoJSONEncoder
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel, VersionedModel
from modules.orders.constants import (
    ORDER_NUMBER_MAX_RETRIES,
    TERMINAL_STATES,
    AssignmentOutcome,
    AssignmentType,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from shared.domain.events import DomainEventMixin

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


class Order(DomainEventMixin, VersionedModel):
    """Order aggregate root.

    ``order_number`` is a human-readable identifier auto-generated on first
    save (format: ``ORD-YYYYMMDD-XXXXXX``).  The UUIDv7 ``id`` is used for
    all internal references and API lookups.

    Party ids (``retailer_id``, ``wholesaler_id``, ``transporter_id``) are
    opaque identifiers issued by the identity service.
    """

    order_number: models.CharField = models.CharField(
        max_length=20, unique=True, editable=False
    )
    retailer_id: models.CharField = models.CharField(max_length=64, db_index=True)
    wholesaler_id: models.CharField = models.CharField(max_length=64, db_index=True)
    transporter_id: models.CharField = models.CharField(  # noqa: DJ01
        max_length=64, null=True, blank=True, db_index=True
    )
    product: models.ForeignKey = models.ForeignKey(
        "products.Product",
        on_delete=models.PROTECT,
        related_name="orders",
    )

    # Commercial
    quantity: models.PositiveIntegerField = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
    )
    unit_price: models.DecimalField = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    total_price: models.DecimalField = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    measurement_unit: models.CharField = models.CharField(max_length=32, default="units")
    bulk_discount_min_quantity: models.PositiveIntegerField = (
        models.PositiveIntegerField(null=True, blank=True)
    )
    bulk_discount_percentage: models.DecimalField = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    bulk_discount_applied: models.BooleanField = models.BooleanField(default=False)
    discount_applied: models.DecimalField = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0.00"),
    )

    # Delivery
    delivery_place: models.CharField = models.CharField(max_length=255)
    delivery_latitude: models.DecimalField = models.DecimalField(
        max_digits=9, decimal_places=6, null=True, blank=True
    )
    delivery_longitude: models.DecimalField = models.DecimalField(
        max_digits=9, decimal_places=6, null=True, blank=True
    )
    order_notes: models.TextField = models.TextField(blank=True, default="")
    estimated_delivery_date: models.DateTimeField = models.DateTimeField(
        null=True, blank=True
    )
    actual_delivery_date: models.DateTimeField = models.DateTimeField(
        null=True, blank=True
    )
    delivery_certification_date: models.DateTimeField = models.DateTimeField(
        null=True, blank=True
    )
    tracking_number: models.CharField = models.CharField(
        max_length=64, blank=True, default=""
    )

    # Lifecycle
    status: models.CharField = models.CharField(
        max_length=32,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
    )
    payment_status: models.CharField = models.CharField(
        max_length=16,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    payment_method: models.CharField = models.CharField(
        max_length=32,
        choices=PaymentMethod.choices,
        default=PaymentMethod.CASH_ON_DELIVERY,
    )

    # Sub-records
    cancellation_details: models.JSONField = models.JSONField(
        null=True, blank=True, default=None, encoder=DjangoJSONEncoder
    )
    delivery_dispute: models.JSONField = models.JSONField(
        null=True, blank=True, default=None, encoder=DjangoJSONEncoder
    )
    return_details: models.JSONField = models.JSONField(
        null=True, blank=True, default=None, encoder=DjangoJSONEncoder
    )
    return_reason: models.TextField = models.TextField(blank=True, default="")
    return_requested_at: models.DateTimeField = models.DateTimeField(
        null=True, blank=True
    )
    metadata: models.JSONField = models.JSONField(
        default=dict, blank=True, encoder=DjangoJSONEncoder
    )

    idempotency_key: models.CharField = models.CharField(  # noqa: DJ01
        max_length=255,
        unique=True,
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="orders_status_idx"),
            models.Index(fields=["-created_at"], name="orders_created_idx"),
            models.Index(
                fields=["retailer_id", "-created_at"], name="orders_retailer_idx"
            ),
            models.Index(
                fields=["wholesaler_id", "status"], name="orders_wholesaler_idx"
            ),
            models.Index(
                fields=["transporter_id", "status"], name="orders_transporter_idx"
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=1),
                name="orders_quantity_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(total_price__gte=0),
                name="orders_total_price_non_negative",
            ),
        ]

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    @property
    def subtotal(self) -> Decimal:
        return Decimal(self.quantity or 0) * Decimal(self.unit_price or 0)

    def bulk_discount_qualifies(self) -> bool:
        return bool(
            self.bulk_discount_applied
            and self.bulk_discount_min_quantity
            and self.quantity >= self.bulk_discount_min_quantity
        )

    def calculate_total(self) -> Decimal:
        """Recompute ``discount_applied`` and ``total_price``."""
        subtotal = self.subtotal
        if self.bulk_discount_qualifies():
            discount = subtotal * Decimal(self.bulk_discount_percentage) / Decimal(100)
        else:
            discount = Decimal("0")
        self.discount_applied = discount.quantize(CENT, rounding=ROUND_HALF_UP)
        self.total_price = (subtotal - self.discount_applied).quantize(
            CENT, rounding=ROUND_HALF_UP
        )
        return self.total_price

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` if no further transition is modelled."""
        return self.status in TERMINAL_STATES

    # ------------------------------------------------------------------
    # Order number generation
    # ------------------------------------------------------------------

    @staticmethod
    def generate_order_number() -> str:
        """Generate a human-readable order number: ``ORD-YYYYMMDD-XXXXXX``."""
        now = timezone.now()
        suffix = secrets.token_hex(3).upper()
        return f"ORD-{now:%Y%m%d}-{suffix}"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.order_number:
            for _attempt in range(ORDER_NUMBER_MAX_RETRIES):
                candidate = self.generate_order_number()
                if not Order.objects.filter(order_number=candidate).exists():
                    self.order_number = candidate
                    break
            else:
                raise RuntimeError(
                    f"Failed to generate unique order_number after "
                    f"{ORDER_NUMBER_MAX_RETRIES} attempts"
                )
        self.calculate_total()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            missing = [
                f for f in ("total_price", "discount_applied") if f not in update_fields
            ]
            kwargs["update_fields"] = list(update_fields) + missing
        super().save(*args, **kwargs)

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return f"{self.order_number} ({self.status})"


class OrderAssignment(BaseModel):
    """Append-only transporter assignment history entry.

    ``transporter_id`` is ``None`` for free-pool assignments that nobody
    has picked up yet.
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="assignments",
    )
    transporter_id: models.CharField = models.CharField(  # noqa: DJ01
        max_length=64, null=True, blank=True
    )
    assignment_type: models.CharField = models.CharField(
        max_length=16,
        choices=AssignmentType.choices,
        default=AssignmentType.SPECIFIC,
    )
    outcome: models.CharField = models.CharField(
        max_length=16,
        choices=AssignmentOutcome.choices,
    )
    reason: models.TextField = models.TextField(blank=True, default="")
    expires_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "order_assignments"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(
                fields=["order", "created_at"],
                name="oa_order_created_idx",
            ),
        ]

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and timezone.now() > self.expires_at

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self._state.adding:
            raise ValueError("Assignment history entries are append-only.")
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        who = self.transporter_id or "free pool"
        return f"{self.order_id}: {self.outcome} ({self.assignment_type}, {who})"


class OrderStatusHistory(BaseModel):
    """Append-only audit trail for order status transitions.

    Each record captures a single status change with the responsible actor
    and optional notes (e.g. cancellation reason).  ``changed_by`` is
    ``None`` when the system performed the change.
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    old_status: models.CharField = models.CharField(  # noqa: DJ01
        max_length=32,
        choices=OrderStatus.choices,
        null=True,
        blank=True,
    )
    new_status: models.CharField = models.CharField(
        max_length=32,
        choices=OrderStatus.choices,
    )
    changed_by: models.CharField = models.CharField(  # noqa: DJ01
        max_length=64, null=True, blank=True
    )
    role: models.CharField = models.CharField(max_length=16, blank=True, default="")
    notes: models.TextField = models.TextField(blank=True, default="")

    class Meta:
        db_table = "order_status_history"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["order", "-created_at"],
                name="osh_order_created_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.order} : {self.old_status} -> {self.new_status}"


def stamp() -> str:
    """Current time as an ISO string for JSON sub-records."""
    return timezone.now().isoformat()


def last_status_update(
    previous: Optional[str],
    new: str,
    changed_by: Optional[str],
    role: str,
    notes: str = "",
) -> dict:
    return {
        "previous_status": previous,
        "new_status": new,
        "changed_by": changed_by,
        "role": role,
        "changed_at": stamp(),
        "notes": notes,
    }
