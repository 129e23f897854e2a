"""Order DTOs for the Service Layer.

Framework-agnostic data transfer objects using Pydantic v2.
These are the contracts between the API layer (DRF Serializers)
and the Service layer.  DTOs are immutable (``frozen=True``).

- ``CreateOrderDTO``: input for order creation.
- ``UpdateOrderStatusDTO``: input for a status transition.
- ``ResolveDisputeDTO``: input for dispute resolution.
- ``HandleReturnDTO``: input for return handling.
- ``OrderStatisticsDTO``: output of the statistics query.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from modules.orders.constants import AssignmentType, OrderStatus, PaymentMethod

TimeRange = Literal["today", "week", "month", "year", "all"]


# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class CreateOrderDTO(BaseModel):
    """Immutable DTO for order creation requests.

    ``unit_price`` and the bulk discount are resolved by the Service Layer
    from the product read model.
    """

    model_config = ConfigDict(frozen=True)

    product_id: UUID
    quantity: int
    delivery_place: str
    delivery_latitude: Optional[Decimal] = None
    delivery_longitude: Optional[Decimal] = None
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    order_notes: str = ""
    estimated_delivery_date: Optional[datetime] = None
    idempotency_key: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1.")
        return v

    @field_validator("delivery_place")
    @classmethod
    def delivery_place_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Delivery place is required.")
        return v

    @field_validator("delivery_latitude")
    @classmethod
    def latitude_in_range(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and not Decimal(-90) <= v <= Decimal(90):
            raise ValueError("Latitude must be between -90 and 90.")
        return v

    @field_validator("delivery_longitude")
    @classmethod
    def longitude_in_range(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and not Decimal(-180) <= v <= Decimal(180):
            raise ValueError("Longitude must be between -180 and 180.")
        return v


class UpdateOrderStatusDTO(BaseModel):
    """Immutable DTO for a status transition request."""

    model_config = ConfigDict(frozen=True)

    status: str
    reason: str = ""
    notes: str = ""
    transporter_id: Optional[str] = None
    assignment_type: Optional[AssignmentType] = None
    expected_version: Optional[int] = None

    @field_validator("status")
    @classmethod
    def status_must_be_known(cls, v: str) -> str:
        if v not in OrderStatus.values:
            raise ValueError(f"Unknown order status '{v}'.")
        return v


class ResolveDisputeDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    resolution_notes: str = ""
    reassign: bool = False
    resolution_type: str = Field(default="standard", min_length=1, max_length=32)
    compensation_amount: Optional[Decimal] = Field(default=None, ge=0)
    expected_version: Optional[int] = None


class HandleReturnDTO(BaseModel):
    """``action`` is checked by the service, after access and state checks."""

    model_config = ConfigDict(frozen=True)

    action: str
    rejection_reason: str = ""
    return_notes: str = ""
    expected_version: Optional[int] = None


# ---------------------------------------------------------------------------
# Output DTOs
# ---------------------------------------------------------------------------


class StatusBucketDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int = 0
    revenue: Decimal = Decimal("0.00")
    average_value: Decimal = Decimal("0.00")
    quantity: int = 0


class OrderStatisticsDTO(BaseModel):
    """Immutable DTO for the statistics endpoint."""

    model_config = ConfigDict(frozen=True)

    time_range: TimeRange
    since: Optional[datetime] = None
    total_orders: int
    total_revenue: Decimal
    completed_revenue: Decimal
    pending_revenue: Decimal
    average_order_value: Decimal = Decimal("0.00")
    by_status: Dict[str, StatusBucketDTO] = Field(default_factory=dict)
