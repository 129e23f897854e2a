"""Domain events for the Orders bounded context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class OrderCreated(DomainEvent):
    """Raised when a retailer places an order."""

    retailer_id: str = ""
    wholesaler_id: str = ""
    product_id: str = ""
    quantity: int = 0
    total_price: str = "0.00"


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    """Raised on every status transition."""

    old_status: str = ""
    new_status: str = ""
    role: str = ""
    transporter_id: Optional[str] = None


@dataclass(frozen=True)
class DisputeResolved(DomainEvent):
    reassigned: bool = False
    resolution_notes: str = ""
    resolution_type: str = "standard"
    compensation_amount: Optional[str] = None


@dataclass(frozen=True)
class ReturnHandled(DomainEvent):
    action: str = ""
    new_status: str = ""


@dataclass(frozen=True)
class OrderDeleted(DomainEvent):
    """Raised when the owning retailer hard-deletes an order."""

    order_number: str = ""
    status: str = ""
