"""Order repository interface.

Extends ``IRepository[Order]`` with the look-ups the order service needs:
a locked read, the idempotency-key look-up and role-scoped listing.

The Service Layer depends exclusively on this contract (DIP).
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from django.db.models import QuerySet

    from modules.orders.models import Order


class IOrderRepository(IRepository["Order"]):
    """Repository contract for the Order aggregate root.

    ``save`` persists the order together with the outbox rows of its
    pending domain events.
    """

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Order:
        """Create and persist a new order from field values."""

    @abstractmethod
    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order with a row-level lock (SELECT FOR UPDATE)."""

    @abstractmethod
    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        """Retrieve an order by its idempotency key."""

    @abstractmethod
    def scoped_queryset(
        self, role: str, user_id: str, include_free_pool: bool = True
    ) -> QuerySet:
        """Orders visible to *user_id* acting as *role*."""

    @abstractmethod
    def statistics(
        self, role: str, user_id: str, since: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """Per-status ``count``, ``revenue`` and ``quantity`` rows."""

    @abstractmethod
    def record_events(self, entity: Order) -> int:
        """Write the entity's pending domain events to the outbox."""
