"""Stock repository interface.

The stock synchronizer depends on this contract for everything except the
wholesaler product ledger, which lives behind ``IProductRepository``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import UUID

if TYPE_CHECKING:
    from modules.inventory.ledger import StockLedgerModel
    from modules.inventory.models import StockEffect, SystemStock


class IStockRepository(ABC):
    """Repository contract for retailer/system ledgers and effect markers."""

    @abstractmethod
    def has_effect(self, order_id: UUID, kind: str) -> bool:
        """Whether *kind* was already applied for the order."""

    @abstractmethod
    def record_effect(
        self,
        order_id: UUID,
        kind: str,
        product_id: Optional[UUID] = None,
        quantity: int = 0,
        previous_quantity: Optional[int] = None,
        new_quantity: Optional[int] = None,
    ) -> StockEffect:
        """Persist the marker for *kind*.

        Raises:
            PersistenceConflictError: a concurrent writer recorded it first.
        """

    @abstractmethod
    def get_system_stock_for_order(self, order_id: UUID) -> Optional[SystemStock]:
        """The system stock entry mirrored from *order_id*, if any."""

    @abstractmethod
    def create_system_stock(self, data: Dict[str, Any]) -> SystemStock:
        """Create a system stock entry."""

    @abstractmethod
    def get_ledger_for_update(self, ledger: str, id: str) -> Optional[StockLedgerModel]:
        """Lock and return a ``retailer`` or ``system`` ledger entry."""

    @abstractmethod
    def save_ledger(self, entry: StockLedgerModel) -> StockLedgerModel:
        """Persist a ledger entry."""

    @abstractmethod
    def list_low_stock_for_retailer(
        self, retailer_id: Optional[str] = None
    ) -> List[StockLedgerModel]:
        """Retailer and system ledger entries whose low-stock flag is raised."""
