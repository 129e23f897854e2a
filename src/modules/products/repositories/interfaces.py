"""Product repository interface.

Extends ``IRepository[Product]`` with the look-ups the order lifecycle
needs: a locked read for stock mutation and the low-stock listing.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, List, Optional

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.products.models import Product


class IProductRepository(IRepository["Product"]):
    """Repository contract for the Product read model / wholesaler ledger."""

    @abstractmethod
    def get_for_update(self, id: str) -> Optional["Product"]:
        """Retrieve a product with a row-level lock (SELECT FOR UPDATE).

        Used by the stock synchronizer for atomic decrement/restore.
        Returns ``None`` if the product does not exist.
        """

    @abstractmethod
    def list_low_stock(self, wholesaler_id: Optional[str] = None) -> List["Product"]:
        """Products whose ``low_stock_alert`` is raised."""
