"""Django ORM implementation of the Product repository.

Error handling follows the Null Object pattern: look-ups return ``None``
instead of raising, and the Service Layer decides how to translate a
missing product into a domain error.  Soft-deleted products are invisible.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction

from modules.products.models import Product
from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)


class ProductDjangoRepository(IProductRepository):
    """Concrete Product repository backed by Django ORM."""

    def get_by_id(self, id: str) -> Optional[Product]:
        """Return ``None`` for non-existent, deleted or invalid IDs."""
        try:
            return Product.objects.alive().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def get_for_update(self, id: str) -> Optional[Product]:
        try:
            return Product.objects.alive().select_for_update().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Product]:
        """List live products with optional Django ORM look-ups.

        Examples of valid filters::

            {"wholesaler_id": "w-1"}
            {"name__icontains": "maize"}
        """
        queryset = Product.objects.alive()
        if filters:
            queryset = queryset.filter(**filters)
        return list(queryset)

    def list_low_stock(self, wholesaler_id: Optional[str] = None) -> List[Product]:
        queryset = Product.objects.alive().filter(low_stock_alert=True)
        if wholesaler_id is not None:
            queryset = queryset.filter(wholesaler_id=wholesaler_id)
        return list(queryset.order_by("quantity"))

    @transaction.atomic
    def save(self, entity: Product) -> Product:
        entity.save()
        logger.info(
            "product.saved",
            product_id=str(entity.id),
            quantity=entity.quantity,
            low_stock_alert=entity.low_stock_alert,
        )
        return entity

    @transaction.atomic
    def delete(self, id: str) -> bool:
        """Soft-delete a product by ID."""
        product = self.get_by_id(id)
        if not product:
            return False
        product.delete()
        logger.info("product.soft_deleted", product_id=str(id))
        return True

