"""Product read model: the wholesaler's stock ledger.

The catalog itself is maintained by an external service; the order
lifecycle only reads price, measurement unit, minimum order quantity, bulk
discount and the active flag, and mutates ``quantity`` through the stock
synchronizer.

Rules:
- Price cannot be negative.
- Stock quantity cannot be negative (ledger contract).
- Minimum order quantity is at least 1.
- Bulk discount percentage is within 0..100 and applies only when the order
  quantity reaches ``bulk_discount_min_quantity``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

import structlog
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from modules.inventory.ledger import StockLedgerModel

logger = structlog.get_logger(__name__)


class Product(StockLedgerModel):
    """Wholesaler product and its stock ledger entry."""

    wholesaler_id = models.CharField(max_length=64, db_index=True)
    sku = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    category = models.CharField(max_length=100, blank=True, default="")
    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    measurement_unit = models.CharField(max_length=32, default="units")
    min_order_quantity = models.PositiveIntegerField(
        default=1, validators=[MinValueValidator(1)]
    )
    bulk_discount_min_quantity = models.PositiveIntegerField(null=True, blank=True)
    bulk_discount_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[
            MinValueValidator(Decimal("0.00")),
            MaxValueValidator(Decimal("100.00")),
        ],
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "products"
        ordering = ["name"]
        indexes = [
            models.Index(
                fields=["wholesaler_id", "low_stock_alert"],
                name="products_wholesaler_low_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price__gte=0),
                name="products_price_non_negative",
            ),
        ]

    @property
    def has_bulk_discount(self) -> bool:
        return bool(self.bulk_discount_min_quantity) and self.bulk_discount_percentage > 0

    def bulk_discount_for(self, quantity: int) -> Optional[dict]:
        """Discount descriptor applicable to an order of *quantity* units."""
        if not self.has_bulk_discount or quantity < self.bulk_discount_min_quantity:
            return None
        return {
            "min_quantity": self.bulk_discount_min_quantity,
            "discount_percentage": self.bulk_discount_percentage,
            "applied": True,
        }

    def clean(self) -> None:
        super().clean()
        if self.sku:
            self.sku = self.sku.strip().upper()
        if self.price is not None and self.price < 0:
            raise ValidationError({"price": "Price cannot be negative."})

    def save(self, *args, **kwargs) -> None:
        is_new = self._state.adding
        if self.sku:
            self.sku = self.sku.strip().upper()
        super().save(*args, **kwargs)
        if is_new:
            logger.info(
                "product_created",
                product_id=str(self.id),
                wholesaler_id=self.wholesaler_id,
                sku=self.sku,
                quantity=self.quantity,
            )

    def __str__(self) -> str:
        return f"{self.sku} - {self.name}"
