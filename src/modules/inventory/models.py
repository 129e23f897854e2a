"""Retailer-side stock ledgers and stock side-effect markers.

- ``RetailerStock``: inventory a retailer entered manually.
- ``SystemStock``: inventory mirrored from a certified order; at most one
  entry per order.
- ``StockEffect``: marker proving an order event already moved stock.
  ``(order_id, kind)`` is unique, so a retried certification or return can
  never adjust a ledger twice.
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models

from modules.core.models import BaseModel
from modules.inventory.ledger import StockLedgerModel


class ValuedStockModel(StockLedgerModel):
    """Retailer-held stock valued at ``quantity * unit_price``."""

    retailer_id = models.CharField(max_length=64, db_index=True)
    name = models.CharField(max_length=255)
    category = models.CharField(max_length=100, blank=True, default="")
    measurement_unit = models.CharField(max_length=32, default="units")
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    total_value = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00")
    )
    notes = models.TextField(blank=True, default="")

    class Meta:
        abstract = True

    def save(self, *args, **kwargs) -> None:
        self.total_value = self.quantity * self.unit_price
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "total_value" not in update_fields:
            kwargs["update_fields"] = list(update_fields) + ["total_value"]
        super().save(*args, **kwargs)


class RetailerStock(ValuedStockModel):
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "retailer_stock"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["retailer_id", "low_stock_alert"],
                name="retailer_stock_low_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.quantity} {self.measurement_unit})"


class SystemStock(ValuedStockModel):
    order_id = models.UUIDField(unique=True)
    product = models.ForeignKey(
        "products.Product",
        on_delete=models.PROTECT,
        related_name="system_stock",
    )
    order_date = models.DateTimeField()
    certification_date = models.DateTimeField()

    class Meta:
        db_table = "system_stock"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["retailer_id", "low_stock_alert"],
                name="system_stock_low_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.name} from order {self.order_id}"


class StockEffectKind(models.TextChoices):
    DECREMENT = "decrement", "Decrement"
    RESTORE = "restore", "Restore"
    SYSTEM_STOCK = "system_stock", "System stock mirror"


class StockEffect(BaseModel):
    order_id = models.UUIDField()
    kind = models.CharField(max_length=20, choices=StockEffectKind.choices)
    product_id = models.UUIDField(null=True, blank=True)
    quantity = models.PositiveIntegerField(default=0)
    previous_quantity = models.PositiveIntegerField(null=True, blank=True)
    new_quantity = models.PositiveIntegerField(null=True, blank=True)
    applied_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "stock_effects"
        ordering = ["applied_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["order_id", "kind"],
                name="stock_effects_once_per_order",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.kind} for order {self.order_id}"
