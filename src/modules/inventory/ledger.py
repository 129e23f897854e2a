"""Stock ledger contract shared by every inventory record.

Wholesaler products, retailer-entered stock and system stock mirrored from
certified orders all carry the same fields and obey the same rule:

    low_stock_alert = quantity <= max(min_stock_level, ratio * original_quantity)

``ratio`` defaults to ``settings.LOW_STOCK_RATIO`` (0.5).  ``quantity`` can
never become negative.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional, Union

from django.conf import settings
from django.db import models
from django.utils import timezone

from modules.core.models import SoftDeleteModel
from modules.inventory.exceptions import InsufficientStock

Number = Union[int, Decimal]

LEDGER_DERIVED_FIELDS = ("original_quantity", "low_stock_alert", "low_stock_alert_at")


def default_low_stock_ratio() -> Decimal:
    return Decimal(str(settings.LOW_STOCK_RATIO))


def is_low_stock(
    quantity: Number,
    min_stock_level: Number = 0,
    original_quantity: Optional[Number] = None,
    ratio: Optional[Decimal] = None,
) -> bool:
    """Return ``True`` when *quantity* is at or below the reorder threshold."""
    if ratio is None:
        ratio = default_low_stock_ratio()
    baseline = Decimal(original_quantity or 0) * ratio
    threshold = max(Decimal(min_stock_level or 0), baseline)
    return Decimal(quantity) <= threshold


class StockLedgerModel(SoftDeleteModel):
    """Abstract inventory record with a derived low-stock flag."""

    quantity = models.PositiveIntegerField(default=0)
    original_quantity = models.PositiveIntegerField(null=True, blank=True)
    min_stock_level = models.PositiveIntegerField(default=0)
    low_stock_alert = models.BooleanField(default=False)
    low_stock_alert_at = models.DateTimeField(null=True, blank=True)
    last_stock_update = models.DateTimeField(null=True, blank=True)

    class Meta:
        abstract = True

    # ------------------------------------------------------------------
    # Ledger rules
    # ------------------------------------------------------------------

    def snapshot_original_quantity(self) -> None:
        """Record the current quantity as baseline if none exists yet."""
        if not self.original_quantity:
            self.original_quantity = self.quantity

    def refresh_low_stock_alert(self) -> bool:
        was_low = self.low_stock_alert
        self.low_stock_alert = is_low_stock(
            self.quantity, self.min_stock_level, self.original_quantity
        )
        if self.low_stock_alert and not was_low:
            self.low_stock_alert_at = timezone.now()
        elif not self.low_stock_alert:
            self.low_stock_alert_at = None
        return self.low_stock_alert

    def apply_delta(self, delta: int) -> int:
        """Add *delta* (may be negative) to ``quantity`` and refresh the flag.

        Raises:
            InsufficientStock: the result would be negative.
        """
        new_quantity = self.quantity + delta
        if new_quantity < 0:
            raise InsufficientStock(
                f"Insufficient stock for {self}: available {self.quantity}, "
                f"requested {-delta}."
            )
        self.snapshot_original_quantity()
        self.quantity = new_quantity
        self.last_stock_update = timezone.now()
        self.refresh_low_stock_alert()
        return self.quantity

    def save(self, *args, **kwargs) -> None:
        """Recompute the low-stock flag on every save.

        The derived fields are added to ``update_fields`` when it is passed,
        so a partial save never leaves the flag stale in the database.
        """
        self.snapshot_original_quantity()
        self.refresh_low_stock_alert()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            missing = [f for f in LEDGER_DERIVED_FIELDS if f not in update_fields]
            kwargs["update_fields"] = list(update_fields) + missing
        super().save(*args, **kwargs)
