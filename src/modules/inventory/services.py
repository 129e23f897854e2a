"""Stock synchronization between order lifecycle events and ledgers.

``StockSynchronizer`` is the only writer of ledger quantities on behalf of
orders.  Every effect is keyed by ``(order_id, kind)`` through
``StockEffect``, so running the same effect twice for one order is a no-op.

Lock ordering: callers lock the order row first; the synchronizer then locks
the product row.  Never the other way around.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional
from uuid import UUID

import structlog
from django.db import transaction
from django.utils import timezone

from modules.core.authentication import ActorRole
from modules.inventory.exceptions import (
    InsufficientStock,
    StockAccessDenied,
    StockEntryNotFound,
    UnknownLedger,
)
from modules.inventory.models import StockEffectKind, SystemStock
from modules.inventory.repositories.django_repository import LEDGER_MODELS

if TYPE_CHECKING:
    from modules.core.authentication import Principal
    from modules.inventory.ledger import StockLedgerModel
    from modules.inventory.repositories.interfaces import IStockRepository
    from modules.orders.models import Order
    from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StockMovement:
    """Outcome of one stock effect.

    ``applied`` is ``False`` when the effect had already been recorded for
    the order and nothing changed.
    """

    ledger_id: UUID
    previous_quantity: int
    new_quantity: int
    delta: int
    low_stock_alert: bool
    applied: bool = True

    def as_metadata(self) -> dict:
        return {
            "ledger_id": str(self.ledger_id),
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "delta": self.delta,
            "low_stock_alert": self.low_stock_alert,
            "applied": self.applied,
        }


class StockSynchronizer:
    """Applies order-driven quantity deltas to the stock ledgers."""

    def __init__(
        self,
        product_repository: IProductRepository,
        stock_repository: IStockRepository,
    ) -> None:
        self._product_repo = product_repository
        self._stock_repo = stock_repository

    # ------------------------------------------------------------------
    # Wholesaler product ledger
    # ------------------------------------------------------------------

    @transaction.atomic
    def decrement(self, order: Order) -> StockMovement:
        """Take ``order.quantity`` units out of the wholesaler's product.

        Raises:
            StockEntryNotFound: the product no longer exists.
            InsufficientStock: the product holds fewer units than ordered.
            PersistenceConflictError: a concurrent writer recorded the effect.
        """
        return self._move_product_stock(order, StockEffectKind.DECREMENT, -order.quantity)

    @transaction.atomic
    def restore(self, order: Order) -> StockMovement:
        """Put ``order.quantity`` units back into the wholesaler's product."""
        return self._move_product_stock(order, StockEffectKind.RESTORE, order.quantity)

    def _move_product_stock(self, order: Order, kind: str, delta: int) -> StockMovement:
        log = logger.bind(
            order_id=str(order.id),
            product_id=str(order.product_id),
            effect=kind,
            quantity=order.quantity,
        )
        product = self._product_repo.get_for_update(str(order.product_id))
        if product is None:
            log.warning("stock.product_missing")
            raise StockEntryNotFound(f"Product {order.product_id} not found.")

        if self._stock_repo.has_effect(order.id, kind):
            log.info("stock.effect_already_applied", current_quantity=product.quantity)
            return StockMovement(
                ledger_id=product.id,
                previous_quantity=product.quantity,
                new_quantity=product.quantity,
                delta=0,
                low_stock_alert=product.low_stock_alert,
                applied=False,
            )

        previous = product.quantity
        try:
            product.apply_delta(delta)
        except InsufficientStock:
            log.warning("stock.insufficient", available=previous)
            raise
        self._product_repo.save(product)
        self._stock_repo.record_effect(
            order_id=order.id,
            kind=kind,
            product_id=product.id,
            quantity=order.quantity,
            previous_quantity=previous,
            new_quantity=product.quantity,
        )

        log.info(
            "stock.decremented" if delta < 0 else "stock.restored",
            previous_quantity=previous,
            new_quantity=product.quantity,
            low_stock_alert=product.low_stock_alert,
        )
        return StockMovement(
            ledger_id=product.id,
            previous_quantity=previous,
            new_quantity=product.quantity,
            delta=delta,
            low_stock_alert=product.low_stock_alert,
        )

    # ------------------------------------------------------------------
    # System stock
    # ------------------------------------------------------------------

    @transaction.atomic
    def mirror_to_system_stock(self, order: Order) -> SystemStock:
        """Create the retailer's system stock entry for a certified order.

        Returns the existing entry when the order was mirrored before.
        """
        existing = self._stock_repo.get_system_stock_for_order(order.id)
        if existing is not None:
            logger.info(
                "system_stock.already_mirrored",
                order_id=str(order.id),
                system_stock_id=str(existing.id),
            )
            return existing

        product = order.product
        entry = self._stock_repo.create_system_stock(
            {
                "retailer_id": order.retailer_id,
                "order_id": order.id,
                "product_id": order.product_id,
                "name": product.name,
                "category": product.category,
                "quantity": order.quantity,
                "original_quantity": order.quantity,
                "measurement_unit": order.measurement_unit or product.measurement_unit,
                "unit_price": order.unit_price,
                "total_value": order.total_price,
                "notes": f"Received from order {order.order_number}",
                "order_date": order.created_at,
                "certification_date": order.delivery_certification_date
                or timezone.now(),
            }
        )
        self._stock_repo.record_effect(
            order_id=order.id,
            kind=StockEffectKind.SYSTEM_STOCK,
            product_id=order.product_id,
            quantity=order.quantity,
        )
        return entry

    # ------------------------------------------------------------------
    # Retailer / system ledgers
    # ------------------------------------------------------------------

    @transaction.atomic
    def adjust(self, ledger: str, ledger_id: str, delta: int) -> StockMovement:
        """Apply *delta* to a retailer or system ledger entry.

        Raises:
            UnknownLedger: *ledger* is not ``retailer`` or ``system``.
            StockEntryNotFound: the entry does not exist.
            InsufficientStock: the entry would go negative.
        """
        entry = self.lock_entry(ledger, ledger_id)
        previous = entry.quantity
        entry.apply_delta(delta)
        self._stock_repo.save_ledger(entry)

        logger.info(
            "stock.adjusted",
            ledger=ledger,
            ledger_id=str(entry.id),
            previous_quantity=previous,
            new_quantity=entry.quantity,
            delta=delta,
            low_stock_alert=entry.low_stock_alert,
        )
        return StockMovement(
            ledger_id=entry.id,
            previous_quantity=previous,
            new_quantity=entry.quantity,
            delta=delta,
            low_stock_alert=entry.low_stock_alert,
        )

    def lock_entry(self, ledger: str, ledger_id: str) -> StockLedgerModel:
        if ledger not in LEDGER_MODELS:
            raise UnknownLedger(f"Unknown stock ledger '{ledger}'.")
        entry = self._stock_repo.get_ledger_for_update(ledger, ledger_id)
        if entry is None:
            raise StockEntryNotFound(f"Stock entry {ledger_id} not found.")
        return entry


class StockLedgerService:
    """Actor-facing stock operations: low-stock alerts and manual adjustments."""

    def __init__(
        self,
        synchronizer: StockSynchronizer,
        product_repository: IProductRepository,
        stock_repository: IStockRepository,
    ) -> None:
        self._synchronizer = synchronizer
        self._product_repo = product_repository
        self._stock_repo = stock_repository

    def low_stock_alerts(self, actor: Principal) -> List[StockLedgerModel]:
        """Ledger entries with a raised low-stock flag visible to *actor*.

        Wholesalers see their products, retailers their retailer and system
        stock, admins everything.  Transporters own no stock.
        """
        if actor.role == ActorRole.WHOLESALER:
            return list(self._product_repo.list_low_stock(wholesaler_id=actor.user_id))
        if actor.role == ActorRole.RETAILER:
            return self._stock_repo.list_low_stock_for_retailer(actor.user_id)
        if actor.role == ActorRole.ADMIN:
            entries: List[StockLedgerModel] = list(self._product_repo.list_low_stock())
            entries.extend(self._stock_repo.list_low_stock_for_retailer())
            return entries
        return []

    @transaction.atomic
    def adjust(
        self,
        actor: Principal,
        ledger: str,
        ledger_id: str,
        delta: int,
        reason: Optional[str] = None,
    ) -> StockMovement:
        """Apply a manual delta (e.g. a recorded sale) to the actor's own entry."""
        entry = self._synchronizer.lock_entry(ledger, ledger_id)
        if actor.role != ActorRole.RETAILER or entry.retailer_id != actor.user_id:
            logger.warning(
                "stock.adjust_denied",
                ledger=ledger,
                ledger_id=str(ledger_id),
                actor_id=actor.user_id,
            )
            raise StockAccessDenied("Only the owning retailer can adjust this stock.")
        movement = self._synchronizer.adjust(ledger, ledger_id, delta)
        logger.info("stock.manual_adjustment", ledger=ledger, reason=reason or "")
        return movement
