"""Django ORM implementation of the stock repository."""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction

from modules.inventory.ledger import StockLedgerModel
from modules.inventory.models import RetailerStock, StockEffect, SystemStock
from modules.inventory.repositories.interfaces import IStockRepository
from shared.domain.exceptions import PersistenceConflictError

logger = structlog.get_logger(__name__)

LEDGER_MODELS = {
    "retailer": RetailerStock,
    "system": SystemStock,
}


class StockDjangoRepository(IStockRepository):
    """Concrete stock repository backed by Django ORM."""

    def has_effect(self, order_id: UUID, kind: str) -> bool:
        return StockEffect.objects.filter(order_id=order_id, kind=kind).exists()

    def record_effect(
        self,
        order_id: UUID,
        kind: str,
        product_id: Optional[UUID] = None,
        quantity: int = 0,
        previous_quantity: Optional[int] = None,
        new_quantity: Optional[int] = None,
    ) -> StockEffect:
        try:
            with transaction.atomic():
                effect = StockEffect.objects.create(
                    order_id=order_id,
                    kind=kind,
                    product_id=product_id,
                    quantity=quantity,
                    previous_quantity=previous_quantity,
                    new_quantity=new_quantity,
                )
        except IntegrityError as exc:
            logger.warning("stock.effect_conflict", order_id=str(order_id), kind=kind)
            raise PersistenceConflictError(
                f"Stock effect '{kind}' for order {order_id} was recorded concurrently."
            ) from exc
        return effect

    def get_system_stock_for_order(self, order_id: UUID) -> Optional[SystemStock]:
        return SystemStock.objects.alive().filter(order_id=order_id).first()

    def create_system_stock(self, data: Dict[str, Any]) -> SystemStock:
        try:
            with transaction.atomic():
                entry = SystemStock.objects.create(**data)
        except IntegrityError as exc:
            raise PersistenceConflictError(
                f"System stock for order {data.get('order_id')} already exists."
            ) from exc
        logger.info(
            "system_stock.created",
            system_stock_id=str(entry.id),
            order_id=str(entry.order_id),
            quantity=entry.quantity,
        )
        return entry

    def get_ledger_for_update(self, ledger: str, id: str) -> Optional[StockLedgerModel]:
        model = LEDGER_MODELS.get(ledger)
        if model is None:
            return None
        try:
            return model.objects.alive().select_for_update().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    @transaction.atomic
    def save_ledger(self, entry: StockLedgerModel) -> StockLedgerModel:
        entry.save()
        return entry

    def list_low_stock_for_retailer(
        self, retailer_id: Optional[str] = None
    ) -> List[StockLedgerModel]:
        entries: List[StockLedgerModel] = []
        for model in (RetailerStock, SystemStock):
            queryset = model.objects.alive().filter(low_stock_alert=True)
            if retailer_id is not None:
                queryset = queryset.filter(retailer_id=retailer_id)
            entries.extend(queryset)
        return sorted(entries, key=lambda entry: entry.quantity)
