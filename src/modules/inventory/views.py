"""Inventory API views: low-stock alerts and manual ledger adjustments."""

from __future__ import annotations

from rest_framework import status
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from modules.core.errors import domain_error_response
from modules.inventory.repositories.django_repository import StockDjangoRepository
from modules.inventory.serializers import (
    StockAdjustmentSerializer,
    StockLedgerEntrySerializer,
    StockMovementSerializer,
)
from modules.inventory.services import StockLedgerService, StockSynchronizer
from modules.products.repositories.django_repository import ProductDjangoRepository
from shared.domain.exceptions import DomainError


def build_stock_ledger_service() -> StockLedgerService:
    product_repository = ProductDjangoRepository()
    stock_repository = StockDjangoRepository()
    return StockLedgerService(
        synchronizer=StockSynchronizer(product_repository, stock_repository),
        product_repository=product_repository,
        stock_repository=stock_repository,
    )


class LowStockAlertView(APIView):
    """GET /api/v1/stock/alerts/"""

    def get(self, request: Request) -> Response:
        entries = build_stock_ledger_service().low_stock_alerts(request.user)
        serializer = StockLedgerEntrySerializer(entries, many=True)
        return Response({"count": len(entries), "results": serializer.data})


class StockAdjustmentView(APIView):
    """POST /api/v1/stock/{ledger}/{id}/adjust/

    Records a manual delta (a sale, a count correction) against a retailer
    or system stock entry owned by the requesting retailer.
    """

    def post(self, request: Request, ledger: str, pk: str) -> Response:
        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            movement = build_stock_ledger_service().adjust(
                actor=request.user,
                ledger=ledger,
                ledger_id=pk,
                delta=serializer.validated_data["delta"],
                reason=serializer.validated_data.get("reason"),
            )
        except DomainError as exc:
            return domain_error_response(exc)

        return Response(StockMovementSerializer(movement).data, status=status.HTTP_200_OK)
