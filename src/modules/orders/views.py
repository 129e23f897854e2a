"""Order API views.

Exposes the ``OrderService`` via HTTP using DRF ViewSets.
Domain exceptions are caught and translated into HTTP status codes by
``domain_error_response``; the view never swallows generic exceptions.
"""

from __future__ import annotations

from typing import Any, Dict, List

from django_filters.rest_framework import DjangoFilterBackend
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.permissions import IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import BaseThrottle
from rest_framework.viewsets import GenericViewSet

from modules.core.errors import domain_error_response
from modules.core.pagination import StandardResultsSetPagination
from modules.inventory.repositories.django_repository import StockDjangoRepository
from modules.inventory.services import StockSynchronizer
from modules.orders.dtos import (
    CreateOrderDTO,
    HandleReturnDTO,
    ResolveDisputeDTO,
    UpdateOrderStatusDTO,
)
from modules.orders.filters import OrderFilter
from modules.orders.models import Order
from modules.orders.permissions import HasTradeRole
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.serializers import (
    CreateOrderSerializer,
    HandleReturnSerializer,
    OrderListSerializer,
    OrderSerializer,
    ResolveDisputeSerializer,
    UpdateOrderStatusSerializer,
)
from modules.orders.services import OrderService, OrderTransitionResult
from modules.orders.state_machine import OrderLifecycleStateMachine
from modules.products.repositories.django_repository import ProductDjangoRepository
from shared.domain.exceptions import DomainError


def build_order_service() -> OrderService:
    product_repository = ProductDjangoRepository()
    synchronizer = StockSynchronizer(product_repository, StockDjangoRepository())
    return OrderService(
        order_repository=OrderDjangoRepository(),
        product_repository=product_repository,
        state_machine=OrderLifecycleStateMachine(synchronizer),
    )


def _validation_error_response(exc: PydanticValidationError) -> Response:
    errors: List[Dict[str, Any]] = [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return Response(
        {"detail": "Invalid request.", "errors": errors},
        status=status.HTTP_400_BAD_REQUEST,
    )


class OrderViewSet(GenericViewSet):
    """ViewSet for Order operations.

    Uses ``OrderService`` with injected repositories (DIP).
    Does **not** extend ``ModelViewSet``: all ORM access goes through
    the service/repository layer.
    """

    queryset = Order.objects.none()
    permission_classes = [IsAuthenticated, HasTradeRole]
    lookup_value_regex = "[0-9a-fA-F-]{36}"
    filterset_class = OrderFilter
    search_fields = ["order_number", "product__name", "delivery_place"]
    ordering_fields = ["created_at", "total_price", "status", "quantity"]
    ordering = ["-created_at", "-id"]
    filter_backends = [DjangoFilterBackend, SearchFilter, OrderingFilter]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_order_service()

    def get_throttles(self) -> list[BaseThrottle]:
        """Throttle scopes per action."""
        throttle_scope: str | None
        if self.action == "create":
            throttle_scope = "order_creation"
        elif self.action in {"list", "retrieve", "statistics", "timeline"}:
            throttle_scope = "order_listing"
        else:
            throttle_scope = "order_updates"
        self.throttle_scope = throttle_scope
        return super().get_throttles()

    def get_queryset(self):
        if getattr(self, "swagger_fake_view", False):
            return Order.objects.none()
        return self._service.list_orders(
            self.request.user, status=self.request.query_params.get("status")
        )

    def _detail(self, order: Order, **extra: Any) -> Dict[str, Any]:
        data = dict(OrderSerializer(order, context={"actor": self.request.user}).data)
        data.update(extra)
        return data

    def _transition_response(self, result: OrderTransitionResult) -> Response:
        return Response(self._detail(result.order, warnings=result.warnings))

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, request: Request) -> Response:
        """POST /api/v1/orders/

        Supports idempotency via the ``Idempotency-Key`` header: a repeated
        key returns the order it created first.
        """
        create_serializer = CreateOrderSerializer(data=request.data)
        create_serializer.is_valid(raise_exception=True)

        try:
            dto = CreateOrderDTO(
                **create_serializer.validated_data,
                idempotency_key=request.headers.get("Idempotency-Key") or None,
            )
            order = self._service.create_order(request.user, dto)
        except PydanticValidationError as exc:
            return _validation_error_response(exc)
        except DomainError as exc:
            return domain_error_response(exc)

        return Response(self._detail(order), status=status.HTTP_201_CREATED)

    # ------------------------------------------------------------------
    # List / Retrieve
    # ------------------------------------------------------------------

    def list(self, request: Request) -> Response:
        """GET /api/v1/orders/

        ``status`` is applied by the service; the remaining filters by
        ``OrderFilter``.  Results are paginated.
        """
        try:
            queryset = self.filter_queryset(self.get_queryset())
        except DomainError as exc:
            return domain_error_response(exc)

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request, view=self)
        serializer = OrderListSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/"""
        try:
            order = self._service.get_order(request.user, pk)
        except DomainError as exc:
            return domain_error_response(exc)
        return Response(self._detail(order))

    # ------------------------------------------------------------------
    # Status Update
    # ------------------------------------------------------------------

    def partial_update(self, request: Request, pk: str | None = None) -> Response:
        """PATCH /api/v1/orders/{pk}/

        Moves the order to ``status``.  The response carries ``warnings``
        for best-effort effects that did not succeed.
        """
        serializer = UpdateOrderStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            dto = UpdateOrderStatusDTO(
                status=data["status"],
                reason=data.get("reason", ""),
                notes=data.get("notes", ""),
                transporter_id=data.get("transporter_id") or None,
                assignment_type=data.get("assignment_type") or None,
                expected_version=data.get("expected_version"),
            )
            result = self._service.update_status(request.user, pk, dto)
        except PydanticValidationError as exc:
            return _validation_error_response(exc)
        except DomainError as exc:
            return domain_error_response(exc)

        return self._transition_response(result)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def destroy(self, request: Request, pk: str | None = None) -> Response:
        """DELETE /api/v1/orders/{pk}/"""
        try:
            self._service.delete_order(request.user, pk)
        except DomainError as exc:
            return domain_error_response(exc)
        return Response(status=status.HTTP_204_NO_CONTENT)

    # ------------------------------------------------------------------
    # Dispute / Return
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"], url_path="resolve-dispute")
    def resolve_dispute(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/resolve-dispute/"""
        serializer = ResolveDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            dto = ResolveDisputeDTO(**serializer.validated_data)
            result = self._service.resolve_dispute(request.user, pk, dto)
        except DomainError as exc:
            return domain_error_response(exc)

        return self._transition_response(result)

    @action(detail=True, methods=["post"], url_path="handle-return")
    def handle_return(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/handle-return/

        ``action`` is ``accept`` (stock restored, payment refunded) or
        ``reject``.
        """
        serializer = HandleReturnSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            dto = HandleReturnDTO(**serializer.validated_data)
            result = self._service.handle_return(request.user, pk, dto)
        except DomainError as exc:
            return domain_error_response(exc)

        return self._transition_response(result)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @action(detail=False, methods=["get"])
    def statistics(self, request: Request) -> Response:
        """GET /api/v1/orders/statistics/?time_range=today|week|month|year|all"""
        time_range = request.query_params.get("time_range", "all")
        try:
            stats = self._service.order_statistics(request.user, time_range)
        except DomainError as exc:
            return domain_error_response(exc)
        return Response(stats.model_dump(mode="json"))

    @action(detail=True, methods=["get"])
    def timeline(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/timeline/"""
        try:
            entries = self._service.order_timeline(request.user, pk)
        except DomainError as exc:
            return domain_error_response(exc)
        return Response({"order_id": pk, "events": entries})
