"""Unit tests for OrderService.

Covers:
- Order creation: retailer only, product checks, price snapshot, bulk
  discount, idempotency key.
- Status transitions through the service, optimistic version check.
- Transporter exits, reassignment and the assignment log.
- Dispute resolution and return handling.
- Deletion rules, scoped reads, statistics.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest

from modules.core.authentication import Principal
from modules.core.models import OutboxEvent
from modules.inventory.exceptions import InsufficientStock
from modules.inventory.models import StockEffect, SystemStock
from modules.orders.constants import (
    AssignmentOutcome,
    AssignmentType,
    OrderStatus,
    PaymentStatus,
)
from modules.orders.dtos import (
    HandleReturnDTO,
    ResolveDisputeDTO,
    UpdateOrderStatusDTO,
)
from modules.orders.exceptions import (
    BelowMinOrderQuantity,
    InactiveProduct,
    OrderAccessDenied,
    OrderNotDeletable,
    OrderNotDisputed,
    OrderNotFound,
    ProductNotFound,
    StaleOrderVersion,
)
from modules.orders.models import Order, OrderStatusHistory
from modules.products.models import Product
from shared.domain.exceptions import (
    InputValidationError,
    InvalidTransitionError,
    PersistenceConflictError,
)

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreateOrder:
    def test_creates_pending_order_with_price_snapshot(self, make_order, product):
        order = make_order(quantity=10)

        assert order.status == OrderStatus.PENDING
        assert order.retailer_id == "retailer-1"
        assert order.wholesaler_id == product.wholesaler_id
        assert order.unit_price == Decimal("20.00")
        assert order.total_price == Decimal("200.00")
        assert order.measurement_unit == "bags"
        assert order.payment_status == PaymentStatus.PENDING
        assert order.version == 1

    def test_stock_is_not_reserved(self, make_order, product):
        make_order(quantity=10)
        product.refresh_from_db()
        assert product.quantity == 100

    def test_writes_created_event_to_outbox(self, make_order):
        order = make_order()
        row = OutboxEvent.objects.get(event_type="OrderCreated")
        assert row.aggregate_id == str(order.id)
        assert row.payload["total_price"] == "200.00"

    def test_only_retailers_place_orders(self, make_order, wholesaler):
        with pytest.raises(OrderAccessDenied):
            make_order(actor=wholesaler)

    def test_unknown_product(self, make_order):
        with pytest.raises(ProductNotFound):
            make_order(product_id=uuid4())

    def test_soft_deleted_product_is_unknown(self, make_order, product):
        product.delete()
        with pytest.raises(ProductNotFound):
            make_order()

    def test_inactive_product(self, make_order, product):
        product.is_active = False
        product.save()
        with pytest.raises(InactiveProduct):
            make_order()

    def test_below_minimum_quantity(self, make_order, product):
        product.min_order_quantity = 20
        product.save()
        with pytest.raises(BelowMinOrderQuantity):
            make_order(quantity=10)

    def test_more_than_available(self, make_order):
        with pytest.raises(InsufficientStock):
            make_order(quantity=101)
        assert not Order.objects.exists()

    def test_bulk_discount_snapshot(self, make_order, product):
        product.bulk_discount_min_quantity = 50
        product.bulk_discount_percentage = Decimal("10.00")
        product.save()

        order = make_order(quantity=50)

        assert order.bulk_discount_applied is True
        assert order.bulk_discount_percentage == Decimal("10.00")
        assert order.discount_applied == Decimal("100.00")
        assert order.total_price == Decimal("900.00")

    def test_bulk_discount_not_applied_below_threshold(self, make_order, product):
        product.bulk_discount_min_quantity = 50
        product.bulk_discount_percentage = Decimal("10.00")
        product.save()

        order = make_order(quantity=49)

        assert order.bulk_discount_applied is False
        assert order.total_price == Decimal("980.00")


class TestIdempotencyKey:
    def test_same_key_returns_same_order(self, make_order):
        first = make_order(idempotency_key="cart-42")
        second = make_order(idempotency_key="cart-42", quantity=3)

        assert first.id == second.id
        assert Order.objects.count() == 1
        assert OutboxEvent.objects.filter(event_type="OrderCreated").count() == 1

    def test_key_owned_by_another_retailer(self, make_order, other_retailer):
        make_order(idempotency_key="cart-42")
        with pytest.raises(PersistenceConflictError):
            make_order(idempotency_key="cart-42", actor=other_retailer)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


class TestUpdateStatus:
    def test_wholesaler_accepts(self, order_service, make_order, wholesaler):
        order = make_order()
        result = order_service.update_status(
            wholesaler, str(order.id), UpdateOrderStatusDTO(status="accepted", notes="OK")
        )
        assert result.order.status == OrderStatus.ACCEPTED
        assert result.order.version == 2
        assert result.warnings == []

        history = OrderStatusHistory.objects.filter(order=order).first()
        assert history.new_status == OrderStatus.ACCEPTED
        assert history.changed_by == wholesaler.user_id
        assert history.role == "wholesaler"
        assert history.notes == "OK"

    def test_unknown_order(self, order_service, wholesaler):
        with pytest.raises(OrderNotFound):
            order_service.update_status(
                wholesaler, str(uuid4()), UpdateOrderStatusDTO(status="accepted")
            )

    def test_invalid_transition_changes_nothing(self, order_service, make_order, wholesaler):
        order = make_order()
        with pytest.raises(InvalidTransitionError):
            order_service.update_status(
                wholesaler, str(order.id), UpdateOrderStatusDTO(status="delivered")
            )
        order.refresh_from_db()
        assert order.status == OrderStatus.PENDING
        assert order.version == 1

    def test_stranger_is_denied(self, order_service, make_order, other_wholesaler):
        order = make_order()
        with pytest.raises(OrderAccessDenied):
            order_service.update_status(
                other_wholesaler, str(order.id), UpdateOrderStatusDTO(status="accepted")
            )

    def test_admin_cannot_transition(self, order_service, make_order, admin):
        order = make_order()
        with pytest.raises(OrderAccessDenied):
            order_service.update_status(
                admin, str(order.id), UpdateOrderStatusDTO(status="accepted")
            )

    def test_stale_version(self, order_service, make_order, wholesaler):
        order = make_order()
        order_service.update_status(
            wholesaler, str(order.id), UpdateOrderStatusDTO(status="accepted")
        )
        with pytest.raises(StaleOrderVersion):
            order_service.update_status(
                wholesaler,
                str(order.id),
                UpdateOrderStatusDTO(status="processing", expected_version=1),
            )

    def test_matching_version(self, order_service, make_order, wholesaler):
        order = make_order()
        result = order_service.update_status(
            wholesaler,
            str(order.id),
            UpdateOrderStatusDTO(status="accepted", expected_version=1),
        )
        assert result.order.version == 2

    def test_every_transition_writes_status_event(self, order_in):
        order_in(OrderStatus.PROCESSING)
        assert OutboxEvent.objects.filter(event_type="OrderStatusChanged").count() == 2


class TestCertification:
    def test_certify_decrements_and_mirrors(self, order_in, product):
        order = order_in(OrderStatus.CERTIFIED, quantity=10)

        product.refresh_from_db()
        assert product.quantity == 90
        assert product.original_quantity == 100
        assert order.payment_status == PaymentStatus.PAID
        assert order.delivery_certification_date is not None
        system_stock = SystemStock.objects.get(order_id=order.id)
        assert system_stock.retailer_id == order.retailer_id
        assert system_stock.quantity == 10
        assert set(StockEffect.objects.values_list("kind", flat=True)) == {
            "decrement",
            "system_stock",
        }

    def test_stock_runs_out_exactly(self, make_order, walk_to):
        generator = Product.objects.create(
            wholesaler_id="wholesaler-1",
            sku="GEN-5KVA",
            name="Generator 5kVA",
            price=Decimal("1000.00"),
            quantity=10,
        )
        order = make_order(quantity=10, product_id=generator.id)
        assert order.total_price == Decimal("10000.00")

        order = walk_to(order, OrderStatus.CERTIFIED)

        generator.refresh_from_db()
        assert generator.quantity == 0
        assert generator.original_quantity == 10
        assert generator.low_stock_alert is True
        assert generator.low_stock_alert_at is not None
        assert order.payment_status == PaymentStatus.PAID
        system_stock = SystemStock.objects.get(order_id=order.id)
        assert system_stock.quantity == 10
        assert system_stock.total_value == Decimal("10000.00")

    def test_insufficient_stock_rolls_back(
        self, order_service, order_in, product, retailer
    ):
        order = order_in(OrderStatus.DELIVERED, quantity=10)
        Product.objects.filter(id=product.id).update(quantity=4)

        with pytest.raises(InsufficientStock):
            order_service.update_status(
                retailer, str(order.id), UpdateOrderStatusDTO(status="certified")
            )

        order.refresh_from_db()
        product.refresh_from_db()
        assert order.status == OrderStatus.DELIVERED
        assert order.payment_status == PaymentStatus.PENDING
        assert product.quantity == 4
        assert not StockEffect.objects.exists()
        assert not SystemStock.objects.exists()

    def test_retried_certification_is_rejected(
        self, order_service, order_in, retailer, product
    ):
        order = order_in(OrderStatus.CERTIFIED, quantity=10)
        with pytest.raises(InvalidTransitionError):
            order_service.update_status(
                retailer, str(order.id), UpdateOrderStatusDTO(status="certified")
            )
        product.refresh_from_db()
        assert product.quantity == 90


class TestTransporterExitAndReassignment:
    def test_rejection_with_reason(self, order_service, order_in, transporter):
        order = order_in(OrderStatus.ASSIGNED_TO_TRANSPORTER)
        result = order_service.update_status(
            transporter,
            str(order.id),
            UpdateOrderStatusDTO(status="rejected_by_transporter", reason="No fuel"),
        )
        order = result.order
        assert order.status == OrderStatus.REJECTED_BY_TRANSPORTER
        assert order.transporter_id is None
        assert order.cancellation_details["reason"] == "No fuel"
        assert order.cancellation_details["cancelled_by"] == transporter.user_id
        last = order.assignments.order_by("-created_at", "-id").first()
        assert last.outcome == AssignmentOutcome.REJECTED
        assert last.assignment_type == AssignmentType.SPECIFIC

    def test_cancellation_without_reason_only_changes_status(
        self, order_service, order_in, transporter
    ):
        order = order_in(OrderStatus.IN_TRANSIT)
        result = order_service.update_status(
            transporter, str(order.id), UpdateOrderStatusDTO(status="cancelled_by_transporter")
        )
        assert result.order.status == OrderStatus.CANCELLED_BY_TRANSPORTER
        assert result.order.transporter_id == transporter.user_id
        assert result.order.cancellation_details is None

    def test_reassignment_clears_cancellation(
        self, order_service, order_in, transporter, wholesaler, other_transporter
    ):
        order = order_in(OrderStatus.ASSIGNED_TO_TRANSPORTER)
        order_service.update_status(
            transporter,
            str(order.id),
            UpdateOrderStatusDTO(status="rejected_by_transporter", reason="No fuel"),
        )
        result = order_service.update_status(
            wholesaler,
            str(order.id),
            UpdateOrderStatusDTO(
                status="assigned_to_transporter", transporter_id=other_transporter.user_id
            ),
        )
        assert result.order.cancellation_details is None
        assert result.order.transporter_id == other_transporter.user_id
        outcomes = list(result.order.assignments.values_list("outcome", flat=True))
        assert outcomes == ["assigned", "rejected", "assigned"]

    def test_free_pool_pickup(self, order_service, make_order, walk_to, wholesaler):
        order = walk_to(make_order(), OrderStatus.PROCESSING)
        order_service.update_status(
            wholesaler,
            str(order.id),
            UpdateOrderStatusDTO(status="assigned_to_transporter", assignment_type="free"),
        )
        driver = Principal("transporter-7", "transporter")
        result = order_service.update_status(
            driver, str(order.id), UpdateOrderStatusDTO(status="accepted_by_transporter")
        )
        assert result.order.transporter_id == "transporter-7"
        last = result.order.assignments.order_by("-created_at", "-id").first()
        assert last.outcome == AssignmentOutcome.ACCEPTED
        assert last.assignment_type == AssignmentType.FREE


class TestResolveDispute:
    def test_reassign(self, order_service, order_in, wholesaler):
        order = order_in(OrderStatus.DISPUTED)
        result = order_service.resolve_dispute(
            wholesaler,
            str(order.id),
            ResolveDisputeDTO(resolution_notes="New driver", reassign=True),
        )
        order = result.order
        assert order.status == OrderStatus.ASSIGNED_TO_TRANSPORTER
        assert order.transporter_id is None
        assert order.delivery_dispute["resolved"] is True
        assert order.delivery_dispute["reassigned"] is True
        assert order.delivery_dispute["resolution_notes"] == "New driver"
        last = order.assignments.order_by("-created_at", "-id").first()
        assert last.assignment_type == AssignmentType.FREE
        assert OutboxEvent.objects.filter(event_type="DisputeResolved").count() == 1

    def test_certify(self, order_service, order_in, wholesaler, product):
        order = order_in(OrderStatus.DISPUTED, quantity=10)
        result = order_service.resolve_dispute(
            wholesaler, str(order.id), ResolveDisputeDTO(reassign=False)
        )
        assert result.order.status == OrderStatus.CERTIFIED
        assert result.order.payment_status == PaymentStatus.PAID
        product.refresh_from_db()
        assert product.quantity == 90

    def test_records_compensation(self, order_service, order_in, wholesaler):
        order = order_in(OrderStatus.DISPUTED)
        result = order_service.resolve_dispute(
            wholesaler,
            str(order.id),
            ResolveDisputeDTO(
                reassign=True,
                resolution_type="partial_refund",
                compensation_amount=Decimal("15.00"),
            ),
        )
        dispute = result.order.delivery_dispute
        assert dispute["resolution_type"] == "partial_refund"
        assert dispute["compensation_amount"] == "15.00"
        payload = OutboxEvent.objects.get(event_type="DisputeResolved").payload
        assert payload["resolution_type"] == "partial_refund"
        assert payload["compensation_amount"] == "15.00"

    def test_standard_resolution_by_default(self, order_service, order_in, wholesaler):
        order = order_in(OrderStatus.DISPUTED)
        dispute = order_service.resolve_dispute(
            wholesaler, str(order.id), ResolveDisputeDTO(reassign=True)
        ).order.delivery_dispute
        assert dispute["resolution_type"] == "standard"
        assert "compensation_amount" not in dispute

    def test_not_disputed(self, order_service, order_in, wholesaler):
        order = order_in(OrderStatus.DELIVERED)
        with pytest.raises(OrderNotDisputed):
            order_service.resolve_dispute(wholesaler, str(order.id), ResolveDisputeDTO())


class TestHandleReturn:
    def test_accept_restores_stock_and_refunds(
        self, order_service, order_in, wholesaler, product
    ):
        order = order_in(OrderStatus.RETURN_TO_WHOLESALER, quantity=10)
        result = order_service.handle_return(
            wholesaler, str(order.id), HandleReturnDTO(action="accept", return_notes="Counted")
        )
        assert result.order.status == OrderStatus.RETURN_ACCEPTED
        assert result.order.payment_status == PaymentStatus.REFUNDED
        assert result.order.return_details["return_notes"] == "Counted"
        assert result.warnings == []
        product.refresh_from_db()
        assert product.quantity == 110

    def test_accept_with_missing_product_is_a_warning(
        self, order_service, order_in, wholesaler, product
    ):
        order = order_in(OrderStatus.RETURN_TO_WHOLESALER)
        product.delete()

        result = order_service.handle_return(
            wholesaler, str(order.id), HandleReturnDTO(action="accept")
        )

        assert result.order.status == OrderStatus.RETURN_ACCEPTED
        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("restore_stock:")
        order.refresh_from_db()
        assert order.metadata["restore_stock"]["success"] is False

    def test_reject(self, order_service, order_in, wholesaler):
        order = order_in(OrderStatus.RETURN_TO_WHOLESALER)
        result = order_service.handle_return(
            wholesaler,
            str(order.id),
            HandleReturnDTO(action="reject", rejection_reason="Seal intact"),
        )
        assert result.order.status == OrderStatus.RETURN_REJECTED
        assert result.order.return_details["return_rejection_reason"] == "Seal intact"

    def test_invalid_action(self, order_service, order_in, wholesaler):
        order = order_in(OrderStatus.RETURN_TO_WHOLESALER)
        with pytest.raises(InputValidationError):
            order_service.handle_return(wholesaler, str(order.id), HandleReturnDTO(action="keep"))


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


class TestDeleteOrder:
    def test_owner_deletes_pending_order(self, order_service, make_order, retailer):
        order = make_order()
        order_service.delete_order(retailer, str(order.id))
        assert not Order.objects.filter(id=order.id).exists()
        assert OutboxEvent.objects.filter(event_type="OrderDeleted").count() == 1

    def test_other_retailer_cannot_delete(self, order_service, make_order, other_retailer):
        order = make_order()
        with pytest.raises(OrderAccessDenied):
            order_service.delete_order(other_retailer, str(order.id))

    def test_wholesaler_cannot_delete(self, order_service, make_order, wholesaler):
        order = make_order()
        with pytest.raises(OrderAccessDenied):
            order_service.delete_order(wholesaler, str(order.id))

    def test_in_flight_order_is_not_deletable(self, order_service, order_in, retailer):
        order = order_in(OrderStatus.IN_TRANSIT)
        with pytest.raises(OrderNotDeletable):
            order_service.delete_order(retailer, str(order.id))
        assert Order.objects.filter(id=order.id).exists()


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_get_order_for_party(self, order_service, make_order, wholesaler):
        order = make_order()
        assert order_service.get_order(wholesaler, str(order.id)).id == order.id

    def test_get_order_for_admin(self, order_service, make_order, admin):
        order = make_order()
        assert order_service.get_order(admin, str(order.id)).id == order.id

    def test_get_order_for_stranger(self, order_service, make_order, other_retailer):
        order = make_order()
        with pytest.raises(OrderAccessDenied):
            order_service.get_order(other_retailer, str(order.id))

    def test_get_order_with_malformed_id(self, order_service, retailer):
        with pytest.raises(OrderNotFound):
            order_service.get_order(retailer, "not-a-uuid")

    def test_list_is_scoped(self, order_service, make_order, retailer, other_retailer):
        make_order()
        make_order(actor=other_retailer)
        assert order_service.list_orders(retailer).count() == 1

    def test_list_by_status(self, order_service, make_order, walk_to, wholesaler):
        walk_to(make_order(), OrderStatus.ACCEPTED)
        make_order()
        assert order_service.list_orders(wholesaler, status="accepted").count() == 1

    def test_list_with_unknown_status(self, order_service, retailer):
        with pytest.raises(InputValidationError):
            order_service.list_orders(retailer, status="shipped")

    def test_transporter_sees_free_pool(
        self, order_service, make_order, walk_to, wholesaler, other_transporter
    ):
        order = walk_to(make_order(), OrderStatus.PROCESSING)
        order_service.update_status(
            wholesaler,
            str(order.id),
            UpdateOrderStatusDTO(status="assigned_to_transporter", assignment_type="free"),
        )
        assert list(order_service.list_orders(other_transporter)) == [
            Order.objects.get(id=order.id)
        ]


class TestStatistics:
    def test_counts_and_revenue(self, order_service, make_order, order_in, retailer):
        make_order(quantity=1)
        order_in(OrderStatus.CERTIFIED, quantity=10)

        stats = order_service.order_statistics(retailer)

        assert stats.time_range == "all"
        assert stats.since is None
        assert stats.total_orders == 2
        assert stats.total_revenue == Decimal("220.00")
        assert stats.completed_revenue == Decimal("200.00")
        assert stats.pending_revenue == Decimal("20.00")
        assert stats.by_status["certified"].quantity == 10

    def test_average_order_value(self, order_service, make_order, order_in, retailer):
        make_order(quantity=1)
        make_order(quantity=4)
        order_in(OrderStatus.CERTIFIED, quantity=10)

        stats = order_service.order_statistics(retailer)

        assert stats.by_status["pending"].average_value == Decimal("50.00")
        assert stats.by_status["certified"].average_value == Decimal("200.00")
        assert stats.average_order_value == Decimal("100.00")

    def test_average_without_orders(self, order_service, retailer):
        stats = order_service.order_statistics(retailer)
        assert stats.by_status == {}
        assert stats.average_order_value == Decimal("0.00")

    def test_scoped_to_actor(self, order_service, make_order, other_retailer):
        make_order()
        assert order_service.order_statistics(other_retailer).total_orders == 0

    @pytest.mark.parametrize("time_range", ["today", "week", "month", "year"])
    def test_time_ranges_include_fresh_orders(
        self, order_service, make_order, retailer, time_range
    ):
        make_order()
        stats = order_service.order_statistics(retailer, time_range)
        assert stats.since is not None
        assert stats.total_orders == 1

    def test_unknown_time_range(self, order_service, retailer):
        with pytest.raises(InputValidationError):
            order_service.order_statistics(retailer, "decade")
