"""Order DRF serializers for API input/output.

The serializer operates at the Interface layer (API Views).
Business logic lives in the Service Layer, which receives
Pydantic DTOs from ``dtos.py``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from rest_framework import serializers

from modules.orders.assignment_history import AssignmentHistoryLog
from modules.orders.constants import AssignmentType, OrderStatus, PaymentMethod
from modules.orders.models import Order, OrderAssignment, OrderStatusHistory
from modules.orders.permissions import capabilities_for

# ---------------------------------------------------------------------------
# Input Serializers
# ---------------------------------------------------------------------------


class CreateOrderSerializer(serializers.Serializer):
    """Validates the order creation request payload."""

    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)
    delivery_place = serializers.CharField(max_length=255)
    delivery_latitude = serializers.DecimalField(
        max_digits=9, decimal_places=6, required=False, allow_null=True
    )
    delivery_longitude = serializers.DecimalField(
        max_digits=9, decimal_places=6, required=False, allow_null=True
    )
    payment_method = serializers.ChoiceField(
        choices=PaymentMethod.choices,
        required=False,
        default=PaymentMethod.CASH_ON_DELIVERY,
    )
    order_notes = serializers.CharField(required=False, default="", allow_blank=True)
    estimated_delivery_date = serializers.DateTimeField(required=False, allow_null=True)


class UpdateOrderStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=OrderStatus.choices)
    reason = serializers.CharField(required=False, default="", allow_blank=True)
    notes = serializers.CharField(required=False, default="", allow_blank=True)
    transporter_id = serializers.CharField(
        required=False, allow_null=True, allow_blank=True, max_length=64
    )
    assignment_type = serializers.ChoiceField(
        choices=AssignmentType.choices, required=False, allow_null=True
    )
    expected_version = serializers.IntegerField(
        required=False, allow_null=True, min_value=1
    )


class ResolveDisputeSerializer(serializers.Serializer):
    resolution_notes = serializers.CharField(required=False, default="", allow_blank=True)
    reassign = serializers.BooleanField(required=False, default=False)
    resolution_type = serializers.CharField(required=False, default="standard", max_length=32)
    compensation_amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal("0.00"),
        required=False,
        allow_null=True,
    )
    expected_version = serializers.IntegerField(
        required=False, allow_null=True, min_value=1
    )


class HandleReturnSerializer(serializers.Serializer):
    action = serializers.CharField()
    rejection_reason = serializers.CharField(required=False, default="", allow_blank=True)
    return_notes = serializers.CharField(required=False, default="", allow_blank=True)
    expected_version = serializers.IntegerField(
        required=False, allow_null=True, min_value=1
    )


# ---------------------------------------------------------------------------
# Output Serializers (Read)
# ---------------------------------------------------------------------------


class StatusHistorySerializer(serializers.ModelSerializer):
    """Read serializer for order status history records."""

    class Meta:
        model = OrderStatusHistory
        fields = [
            "id",
            "old_status",
            "new_status",
            "changed_by",
            "role",
            "notes",
            "created_at",
        ]
        read_only_fields = fields


class AssignmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderAssignment
        fields = [
            "id",
            "transporter_id",
            "assignment_type",
            "outcome",
            "reason",
            "expires_at",
            "created_at",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """Read serializer for orders with nested histories.

    ``allowed_transitions`` is computed for the requesting actor when one is
    passed in the serializer context.
    """

    product_name = serializers.CharField(source="product.name", read_only=True)
    product_sku = serializers.CharField(source="product.sku", read_only=True)
    status_history = StatusHistorySerializer(many=True, read_only=True)
    assignment_history = AssignmentSerializer(
        source="assignments", many=True, read_only=True
    )
    allowed_transitions = serializers.SerializerMethodField()
    assignment_status = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "version",
            "retailer_id",
            "wholesaler_id",
            "transporter_id",
            "product_id",
            "product_name",
            "product_sku",
            "quantity",
            "unit_price",
            "total_price",
            "measurement_unit",
            "bulk_discount_min_quantity",
            "bulk_discount_percentage",
            "bulk_discount_applied",
            "discount_applied",
            "delivery_place",
            "delivery_latitude",
            "delivery_longitude",
            "order_notes",
            "estimated_delivery_date",
            "actual_delivery_date",
            "delivery_certification_date",
            "tracking_number",
            "status",
            "payment_status",
            "payment_method",
            "cancellation_details",
            "delivery_dispute",
            "return_details",
            "return_reason",
            "return_requested_at",
            "metadata",
            "created_at",
            "updated_at",
            "status_history",
            "assignment_history",
            "allowed_transitions",
            "assignment_status",
        ]
        read_only_fields = fields

    def get_allowed_transitions(self, obj: Order) -> List[str]:
        actor = self.context.get("actor")
        if actor is None:
            return []
        return sorted(capabilities_for(actor, obj).allowed_targets)

    def get_assignment_status(self, obj: Order) -> Optional[str]:
        return AssignmentHistoryLog(obj).assignment_status()


class OrderListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for order list (no nested relations)."""

    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "retailer_id",
            "wholesaler_id",
            "transporter_id",
            "product_id",
            "product_name",
            "quantity",
            "total_price",
            "status",
            "payment_status",
            "created_at",
        ]
        read_only_fields = fields
