"""Inventory serializers (read shapes and the adjustment request)."""

from __future__ import annotations

from rest_framework import serializers


class StockLedgerEntrySerializer(serializers.Serializer):
    """Common shape of every ledger flavour in the low-stock listing."""

    id = serializers.UUIDField(read_only=True)
    ledger = serializers.SerializerMethodField()
    owner_id = serializers.SerializerMethodField()
    name = serializers.CharField(read_only=True)
    measurement_unit = serializers.CharField(read_only=True)
    quantity = serializers.IntegerField(read_only=True)
    original_quantity = serializers.IntegerField(read_only=True, allow_null=True)
    min_stock_level = serializers.IntegerField(read_only=True)
    low_stock_alert = serializers.BooleanField(read_only=True)
    low_stock_alert_at = serializers.DateTimeField(read_only=True, allow_null=True)
    version = serializers.IntegerField(read_only=True)

    def get_ledger(self, obj) -> str:
        return {
            "Product": "product",
            "RetailerStock": "retailer",
            "SystemStock": "system",
        }[type(obj).__name__]

    def get_owner_id(self, obj) -> str:
        return getattr(obj, "wholesaler_id", None) or obj.retailer_id


class StockAdjustmentSerializer(serializers.Serializer):
    delta = serializers.IntegerField()
    reason = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_delta(self, value: int) -> int:
        if value == 0:
            raise serializers.ValidationError("Delta must not be zero.")
        return value


class StockMovementSerializer(serializers.Serializer):
    ledger_id = serializers.UUIDField()
    previous_quantity = serializers.IntegerField()
    new_quantity = serializers.IntegerField()
    delta = serializers.IntegerField()
    low_stock_alert = serializers.BooleanField()
    applied = serializers.BooleanField()
