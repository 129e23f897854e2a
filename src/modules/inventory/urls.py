"""Inventory URL configuration."""

from __future__ import annotations

from django.urls import path

from modules.inventory.views import LowStockAlertView, StockAdjustmentView

urlpatterns = [
    path("stock/alerts/", LowStockAlertView.as_view(), name="stock-alerts"),
    path(
        "stock/<str:ledger>/<uuid:pk>/adjust/",
        StockAdjustmentView.as_view(),
        name="stock-adjust",
    ),
]
