import django_filters

from modules.orders.models import Order


class OrderFilter(django_filters.FilterSet):
    """Secondary filters; ``status`` is validated and applied by the service."""

    product = django_filters.UUIDFilter(field_name="product_id")
    payment_status = django_filters.CharFilter(field_name="payment_status")
    start_date = django_filters.DateFilter(field_name="created_at", lookup_expr="gte")
    end_date = django_filters.DateFilter(field_name="created_at", lookup_expr="lte")
    min_total = django_filters.NumberFilter(field_name="total_price", lookup_expr="gte")
    max_total = django_filters.NumberFilter(field_name="total_price", lookup_expr="lte")

    class Meta:
        model = Order
        fields = [
            "product",
            "payment_status",
            "start_date",
            "end_date",
            "min_total",
            "max_total",
        ]
