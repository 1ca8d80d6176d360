from django_filters import rest_framework as filters

from .models import Payment


class PaymentFilterSet(filters.FilterSet):
    order = filters.NumberFilter(field_name="order_id")
    created_after = filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="lt")

    class Meta:
        model = Payment
        fields = ["order", "status", "gateway", "method", "transaction_id"]
