import django_filters

from modules.orders.models import Order


class OrderFilter(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    customer = django_filters.UUIDFilter(field_name="customer_id")
    order_number = django_filters.CharFilter(
        field_name="order_number", lookup_expr="istartswith"
    )
    is_paid = django_filters.BooleanFilter(field_name="is_paid")
    stock_reconciled = django_filters.BooleanFilter(field_name="stock_reconciled")
    start_date = django_filters.DateFilter(field_name="created_at", lookup_expr="date__gte")
    end_date = django_filters.DateFilter(field_name="created_at", lookup_expr="date__lte")
    min_total = django_filters.NumberFilter(
        field_name="total_amount", lookup_expr="gte"
    )
    max_total = django_filters.NumberFilter(
        field_name="total_amount", lookup_expr="lte"
    )

    class Meta:
        model = Order
        fields = [
            "status",
            "customer",
            "order_number",
            "is_paid",
            "stock_reconciled",
            "start_date",
            "end_date",
            "min_total",
            "max_total",
        ]
