import django_filters

from pricewatch.models import Catalyst, TriggeredAlert


class CatalystFilter(django_filters.FilterSet):
    """Filter for the user's catalysts"""

    ticker = django_filters.CharFilter(field_name="ticker", lookup_expr="iexact")
    title = django_filters.CharFilter(field_name="title", lookup_expr="icontains")
    is_active = django_filters.BooleanFilter(field_name="is_active")

    # Event date range
    start_date = django_filters.DateTimeFilter(field_name="event_date", lookup_expr="gte")
    end_date = django_filters.DateTimeFilter(field_name="event_date", lookup_expr="lte")

    class Meta:
        model = Catalyst
        fields = ["ticker", "is_active"]


class TriggeredAlertFilter(django_filters.FilterSet):
    """Filter for stored alerts"""

    ticker = django_filters.CharFilter(field_name="ticker", lookup_expr="iexact")
    catalyst_ref = django_filters.CharFilter(field_name="catalyst_ref")

    # Trigger time range
    start_date = django_filters.DateTimeFilter(field_name="triggered_at", lookup_expr="gte")
    end_date = django_filters.DateTimeFilter(field_name="triggered_at", lookup_expr="lte")
    date = django_filters.DateFilter(field_name="triggered_at__date")

    class Meta:
        model = TriggeredAlert
        fields = ["ticker", "catalyst", "catalyst_ref"]
