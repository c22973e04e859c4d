# views.py

import logging

from django.apps import apps
from django.core.cache import cache
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from catalysttracker.cache_keys import cache_keys
from pricewatch.filters import CatalystFilter, TriggeredAlertFilter
from pricewatch.models import Catalyst, StockAlertSettings, TriggeredAlert
from pricewatch.pagination import AlertOffsetPagination
from pricewatch.serializers import (
    CatalystSerializer,
    StockAlertSettingsSerializer,
    SymbolListSerializer,
    TriggeredAlertSerializer,
)
from pricewatch.services.monitor.exceptions import (
    InvalidSymbolError,
    MonitorNotRunningError,
)
from pricewatch.services.monitor.feed import FeedStatus
from pricewatch.services.monitor.service import (
    read_cached_alerts,
    read_cached_prices,
    read_cached_status,
)
from pricewatch.services.monitor.utils import normalize_symbol

logger = logging.getLogger(__name__)


def get_monitor_service():
    return apps.get_app_config("pricewatch").service


def require_running_monitor():
    service = get_monitor_service()
    if service is None or not service.running:
        raise MonitorNotRunningError("Price monitor is not running in this process")
    return service


class MonitorViewSet(viewsets.ViewSet):
    """
    Live feed status, symbol subscriptions, latest prices and recent alerts.
    """

    permission_classes = [IsAuthenticated]

    @action(detail=False, methods=["get"], url_path="status")
    def get_status(self, request):
        service = get_monitor_service()
        if service is not None and service.running:
            data = {**service.describe(), "source": "local"}
        else:
            # monitor may be running in its own process
            data = read_cached_status()
            if data is not None:
                data["source"] = "cache"
            elif service is not None:
                data = {**service.describe(), "source": "local"}
            else:
                data = {
                    "status": FeedStatus.DISCONNECTED.value,
                    "running": False,
                    "source": "local",
                }
        return Response({"msg": "Okay", "data": data}, status=status.HTTP_200_OK)

    @action(detail=False, methods=["post"], url_path="subscribe")
    def subscribe(self, request):
        return self._change_interest(request, subscribe=True)

    @action(detail=False, methods=["post"], url_path="unsubscribe")
    def unsubscribe(self, request):
        return self._change_interest(request, subscribe=False)

    def _change_interest(self, request, subscribe: bool):
        serializer = SymbolListSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        try:
            service = require_running_monitor()
            symbols = serializer.validated_data["symbols"]
            if subscribe:
                changed = service.subscribe_to_symbols(symbols)
            else:
                changed = service.unsubscribe_from_symbols(symbols)
        except InvalidSymbolError as e:
            return Response({"msg": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        except MonitorNotRunningError as e:
            return Response({"msg": str(e)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(
            {
                "msg": "Subscribed" if subscribe else "Unsubscribed",
                "data": {
                    "changed": sorted(changed),
                    "symbols": service.subscriptions.active_symbols(),
                },
            },
            status=status.HTTP_200_OK,
        )

    @action(detail=False, methods=["get"], url_path="prices")
    def prices(self, request):
        service = get_monitor_service()
        running = service is not None and service.running
        data = {} if running else read_cached_prices()
        if service is not None:
            store = service.prices
            for symbol in store.symbols():
                snapshot = store.get(symbol)
                if snapshot is not None:
                    data[symbol] = snapshot.to_dict()
        data = dict(sorted(data.items()))
        return Response({"msg": "Okay", "data": data}, status=status.HTTP_200_OK)

    @action(detail=False, methods=["get"], url_path=r"prices/(?P<symbol>[^/]+)")
    def price(self, request, symbol=None):
        service = get_monitor_service()
        try:
            symbol = normalize_symbol(symbol)
        except InvalidSymbolError as e:
            return Response({"msg": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        snapshot = service.get_price(symbol) if service is not None else None
        if snapshot is not None:
            data = snapshot.to_dict()
        else:
            # monitor may be running in its own process
            data = cache.get(cache_keys.symbol(symbol).last_price())
        if data is None:
            return Response(
                {"msg": f"No price observed for {symbol}"},
                status=status.HTTP_404_NOT_FOUND,
            )
        return Response({"msg": "Okay", "data": data}, status=status.HTTP_200_OK)

    @action(detail=False, methods=["get"], url_path="alerts/recent")
    def recent_alerts(self, request):
        service = get_monitor_service()
        history = [event.to_dict() for event in service.recent_alerts()] if service else []
        if not history and not (service is not None and service.running):
            history = read_cached_alerts()
        data = list(reversed(history))
        return Response({"msg": "Okay", "data": data}, status=status.HTTP_200_OK)


class CatalystViewSet(viewsets.ModelViewSet):
    serializer_class = CatalystSerializer
    permission_classes = [IsAuthenticated]
    filterset_class = CatalystFilter
    search_fields = ["title", "ticker"]

    def get_queryset(self):
        return Catalyst.objects.filter(user=self.request.user)

    def perform_create(self, serializer):
        serializer.save(user=self.request.user)


class StockAlertSettingsViewSet(viewsets.ModelViewSet):
    serializer_class = StockAlertSettingsSerializer
    permission_classes = [IsAuthenticated]
    queryset = StockAlertSettings.objects.all().order_by("ticker")
    lookup_field = "ticker"
    lookup_value_regex = r"[^/]+"

    def get_object(self):
        self.kwargs[self.lookup_field] = self.kwargs[self.lookup_field].upper()
        return super().get_object()


class TriggeredAlertViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = TriggeredAlertSerializer
    permission_classes = [IsAuthenticated]
    queryset = TriggeredAlert.objects.all()
    filterset_class = TriggeredAlertFilter
    pagination_class = AlertOffsetPagination
    ordering_fields = ["triggered_at"]
