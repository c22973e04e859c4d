# urls.py

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import (
    CatalystViewSet,
    MonitorViewSet,
    StockAlertSettingsViewSet,
    TriggeredAlertViewSet,
)

router = DefaultRouter()
router.register(r"monitor", MonitorViewSet, basename="monitor")
router.register(r"catalysts", CatalystViewSet, basename="catalysts")
router.register(r"alert-settings", StockAlertSettingsViewSet, basename="alert-settings")
router.register(r"triggered-alerts", TriggeredAlertViewSet, basename="triggered-alerts")


urlpatterns = [
    path("", include(router.urls)),
]
