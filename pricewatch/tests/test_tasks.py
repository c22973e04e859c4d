from datetime import datetime, timedelta
from decimal import Decimal
from io import StringIO

from django.core.cache import cache
from django.core.management import call_command
from django.utils import timezone
import pytest
import pytz

from catalysttracker.cache_keys import cache_keys
from pricewatch.models import Catalyst, TriggeredAlert
from pricewatch.services.monitor.evaluator import AlertEvent
from pricewatch.tasks import deactivate_stale_catalysts, record_triggered_alert


def make_payload(catalyst_id):
    return AlertEvent(
        ticker="AAPL",
        catalyst_id=catalyst_id,
        catalyst_title="Earnings beat",
        price_before=Decimal("150"),
        price_after=Decimal("161"),
        current_price=Decimal("161"),
        tolerance_points=Decimal("2"),
        minimum_move=Decimal("10"),
        triggered_at=datetime(2024, 3, 1, 15, 0, 3, tzinfo=pytz.UTC),
    ).to_dict()


@pytest.mark.django_db
class TestRecordTriggeredAlert:
    """Test alert persistence task."""

    def test_links_existing_catalyst(self):
        catalyst = Catalyst.objects.create(
            title="Earnings beat", ticker="AAPL", price_before=Decimal("150")
        )
        pk = record_triggered_alert(make_payload(str(catalyst.pk)))

        alert = TriggeredAlert.objects.get(pk=pk)
        assert alert.catalyst == catalyst
        assert alert.ticker == "AAPL"
        assert alert.current_price == Decimal("161")
        assert alert.triggered_at == datetime(2024, 3, 1, 15, 0, 3, tzinfo=pytz.UTC)

    def test_unknown_catalyst_keeps_reference(self):
        pk = record_triggered_alert(make_payload("ext-42"))
        alert = TriggeredAlert.objects.get(pk=pk)
        assert alert.catalyst is None
        assert alert.catalyst_ref == "ext-42"


@pytest.mark.django_db
class TestDeactivateStaleCatalysts:
    """Test catalyst housekeeping task."""

    def test_only_old_active_catalysts_are_closed(self):
        old = Catalyst.objects.create(title="Old", ticker="AAPL", price_before=Decimal("1"))
        fresh = Catalyst.objects.create(title="Fresh", ticker="AAPL", price_before=Decimal("1"))
        Catalyst.objects.filter(pk=old.pk).update(
            created_at=timezone.now() - timedelta(days=45)
        )

        assert deactivate_stale_catalysts(max_age_days=30) == 1

        old.refresh_from_db()
        fresh.refresh_from_db()
        assert old.is_active is False
        assert fresh.is_active is True

    def test_nothing_to_close(self):
        Catalyst.objects.create(title="Fresh", ticker="AAPL")
        assert deactivate_stale_catalysts() == 0


class TestCheckMonitorStatusCommand:
    """Test the cache-backed status command."""

    def setup_method(self):
        cache.clear()

    def test_no_status_reported(self):
        out = StringIO()
        call_command("check_monitor_status", stdout=out)
        assert "No status reported" in out.getvalue()

    def test_reports_unhealthy_feed(self):
        cache.set(
            cache_keys.monitor().status(),
            {"status": "degraded", "changedAt": timezone.now().isoformat()},
        )
        out = StringIO()
        call_command("check_monitor_status", stdout=out)
        assert "Status: degraded" in out.getvalue()
        assert "Feed is not healthy" in out.getvalue()

    def test_reports_heartbeat(self):
        cache.set(
            cache_keys.monitor().status(),
            {"status": "connected", "changedAt": timezone.now().isoformat()},
        )
        cache.set(cache_keys.monitor().heartbeat(), timezone.now().isoformat())
        out = StringIO()
        call_command("check_monitor_status", stdout=out)
        assert "Last tick batch:" in out.getvalue()
        assert "not healthy" not in out.getvalue()
