from decimal import Decimal

import pytest

from pricewatch.models import Catalyst, StockAlertSettings
from pricewatch.services.monitor.rules import load_alert_rules


@pytest.mark.django_db
class TestLoadAlertRules:
    """Test building alert rules from catalysts and ticker settings."""

    def test_uses_ticker_settings(self):
        catalyst = Catalyst.objects.create(
            title="FDA approval", ticker="mrna", price_before=Decimal("100.5")
        )
        StockAlertSettings.objects.create(
            ticker="MRNA", tolerance_points=Decimal("1"), minimum_move=Decimal("5")
        )

        rules = load_alert_rules()

        assert len(rules) == 1
        rule = rules[0]
        assert rule.ticker == "MRNA"
        assert rule.catalyst_id == str(catalyst.pk)
        assert rule.catalyst_title == "FDA approval"
        assert rule.price_at_catalyst == Decimal("100.5")
        assert rule.tolerance_points == Decimal("1")
        assert rule.minimum_move == Decimal("5")
        assert rule.price_after is None

    def test_defaults_without_settings(self):
        Catalyst.objects.create(
            title="Earnings", ticker="AAPL", price_before=Decimal("150"),
            price_after=Decimal("155"),
        )
        rule = load_alert_rules()[0]
        assert rule.tolerance_points == Decimal("2.0")
        assert rule.minimum_move == Decimal("10.0")
        assert rule.price_after == Decimal("155")

    def test_skips_inactive_unpriced_and_disabled(self):
        Catalyst.objects.create(title="Old", ticker="AAPL", price_before=Decimal("1"), is_active=False)
        Catalyst.objects.create(title="No price", ticker="AAPL")
        Catalyst.objects.create(title="Muted", ticker="TSLA", price_before=Decimal("200"))
        StockAlertSettings.objects.create(ticker="TSLA", auto_create_alerts=False)

        assert load_alert_rules() == []

    def test_invalid_rows_are_skipped(self):
        Catalyst.objects.create(title="Zero", ticker="AAPL", price_before=Decimal("0"))
        Catalyst.objects.create(title="Good", ticker="MSFT", price_before=Decimal("300"))

        rules = load_alert_rules()
        assert [r.ticker for r in rules] == ["MSFT"]
