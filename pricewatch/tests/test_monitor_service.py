from datetime import datetime, timedelta
from decimal import Decimal
import json
import threading
import time
from unittest.mock import Mock, patch

from django.core.cache import cache
import pytest
import pytz

from catalysttracker.cache_keys import cache_keys
from pricewatch.services.monitor import (
    AlertRule,
    FeedStatus,
    InvalidSymbolError,
    MonitorConfig,
    PriceMonitorService,
)
from pricewatch.services.monitor.service import (
    read_cached_alerts,
    read_cached_prices,
    read_cached_status,
)

T0 = datetime(2024, 3, 1, 15, 0, tzinfo=pytz.UTC)


def make_rule(ticker="AAPL", catalyst_id="1", price="150"):
    return AlertRule(
        ticker=ticker,
        catalyst_id=catalyst_id,
        catalyst_title="Earnings beat",
        price_at_catalyst=Decimal(price),
        tolerance_points=Decimal("2"),
        minimum_move=Decimal("10"),
    )


def trade(symbol, price, seconds):
    ts = (T0 + timedelta(seconds=seconds)).isoformat().replace("+00:00", "Z")
    return {"T": "t", "S": symbol, "p": price, "t": ts}


class BlockingSocketApp:
    """Fake socket that authenticates, then blocks until closed."""

    def __init__(self, url, on_open, on_message, on_error, on_close):
        self.on_open = on_open
        self.on_message = on_message
        self.on_close = on_close
        self.sock = Mock(connected=True)
        self.sent = []
        self._closed = threading.Event()

    def send(self, data):
        self.sent.append(json.loads(data))

    def close(self):
        self.sock.connected = False
        self._closed.set()

    def run_forever(self, **kwargs):
        self.on_open(self)
        self.on_message(self, json.dumps([{"T": "success", "msg": "authenticated"}]))
        self._closed.wait(5)
        self.on_close(self, None, None)


class TestPriceMonitorService:
    """Test the monitor facade end to end without a network."""

    def setup_method(self):
        cache.clear()
        self.rules = [make_rule()]
        self.service = PriceMonitorService(
            MonitorConfig(rule_sync_secs=0), rule_source=lambda: list(self.rules)
        )
        self.alerts = []
        self.service.on_alert(self.alerts.append)

    def feed_ticks(self, *msgs):
        self.service.feed.on_message(None, json.dumps(list(msgs)))
        self.service.feed.process_pending()

    def test_initial_state(self):
        assert self.service.get_status() == FeedStatus.DISCONNECTED
        assert self.service.running is False
        assert self.service.get_current_price("AAPL") is None
        assert self.service.recent_alerts() == []

    def test_tick_to_alert_flow(self):
        self.service.sync_rules()
        self.feed_ticks(
            trade("AAPL", 150, 0),
            trade("AAPL", 151, 1),
            trade("AAPL", 158, 2),
            trade("AAPL", 161, 3),
        )
        assert len(self.alerts) == 1
        alert = self.alerts[0]
        assert alert.current_price == Decimal("161")
        assert alert.price_before == Decimal("150")
        assert self.service.recent_alerts() == [alert]
        assert self.service.get_current_price("aapl").price == Decimal("161")

    def test_out_of_order_tick_is_not_evaluated(self):
        self.service.sync_rules()
        self.feed_ticks(trade("AAPL", 151, 100), trade("AAPL", 170, 99))
        assert self.alerts == []
        assert self.service.get_current_price("AAPL").price == Decimal("151")

    def test_duplicate_alerts_in_one_batch_are_coalesced(self):
        self.service.sync_rules()
        self.feed_ticks(trade("AAPL", 161, 0), trade("AAPL", 151, 1), trade("AAPL", 162, 2))
        assert [a.current_price for a in self.alerts] == [Decimal("162")]

    def test_sync_rules_holds_interest_per_rule_ticker(self):
        assert self.service.sync_rules() == 1
        assert self.service.subscriptions.ref_count("AAPL") == 1
        assert self.service.feed.symbols == {"AAPL"}

        self.rules.append(make_rule(catalyst_id="2"))
        self.service.sync_rules()
        assert self.service.subscriptions.ref_count("AAPL") == 1

        self.rules[:] = [make_rule(ticker="TSLA", price="200")]
        self.service.sync_rules()
        assert self.service.subscriptions.ref_count("AAPL") == 0
        assert self.service.feed.symbols == {"TSLA"}

    def test_user_interest_survives_rule_removal(self):
        self.service.sync_rules()
        assert self.service.subscribe_to_symbols(["aapl", "msft"]) == {"MSFT"}
        assert self.service.subscriptions.ref_count("AAPL") == 2

        self.service.remove_catalyst("1")
        assert self.service.subscriptions.ref_count("AAPL") == 1
        assert "AAPL" in self.service.feed.symbols

    def test_add_and_remove_single_rule(self):
        self.service.add_rule(make_rule(ticker="nvda", catalyst_id="9", price="900"))
        assert self.service.feed.symbols == {"NVDA"}
        assert self.service.remove_rule("NVDA", "9") is True
        assert self.service.feed.symbols == set()

    def test_invalid_subscribe_changes_nothing(self):
        with pytest.raises(InvalidSymbolError):
            self.service.subscribe_to_symbols(["AAPL", "??"])
        assert self.service.subscriptions.active_symbols() == {}

    def test_status_is_mirrored_to_cache(self):
        self.service.feed._transition(FeedStatus.CONNECTING)
        cached = cache.get(cache_keys.monitor().status())
        assert cached["status"] == "connecting"

    def test_batch_end_writes_heartbeat(self):
        self.feed_ticks(trade("TSLA", 200, 0))
        assert cache.get(cache_keys.monitor().heartbeat()) is not None

    def test_batch_end_caches_touched_prices(self):
        self.feed_ticks(trade("TSLA", 200, 0), trade("TSLA", 201.5, 1))
        cached = cache.get(cache_keys.symbol("TSLA").last_price())
        assert cached["current"]["price"] == "201.5"
        assert cached["previous"]["price"] == "200"
        assert cache.get(cache_keys.symbol("AAPL").last_price()) is None

    def test_batch_end_mirrors_symbol_index_and_alert_history(self):
        self.service.sync_rules()
        self.feed_ticks(trade("TSLA", 200, 0), trade("AAPL", 161, 1))

        assert cache.get(cache_keys.monitor().symbols()) == ["AAPL", "TSLA"]
        mirrored = cache.get(cache_keys.monitor().recent_alerts())
        assert [a["catalystId"] for a in mirrored] == ["1"]
        assert mirrored[0]["currentPrice"] == "161"

    def test_cached_readers_return_mirrored_state(self):
        self.service.sync_rules()
        self.service.feed._transition(FeedStatus.CONNECTED)
        self.feed_ticks(trade("AAPL", 161, 0))

        status = read_cached_status()
        assert status["status"] == "connected"
        assert status["running"] is True
        assert status["lastHeartbeat"] is not None
        assert list(read_cached_prices()) == ["AAPL"]
        assert [a["ticker"] for a in read_cached_alerts()] == ["AAPL"]

    def test_cached_readers_when_nothing_mirrored(self):
        assert read_cached_status() is None
        assert read_cached_prices() == {}
        assert read_cached_alerts() == []

    def test_persist_listener_queues_task(self):
        with patch("pricewatch.tasks.record_triggered_alert.delay") as mock_delay:
            self.service.sync_rules()
            self.service.on_alert(self.service._enqueue_persist)
            self.feed_ticks(trade("AAPL", 161, 0))
        payload = mock_delay.call_args[0][0]
        assert payload["ticker"] == "AAPL"
        assert payload["currentPrice"] == "161"
        assert payload["catalystId"] == "1"

    def test_describe(self):
        self.service.sync_rules()
        data = self.service.describe()
        assert data["status"] == "disconnected"
        assert data["symbols"] == {"AAPL": 1}
        assert data["ruleCount"] == 1
        assert data["listeners"] == 1

    def test_start_and_stop(self):
        service = PriceMonitorService(
            MonitorConfig(rule_sync_secs=0),
            rule_source=lambda: [make_rule()],
            app_factory=BlockingSocketApp,
        )
        subscribe_frame = {"action": "subscribe", "trades": ["AAPL"], "quotes": ["AAPL"]}
        service.start()
        try:
            deadline = time.time() + 5
            while time.time() < deadline and not (
                service.get_status() == FeedStatus.CONNECTED
                and subscribe_frame in service.feed.ws.sent
            ):
                time.sleep(0.01)
            assert service.get_status() == FeedStatus.CONNECTED
            assert subscribe_frame in service.feed.ws.sent
        finally:
            service.stop()

        assert service.running is False
        assert service.get_status() == FeedStatus.DISCONNECTED

    def test_stop_keeps_external_listeners_across_restart(self):
        service = PriceMonitorService(
            MonitorConfig(rule_sync_secs=0, persist_alerts=True),
            rule_source=lambda: [make_rule()],
            app_factory=BlockingSocketApp,
        )
        received = []
        handle = service.on_alert(received.append)

        service.start()
        assert service.dispatcher.listener_count() == 2
        service.stop()
        assert service.dispatcher.listener_count() == 1

        service.start()
        try:
            with patch("pricewatch.tasks.record_triggered_alert.delay"):
                service.feed.on_message(None, json.dumps([trade("AAPL", 161, 0)]))
                service.feed.process_pending()
        finally:
            service.stop()

        assert [a.current_price for a in received] == [Decimal("161")]
        assert service.off_alert(handle) is True

    def test_rule_source_failure_does_not_block_start(self):
        service = PriceMonitorService(
            MonitorConfig(rule_sync_secs=0),
            rule_source=Mock(side_effect=RuntimeError("db down")),
            app_factory=BlockingSocketApp,
        )
        service.start()
        try:
            assert service.running is True
            assert service.evaluator.rule_count() == 0
        finally:
            service.stop()
