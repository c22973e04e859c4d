from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import logging
import threading
from typing import Any

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

from catalysttracker import const
from catalysttracker.cache_keys import cache_keys

from .dispatcher import AlertDispatcher, AlertListener
from .evaluator import AlertEvaluator, AlertEvent, AlertRule
from .feed import FeedConnectionManager, FeedStatus
from .observers import ListenerHandle
from .prices import PriceSample, PriceSnapshot, PriceStateStore
from .subscriptions import SubscriptionRegistry
from .utils import normalize_symbol

logger = logging.getLogger(__name__)

RuleSource = Callable[[], Iterable[AlertRule]]


@dataclass
class MonitorConfig:
    stream_url: str = "wss://stream.data.alpaca.markets/v2/iex"
    api_key: str = ""
    api_secret: str = ""
    backoff_base_secs: float = 1.0
    backoff_cap_secs: float = 30.0
    degraded_after_attempts: int = 5
    auth_timeout_secs: float = 30.0
    dedup_window_secs: float = 60.0
    history_size: int = 200
    max_listener_failures: int = 3
    rule_sync_secs: float = 30.0
    persist_alerts: bool = False
    autostart: bool = False

    @classmethod
    def from_settings(cls) -> MonitorConfig:
        conf = getattr(settings, "PRICE_MONITOR", {}) or {}
        defaults = cls()
        return cls(
            stream_url=conf.get("STREAM_URL", defaults.stream_url),
            api_key=conf.get("API_KEY", defaults.api_key),
            api_secret=conf.get("API_SECRET", defaults.api_secret),
            backoff_base_secs=float(conf.get("BACKOFF_BASE_SECS", defaults.backoff_base_secs)),
            backoff_cap_secs=float(conf.get("BACKOFF_CAP_SECS", defaults.backoff_cap_secs)),
            degraded_after_attempts=int(
                conf.get("DEGRADED_AFTER_ATTEMPTS", defaults.degraded_after_attempts)
            ),
            auth_timeout_secs=float(conf.get("AUTH_TIMEOUT_SECS", defaults.auth_timeout_secs)),
            dedup_window_secs=float(conf.get("DEDUP_WINDOW_SECS", defaults.dedup_window_secs)),
            history_size=int(conf.get("HISTORY_SIZE", defaults.history_size)),
            max_listener_failures=int(
                conf.get("MAX_LISTENER_FAILURES", defaults.max_listener_failures)
            ),
            rule_sync_secs=float(conf.get("RULE_SYNC_SECS", defaults.rule_sync_secs)),
            persist_alerts=bool(conf.get("PERSIST_ALERTS", defaults.persist_alerts)),
            autostart=bool(conf.get("AUTOSTART", defaults.autostart)),
        )


class PriceMonitorService:
    """Price feed, alert evaluation and alert fan-out behind one object.

    Lifecycle is create -> start -> stop. Construction opens nothing; start
    loads rules, connects the feed and starts the rule reconcile loop; stop
    closes the feed and flushes pending alerts. Listeners added with
    ``on_alert`` stay registered across stop and start.

    Status, a heartbeat, per-symbol snapshots, the priced symbol index and
    recent alert history are mirrored to the Django cache so web workers in
    other processes can read them.

    Data flow: feed tick -> price store -> evaluator (accepted samples only)
    -> dispatcher queue, flushed after each tick batch.
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        *,
        rule_source: RuleSource | None = None,
        app_factory: Callable[..., Any] | None = None,
    ):
        self.config = config or MonitorConfig()
        self.rule_source = rule_source

        self.prices = PriceStateStore()
        self.evaluator = AlertEvaluator()
        self.dispatcher = AlertDispatcher(
            dedup_window=timedelta(seconds=self.config.dedup_window_secs),
            history_size=self.config.history_size,
            max_listener_failures=self.config.max_listener_failures,
        )
        self.feed = FeedConnectionManager(
            url=self.config.stream_url,
            api_key=self.config.api_key,
            api_secret=self.config.api_secret,
            on_tick=self._handle_tick,
            on_batch_end=self._on_batch_end,
            backoff_base=self.config.backoff_base_secs,
            backoff_cap=self.config.backoff_cap_secs,
            degraded_after_attempts=self.config.degraded_after_attempts,
            auth_timeout=self.config.auth_timeout_secs,
            app_factory=app_factory,
        )
        self.subscriptions = SubscriptionRegistry(
            subscribe=self.feed.subscribe,
            unsubscribe=self.feed.unsubscribe,
        )

        self.running = False
        self._rule_symbols: set[str] = set()
        self._rule_lock = threading.Lock()
        # symbols with an accepted sample since the last batch end
        self._touched: set[str] = set()
        self._alerts_changed = False
        self._stop_event = threading.Event()
        self._sync_thread: threading.Thread | None = None
        self._persist_handle: ListenerHandle | None = None
        self._status_handle = self.feed.on_status_change(self._mirror_status)

    # Lifecycle
    def start(self) -> None:
        if self.running:
            return
        logger.info("Starting price monitor")
        self.running = True
        self._stop_event.clear()
        if self.config.persist_alerts and self._persist_handle is None:
            self._persist_handle = self.dispatcher.on_alert(self._enqueue_persist)
        self._sync_rules_safely()
        self.feed.start()
        if self.rule_source is not None and self.config.rule_sync_secs > 0:
            self._sync_thread = threading.Thread(
                target=self._rule_sync_loop, name="monitor-rules", daemon=True
            )
            self._sync_thread.start()

    def stop(self) -> None:
        if not self.running:
            return
        logger.info("Stopping price monitor")
        self.running = False
        self._stop_event.set()
        if self._sync_thread is not None:
            self._sync_thread.join(timeout=5)
            self._sync_thread = None
        self.feed.stop()
        self.dispatcher.flush()
        if self._persist_handle is not None:
            self.dispatcher.off_alert(self._persist_handle)
            self._persist_handle = None

    # Queries
    def get_status(self) -> FeedStatus:
        return self.feed.status

    def get_current_price(self, symbol: str) -> PriceSample | None:
        snap = self.get_price(symbol)
        return snap.current if snap else None

    def get_price(self, symbol: str) -> PriceSnapshot | None:
        return self.prices.get(normalize_symbol(symbol))

    def recent_alerts(self) -> list[AlertEvent]:
        return self.dispatcher.history()

    def describe(self) -> dict:
        return {
            "status": self.get_status().value,
            "running": self.running,
            "symbols": self.subscriptions.active_symbols(),
            "ruleCount": self.evaluator.rule_count(),
            "listeners": self.dispatcher.listener_count(),
        }

    # Subscriptions
    def subscribe_to_symbols(self, symbols: Iterable[str]) -> set[str]:
        return self.subscriptions.add_interests(symbols)

    def unsubscribe_from_symbols(self, symbols: Iterable[str]) -> set[str]:
        return self.subscriptions.remove_interests(symbols)

    # Alerts
    def on_alert(self, listener: AlertListener) -> ListenerHandle:
        return self.dispatcher.on_alert(listener)

    def off_alert(self, handle: ListenerHandle) -> bool:
        return self.dispatcher.off_alert(handle)

    # Rules
    def sync_rules(self) -> int:
        """Reload every rule from the rule source; returns the rule count."""
        if self.rule_source is None:
            return self.evaluator.rule_count()
        self.evaluator.set_rules(self.rule_source())
        self._reconcile_rule_interest()
        return self.evaluator.rule_count()

    def add_rule(self, rule: AlertRule) -> None:
        self.evaluator.add_rule(rule)
        self._reconcile_rule_interest()

    def remove_rule(self, ticker: str, catalyst_id: str) -> bool:
        removed = self.evaluator.remove_rule(ticker, catalyst_id)
        if removed:
            self._reconcile_rule_interest()
        return removed

    def remove_catalyst(self, catalyst_id: str) -> int:
        removed = self.evaluator.remove_catalyst(catalyst_id)
        if removed:
            self._reconcile_rule_interest()
        return removed

    def _reconcile_rule_interest(self) -> None:
        """Hold exactly one registry interest per ticker that has rules."""
        with self._rule_lock:
            current = self.evaluator.tickers()
            new = current - self._rule_symbols
            gone = self._rule_symbols - current
            if new:
                self.subscriptions.add_interests(new)
            if gone:
                self.subscriptions.remove_interests(gone)
            self._rule_symbols = current

    def _sync_rules_safely(self) -> None:
        try:
            count = self.sync_rules()
            logger.debug("Rule sync complete: %d rules", count)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Rule sync failed: %s", exc)

    def _rule_sync_loop(self) -> None:
        logger.debug("rule sync loop started")
        while not self._stop_event.wait(self.config.rule_sync_secs):
            self._sync_rules_safely()
        logger.debug("rule sync loop stopped")

    # Feed callbacks
    def _handle_tick(self, symbol: str, price: Decimal, ts: datetime) -> None:
        if not self.prices.update(symbol, price, ts):
            return
        self._touched.add(symbol)
        for event in self.evaluator.evaluate(symbol, price, ts):
            self.dispatcher.publish(event)
            self._alerts_changed = True

    def _on_batch_end(self) -> None:
        self.dispatcher.flush()
        touched, self._touched = self._touched, set()
        alerts_changed, self._alerts_changed = self._alerts_changed, False
        snapshots = {}
        for sym in touched:
            snap = self.prices.get(sym)
            if snap is not None:
                snapshots[cache_keys.symbol(sym).last_price()] = snap.to_dict()
        try:
            if snapshots:
                cache.set_many(snapshots, timeout=const.SYMBOL_PRICE_TTL)
                cache.set(
                    cache_keys.monitor().symbols(),
                    sorted(self.prices.symbols()),
                    timeout=const.SYMBOL_PRICE_TTL,
                )
            if alerts_changed:
                cache.set(
                    cache_keys.monitor().recent_alerts(),
                    [event.to_dict() for event in self.dispatcher.history()],
                    timeout=const.MONITOR_ALERTS_TTL,
                )
            cache.set(
                cache_keys.monitor().heartbeat(),
                timezone.now().isoformat(),
                timeout=const.MONITOR_HEARTBEAT_TTL,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Monitor cache write failed: %s", exc)

    def _mirror_status(self, status: FeedStatus) -> None:
        try:
            cache.set(
                cache_keys.monitor().status(),
                {"status": status.value, "changedAt": timezone.now().isoformat()},
                timeout=const.MONITOR_STATUS_TTL,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Status cache write failed: %s", exc)

    def _enqueue_persist(self, event: AlertEvent) -> None:
        from pricewatch.tasks import record_triggered_alert

        record_triggered_alert.delay(event.to_dict())


# Readers for state mirrored by a monitor running in another process
def read_cached_status() -> dict | None:
    mirrored = cache.get(cache_keys.monitor().status())
    if not mirrored:
        return None
    return {
        "status": mirrored.get("status", FeedStatus.DISCONNECTED.value),
        "changedAt": mirrored.get("changedAt"),
        "lastHeartbeat": cache.get(cache_keys.monitor().heartbeat()),
        "running": mirrored.get("status") != FeedStatus.DISCONNECTED.value,
    }


def read_cached_prices() -> dict[str, dict]:
    """Last mirrored snapshot per symbol, keyed and ordered by symbol."""
    symbols = cache.get(cache_keys.monitor().symbols()) or []
    keys = {sym: cache_keys.symbol(sym).last_price() for sym in symbols}
    found = cache.get_many(list(keys.values()))
    return {sym: found[key] for sym, key in sorted(keys.items()) if key in found}


def read_cached_alerts() -> list[dict]:
    """Mirrored alert history, oldest first."""
    return list(cache.get(cache_keys.monitor().recent_alerts()) or [])
