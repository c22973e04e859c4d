from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from decimal import Decimal
from enum import Enum
import json
import logging
from queue import Empty, Queue
import threading
import time
from typing import Any

import websocket

from .observers import ListenerHandle, ObserverRegistry
from .utils import parse_tick_timestamp, to_decimal

logger = logging.getLogger(__name__)
websocket.enableTrace(False)

TickFn = Callable[[str, Decimal, datetime], None]
Tick = tuple[str, Decimal, datetime]


class FeedStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 30.0) -> float:
    """Delay before reconnect ``attempt`` (1-based): base, 2*base, 4*base ... cap."""
    if attempt < 1:
        return 0.0
    return min(base * (2 ** (attempt - 1)), cap)


def parse_tick(msg: dict[str, Any]) -> Tick | None:
    """Turn an Alpaca trade ('t') or quote ('q') message into a tick.

    Returns None for other message types; raises ValueError when a price
    message is malformed.
    """
    typ = msg.get("T")
    if typ not in ("t", "q"):
        return None
    symbol = msg.get("S")
    if not isinstance(symbol, str) or not symbol:
        raise ValueError("tick without symbol")
    if typ == "t":
        price = to_decimal(msg.get("p"))
    else:
        ask, bid = msg.get("ap"), msg.get("bp")
        price = to_decimal(ask if ask else bid)
    if price <= 0:
        raise ValueError(f"non-positive price {price}")
    ts_raw = msg.get("t")
    if ts_raw is None:
        raise ValueError("tick without timestamp")
    return symbol.upper(), price, parse_tick_timestamp(ts_raw)


class FeedConnectionManager:
    """Persistent market-data stream connection.

    Responsibilities
    - Keep one websocket open, re-connecting with exponential backoff
    - Track the desired symbol set and replay it after every re-auth
    - Buffer inbound ticks and hand them to ``on_tick`` from a single thread
    - Publish status transitions to observers
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        api_secret: str,
        on_tick: TickFn,
        *,
        on_batch_end: Callable[[], None] | None = None,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
        degraded_after_attempts: int = 5,
        auth_timeout: float = 30.0,
        batch_max: int = 2000,
        app_factory: Callable[..., Any] | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self.api_secret = api_secret
        self.on_tick = on_tick
        self.on_batch_end = on_batch_end
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.degraded_after_attempts = degraded_after_attempts
        self.auth_timeout = auth_timeout
        self.batch_max = batch_max
        self._app_factory = app_factory or websocket.WebSocketApp

        self.ws: Any | None = None
        self.running = False
        self.authenticated = False
        self.auth_start_time: float | None = None
        self.failed_attempts = 0

        self.message_buffer: Queue[Tick] = Queue()

        self._status = FeedStatus.DISCONNECTED
        self._status_lock = threading.Lock()
        self._status_listeners: ObserverRegistry[FeedStatus] = ObserverRegistry(
            topic="feed-status"
        )
        self._symbols: set[str] = set()
        self._symbols_lock = threading.Lock()
        # symbols the current upstream session has been told about
        self._sent_symbols: set[str] = set()
        self._flush_lock = threading.Lock()
        self._subs_dirty = threading.Event()
        self._send_lock = threading.Lock()
        self._ws_lock = threading.Lock()
        self._process_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    # Status
    @property
    def status(self) -> FeedStatus:
        with self._status_lock:
            return self._status

    def on_status_change(self, listener: Callable[[FeedStatus], None]) -> ListenerHandle:
        return self._status_listeners.add(listener)

    def off_status_change(self, handle: ListenerHandle) -> bool:
        return self._status_listeners.remove(handle)

    def _transition(self, new: FeedStatus) -> bool:
        with self._status_lock:
            old = self._status
            if old == new:
                return False
            self._status = new
        logger.info("Feed status %s -> %s", old.value, new.value)
        for _handle, listener in self._status_listeners.snapshot():
            try:
                listener(new)
            except Exception:  # noqa: BLE001
                logger.exception("Feed status listener failed")
        return True

    # Lifecycle
    def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._connection_loop, name="feed-conn", daemon=True),
            threading.Thread(target=self._tick_processor_loop, name="feed-ticks", daemon=True),
            threading.Thread(target=self._auth_timeout_checker_loop, name="feed-auth", daemon=True),
            threading.Thread(target=self._subscription_sender_loop, name="feed-subs", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        # the connection loop checks ``running`` under the same lock before
        # it publishes a new app, so no socket can be opened after this point
        with self._ws_lock:
            self.running = False
            self._stop_event.set()
            ws = self.ws
        self._subs_dirty.set()
        if ws is not None:
            try:
                ws.close()
            except Exception:  # noqa: BLE001
                logger.exception("Error closing feed socket")
        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current and thread.is_alive():
                thread.join(timeout)
        self._threads = []
        # deliver whatever was buffered before shutdown
        self.process_pending()
        self.authenticated = False
        self._transition(FeedStatus.DISCONNECTED)

    # Desired symbol set
    def subscribe(self, symbols: Iterable[str]) -> None:
        """Add to the desired set. Never touches the socket."""
        symbols = set(symbols)
        with self._symbols_lock:
            new = symbols - self._symbols
            self._symbols |= new
        if new:
            self._subs_dirty.set()

    def unsubscribe(self, symbols: Iterable[str]) -> None:
        """Remove from the desired set. Never touches the socket."""
        symbols = set(symbols)
        with self._symbols_lock:
            gone = symbols & self._symbols
            self._symbols -= gone
        if gone:
            self._subs_dirty.set()

    @property
    def symbols(self) -> set[str]:
        with self._symbols_lock:
            return set(self._symbols)

    def flush_subscriptions(self) -> None:
        """Send the difference between the desired set and what upstream knows.

        Runs on the feed's own threads (the sender loop and the auth
        handler). A failed send leaves the delta pending for the next flush.
        """
        with self._flush_lock:
            if not (self.authenticated and self._sock_ready()):
                return
            desired = self.symbols
            drop = self._sent_symbols - desired
            add = desired - self._sent_symbols
            if drop and self._send_subscription("unsubscribe", drop):
                self._sent_symbols -= drop
            if add and self._send_subscription("subscribe", add):
                self._sent_symbols |= add

    def _subscription_sender_loop(self) -> None:
        logger.debug("subscription sender started")
        while self.running:
            if not self._subs_dirty.wait(0.5):
                continue
            self._subs_dirty.clear()
            if self.running:
                self.flush_subscriptions()
        logger.debug("subscription sender stopped")

    # Connection loop
    def _connection_loop(self) -> None:
        logger.debug("connection loop started")
        while self.running:
            self._transition(FeedStatus.CONNECTING)
            try:
                logger.info("Connecting to market data stream %s", self.url)
                app = self._app_factory(
                    self.url,
                    on_open=self.on_open,
                    on_message=self.on_message,
                    on_error=self.on_error,
                    on_close=self.on_close,
                )
                with self._ws_lock:
                    if not self.running:
                        logger.info("Feed stopped while connecting - socket not opened")
                        break
                    self.ws = app
                app.run_forever(
                    ping_interval=20,
                    ping_timeout=10,
                    ping_payload="keepalive",
                )
            except Exception as exc:  # noqa: BLE001
                logger.exception("Feed connection blew up: %s", exc)
            self._mark_disconnected()

            if not self.running:
                break
            self.failed_attempts += 1
            delay = backoff_delay(self.failed_attempts, self.backoff_base, self.backoff_cap)
            if (
                self.degraded_after_attempts
                and self.failed_attempts >= self.degraded_after_attempts
            ):
                self._transition(FeedStatus.DEGRADED)
            logger.warning(
                "Feed closed - reconnect attempt %d in %.1f s",
                self.failed_attempts,
                delay,
            )
            if self._stop_event.wait(delay):
                break
        logger.debug("connection loop stopped")

    def _mark_disconnected(self) -> None:
        self.authenticated = False
        self.auth_start_time = None
        with self._flush_lock:
            self._sent_symbols = set()
        self._transition(FeedStatus.DISCONNECTED)

    # WebSocket callbacks
    def on_open(self, ws) -> None:
        if self._stop_event.is_set():
            # stop() ran between publishing the app and run_forever
            logger.info("Socket opened after stop - closing")
            ws.close()
            return
        logger.info("Socket open -> authenticating")
        self._authenticate(ws)

    def _authenticate(self, ws) -> None:
        self.auth_start_time = time.time()
        payload = {"action": "auth", "key": self.api_key, "secret": self.api_secret}
        try:
            ws.send(json.dumps(payload))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Auth send failed: %s", exc)
            self._close_socket()

    def on_message(self, _ws, raw: str) -> None:
        logger.debug("<- %s", raw)
        try:
            msgs = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.exception("Bad JSON from feed: %s", raw)
            return
        if not isinstance(msgs, list):
            msgs = [msgs]
        for msg in msgs:
            if not isinstance(msg, dict):
                logger.warning("Dropping non-object feed message: %r", msg)
                continue
            self._handle_message(msg)

    def _handle_message(self, msg: dict[str, Any]) -> None:
        typ = msg.get("T")
        if typ == "error":
            text = str(msg.get("msg", ""))
            logger.error("Feed error %s: %s", msg.get("code", ""), text)
            if "auth" in text.lower():
                self._close_socket()
            elif self.authenticated:
                self._transition(FeedStatus.DEGRADED)
        elif typ == "success":
            if "authenticated" in str(msg.get("msg", "")).lower():
                self._on_authenticated()
        elif typ == "subscription":
            logger.info("Feed now subscribed: %s", msg)
            if self.authenticated and self.status == FeedStatus.DEGRADED:
                self._transition(FeedStatus.CONNECTED)
        else:
            try:
                tick = parse_tick(msg)
            except (ValueError, TypeError, ArithmeticError) as exc:
                logger.warning("Dropping malformed tick %s: %s", msg, exc)
                return
            if tick is None:
                logger.debug("Unhandled feed msg: %s", msg)
                return
            self.message_buffer.put(tick)

    def _on_authenticated(self) -> None:
        self.authenticated = True
        self.auth_start_time = None
        self.failed_attempts = 0
        logger.info("Feed authenticated")
        self._transition(FeedStatus.CONNECTED)
        with self._flush_lock:
            self._sent_symbols = set()
        self.flush_subscriptions()

    def on_error(self, _ws, error) -> None:
        logger.error("WS error: %s", error)

    def on_close(self, *_args) -> None:
        logger.warning("Socket closed")
        self._mark_disconnected()

    # Outbound
    def _sock_ready(self) -> bool:
        return bool(self.ws and self.ws.sock and self.ws.sock.connected)

    def _send_subscription(self, action: str, symbols: set[str]) -> bool:
        if not (self.authenticated and self._sock_ready() and symbols):
            return False
        payload = {"action": action, "trades": sorted(symbols), "quotes": sorted(symbols)}
        try:
            with self._send_lock:
                self.ws.send(json.dumps(payload))
            logger.info("-> %s %s", action, sorted(symbols))
            return True
        except Exception as exc:  # noqa: BLE001
            logger.exception("%s failed: %s", action, exc)
            self._transition(FeedStatus.DEGRADED)
            return False

    def _close_socket(self) -> None:
        ws = self.ws
        if ws is None:
            return
        try:
            ws.close()
        except Exception:  # noqa: BLE001
            logger.exception("Error closing feed socket")

    # Tick processing
    def _tick_processor_loop(self) -> None:
        logger.debug("tick processor started")
        while self.running:
            try:
                first = self.message_buffer.get(timeout=0.5)
            except Empty:
                continue
            self.process_pending([first])
        logger.debug("tick processor stopped")

    def process_pending(self, batch: list[Tick] | None = None) -> int:
        """Drain buffered ticks into ``on_tick``; returns the count processed."""
        batch = list(batch or [])
        while len(batch) < self.batch_max:
            try:
                batch.append(self.message_buffer.get_nowait())
            except Empty:
                break
        if not batch:
            return 0
        with self._process_lock:
            for symbol, price, ts in batch:
                try:
                    self.on_tick(symbol, price, ts)
                except Exception:  # noqa: BLE001
                    logger.exception("Tick handler failed for %s", symbol)
            if self.on_batch_end:
                try:
                    self.on_batch_end()
                except Exception:  # noqa: BLE001
                    logger.exception("Batch handler failed")
        return len(batch)

    # Auth timeout watchdog
    def _auth_timeout_checker_loop(self) -> None:
        logger.debug("auth_timeout_checker started")
        while self.running:
            self.check_auth_timeout()
            if self._stop_event.wait(1.0):
                break
        logger.debug("auth_timeout_checker stopped")

    def check_auth_timeout(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        if (
            self.auth_start_time
            and not self.authenticated
            and now - self.auth_start_time > self.auth_timeout
        ):
            logger.error("Auth timeout - restarting socket")
            self.auth_start_time = None
            self._close_socket()
            return True
        return False
