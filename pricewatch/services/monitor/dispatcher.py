from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import threading

from .evaluator import AlertEvent, RuleKey
from .observers import ListenerHandle, ObserverRegistry

logger = logging.getLogger(__name__)

AlertListener = Callable[[AlertEvent], None]


@dataclass
class _Slot:
    event: AlertEvent
    # event time the dedup window is measured from; never slides
    anchor: datetime


@dataclass
class AlertDispatcher:
    """Deduplicates alert events and fans them out to listeners.

    ``publish`` only queues. ``flush`` delivers queued events in publish
    order. The dedup window for a (ticker, catalyst_id) is anchored at the
    first event of a pending group, and at the delivered event once it has
    been flushed. Later events never move the anchor. Within the window:

    - a still-pending event is overwritten in its queue slot, so listeners
      only ever receive the latest payload;
    - an already-delivered event has its history entry replaced in place and
      the newer event is not delivered again.

    Once ``dedup_window`` has passed since the anchor, the next event is
    queued and delivered, so a rule that keeps re-crossing is reported at
    most once per window.

    Listener exceptions are logged and isolated. After ``max_listener_failures``
    consecutive failures a listener is dropped (0 disables auto-removal).
    """

    dedup_window: timedelta = timedelta(seconds=60)
    history_size: int = 200
    max_listener_failures: int = 3

    _listeners: ObserverRegistry[AlertEvent] = field(
        default_factory=lambda: ObserverRegistry(topic="alerts")
    )
    _pending: deque[_Slot] = field(default_factory=deque)
    _pending_by_key: dict[RuleKey, _Slot] = field(default_factory=dict)
    _delivered_by_key: dict[RuleKey, _Slot] = field(default_factory=dict)
    _history: deque[AlertEvent] = field(init=False)
    _failures: dict[int, int] = field(default_factory=dict)

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _delivery_lock: threading.RLock = field(default_factory=threading.RLock, init=False)

    def __post_init__(self):
        self._history = deque(maxlen=self.history_size)

    # Registration
    def on_alert(self, listener: AlertListener) -> ListenerHandle:
        return self._listeners.add(listener)

    def off_alert(self, handle: ListenerHandle) -> bool:
        removed = self._listeners.remove(handle)
        if removed:
            with self._lock:
                self._failures.pop(handle.id, None)
        return removed

    def listener_count(self) -> int:
        return len(self._listeners)

    # Publishing
    def publish(self, event: AlertEvent) -> None:
        with self._lock:
            slot = self._pending_by_key.get(event.key)
            if slot is not None and self._within_window(slot.anchor, event):
                slot.event = event
                logger.debug("Coalesced pending alert %s", event.key)
                return

            delivered = self._delivered_by_key.get(event.key)
            if delivered is not None and self._within_window(delivered.anchor, event):
                self._replace_in_history(delivered.event, event)
                delivered.event = event
                logger.debug("Suppressed repeat alert %s within window", event.key)
                return

            slot = _Slot(event, anchor=event.triggered_at)
            self._pending.append(slot)
            self._pending_by_key[event.key] = slot

    def flush(self) -> int:
        """Deliver pending events; returns how many were delivered."""
        delivered = 0
        with self._delivery_lock:
            while True:
                with self._lock:
                    if not self._pending:
                        break
                    slot = self._pending.popleft()
                    if self._pending_by_key.get(slot.event.key) is slot:
                        del self._pending_by_key[slot.event.key]
                    event = slot.event
                    self._history.append(event)
                    self._delivered_by_key[event.key] = _Slot(event, anchor=event.triggered_at)
                    self._prune_delivered(event)
                self._deliver(event)
                delivered += 1
        return delivered

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def history(self) -> list[AlertEvent]:
        with self._lock:
            return list(self._history)

    # Internals
    def _within_window(self, anchor: datetime, later: AlertEvent) -> bool:
        return abs(later.triggered_at - anchor) < self.dedup_window

    def _replace_in_history(self, old: AlertEvent, new: AlertEvent) -> None:
        for idx in range(len(self._history) - 1, -1, -1):
            if self._history[idx] is old:
                self._history[idx] = new
                return

    def _prune_delivered(self, latest: AlertEvent) -> None:
        cutoff = latest.triggered_at - self.dedup_window
        stale = [k for k, s in self._delivered_by_key.items() if s.anchor < cutoff]
        for key in stale:
            del self._delivered_by_key[key]

    def _deliver(self, event: AlertEvent) -> None:
        for handle, listener in self._listeners.snapshot():
            # removed by an earlier listener during this delivery
            if not self._listeners.contains(handle):
                continue
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Alert listener %s failed for %s", handle.id, event.key
                )
                self._record_failure(handle)
            else:
                with self._lock:
                    self._failures.pop(handle.id, None)

    def _record_failure(self, handle: ListenerHandle) -> None:
        with self._lock:
            count = self._failures.get(handle.id, 0) + 1
            self._failures[handle.id] = count
        if self.max_listener_failures and count >= self.max_listener_failures:
            logger.warning(
                "Removing alert listener %s after %d consecutive failures",
                handle.id,
                count,
            )
            self.off_alert(handle)
