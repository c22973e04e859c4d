from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
import logging
import threading

from .utils import normalize_symbol, normalize_symbols

logger = logging.getLogger(__name__)

SymbolsFn = Callable[[set[str]], None]


@dataclass
class SubscriptionRegistry:
    """Reference-counts interest per symbol and drives the upstream feed.

    The upstream ``subscribe`` is called only on a 0 -> 1 transition and
    ``unsubscribe`` only on 1 -> 0, so upstream state always mirrors whether
    a symbol's refcount is non-zero. Upstream calls happen while the lock is
    held to keep them ordered with the counts they reflect, so they must not
    block: the feed only records the desired set and sends from its own
    thread.
    """

    subscribe: SymbolsFn
    unsubscribe: SymbolsFn

    # runtime state
    _counts: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def add_interest(self, symbol: str) -> bool:
        """Returns True when this call made the symbol live upstream."""
        return bool(self.add_interests([normalize_symbol(symbol)]))

    def remove_interest(self, symbol: str) -> bool:
        """Returns True when this call dropped the symbol upstream."""
        return bool(self.remove_interests([normalize_symbol(symbol)]))

    def add_interests(self, symbols: Iterable[str]) -> set[str]:
        wanted = normalize_symbols(symbols)
        with self._lock:
            new = {s for s in wanted if self._counts.get(s, 0) == 0}
            for sym in wanted:
                self._counts[sym] = self._counts.get(sym, 0) + 1
            if new:
                logger.info("Subscribing upstream: %s", sorted(new))
                self.subscribe(new)
        return new

    def remove_interests(self, symbols: Iterable[str]) -> set[str]:
        wanted = normalize_symbols(symbols)
        with self._lock:
            gone = set()
            for sym in wanted:
                count = self._counts.get(sym, 0)
                if count == 0:
                    continue
                if count == 1:
                    del self._counts[sym]
                    gone.add(sym)
                else:
                    self._counts[sym] = count - 1
            if gone:
                logger.info("Unsubscribing upstream: %s", sorted(gone))
                self.unsubscribe(gone)
        return gone

    def ref_count(self, symbol: str) -> int:
        with self._lock:
            return self._counts.get(symbol.strip().upper(), 0)

    def active_symbols(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)
