from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
import logging
import threading

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceSample:
    symbol: str
    price: Decimal
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "price": str(self.price),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class PriceSnapshot:
    """Current and previous accepted samples for one symbol."""

    current: PriceSample
    previous: PriceSample | None = None

    @property
    def change(self) -> Decimal:
        if self.previous is None:
            return Decimal("0")
        return self.current.price - self.previous.price

    @property
    def change_percent(self) -> Decimal:
        if self.previous is None or self.previous.price <= 0:
            return Decimal("0")
        return self.change / self.previous.price * 100

    def to_dict(self) -> dict:
        return {
            "current": self.current.to_dict(),
            "previous": self.previous.to_dict() if self.previous else None,
            "change": str(self.change),
            "changePercent": str(round(self.change_percent, 4)),
        }


@dataclass
class PriceStateStore:
    """Latest and previous price per symbol.

    Snapshots are immutable and swapped whole under the lock, so readers
    never see a half-applied update. Samples older than the current one are
    dropped.
    """

    _snapshots: dict[str, PriceSnapshot] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def update(self, symbol: str, price: Decimal, timestamp: datetime) -> bool:
        """Apply a sample; returns False (no-op) for out-of-order samples."""
        sample = PriceSample(symbol, price, timestamp)
        with self._lock:
            snap = self._snapshots.get(symbol)
            if snap is not None and timestamp < snap.current.timestamp:
                logger.debug(
                    "Dropping stale %s sample at %s (current %s)",
                    symbol,
                    timestamp,
                    snap.current.timestamp,
                )
                return False
            self._snapshots[symbol] = PriceSnapshot(
                current=sample, previous=snap.current if snap else None
            )
        return True

    def get(self, symbol: str) -> PriceSnapshot | None:
        with self._lock:
            return self._snapshots.get(symbol)

    def symbols(self) -> set[str]:
        with self._lock:
            return set(self._snapshots)
