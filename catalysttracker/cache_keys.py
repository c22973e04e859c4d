"""
Centralized cache key management system.

Usage:
    from catalysttracker.cache_keys import cache_keys

    # Price monitor keys
    key = cache_keys.monitor().status()
    key = cache_keys.monitor().heartbeat()
    key = cache_keys.monitor().symbols()
    key = cache_keys.monitor().recent_alerts()

    # Per-symbol keys
    key = cache_keys.symbol("AAPL").last_price()
"""

from typing import Final


class CacheConfig:
    """Cache configuration constants."""

    MONITOR_STATUS_TTL: Final[int] = 24 * 3600
    MONITOR_HEARTBEAT_TTL: Final[int] = 100
    SYMBOL_PRICE_TTL: Final[int] = 3600
    MONITOR_ALERTS_TTL: Final[int] = 24 * 3600


class MonitorKeys:
    """Builder for price-monitor process keys."""

    def status(self) -> str:
        """Key holding the last feed status reported by the monitor process."""
        return "pricewatch:monitor:status"

    def heartbeat(self) -> str:
        """Key refreshed whenever a batch of ticks has been processed."""
        return "pricewatch:monitor:heartbeat"

    def symbols(self) -> str:
        """Key listing every symbol the monitor holds a price for."""
        return "pricewatch:monitor:symbols"

    def recent_alerts(self) -> str:
        """Key holding the monitor's recent alert history, oldest first."""
        return "pricewatch:monitor:recent_alerts"


class SymbolKeys:
    """Builder for symbol-related cache keys."""

    def __init__(self, symbol: str):
        self._symbol = symbol.upper()

    def last_price(self) -> str:
        """Key holding the last accepted price sample for the symbol."""
        return f"pricewatch:price:{self._symbol}"


class CacheKeyManager:
    """
    Central manager for all cache keys in the application.

    Provides a fluent, discoverable interface for generating cache keys
    with proper namespacing and consistency.
    """

    def monitor(self) -> MonitorKeys:
        """Get price-monitor cache key builder."""
        return MonitorKeys()

    def symbol(self, symbol: str) -> SymbolKeys:
        """Get cache key builder for the given ticker symbol."""
        return SymbolKeys(symbol)


cache_keys = CacheKeyManager()


MONITOR_STATUS_TTL = CacheConfig.MONITOR_STATUS_TTL
MONITOR_HEARTBEAT_TTL = CacheConfig.MONITOR_HEARTBEAT_TTL
SYMBOL_PRICE_TTL = CacheConfig.SYMBOL_PRICE_TTL
MONITOR_ALERTS_TTL = CacheConfig.MONITOR_ALERTS_TTL
