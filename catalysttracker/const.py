"""
Shared constants for the backend.

Note: For cache key helpers, import from `catalysttracker.cache_keys` directly:
    from catalysttracker.cache_keys import cache_keys
"""

from decimal import Decimal

from catalysttracker.cache_keys import (
    MONITOR_ALERTS_TTL,
    MONITOR_HEARTBEAT_TTL,
    MONITOR_STATUS_TTL,
    SYMBOL_PRICE_TTL,
)

__all__ = [
    "MONITOR_ALERTS_TTL",
    "MONITOR_HEARTBEAT_TTL",
    "MONITOR_STATUS_TTL",
    "SYMBOL_PRICE_TTL",
    "DEFAULT_TOLERANCE_POINTS",
    "DEFAULT_MINIMUM_MOVE",
    "PRICE_MAX_DIGITS",
    "PRICE_DECIMAL_PLACES",
]


# Alert thresholds applied when a ticker has no StockAlertSettings row
DEFAULT_TOLERANCE_POINTS = Decimal("2.0")
DEFAULT_MINIMUM_MOVE = Decimal("10.0")

# Precision for stored prices
PRICE_MAX_DIGITS = 14
PRICE_DECIMAL_PLACES = 4
