"""
Real-time price monitoring and alert engine.

The package is split into focused modules: the stream connection
(``feed``), interest refcounting (``subscriptions``), latest prices
(``prices``), catalyst threshold checks (``evaluator``) and alert fan-out
(``dispatcher``). ``PriceMonitorService`` wires them together and is the
object the rest of the application talks to.
"""

from .evaluator import AlertEvent, AlertRule
from .exceptions import (
    InvalidRuleError,
    InvalidSymbolError,
    MonitorError,
    MonitorNotRunningError,
)
from .feed import FeedStatus
from .service import MonitorConfig, PriceMonitorService

__all__ = [
    "AlertEvent",
    "AlertRule",
    "FeedStatus",
    "InvalidRuleError",
    "InvalidSymbolError",
    "MonitorConfig",
    "MonitorError",
    "MonitorNotRunningError",
    "PriceMonitorService",
]
