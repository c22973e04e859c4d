class MonitorError(Exception):
    """Base class for price-monitor errors surfaced to callers."""


class InvalidSymbolError(MonitorError, ValueError):
    """Raised for an empty or malformed symbol list. No state is changed."""


class InvalidRuleError(MonitorError, ValueError):
    """Raised when an alert rule fails validation."""


class MonitorNotRunningError(MonitorError):
    """Raised when an operation needs a started monitor service."""
