from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal, InvalidOperation
import re

from django.utils import timezone
import pytz

from .exceptions import InvalidSymbolError

SYMBOL_RE = re.compile(r"^[A-Z][A-Z0-9.\-/]{0,14}$")
_FRACTION_RE = re.compile(r"\.(\d+)")


def normalize_symbol(symbol: str) -> str:
    """Strip and upper-case a ticker, raising InvalidSymbolError if malformed."""
    if not isinstance(symbol, str):
        raise InvalidSymbolError(f"Symbol must be a string, got {symbol!r}")
    sym = symbol.strip().upper()
    if not SYMBOL_RE.match(sym):
        raise InvalidSymbolError(f"Malformed symbol: {symbol!r}")
    return sym


def normalize_symbols(symbols: Iterable[str] | str | None) -> set[str]:
    """Validate a whole symbol list before anything is applied.

    A bare string is rejected rather than iterated character by character.
    """
    if symbols is None or isinstance(symbols, (str, bytes)):
        raise InvalidSymbolError("Symbols must be a non-empty list of tickers")
    normalized = {normalize_symbol(s) for s in symbols}
    if not normalized:
        raise InvalidSymbolError("Symbols must be a non-empty list of tickers")
    return normalized


def to_decimal(value) -> Decimal:
    """Convert a JSON number/str to Decimal without float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a price: {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a price: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a price: {value!r}")
    return result


def parse_tick_timestamp(value) -> datetime:
    """Parse an Alpaca tick timestamp to a timezone-aware UTC datetime.

    Accepts RFC 3339 strings with any fraction length (nanoseconds are
    truncated to microseconds), aware or naive datetimes, and epoch numbers
    in seconds, milliseconds or nanoseconds.
    """
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str):
        ts_str = value.strip()
        if ts_str.endswith("Z"):
            ts_str = ts_str[:-1] + "+00:00"
        # fromisoformat wants exactly 6 fraction digits on older interpreters
        ts_str = _FRACTION_RE.sub(lambda m: "." + m.group(1).ljust(6, "0")[:6], ts_str)
        ts = datetime.fromisoformat(ts_str)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
        if seconds > 1e17:
            seconds /= 1e9
        elif seconds > 1e11:
            seconds /= 1e3
        ts = datetime.fromtimestamp(seconds, tz=pytz.UTC)
    else:
        raise ValueError(f"Unsupported timestamp: {value!r}")

    if timezone.is_naive(ts):
        ts = timezone.make_aware(ts, pytz.UTC)
    return ts.astimezone(pytz.UTC)
