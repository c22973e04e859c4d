from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
import logging
import threading

from .exceptions import InvalidRuleError, InvalidSymbolError
from .utils import normalize_symbol

logger = logging.getLogger(__name__)

RuleKey = tuple[str, str]


@dataclass(frozen=True)
class AlertRule:
    """Thresholds for one catalyst on one ticker."""

    ticker: str
    catalyst_id: str
    catalyst_title: str
    price_at_catalyst: Decimal
    tolerance_points: Decimal
    minimum_move: Decimal
    price_after: Decimal | None = None

    @property
    def key(self) -> RuleKey:
        return (self.ticker, self.catalyst_id)


@dataclass(frozen=True)
class AlertEvent:
    ticker: str
    catalyst_id: str
    catalyst_title: str
    price_before: Decimal
    price_after: Decimal
    current_price: Decimal
    tolerance_points: Decimal
    minimum_move: Decimal
    triggered_at: datetime

    @property
    def key(self) -> RuleKey:
        return (self.ticker, self.catalyst_id)

    @property
    def move(self) -> Decimal:
        return self.current_price - self.price_before

    def to_dict(self) -> dict:
        return {
            "ticker": self.ticker,
            "catalystId": self.catalyst_id,
            "catalystTitle": self.catalyst_title,
            "priceBefore": str(self.price_before),
            "priceAfter": str(self.price_after),
            "currentPrice": str(self.current_price),
            "tolerancePoints": str(self.tolerance_points),
            "minimumMove": str(self.minimum_move),
            "triggeredAt": self.triggered_at.isoformat(),
        }


def validate_rule(rule: AlertRule) -> AlertRule:
    """Return the rule with a normalised ticker, or raise InvalidRuleError."""
    try:
        ticker = normalize_symbol(rule.ticker)
    except InvalidSymbolError as exc:
        raise InvalidRuleError(str(exc)) from exc
    if not rule.catalyst_id:
        raise InvalidRuleError("catalyst_id is required")
    if rule.price_at_catalyst is None or rule.price_at_catalyst <= 0:
        raise InvalidRuleError(
            f"price_at_catalyst must be positive for {ticker}/{rule.catalyst_id}"
        )
    if rule.tolerance_points is None or rule.tolerance_points < 0:
        raise InvalidRuleError("tolerance_points must be >= 0")
    if rule.minimum_move is None or rule.minimum_move < 0:
        raise InvalidRuleError("minimum_move must be >= 0")
    if ticker != rule.ticker:
        rule = AlertRule(
            ticker=ticker,
            catalyst_id=rule.catalyst_id,
            catalyst_title=rule.catalyst_title,
            price_at_catalyst=rule.price_at_catalyst,
            tolerance_points=rule.tolerance_points,
            minimum_move=rule.minimum_move,
            price_after=rule.price_after,
        )
    return rule


@dataclass
class AlertEvaluator:
    """Checks each accepted price against the catalyst rules for its ticker.

    A rule fires once when the move from the catalyst reference price first
    clears both the tolerance and the minimum move. It stays quiet while the
    price remains beyond tolerance and re-arms once the price retreats inside
    tolerance. Jumping straight to the other side of the reference counts as
    a new crossing.
    """

    _rules: dict[str, dict[str, AlertRule]] = field(default_factory=dict)
    # last price at which each rule fired; absent means armed
    _signaled: dict[RuleKey, Decimal] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    # Rule management
    def set_rules(self, rules: Iterable[AlertRule]) -> None:
        """Replace the whole rule set.

        Fire state survives for rules that are unchanged; changed or removed
        rules start from armed.
        """
        fresh: dict[str, dict[str, AlertRule]] = {}
        for rule in rules:
            rule = validate_rule(rule)
            fresh.setdefault(rule.ticker, {})[rule.catalyst_id] = rule
        with self._lock:
            kept: dict[RuleKey, Decimal] = {}
            for (ticker, cid), price in self._signaled.items():
                old = self._rules.get(ticker, {}).get(cid)
                if old is not None and fresh.get(ticker, {}).get(cid) == old:
                    kept[(ticker, cid)] = price
            self._rules = fresh
            self._signaled = kept
        logger.debug(
            "Alert rules resynced: %d rules across %d tickers",
            sum(len(r) for r in fresh.values()),
            len(fresh),
        )

    def add_rule(self, rule: AlertRule) -> None:
        rule = validate_rule(rule)
        with self._lock:
            bucket = self._rules.setdefault(rule.ticker, {})
            if bucket.get(rule.catalyst_id) != rule:
                self._signaled.pop(rule.key, None)
            bucket[rule.catalyst_id] = rule

    def remove_rule(self, ticker: str, catalyst_id: str) -> bool:
        ticker = ticker.strip().upper()
        with self._lock:
            bucket = self._rules.get(ticker)
            if not bucket or catalyst_id not in bucket:
                return False
            del bucket[catalyst_id]
            if not bucket:
                del self._rules[ticker]
            self._signaled.pop((ticker, catalyst_id), None)
        return True

    def remove_catalyst(self, catalyst_id: str) -> int:
        """Drop every rule belonging to a closed or deleted catalyst."""
        with self._lock:
            tickers = [t for t, b in self._rules.items() if catalyst_id in b]
        return sum(self.remove_rule(t, catalyst_id) for t in tickers)

    def rules_for(self, ticker: str) -> list[AlertRule]:
        with self._lock:
            return list(self._rules.get(ticker, {}).values())

    def tickers(self) -> set[str]:
        with self._lock:
            return set(self._rules)

    def rule_count(self) -> int:
        with self._lock:
            return sum(len(b) for b in self._rules.values())

    # Evaluation
    def evaluate(
        self, ticker: str, current_price: Decimal, at: datetime
    ) -> list[AlertEvent]:
        events: list[AlertEvent] = []
        with self._lock:
            for rule in list(self._rules.get(ticker, {}).values()):
                event = self._check(rule, current_price, at)
                if event is not None:
                    events.append(event)
        return events

    def _check(
        self, rule: AlertRule, current_price: Decimal, at: datetime
    ) -> AlertEvent | None:
        move = current_price - rule.price_at_catalyst
        move_abs = abs(move)

        if move_abs < rule.tolerance_points:
            if self._signaled.pop(rule.key, None) is not None:
                logger.debug("Rule %s re-armed at %s", rule.key, current_price)
            return None

        if move_abs == 0 or move_abs < rule.minimum_move:
            return None

        last = self._signaled.get(rule.key)
        if last is not None:
            last_move = last - rule.price_at_catalyst
            # still on the side already signalled
            if (last_move > 0) == (move > 0):
                return None

        self._signaled[rule.key] = current_price
        logger.info(
            "Alert %s/%s: %s -> %s (move %s, tolerance %s, minimum %s)",
            rule.ticker,
            rule.catalyst_id,
            rule.price_at_catalyst,
            current_price,
            move,
            rule.tolerance_points,
            rule.minimum_move,
        )
        return AlertEvent(
            ticker=rule.ticker,
            catalyst_id=rule.catalyst_id,
            catalyst_title=rule.catalyst_title,
            price_before=rule.price_at_catalyst,
            price_after=(
                rule.price_after if rule.price_after is not None else current_price
            ),
            current_price=current_price,
            tolerance_points=rule.tolerance_points,
            minimum_move=rule.minimum_move,
            triggered_at=at,
        )
