from __future__ import annotations

import logging

from django.db import close_old_connections

from catalysttracker import const
from pricewatch.models import Catalyst, StockAlertSettings

from .evaluator import AlertRule, validate_rule
from .exceptions import InvalidRuleError

logger = logging.getLogger(__name__)


def load_alert_rules() -> list[AlertRule]:
    """Build alert rules from active catalysts joined with ticker settings.

    Catalysts without a reference price are skipped, as are tickers whose
    settings disable automatic alerts. Rows that fail validation are logged
    and left out rather than failing the whole sync.
    """
    close_old_connections()
    settings_by_ticker = {s.ticker: s for s in StockAlertSettings.objects.all()}

    rules: list[AlertRule] = []
    catalysts = Catalyst.objects.filter(is_active=True, price_before__isnull=False)
    for catalyst in catalysts.only(
        "id", "title", "ticker", "price_before", "price_after"
    ):
        conf = settings_by_ticker.get(catalyst.ticker)
        if conf is not None and not conf.auto_create_alerts:
            continue
        rule = AlertRule(
            ticker=catalyst.ticker,
            catalyst_id=str(catalyst.pk),
            catalyst_title=catalyst.title or "",
            price_at_catalyst=catalyst.price_before,
            tolerance_points=(
                conf.tolerance_points if conf else const.DEFAULT_TOLERANCE_POINTS
            ),
            minimum_move=conf.minimum_move if conf else const.DEFAULT_MINIMUM_MOVE,
            price_after=catalyst.price_after,
        )
        try:
            rules.append(validate_rule(rule))
        except InvalidRuleError as exc:
            logger.warning("Skipping catalyst %s: %s", catalyst.pk, exc)
    return rules
