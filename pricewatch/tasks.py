"""
Celery tasks for alert persistence and catalyst housekeeping.
"""

from datetime import timedelta
from decimal import Decimal

from celery import shared_task
from celery.utils.log import get_task_logger
from django.conf import settings
from django.utils import timezone

from pricewatch.models import Catalyst, TriggeredAlert
from pricewatch.services.monitor.utils import parse_tick_timestamp

logger = get_task_logger(__name__)


@shared_task(name="pricewatch.tasks.record_triggered_alert")
def record_triggered_alert(payload: dict) -> int:
    """Store one delivered alert; payload is ``AlertEvent.to_dict()``."""
    catalyst_ref = str(payload["catalystId"])
    catalyst = None
    if catalyst_ref.isdigit():
        catalyst = Catalyst.objects.filter(pk=int(catalyst_ref)).first()

    alert = TriggeredAlert.objects.create(
        catalyst=catalyst,
        catalyst_ref=catalyst_ref,
        catalyst_title=payload.get("catalystTitle") or "",
        ticker=payload["ticker"],
        price_before=Decimal(payload["priceBefore"]),
        price_after=Decimal(payload["priceAfter"]),
        current_price=Decimal(payload["currentPrice"]),
        tolerance_points=Decimal(payload["tolerancePoints"]),
        minimum_move=Decimal(payload["minimumMove"]),
        triggered_at=parse_tick_timestamp(payload["triggeredAt"]),
    )
    logger.info(
        "Recorded alert %s for %s/%s", alert.pk, alert.ticker, alert.catalyst_ref
    )
    return alert.pk


@shared_task(name="pricewatch.tasks.deactivate_stale_catalysts")
def deactivate_stale_catalysts(max_age_days: int | None = None) -> int:
    """Close catalysts older than CATALYST_MAX_AGE_DAYS so their rules drop out."""
    days = max_age_days if max_age_days is not None else settings.CATALYST_MAX_AGE_DAYS
    cutoff = timezone.now() - timedelta(days=days)
    updated = Catalyst.objects.filter(is_active=True, created_at__lt=cutoff).update(
        is_active=False
    )
    if updated:
        logger.info("Deactivated %d catalysts older than %d days", updated, days)
    return updated
