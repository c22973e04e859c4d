from __future__ import annotations

import logging

from django.apps import apps
from django.db import transaction
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from pricewatch.models import Catalyst, StockAlertSettings

logger = logging.getLogger(__name__)


def _resync_running_monitor() -> None:
    service = apps.get_app_config("pricewatch").service
    if service is None or not service.running:
        return
    try:
        count = service.sync_rules()
        logger.debug("Monitor rules resynced after model change: %d rules", count)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Monitor rule resync failed: %s", exc)


@receiver(post_save, sender=Catalyst)
@receiver(post_delete, sender=Catalyst)
@receiver(post_save, sender=StockAlertSettings)
@receiver(post_delete, sender=StockAlertSettings)
def resync_rules_on_change(sender, instance, **kwargs):
    """Push catalyst/threshold edits to an in-process monitor right away.

    A monitor running in its own process picks the change up on its next
    reconcile pass instead.
    """
    transaction.on_commit(_resync_running_monitor)
