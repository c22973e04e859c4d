import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class PricewatchConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'pricewatch'
    verbose_name = 'Catalyst Price Watch'

    # The one monitor instance for this process, built in ready()
    service = None

    def ready(self):
        """Import signals and build (not start) the monitor service"""
        import pricewatch.signals  # noqa

        from pricewatch.services.monitor import MonitorConfig, PriceMonitorService
        from pricewatch.services.monitor.rules import load_alert_rules

        config = MonitorConfig.from_settings()
        self.service = PriceMonitorService(config, rule_source=load_alert_rules)
        if config.autostart:
            logger.info("PRICE_MONITOR autostart enabled; starting in-process monitor")
            self.service.start()
