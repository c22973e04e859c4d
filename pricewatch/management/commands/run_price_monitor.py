"""
run_price_monitor.py
====================

Django management command that runs the price monitor as a long-running
background process: it streams prices for every ticker with an active
catalyst (plus any symbols passed on the command line), evaluates alert
rules and dispatches alerts.

Usage:
`python manage.py run_price_monitor [--symbols AAPL TSLA] [--persist-alerts]`
"""

import logging
import signal
import threading

from django.apps import apps
from django.core.management.base import BaseCommand

from pricewatch.services.monitor.exceptions import InvalidSymbolError

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Django management command to run the price monitor."""

    help = "Runs the persistent price monitor (market data stream + catalyst alerts)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--symbols",
            nargs="+",
            default=[],
            help="Extra symbols to stream in addition to catalyst tickers.",
        )
        parser.add_argument(
            "--persist-alerts",
            action="store_true",
            help="Record every delivered alert through the Celery persistence task.",
        )

    def handle(self, *args, **options):
        """Handles the command execution."""
        service = apps.get_app_config("pricewatch").service
        if options.get("persist_alerts"):
            service.config.persist_alerts = True

        done = threading.Event()

        def _shutdown(signum, _frame):
            logger.info("Received signal %s, shutting down price monitor", signum)
            done.set()

        signal.signal(signal.SIGINT, _shutdown)
        signal.signal(signal.SIGTERM, _shutdown)

        try:
            if options.get("symbols"):
                service.subscribe_to_symbols(options["symbols"])
            service.on_alert(self._echo_alert)
            service.start()
            self.stdout.write(self.style.SUCCESS("Price monitor started"))
            # Keep main thread alive
            while not done.wait(1):
                pass
        except InvalidSymbolError as e:
            self.stdout.write(self.style.ERROR(f"Invalid symbols: {e}"))
        except Exception as e:
            logger.error(f"Failed to run price monitor: {e}", exc_info=True)
            self.stdout.write(self.style.ERROR(f"An unexpected error occurred: {e}"))
        finally:
            service.stop()
            self.stdout.write("Price monitor stopped")

    def _echo_alert(self, event):
        self.stdout.write(
            f"ALERT {event.ticker} [{event.catalyst_title}] "
            f"{event.price_before} -> {event.current_price} at {event.triggered_at:%H:%M:%S}"
        )
