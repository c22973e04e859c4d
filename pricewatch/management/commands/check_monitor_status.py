from django.core.cache import cache
from django.core.management.base import BaseCommand
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from catalysttracker.cache_keys import cache_keys


class Command(BaseCommand):
    help = 'Check the price monitor feed status reported through the cache'

    def handle(self, *args, **options):
        keys = cache_keys.monitor()
        self.stdout.write("\nPRICE MONITOR:")

        reported = cache.get(keys.status())
        if not reported:
            self.stdout.write(self.style.WARNING("  No status reported (monitor not running?)"))
            return

        self.stdout.write(f"  Status: {reported['status']}")
        changed = parse_datetime(reported.get("changedAt") or "")
        if changed:
            mins = (timezone.now() - changed).total_seconds() / 60
            self.stdout.write(f"  Since: {mins:.1f}m")

        heartbeat = parse_datetime(cache.get(keys.heartbeat()) or "")
        if heartbeat:
            secs = (timezone.now() - heartbeat).total_seconds()
            self.stdout.write(f"  Last tick batch: {secs:.0f}s ago")
        else:
            self.stdout.write("  Last tick batch: none recently")

        if reported["status"] != "connected":
            self.stdout.write(self.style.ERROR("  Feed is not healthy"))
