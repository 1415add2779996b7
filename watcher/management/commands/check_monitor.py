"""
Management command to check one monitor immediately.

Usage:
    python manage.py check_monitor 6f1c0e0a-...
"""

import asyncio

from django.core.management.base import BaseCommand, CommandError

from watcher.models import CheckStatus
from watcher.services.check_engine import CheckEngine
from watcher.store import DjangoMonitorStore


class Command(BaseCommand):
    help = "Run a single check for a monitor and print the outcome"

    def add_arguments(self, parser):
        parser.add_argument("monitor_id", type=str, help="Monitor UUID")

    def handle(self, *args, **options):
        store = DjangoMonitorStore()
        monitor = store.get_monitor(options["monitor_id"])
        if monitor is None:
            raise CommandError(f"Monitor '{options['monitor_id']}' not found")

        self.stdout.write(f"Checking {monitor.name} ({monitor.url}) with selector {monitor.selector!r}")

        outcome = asyncio.run(CheckEngine(store=store).run_check(monitor))

        style = self.style.SUCCESS if outcome.status == CheckStatus.OK else self.style.ERROR
        self.stdout.write(style(f"Status: {outcome.status}"))
        self.stdout.write(f"  Value: {outcome.current_value}")
        self.stdout.write(f"  Previous: {outcome.previous_value}")
        self.stdout.write(f"  Changed: {outcome.changed}")
        if outcome.error:
            self.stdout.write(f"  Error: {outcome.error}")
