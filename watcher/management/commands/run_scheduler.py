"""
Management command to run the monitor scheduler as a long-lived process.

An alternative to Celery Beat's check_due_monitors for single-host setups.

Usage:
    python manage.py run_scheduler
    python manage.py run_scheduler --ticks 1
    python manage.py run_scheduler --max-concurrent 5 --max-jitter 0
"""

import asyncio

from django.core.management.base import BaseCommand

from watcher.services.scheduler import MonitorScheduler


class Command(BaseCommand):
    help = "Run the monitor scheduler tick loop"

    def add_arguments(self, parser):
        parser.add_argument(
            "--ticks",
            type=int,
            default=None,
            help="Stop after this many ticks (default: run until interrupted)",
        )
        parser.add_argument(
            "--max-concurrent",
            type=int,
            default=None,
            help="Concurrency ceiling (default: WATCHER_MAX_CONCURRENT_CHECKS)",
        )
        parser.add_argument(
            "--max-jitter",
            type=float,
            default=None,
            help="Maximum dispatch jitter in seconds (default: WATCHER_MAX_JITTER_SECONDS)",
        )

    def handle(self, *args, **options):
        scheduler = MonitorScheduler(
            max_concurrent=options["max_concurrent"],
            max_jitter_seconds=options["max_jitter"],
        )

        self.stdout.write(
            f"Scheduler running: tick every {scheduler.tick_seconds}s, "
            f"up to {scheduler.max_concurrent} concurrent checks"
        )

        try:
            asyncio.run(scheduler.run_forever(max_ticks=options["ticks"]))
        except KeyboardInterrupt:
            self.stdout.write(self.style.WARNING("Scheduler stopped"))
            return

        self.stdout.write(self.style.SUCCESS(
            f"Scheduler finished ({scheduler.dropped} check(s) dropped at the concurrency ceiling)"
        ))
