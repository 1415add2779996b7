"""
Management command to suggest selectors for a value on a page.

Renders the page through the rendering backend and lists stable selectors
whose element text matches the expected value.

Usage:
    python manage.py discover_selectors https://example.com/product '$49.99'
"""

import asyncio
import json

from django.core.management.base import BaseCommand, CommandError

from watcher.fetchers.renderer import RendererClient


class Command(BaseCommand):
    help = "Suggest CSS selectors for an expected value on a page"

    def add_arguments(self, parser):
        parser.add_argument("url", type=str, help="Page URL")
        parser.add_argument("expected", type=str, help="Text the element should contain")
        parser.add_argument(
            "--limit",
            type=int,
            default=10,
            help="Maximum suggestions to show (default: 10)",
        )

    def handle(self, *args, **options):
        renderer = RendererClient()
        if not renderer.is_configured:
            raise CommandError("BROWSERLESS_URL is not configured")

        try:
            result = asyncio.run(renderer.discover_selectors(options["url"], options["expected"]))
        except Exception as e:
            raise CommandError(f"Discovery failed: {e}")

        if not result.suggestions:
            self.stdout.write(self.style.WARNING("No matching elements found"))
            if result.debug:
                self.stdout.write(json.dumps(result.debug, indent=2, default=str))
            return

        self.stdout.write(self.style.SUCCESS(f"Found {len(result.suggestions)} selector(s):"))
        for suggestion in result.suggestions[: options["limit"]]:
            self.stdout.write(
                f"  {suggestion.selector}  (matches: {suggestion.match_count}) "
                f"{suggestion.sample_text[:60]!r}"
            )
