"""
Watcher application configuration.
"""

from django.apps import AppConfig


class WatcherConfig(AppConfig):
    """Configuration for the watcher Django application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "watcher"
    verbose_name = "Page Watcher"
