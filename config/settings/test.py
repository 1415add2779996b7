"""
Test settings for the Page Watcher service.

Uses in-memory SQLite and eager Celery for fast test execution.
"""

from .base import *

# Test mode
DEBUG = False

ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]

# Test database - in-memory SQLite for speed
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

# Test Cache - use local memory cache
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "unique-snowflake",
    }
}

# Test Celery - run tasks synchronously
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

# Test logging - minimal output
LOGGING["loggers"]["django"]["level"] = "WARNING"
LOGGING["loggers"]["watcher"]["level"] = "WARNING"

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

# Disable Sentry in tests
SENTRY_DSN = ""

# No rendering backend unless a test opts in
BROWSERLESS_URL = ""
BROWSERLESS_TOKEN = ""

# Test watcher settings - fail fast
WATCHER_FETCH_TIMEOUT = 5
WATCHER_STATIC_RETRY_DELAY = 0
WATCHER_MAX_JITTER_SECONDS = 0
