"""
Django base settings for the Page Watcher service.

This module contains settings common to all environments.
For more information on this file, see
https://docs.djangoproject.com/en/4.2/topics/settings/
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv(
    "SECRET_KEY",
    "django-insecure-watcher-dev-key-change-in-production"
)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv("DEBUG", "True") == "True"

ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")


# Application definition

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Local apps
    "watcher",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]


# Database
# Configured in environment-specific settings (development.py, production.py, test.py)

DATABASES = {
    # Override in environment-specific settings
}


# Internationalization
# https://docs.djangoproject.com/en/4.2/topics/i18n/

LANGUAGE_CODE = "en-us"

TIME_ZONE = "UTC"

USE_I18N = True

USE_TZ = True


STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# Cache
# Configured in environment-specific settings

CACHES = {
    # Override in environment-specific settings
}


# Celery Configuration
# https://docs.celeryproject.org/en/stable/django/first-steps-with-django.html

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 10 * 60  # A tick waits for its own checks only


# Email
# https://docs.djangoproject.com/en/4.2/topics/email/

DEFAULT_FROM_EMAIL = os.getenv("DEFAULT_FROM_EMAIL", "alerts@localhost")
WATCHER_DASHBOARD_URL = os.getenv("WATCHER_DASHBOARD_URL", "http://localhost:8000")


# Logging Configuration
# https://docs.djangoproject.com/en/4.2/topics/logging/

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
        "watcher": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
    },
}


# Sentry Configuration
# https://docs.sentry.io/platforms/python/guides/django/

SENTRY_DSN = os.getenv("SENTRY_DSN", "")
SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

import sentry_sdk

if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        send_default_pii=False,
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        environment=SENTRY_ENVIRONMENT,
    )


# Rendering backend (remote headless browser reached over CDP)
# Rendering is disabled when BROWSERLESS_URL is empty.

BROWSERLESS_URL = os.getenv("BROWSERLESS_URL", "")
BROWSERLESS_TOKEN = os.getenv("BROWSERLESS_TOKEN", "")


# Watcher Configuration

# Static page fetch timeout (seconds)
WATCHER_FETCH_TIMEOUT = float(os.getenv("WATCHER_FETCH_TIMEOUT", "20"))

# Delay before the single static re-fetch when nothing was extracted (seconds)
WATCHER_STATIC_RETRY_DELAY = float(os.getenv("WATCHER_STATIC_RETRY_DELAY", "2"))

# Redirect hop cap for SSRF-safe fetching
WATCHER_MAX_REDIRECTS = int(os.getenv("WATCHER_MAX_REDIRECTS", "5"))

# Rendering timeouts (seconds)
WATCHER_RENDER_NAVIGATION_TIMEOUT = float(
    os.getenv("WATCHER_RENDER_NAVIGATION_TIMEOUT", "30")
)
WATCHER_RENDER_NETWORK_IDLE_TIMEOUT = float(
    os.getenv("WATCHER_RENDER_NETWORK_IDLE_TIMEOUT", "15")
)

# Scheduler
WATCHER_TICK_SECONDS = int(os.getenv("WATCHER_TICK_SECONDS", "60"))
WATCHER_MAX_CONCURRENT_CHECKS = int(os.getenv("WATCHER_MAX_CONCURRENT_CHECKS", "10"))
# Slot and in-flight keys expire after this many seconds
WATCHER_CHECK_SLOT_TTL = int(os.getenv("WATCHER_CHECK_SLOT_TTL", "600"))
WATCHER_MAX_JITTER_SECONDS = float(os.getenv("WATCHER_MAX_JITTER_SECONDS", "30"))

# Consecutive failures before a monitor is paused, per plan tier
WATCHER_PAUSE_THRESHOLDS = {
    "free": int(os.getenv("WATCHER_PAUSE_THRESHOLD_FREE", "3")),
    "pro": int(os.getenv("WATCHER_PAUSE_THRESHOLD_PRO", "5")),
    "power": int(os.getenv("WATCHER_PAUSE_THRESHOLD_POWER", "10")),
}

# Monthly rendering caps per user tier, and for the whole system
WATCHER_RENDERER_MONTHLY_CAPS = {
    "free": 0,
    "pro": int(os.getenv("WATCHER_RENDERER_CAP_PRO", "200")),
    "power": int(os.getenv("WATCHER_RENDERER_CAP_POWER", "500")),
}
WATCHER_RENDERER_SYSTEM_CAP = int(os.getenv("WATCHER_RENDERER_SYSTEM_CAP", "1000"))

# Check metrics retention (days)
WATCHER_METRICS_RETENTION_DAYS = int(os.getenv("WATCHER_METRICS_RETENTION_DAYS", "90"))
