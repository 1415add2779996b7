"""
Celery configuration for the Page Watcher service.

Beat drives the monitor scheduler once a minute and prunes check
metrics once a day.
"""

import os
from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("page_watcher")

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
# - namespace='CELERY' means all celery-related configuration keys
#   should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

app.conf.task_queues = {
    "checks": {
        "exchange": "checks",
        "routing_key": "checks",
    },
    "default": {
        "exchange": "default",
        "routing_key": "default",
    },
}

app.conf.task_default_queue = "default"
app.conf.task_default_exchange = "default"
app.conf.task_default_routing_key = "default"

app.conf.task_routes = {
    "watcher.tasks.check_due_monitors": {"queue": "checks"},
    "watcher.tasks.run_monitor_check": {"queue": "checks"},
    "watcher.tasks.prune_monitor_metrics": {"queue": "default"},
}

app.conf.beat_schedule = {
    "check-due-monitors-every-minute": {
        "task": "watcher.tasks.check_due_monitors",
        "schedule": crontab(minute="*"),
    },
    "prune-monitor-metrics-daily": {
        "task": "watcher.tasks.prune_monitor_metrics",
        "schedule": crontab(hour=3, minute=0),
    },
}
