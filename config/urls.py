"""
URL configuration for the Page Watcher service.

The check engine has no HTTP surface of its own; only the admin and a
health probe are routed.
"""

from django.contrib import admin
from django.urls import path

from watcher.views import health_check

urlpatterns = [
    path("admin/", admin.site.urls),
    # Health Check Endpoint (no auth required for load balancer checks)
    path("api/health/", health_check, name="health-check"),
]
