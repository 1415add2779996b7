"""
Watcher views.

Health check endpoint for monitoring and load balancer checks.
"""

from django.db import connection
from django.http import JsonResponse

from watcher.models import CheckStatus, Monitor


def get_redis_connection():
    """
    Get the Redis client behind the default cache.

    Returns:
        Redis client if the cache is Redis-backed, None otherwise.
    """
    from django.core.cache import cache

    redis_cache = getattr(cache, "_cache", None)
    if redis_cache is None or not hasattr(redis_cache, "get_client"):
        return None
    return redis_cache.get_client(write=True)


def get_celery_worker_count():
    """
    Get the count of active Celery workers.

    Returns:
        int: Number of active workers, 0 if Celery not available.
    """
    try:
        from config.celery import app as celery_app

        active = celery_app.control.inspect(timeout=1.0).active()
        return len(active) if active else 0
    except Exception:
        return 0


def health_check(request):
    """
    Health check endpoint for the watcher service.

    Endpoint: GET /api/health/
    No authentication required (for load balancer checks).

    Response fields:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "error"
        - redis: "connected", "not_configured", or "error"
        - celery_workers: integer count of active workers
        - active_monitors: monitors currently scheduled
        - failing_monitors: active monitors whose last check did not succeed

    Returns:
        JsonResponse: HTTP 200 for healthy, HTTP 503 for unhealthy
    """
    status = "healthy"
    http_status = 200

    database_status = "connected"
    try:
        connection.ensure_connection()
    except Exception:
        database_status = "error"
        status = "unhealthy"
        http_status = 503

    redis_status = "not_configured"
    try:
        redis_client = get_redis_connection()
        if redis_client is not None:
            redis_status = "connected" if redis_client.ping() else "error"
    except Exception:
        redis_status = "error"

    active_monitors = None
    failing_monitors = None
    if database_status == "connected":
        try:
            active = Monitor.objects.filter(active=True)
            active_monitors = active.count()
            failing_monitors = active.exclude(last_status=CheckStatus.OK).count()
        except Exception:
            # Tables may not exist yet during first deploy
            pass

    response_data = {
        "status": status,
        "database": database_status,
        "redis": redis_status,
        "celery_workers": get_celery_worker_count(),
        "active_monitors": active_monitors,
        "failing_monitors": failing_monitors,
    }

    return JsonResponse(response_data, status=http_status)
