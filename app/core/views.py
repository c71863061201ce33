"""
Core views providing infrastructure endpoints.

The chat runs over websockets; the only HTTP endpoint is the health check
used by container orchestration and load balancers.
"""

import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for monitoring and orchestration.

    Returns:
        JsonResponse with status and component health:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "disconnected"
        - channel_layer: "connected", "disconnected" or "missing"

    HTTP Status Codes:
        200: All systems operational
        503: Database or channel layer unavailable

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "channel_layer": "connected"
        }
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "channel_layer": "unknown",
    }
    is_healthy = True

    # Check database connectivity
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        logger.exception("Health check: database unreachable")
        health_status["database"] = "disconnected"
        is_healthy = False

    # Realtime delivery depends on the channel layer (Redis in production)
    channel_layer = get_channel_layer()
    if channel_layer is None:
        health_status["channel_layer"] = "missing"
        is_healthy = False
    else:
        try:
            async_to_sync(channel_layer.group_send)("health", {"type": "health.check"})
            health_status["channel_layer"] = "connected"
        except Exception:
            logger.exception("Health check: channel layer unreachable")
            health_status["channel_layer"] = "disconnected"
            is_healthy = False

    if not is_healthy:
        health_status["status"] = "unhealthy"
    status_code = 200 if is_healthy else 503

    return JsonResponse(health_status, status=status_code)
