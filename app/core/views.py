"""
Core views providing infrastructure endpoints.

This module contains views that are not part of the refund domain but are
essential for running it, such as health checks.
"""

import logging

from django.conf import settings
from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)

HEALTH_CACHE_KEY = "health_check"


def _database_status() -> str:
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except DatabaseError:
        logger.exception("Health check: database unreachable")
        return "disconnected"
    return "connected"


def _cache_status() -> str:
    # IGNORE_EXCEPTIONS makes django_redis return None instead of raising
    cache.set(HEALTH_CACHE_KEY, "ok", timeout=1)
    if cache.get(HEALTH_CACHE_KEY) == "ok":
        return "connected"
    logger.warning("Health check: cache unreachable")
    return "disconnected"


def _gateway_status() -> dict[str, str]:
    """Report which gateways have credentials; no gateway is called."""
    return {
        "paypal": (
            "configured"
            if settings.PAYPAL_CLIENT_ID and settings.PAYPAL_CLIENT_SECRET
            else "unconfigured"
        ),
        "razorpay": (
            "configured"
            if settings.RAZORPAY_KEY_ID and settings.RAZORPAY_KEY_SECRET
            else "unconfigured"
        ),
    }


def health_check(request):
    """
    Health check endpoint for Docker, Kubernetes probes and load balancers.

    The database is the refund ledger, so losing it makes the service
    unhealthy. The cache backs locks and sessions; losing it is reported
    but does not fail the check.

    HTTP Status Codes:
        200: Database reachable
        503: Database unreachable

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
            "gateways": {"paypal": "configured", "razorpay": "unconfigured"}
        }
    """
    database = _database_status()
    is_healthy = database == "connected"

    health_status = {
        "status": "healthy" if is_healthy else "unhealthy",
        "database": database,
        "cache": _cache_status(),
        "gateways": _gateway_status(),
    }
    return JsonResponse(health_status, status=200 if is_healthy else 503)
