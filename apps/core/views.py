"""
Core API views.
"""
import logging
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from django.conf import settings
from django.core.cache import cache
from django.db import connection
from drf_spectacular.utils import extend_schema

logger = logging.getLogger(__name__)

HEALTH_CACHE_KEY = 'policy-engine:health'


def check_database():
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")


def check_cache():
    # Role rules are served from this cache; a stale read means the
    # invalidation path is broken too.
    cache.set(HEALTH_CACHE_KEY, 'ok', timeout=10)
    if cache.get(HEALTH_CACHE_KEY) != 'ok':
        raise RuntimeError("unable to read back health key")


def check_celery():
    from config.celery import app as celery_app
    if not celery_app.control.inspect(timeout=2.0).stats():
        raise RuntimeError("no workers available")


class HealthCheckView(APIView):
    """
    GET /v1/health/

    Checks the database, the rule cache and, when ``HEALTH_CHECK_CELERY`` is
    enabled, the workers that expire approvals and prune counters.
    Returns 503 if any check fails.
    """
    authentication_classes = []
    permission_classes = []

    @extend_schema(
        tags=['Health'],
        summary="Health check",
        responses={
            200: {
                'type': 'object',
                'properties': {
                    'status': {'type': 'string'},
                    'database': {'type': 'string'},
                    'cache': {'type': 'string'},
                    'celery': {'type': 'string'},
                }
            },
            503: {
                'type': 'object',
                'properties': {
                    'status': {'type': 'string'},
                    'errors': {'type': 'array', 'items': {'type': 'string'}},
                }
            }
        }
    )
    def get(self, request):
        checks = [('database', check_database), ('cache', check_cache)]
        if getattr(settings, 'HEALTH_CHECK_CELERY', False):
            checks.append(('celery', check_celery))

        health_status = {'status': 'healthy', 'celery': 'skipped'}
        errors = []

        for name, check in checks:
            try:
                check()
                health_status[name] = 'healthy'
            except Exception as e:
                health_status[name] = 'unhealthy'
                errors.append(f"{name.title()}: {e}")
                logger.error(f"{name.title()} health check failed", exc_info=True)

        if errors:
            health_status['status'] = 'unhealthy'
            health_status['errors'] = errors
            return Response(health_status, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(health_status, status=status.HTTP_200_OK)
