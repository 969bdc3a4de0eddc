"""
Core API views.
"""
import logging

from django.core.cache import cache
from django.db import connection
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

logger = logging.getLogger(__name__)


def _check_database():
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")


def _check_cache():
    cache.set('health_check', 'ok', timeout=10)
    if cache.get('health_check') != 'ok':
        raise RuntimeError("Unable to read test key")


def _check_celery():
    from config.celery import app as celery_app
    if not celery_app.control.inspect(timeout=2.0).stats():
        raise RuntimeError("No workers available")


class HealthCheckView(APIView):
    """
    Health check endpoint for load balancers.

    GET /v1/health

    Returns 200 if the database, cache and Celery workers respond, 503
    otherwise.
    """
    authentication_classes = []
    permission_classes = []

    CHECKS = (
        ('database', _check_database),
        ('cache', _check_cache),
        ('celery', _check_celery),
    )

    @extend_schema(
        summary="Health check",
        responses={
            200: {'type': 'object', 'additionalProperties': {'type': 'string'}},
            503: {'type': 'object'},
        }
    )
    def get(self, request):
        health_status = {'status': 'healthy'}
        errors = []

        for name, check in self.CHECKS:
            try:
                check()
                health_status[name] = 'healthy'
            except Exception as e:
                health_status[name] = 'unhealthy'
                errors.append(f"{name}: {str(e)}")
                logger.error(f"{name} health check failed", exc_info=True)

        if errors:
            health_status['status'] = 'unhealthy'
            health_status['errors'] = errors
            return Response(health_status, status=status.HTTP_503_SERVICE_UNAVAILABLE)
        return Response(health_status, status=status.HTTP_200_OK)
