"""
Exception hierarchy and DRF exception handler.

Service code raises ``HotspotException`` subclasses; the API layer maps
their ``status_code`` onto responses so views stay free of try/except
boilerplate.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django_ratelimit.exceptions import Ratelimited

logger = logging.getLogger(__name__)

RATE_LIMIT_RETRY_AFTER = 60


def custom_exception_handler(exc, context):
    """
    Log API errors and return a consistent error body.

    Body shape: ``{"error": str, "code": str, "details": dict, "request_id": str}``.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, Ratelimited):
        from apps.core.logging import SecurityLogger

        ip_address = request.META.get('REMOTE_ADDR', 'unknown') if request else 'unknown'
        tenant = getattr(request, 'tenant', None) if request else None
        SecurityLogger.log_rate_limit_exceeded(
            endpoint=request.path if request else 'unknown',
            ip_address=ip_address,
            tenant_id=str(tenant.id) if tenant else None,
        )
        response = Response(
            {
                'error': 'Rate limit exceeded. Please try again later.',
                'code': 'RATE_LIMIT_EXCEEDED',
                'request_id': request_id,
                'retry_after': RATE_LIMIT_RETRY_AFTER,
            },
            status=status.HTTP_429_TOO_MANY_REQUESTS
        )
        response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
        return response

    if isinstance(exc, HotspotException):
        status_code = getattr(exc, 'status_code', status.HTTP_500_INTERNAL_SERVER_ERROR)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            f"Service error: {exc.__class__.__name__}",
            extra={
                'error': exc.message,
                'details': exc.details,
                'request_id': request_id,
                'path': request.path if request else None,
            }
        )
        return Response(
            {
                'error': exc.message,
                'code': exc.code,
                'details': exc.details,
                'request_id': request_id,
            },
            status=status_code
        )

    response = exception_handler(exc, context)

    logger.error(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
        },
        exc_info=response is None
    )

    if response is None:
        return Response(
            {
                'error': 'Internal server error',
                'code': 'INTERNAL_ERROR',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response


class HotspotException(Exception):
    """Base exception for billing pipeline errors."""

    status_code = 500
    code = 'ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class TenantNotFound(HotspotException):
    """Raised when a tenant cannot be resolved."""
    status_code = 404
    code = 'TENANT_NOT_FOUND'


class ScopeRequired(HotspotException):
    """Raised when a query is attempted without a usable tenant scope."""
    status_code = 403
    code = 'SCOPE_REQUIRED'


class AuthenticationError(HotspotException):
    """Raised when authentication fails."""
    status_code = 401
    code = 'UNAUTHORIZED'


class PermissionDeniedError(HotspotException):
    """Raised when the actor may not perform the action."""
    status_code = 403
    code = 'FORBIDDEN'


class ValidationError(HotspotException):
    """Raised when input validation fails before any state change."""
    status_code = 400
    code = 'VALIDATION_ERROR'


class NotFoundError(HotspotException):
    status_code = 404
    code = 'NOT_FOUND'


class InvariantViolation(HotspotException):
    """Raised when an operation would break a lifecycle rule. Not retryable."""
    status_code = 409
    code = 'INVARIANT_VIOLATION'


class ExternalServiceError(HotspotException):
    """Raised when a gateway, device or SMS provider call fails."""
    status_code = 502
    code = 'EXTERNAL_SERVICE_ERROR'


class FeatureLimitExceeded(HotspotException):
    """Raised when a tenant exceeds a plan limit."""
    status_code = 429
    code = 'LIMIT_EXCEEDED'
