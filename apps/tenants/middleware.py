"""
Tenant context middleware.

Resolves the caller once per request and attaches a ``TenantScope`` that
views pass explicitly into every service call.
"""
import hmac
import logging
import uuid

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from apps.core.scope import TenantScope
from .models import Tenant

logger = logging.getLogger(__name__)


class TenantContextMiddleware(MiddlewareMixin):
    """
    Build ``request.scope`` from request headers.

    - ``X-TENANT-ID`` + ``X-TENANT-API-KEY``: tenant scope
    - ``X-PLATFORM-API-KEY`` (+ optional ``X-TENANT-ID``): global scope,
      targeted at the given tenant when one is supplied

    Gateway callbacks and health checks are public; they carry no scope and
    resolve tenants from the payment they reference.
    """

    PUBLIC_PATHS = [
        '/v1/webhooks/',
        '/v1/health',
        '/schema',
    ]

    def process_request(self, request):
        request.request_id = request.headers.get('X-Request-ID', str(uuid.uuid4()))
        request.tenant = None
        request.scope = None

        if self._is_public_path(request.path):
            return None

        platform_key = request.headers.get('X-PLATFORM-API-KEY')
        tenant_id = request.headers.get('X-TENANT-ID')

        if platform_key:
            return self._resolve_global(request, platform_key, tenant_id)

        api_key = request.headers.get('X-TENANT-API-KEY')
        if not tenant_id or not api_key:
            return self._error_response(
                'MISSING_CREDENTIALS',
                'X-TENANT-ID and X-TENANT-API-KEY headers are required',
                status=401
            )

        tenant = self._get_tenant(tenant_id)
        if tenant is None or not tenant.check_api_key(api_key):
            logger.warning(
                "Rejected tenant credentials",
                extra={'request_id': request.request_id, 'tenant_id': tenant_id}
            )
            return self._error_response('INVALID_CREDENTIALS', 'Invalid tenant credentials', status=401)

        if not tenant.is_active():
            return self._error_response(
                'TENANT_SUSPENDED',
                'This account is suspended',
                status=403,
                details={'status': tenant.status}
            )

        request.tenant = tenant
        request.scope = TenantScope.for_tenant(tenant)

        from apps.core.sentry_utils import set_tenant_context
        set_tenant_context(tenant)

        logger.debug(
            f"Tenant context set: {tenant.code}",
            extra={'request_id': request.request_id, 'tenant_id': str(tenant.id)}
        )
        return None

    def _resolve_global(self, request, platform_key, tenant_id):
        expected = getattr(settings, 'PLATFORM_API_KEY', None)
        if not expected or not hmac.compare_digest(platform_key, expected):
            logger.warning(
                "Rejected platform credentials",
                extra={'request_id': request.request_id}
            )
            return self._error_response('INVALID_CREDENTIALS', 'Invalid platform credentials', status=401)

        target = None
        if tenant_id:
            target = self._get_tenant(tenant_id)
            if target is None:
                return self._error_response('INVALID_TENANT', 'Invalid tenant ID', status=404)

        request.tenant = target
        request.scope = TenantScope.global_scope(target)
        return None

    def _get_tenant(self, tenant_id):
        try:
            return Tenant.objects.get(id=tenant_id)
        except (Tenant.DoesNotExist, DjangoValidationError, ValueError):
            return None

    def _is_public_path(self, path):
        return any(path.startswith(public_path) for public_path in self.PUBLIC_PATHS)

    def _error_response(self, code, message, status=400, details=None):
        error_data = {
            'error': {
                'code': code,
                'message': message,
            }
        }
        if details:
            error_data['error']['details'] = details
        return JsonResponse(error_data, status=status)
