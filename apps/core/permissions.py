"""
DRF permission classes for tenant scope enforcement.

``TenantContextMiddleware`` attaches ``request.scope``; these classes
only decide whether the resolved scope may use a view.
"""
import logging

from rest_framework.permissions import BasePermission

logger = logging.getLogger(__name__)


def _request_scope(request):
    return getattr(request, 'scope', None) or getattr(getattr(request, '_request', None), 'scope', None)


class HasTenantScope(BasePermission):
    """
    Allow requests that carry a resolved ``TenantScope``.

    Also implements ``has_object_permission`` so a detail view can never
    return a row owned by a tenant the scope does not cover.
    """

    message = 'Tenant credentials are required'

    def has_permission(self, request, view):
        scope = _request_scope(request)
        if scope is None:
            logger.warning(
                "Permission denied: no tenant scope",
                extra={'path': request.path, 'request_id': getattr(request, 'request_id', None)}
            )
            return False
        return True

    def has_object_permission(self, request, view, obj):
        scope = _request_scope(request)
        tenant_id = getattr(obj, 'tenant_id', None)
        if scope is None:
            return False
        if tenant_id is None:
            return scope.is_global
        return scope.allows(tenant_id)

