"""
Sentry helpers for tagging events with tenant and settlement context.

All helpers are no-ops when ``SENTRY_DSN`` is not configured.
"""
import sentry_sdk
from django.conf import settings


def set_tenant_context(tenant):
    """Tag subsequent Sentry events with the tenant resolved for the request."""
    if not settings.SENTRY_DSN:
        return

    sentry_sdk.set_context("tenant", {
        "id": str(tenant.id),
        "code": tenant.code,
        "status": tenant.status,
    })
    sentry_sdk.set_tag("tenant_code", tenant.code)


def add_breadcrumb(category, message, level="info", data=None):
    """
    Record a breadcrumb for the next captured event.

    Args:
        category: "payment", "settlement" or "router"
        message: Human-readable message
        level: Severity level
        data: Extra key/values (tenant_id, transaction_id...)
    """
    if not settings.SENTRY_DSN:
        return

    sentry_sdk.add_breadcrumb(category=category, message=message, level=level, data=data or {})


def capture_exception(exception, **contexts):
    """Report ``exception`` with each keyword argument attached as a named context block."""
    if not settings.SENTRY_DSN:
        return

    with sentry_sdk.push_scope() as scope:
        for name, value in contexts.items():
            scope.set_context(name, value)
        sentry_sdk.capture_exception(exception)
