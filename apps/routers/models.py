"""
Access-controller connection settings, one row per tenant.
"""
from django.db import models

from apps.core.models import BaseModel
from apps.core.scope import ScopedManager, ScopedQuerySet


class RouterConfigQuerySet(ScopedQuerySet):

    def enabled(self):
        return self.filter(is_enabled=True, tenant__status='active')


class RouterConfig(BaseModel):
    """Where and how to reach a tenant's hotspot router."""

    tenant = models.OneToOneField(
        'tenants.Tenant',
        on_delete=models.PROTECT,
        related_name='router_config'
    )
    host = models.CharField(max_length=255, help_text="Router address or hostname")
    port = models.PositiveIntegerField(null=True, blank=True, help_text="REST API port")
    username = models.CharField(max_length=100)
    password = models.CharField(max_length=255)
    use_ssl = models.BooleanField(default=True)
    verify_ssl = models.BooleanField(default=True)
    timeout = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Request timeout in seconds (defaults to ROUTER_TIMEOUT)"
    )
    hotspot_server = models.CharField(max_length=64, default='all')
    is_enabled = models.BooleanField(default=True)

    last_sync_at = models.DateTimeField(null=True, blank=True)
    last_sync_result = models.JSONField(default=dict, blank=True)

    objects = ScopedManager.from_queryset(RouterConfigQuerySet)()

    class Meta:
        db_table = 'router_configs'

    def __str__(self):
        return f"{self.tenant_id} -> {self.host}"
