"""
Celery tasks for voucher lifecycle sweeps.
"""
import logging

from celery import shared_task

from apps.core.scope import TenantScope

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=0)
def expire_due_vouchers(self, tenant_id: str = None):
    """
    Move vouchers whose validity window has passed to ``expired``.

    Runs across all tenants unless ``tenant_id`` is given.

    Returns:
        dict: {'expired': int}
    """
    from apps.vouchers.services import VoucherService

    scope = TenantScope.global_scope(tenant_id)
    count = VoucherService.expire_due(scope)
    logger.info(
        "Voucher expiry sweep completed",
        extra={**scope.log_extra(), 'task_id': self.request.id, 'expired': count}
    )
    return {'expired': count}


@shared_task(bind=True, max_retries=0)
def apply_voucher_expiration_policies(self, dry_run: bool = False):
    """
    Apply auto-disable and delete-after policies tenant by tenant.

    Returns:
        dict: Totals over all active tenants
    """
    from apps.tenants.models import Tenant
    from apps.vouchers.services import VoucherService

    totals = {'tenants': 0, 'disabled': 0, 'deleted': 0, 'dry_run': dry_run}
    for tenant in Tenant.objects.active():
        result = VoucherService.apply_expiration_policies(TenantScope.for_tenant(tenant), dry_run=dry_run)
        totals['tenants'] += 1
        totals['disabled'] += result['disabled']
        totals['deleted'] += result['deleted']

    logger.info("Voucher expiration policy task completed", extra={**totals, 'task_id': self.request.id})
    return totals
