"""
Celery tasks for router synchronisation.

Per-voucher syncs are queued after settlement and after every voucher
state change; the periodic reconcile fans out one task per tenant.
"""
import logging

from celery import shared_task
from django.utils import timezone

from apps.core.scope import TenantScope
from apps.routers.services import (
    AccessControllerError,
    AccessControllerNotConfigured,
    RouterReconciler,
    get_access_controller,
)
from apps.routers.services.reconciler import MODE_ALL

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=5,
    default_retry_delay=60,
    autoretry_for=(AccessControllerError,),
    retry_backoff=True,
    retry_backoff_max=1800,  # 30 minutes
    retry_jitter=True
)
def sync_voucher_to_router(self, voucher_id: str):
    """
    Push one voucher's intended state to its tenant's router.

    Retries with backoff while the router is unreachable. Tenants without
    a configured router are skipped.

    Args:
        voucher_id: UUID of the voucher

    Returns:
        dict: {'status', 'voucher_id', 'action'}
    """
    from apps.vouchers.models import Voucher

    try:
        voucher = Voucher.objects.by_pk(voucher_id).select_related('tenant', 'customer').get()
    except Voucher.DoesNotExist:
        logger.warning("Voucher not found for router sync", extra={'voucher_id': voucher_id})
        return {'status': 'error', 'error': 'Voucher not found', 'voucher_id': voucher_id}

    try:
        controller = get_access_controller(voucher.tenant)
    except AccessControllerNotConfigured:
        logger.info(
            "No router configured, skipping sync",
            extra={'voucher_id': voucher_id, 'tenant_id': str(voucher.tenant_id)}
        )
        return {'status': 'skipped', 'voucher_id': voucher_id, 'action': None}

    logger.info(
        "Syncing voucher to router",
        extra={
            'voucher_id': voucher_id,
            'tenant_id': str(voucher.tenant_id),
            'task_id': self.request.id,
            'attempt': self.request.retries + 1
        }
    )
    detail = RouterReconciler(controller).reconcile_voucher(voucher)
    return {'status': 'success', 'voucher_id': voucher_id, 'action': detail.action}


@shared_task(bind=True, max_retries=0)
def reconcile_tenant(self, tenant_id: str, mode: str = MODE_ALL):
    """
    Run one reconciliation pass for a tenant and record the result on its
    router config.

    Returns:
        dict: ReconcileResult as a dict, or an error/skip marker
    """
    from apps.routers.models import RouterConfig

    config = RouterConfig.objects.for_scope(TenantScope.for_tenant(tenant_id)).select_related('tenant').first()
    if config is None or not config.is_enabled:
        logger.info("Router sync disabled for tenant", extra={'tenant_id': tenant_id})
        return {'status': 'skipped', 'tenant_id': tenant_id}

    start_time = timezone.now()
    controller = get_access_controller(config.tenant)
    result = RouterReconciler(controller).reconcile(TenantScope.for_tenant(config.tenant), mode=mode)
    summary = result.to_dict()

    RouterConfig.objects.by_pk(config.pk).update(
        last_sync_at=timezone.now(),
        last_sync_result={k: v for k, v in summary.items() if k != 'details'},
        updated_at=timezone.now(),
    )

    logger.info(
        "Tenant reconciliation task completed",
        extra={
            'tenant_id': tenant_id,
            'task_id': self.request.id,
            'duration_seconds': (timezone.now() - start_time).total_seconds(),
        }
    )
    return summary


@shared_task
def reconcile_all_tenants(mode: str = MODE_ALL):
    """Queue a reconciliation for every tenant with an enabled router."""
    from apps.routers.models import RouterConfig

    configs = RouterConfig.objects.for_scope(TenantScope.global_scope()).enabled()
    tenant_ids = [str(t) for t in configs.values_list('tenant_id', flat=True)]
    for tenant_id in tenant_ids:
        reconcile_tenant.delay(tenant_id, mode)

    logger.info("Queued tenant reconciliations", extra={'count': len(tenant_ids), 'mode': mode})
    return {'queued': len(tenant_ids)}


@shared_task(bind=True, max_retries=0)
def cleanup_expired_vouchers(self, tenant_id: str = None, purge: bool = False):
    """
    Remove expired users from routers, for one tenant or all of them.

    Returns:
        dict: {'tenants', 'removed', 'purged', 'failed'}
    """
    from apps.routers.models import RouterConfig

    configs = RouterConfig.objects.for_scope(TenantScope.global_scope(tenant_id)).enabled().select_related('tenant')

    totals = {'tenants': 0, 'removed': 0, 'purged': 0, 'failed': 0}
    for config in configs:
        scope = TenantScope.for_tenant(config.tenant)
        try:
            controller = get_access_controller(config.tenant)
            outcome = RouterReconciler(controller).cleanup_expired(scope, purge=purge)
        except AccessControllerError as e:
            totals['failed'] += 1
            logger.warning(
                f"Router cleanup failed: {e.message}",
                extra={**scope.log_extra(), 'task_id': self.request.id}
            )
            continue
        totals['tenants'] += 1
        totals['removed'] += outcome['removed']
        totals['purged'] += outcome['purged']

    logger.info("Expired voucher cleanup task completed", extra=totals)
    return totals
