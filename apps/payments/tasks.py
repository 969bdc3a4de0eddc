"""
Celery tasks for payment follow-up.

Callbacks get lost and settlement can fail on a storage error; these
sweeps re-drive both without ever duplicating a voucher.
"""
import logging

from celery import shared_task

from apps.core.scope import TenantScope

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=0)
def retry_unsettled_payments(self, limit: int = 100):
    """
    Settle completed payments that still have no voucher.

    Returns:
        dict: Counts per settlement outcome
    """
    from apps.payments.services import SettlementService

    counts = SettlementService.settle_pending(TenantScope.global_scope(), limit=limit)
    logger.info("Settlement retry task completed", extra={**counts, 'task_id': self.request.id})
    return counts


@shared_task(bind=True, max_retries=0)
def poll_pending_payments(self, min_age_minutes: int = 2, limit: int = 100):
    """
    Ask the gateway about pending payments no callback has resolved.

    Returns:
        dict: {'checked', 'completed', 'failed', 'errors'}
    """
    from apps.payments.services import PaymentService

    counts = PaymentService.poll_pending(
        TenantScope.global_scope(), min_age_minutes=min_age_minutes, limit=limit
    )
    logger.info("Pending payment poll completed", extra={**counts, 'task_id': self.request.id})
    return counts
