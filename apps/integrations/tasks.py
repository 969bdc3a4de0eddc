"""
Celery tasks for outbound customer notifications.
"""
import logging

from celery import shared_task

from apps.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class SmsNotSent(ExternalServiceError):
    """Raised inside the task so Celery retries an undelivered SMS."""
    code = 'SMS_NOT_SENT'


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(SmsNotSent,),
    retry_backoff=True,
    retry_backoff_max=900,  # 15 minutes
    retry_jitter=True
)
def send_voucher_sms(self, voucher_id: str):
    """
    Send a voucher's credentials to its customer by SMS.

    A voucher is only ever notified once; ``sms_sent_at`` marks delivery.
    Undelivered messages are retried with backoff and never touch the
    voucher's lifecycle state.

    Args:
        voucher_id: UUID of the voucher

    Returns:
        dict: {'status', 'voucher_id'}
    """
    from apps.integrations.services.sms_service import SmsService
    from apps.vouchers.models import Voucher

    if not SmsService.is_enabled():
        logger.info("SMS disabled, not notifying", extra={'voucher_id': voucher_id})
        return {'status': 'disabled', 'voucher_id': voucher_id}

    try:
        voucher = Voucher.objects.by_pk(voucher_id).select_related('customer', 'payment').get()
    except Voucher.DoesNotExist:
        logger.warning("Voucher not found for SMS", extra={'voucher_id': voucher_id})
        return {'status': 'error', 'error': 'Voucher not found', 'voucher_id': voucher_id}

    if voucher.sms_sent_at:
        return {'status': 'already_sent', 'voucher_id': voucher_id}

    if not SmsService().send_voucher(voucher):
        if not (voucher.customer_id or voucher.payment_id):
            return {'status': 'no_recipient', 'voucher_id': voucher_id}
        logger.warning(
            "Voucher SMS not delivered, will retry",
            extra={'voucher_id': voucher_id, 'task_id': self.request.id, 'attempt': self.request.retries + 1}
        )
        raise SmsNotSent("Voucher SMS not delivered", details={'voucher_id': voucher_id})

    return {'status': 'sent', 'voucher_id': voucher_id}
