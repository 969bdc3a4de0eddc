"""
SMS notifications for customers.

Sending is best effort: a failed SMS is logged and retried by the task
layer, and never affects payment or voucher state.
"""
import logging

from django.conf import settings
from django.utils import timezone

from apps.integrations.services.twilio_service import TwilioService, SmsServiceError

logger = logging.getLogger(__name__)

DEFAULT_VOUCHER_TEMPLATE = (
    "Your internet voucher: Code: {code}, Password: {password}, "
    "Valid for: {hours} hours. Expires: {expires_at}. Thank you!"
)


class SmsService:
    """Renders and sends customer SMS through Twilio."""

    def __init__(self, client=None):
        self._client = client

    @staticmethod
    def is_enabled():
        return bool(settings.SMS_ENABLED and settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN)

    @property
    def client(self):
        if self._client is None:
            self._client = TwilioService(
                settings.TWILIO_ACCOUNT_SID,
                settings.TWILIO_AUTH_TOKEN,
                settings.TWILIO_FROM_NUMBER,
                messaging_service_sid=settings.TWILIO_MESSAGING_SERVICE_SID,
            )
        return self._client

    @staticmethod
    def render_voucher_message(voucher, template=None):
        """Fill the voucher SMS template."""
        expires_at = voucher.expires_at
        expires_text = (
            timezone.localtime(expires_at).strftime('%Y-%m-%d %H:%M') if expires_at else 'on first use'
        )
        template = template or settings.SMS_VOUCHER_TEMPLATE or DEFAULT_VOUCHER_TEMPLATE
        return template.format(
            code=voucher.code,
            password=voucher.password,
            hours=voucher.validity_hours,
            expires_at=expires_text,
            package=voucher.package,
        )

    def send(self, phone, message):
        """
        Send ``message`` to ``phone``.

        Returns:
            bool: True when the provider accepted the message
        """
        if not phone:
            return False
        try:
            self.client.send_sms(phone, message)
        except SmsServiceError as e:
            logger.warning(f"SMS not delivered: {e.message}", extra={'phone': phone, **e.details})
            return False
        return True

    def send_voucher(self, voucher):
        """
        Send the voucher credentials to the voucher's customer.

        Returns:
            bool: True if sent; ``sms_sent_at`` is stamped on success
        """
        from apps.vouchers.models import Voucher

        phone = voucher.customer.phone_e164 if voucher.customer_id else None
        if phone is None and voucher.payment_id:
            phone = voucher.payment.phone
        if not phone:
            logger.info("Voucher has no phone to notify", extra={'voucher_id': str(voucher.id)})
            return False

        if not self.send(phone, self.render_voucher_message(voucher)):
            return False

        now = timezone.now()
        Voucher.objects.by_pk(voucher.pk).update(sms_sent_at=now)
        voucher.sms_sent_at = now
        return True
