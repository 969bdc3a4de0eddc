from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    SUPPORTED_GATEWAYS = ('collectug', 'mpesa')

    def ready(self):
        """
        Validate billing configuration when serving requests.

        Management commands other than runserver skip the checks so
        migrations and shells work without a full environment.
        """
        import sys
        if 'runserver' not in sys.argv and 'gunicorn' not in sys.argv[0]:
            if len(sys.argv) > 1 and sys.argv[1] not in ['runserver']:
                return

        self._validate_gateway_configuration()
        self._validate_voucher_configuration()
        logger.info("Billing configuration validated")

    def _validate_gateway_configuration(self):
        gateway = getattr(settings, 'PAYMENT_GATEWAY', None)
        if gateway not in self.SUPPORTED_GATEWAYS:
            raise ImproperlyConfigured(
                f"PAYMENT_GATEWAY must be one of {', '.join(self.SUPPORTED_GATEWAYS)}, got {gateway!r}"
            )

        if not getattr(settings, 'PAYMENT_WEBHOOK_SECRET', None):
            logger.warning(
                "PAYMENT_WEBHOOK_SECRET is not set. Unsigned gateway callbacks will be accepted."
            )

    def _validate_voucher_configuration(self):
        prefix = getattr(settings, 'VOUCHER_CODE_PREFIX', '')
        if not prefix or not prefix.isalnum() or not prefix.isupper():
            raise ImproperlyConfigured(
                f"VOUCHER_CODE_PREFIX must be uppercase alphanumeric, got {prefix!r}"
            )

        if getattr(settings, 'VOUCHER_CODE_MAX_ATTEMPTS', 0) < 1:
            raise ImproperlyConfigured("VOUCHER_CODE_MAX_ATTEMPTS must be at least 1")
