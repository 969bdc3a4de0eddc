"""
Structured logging for the billing pipeline.

``JSONFormatter`` renders records as one JSON object per line and masks
phone numbers, secrets and voucher credentials on the way out.
``SecurityLogger`` records webhook anomalies on the ``security`` logger
and forwards critical ones to Sentry.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """Masks customer phone numbers and credentials in log output."""

    PHONE_PATTERN = re.compile(r'\+?\d{10,15}')
    SECRET_PATTERN = re.compile(
        r'(api[_-]?key|token|secret|password|signature)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)',
        re.IGNORECASE
    )

    SENSITIVE_FIELDS = {
        'password', 'router_password', 'voucher_password',
        'api_key', 'access_token', 'auth_token', 'bearer_token',
        'secret', 'webhook_secret', 'signature', 'passkey',
        'consumer_key', 'consumer_secret',
    }
    PHONE_FIELDS = {'phone', 'phone_e164', 'phone_number', 'msisdn', 'to'}

    @classmethod
    def mask_phone(cls, text):
        if not isinstance(text, str):
            return text
        return cls.PHONE_PATTERN.sub(lambda m: m.group(0)[:4] + '*' * (len(m.group(0)) - 4), text)

    @classmethod
    def mask_secrets(cls, text):
        if not isinstance(text, str):
            return text
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        if not isinstance(text, str):
            return text
        return cls.mask_secrets(cls.mask_phone(text))

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive values in a dictionary."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            lowered = str(key).lower()
            if lowered in cls.SENSITIVE_FIELDS or lowered.endswith('_secret'):
                masked[key] = '********' if value else value
            elif lowered in cls.PHONE_FIELDS and isinstance(value, str):
                masked[key] = cls.mask_phone(value)
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            else:
                masked[key] = cls.mask_text(value)
        return masked


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON.

    Known context keys (request_id, tenant_id, task_id, task_name) are
    promoted to top-level fields; everything passed via ``extra`` is
    included after masking.
    """

    RESERVED = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
        'pathname', 'process', 'processName', 'relativeCreated',
        'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
        'taskName',
    }
    CONTEXT_KEYS = ('request_id', 'tenant_id', 'task_id', 'task_name')

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for key in self.CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = str(value)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        for key, value in record.__dict__.items():
            if key in self.RESERVED or key in self.CONTEXT_KEYS or key.startswith('_'):
                continue
            if isinstance(value, dict):
                value = PIIMasker.mask_dict(value)
            elif isinstance(value, str):
                value = PIIMasker.mask_text(value)
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Security and anomaly events for the payment surface.

    Events in ``CRITICAL_EVENTS`` are also sent to Sentry so they page
    someone instead of sitting in a log file.
    """

    CRITICAL_EVENTS = {
        'invalid_webhook_signature',
        'unknown_payment_status',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured context.

        Args:
            event_type: Event name (e.g. 'invalid_webhook_signature')
            level: Log level name
            **context: Additional context (provider, ip_address, tenant_id...)
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'event_time': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra=log_data)

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error' if level in ('error', 'critical') else 'warning',
            )

    @staticmethod
    def log_invalid_webhook_signature(provider: str, ip_address: str = None, reference: str = None):
        """Log a callback whose signature did not match the shared secret."""
        SecurityLogger.log_event(
            'invalid_webhook_signature',
            level='error',
            provider=provider,
            ip_address=ip_address,
            reference=reference,
        )

    @staticmethod
    def log_unknown_payment_status(provider: str, reference: str, raw_status, tenant_id: str = None):
        """Log a callback carrying a status outside the known vocabulary."""
        SecurityLogger.log_event(
            'unknown_payment_status',
            level='warning',
            provider=provider,
            reference=reference,
            raw_status=str(raw_status),
            tenant_id=tenant_id,
        )

    @staticmethod
    def log_rate_limit_exceeded(endpoint: str, ip_address: str, tenant_id: str = None):
        SecurityLogger.log_event(
            'rate_limit_exceeded',
            level='warning',
            endpoint=endpoint,
            ip_address=ip_address,
            tenant_id=tenant_id,
        )
