"""
Integration models for inbound webhook auditing.

Every payment-provider callback is recorded before it is processed so
that rejected, ignored and failed deliveries can be investigated later.
"""
from django.db import models
from django.utils import timezone

from apps.core.models import BaseModel


class WebhookLog(BaseModel):
    """
    One inbound webhook request and what became of it.

    ``tenant`` is filled in once the referenced payment is found; it stays
    null for callbacks that could not be matched.
    """

    STATUS_RECEIVED = 'received'
    STATUS_SUCCESS = 'success'
    STATUS_ERROR = 'error'
    STATUS_UNAUTHORIZED = 'unauthorized'
    STATUS_IGNORED = 'ignored'

    STATUS_CHOICES = [
        (STATUS_RECEIVED, 'Received'),
        (STATUS_SUCCESS, 'Success'),
        (STATUS_ERROR, 'Error'),
        (STATUS_UNAUTHORIZED, 'Unauthorized'),
        (STATUS_IGNORED, 'Ignored'),
    ]

    PROVIDER_CHOICES = [
        ('collectug', 'CollectUG'),
        ('mpesa', 'M-Pesa'),
        ('other', 'Other'),
    ]

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='webhook_logs',
        help_text="Tenant of the matched payment (null if unmatched)"
    )
    provider = models.CharField(max_length=50, choices=PROVIDER_CHOICES, db_index=True)
    event = models.CharField(max_length=100, db_index=True)

    payload = models.JSONField(help_text="Webhook body with secrets masked")
    headers = models.JSONField(default=dict, blank=True)

    status = models.CharField(
        max_length=30,
        choices=STATUS_CHOICES,
        default=STATUS_RECEIVED,
        db_index=True
    )
    outcome = models.CharField(max_length=30, blank=True, help_text="Callback handling outcome")
    reference = models.CharField(max_length=128, blank=True, db_index=True)
    error_message = models.TextField(null=True, blank=True)

    received_at = models.DateTimeField(auto_now_add=True, db_index=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    processing_time_ms = models.IntegerField(null=True, blank=True)

    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(null=True, blank=True)
    request_id = models.CharField(max_length=64, null=True, blank=True, db_index=True)

    class Meta:
        db_table = 'webhook_logs'
        ordering = ['-received_at']
        indexes = [
            models.Index(fields=['provider', 'status', 'received_at']),
            models.Index(fields=['tenant', 'received_at']),
        ]

    def __str__(self):
        return f"{self.provider} - {self.event} - {self.status}"

    def _finish(self, status, processing_time_ms=None, **fields):
        self.status = status
        self.processed_at = timezone.now()
        if processing_time_ms is not None:
            self.processing_time_ms = processing_time_ms
        for name, value in fields.items():
            setattr(self, name, value)
        self.save(update_fields=[
            'status', 'processed_at', 'processing_time_ms', 'updated_at', *fields.keys()
        ])

    def mark_success(self, outcome='', tenant_id=None, processing_time_ms=None):
        """Mark the webhook as processed."""
        self._finish(self.STATUS_SUCCESS, processing_time_ms, outcome=outcome, tenant_id=tenant_id)

    def mark_ignored(self, outcome='ignored', tenant_id=None, processing_time_ms=None):
        """Mark the webhook as accepted but not acted on."""
        self._finish(self.STATUS_IGNORED, processing_time_ms, outcome=outcome, tenant_id=tenant_id)

    def mark_error(self, error_message, processing_time_ms=None):
        """Mark webhook processing as failed."""
        self._finish(self.STATUS_ERROR, processing_time_ms, error_message=error_message)

    def mark_unauthorized(self, error_message=None):
        """Mark the webhook as rejected by signature checks."""
        self._finish(
            self.STATUS_UNAUTHORIZED,
            error_message=error_message or 'Signature verification failed'
        )
