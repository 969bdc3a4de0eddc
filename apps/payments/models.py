"""
Payment model and state transitions.

Status only moves ``pending -> completed`` or ``pending -> failed``. Every
transition is a compare-and-swap UPDATE filtered on the current status, so
webhook and poll handlers can race safely: the one whose UPDATE touches a
row owns the follow-up work.
"""
from datetime import timedelta

from django.db import models
from django.utils import timezone

from apps.core.exceptions import InvariantViolation
from apps.core.models import BaseModel
from apps.core.scope import ScopedManager, ScopedQuerySet


class PaymentQuerySet(ScopedQuerySet):
    """Payment queries. Tenant data is reached through ``for_scope``."""

    def pending(self):
        return self.filter(status=Payment.STATUS_PENDING)

    def completed(self):
        return self.filter(status=Payment.STATUS_COMPLETED)

    def stale_pending(self, older_than_minutes):
        cutoff = timezone.now() - timedelta(minutes=older_than_minutes)
        return self.pending().filter(created_at__lt=cutoff)

    def awaiting_settlement(self):
        """Completed payments that have not produced a voucher yet."""
        return self.completed().filter(tenant__isnull=False, voucher__isnull=True)


class Payment(BaseModel):
    """
    One attempted purchase of hotspot access.

    ``transaction_id`` is ours and is handed to the caller as the
    idempotency key. ``provider_reference`` is the gateway's id and is
    written at most once.
    """

    STATUS_PENDING = 'pending'
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
    ]
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='payments',
        help_text="Owning tenant (null for platform-level payments)"
    )
    customer = models.ForeignKey(
        'tenants.Customer',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='payments',
        help_text="Paying customer"
    )
    phone = models.CharField(
        max_length=20,
        help_text="Phone number charged, E.164"
    )

    transaction_id = models.CharField(
        max_length=64,
        unique=True,
        help_text="Our transaction id, e.g. PAY-20240101-ABCDEFGH"
    )
    provider = models.CharField(
        max_length=30,
        help_text="Gateway that handles this payment"
    )
    provider_reference = models.CharField(
        max_length=128,
        unique=True,
        null=True,
        blank=True,
        help_text="Gateway reference, set once"
    )

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Amount charged"
    )
    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code"
    )
    package = models.CharField(
        max_length=50,
        help_text="Voucher package purchased"
    )
    description = models.CharField(
        max_length=255,
        blank=True,
        default=''
    )

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
        db_index=True
    )
    paid_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.CharField(max_length=255, blank=True, default='')
    last_checked_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last time the gateway was polled for this payment"
    )

    gateway_response = models.JSONField(
        default=dict,
        blank=True,
        help_text="Last raw response or callback from the gateway"
    )
    metadata = models.JSONField(default=dict, blank=True)

    objects = ScopedManager.from_queryset(PaymentQuerySet)()

    class Meta:
        db_table = 'payments'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['tenant', 'status', 'created_at']),
            models.Index(fields=['status', 'created_at']),
        ]

    def __str__(self):
        return f"{self.transaction_id} ({self.status})"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def age_minutes(self, now=None):
        now = now or timezone.now()
        return (now - self.created_at).total_seconds() / 60

    def transition(self, to_status, **fields):
        """
        Compare-and-swap ``pending -> to_status``.

        Returns:
            bool: True when this call moved the row. False means another
            writer already made the payment terminal; the instance is
            refreshed either way.

        Raises:
            InvariantViolation: If ``to_status`` is not terminal.
        """
        if to_status not in self.TERMINAL_STATUSES:
            raise InvariantViolation(
                f"Payments can only move to {' or '.join(self.TERMINAL_STATUSES)}",
                details={'transaction_id': self.transaction_id, 'to_status': to_status}
            )

        now = timezone.now()
        if to_status == self.STATUS_COMPLETED:
            fields.setdefault('paid_at', now)
        elif to_status == self.STATUS_FAILED:
            fields.setdefault('failed_at', now)

        updated = Payment.objects.by_pk(self.pk).filter(
            status=self.STATUS_PENDING,
        ).update(status=to_status, updated_at=now, **fields)

        self.refresh_from_db()
        return updated == 1

    def set_provider_reference(self, reference):
        """
        Record the gateway reference if none is stored yet.

        Returns:
            bool: True if the reference was written by this call.
        """
        if not reference or reference == self.provider_reference:
            return False
        updated = Payment.objects.by_pk(self.pk).filter(
            provider_reference__isnull=True,
        ).update(provider_reference=reference, updated_at=timezone.now())
        if updated:
            self.provider_reference = reference
        return updated == 1

    @property
    def voucher_or_none(self):
        from apps.vouchers.models import Voucher
        return Voucher.objects_with_deleted.filter(payment_id=self.pk).first()
