"""
Voucher model.

A voucher is a hotspot username/password pair. ``code`` is unique per
tenant and doubles as the access-controller username; ``payment`` is
unique so a payment can never produce a second voucher.
"""
from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.core.models import BaseModel
from apps.core.scope import ScopedManager, ScopedQuerySet


class VoucherQuerySet(ScopedQuerySet):
    """Voucher queries. Tenant data is reached through ``for_scope``."""

    def by_code(self, code):
        return self.filter(code=code.strip().upper())

    def logically_expired(self, now=None):
        """Stored ``expired`` plus active/used vouchers past ``expires_at``."""
        now = now or timezone.now()
        return self.filter(
            Q(status=Voucher.STATUS_EXPIRED)
            | Q(status__in=Voucher.TIMED_STATUSES, expires_at__lt=now)
        )

    def due_for_expiry(self, now=None):
        now = now or timezone.now()
        return self.filter(status__in=Voucher.TIMED_STATUSES, expires_at__lt=now)

    def issued_today(self):
        start = timezone.now().replace(hour=0, minute=0, second=0, microsecond=0)
        return self.filter(created_at__gte=start)


class Voucher(BaseModel):
    """
    Prepaid hotspot access credential.

    Lifecycle::

        unused -> active -> used
        active/used -> expired          (expiry sweep)
        unused/active -> disabled
        any status but active -> refunded

    ``expires_at`` is set when the voucher leaves ``unused`` and is the
    source of truth for expiry; the ``expired`` status is a materialised
    copy written by the sweep.
    """

    STATUS_UNUSED = 'unused'
    STATUS_ACTIVE = 'active'
    STATUS_USED = 'used'
    STATUS_EXPIRED = 'expired'
    STATUS_DISABLED = 'disabled'
    STATUS_REFUNDED = 'refunded'

    STATUS_CHOICES = [
        (STATUS_UNUSED, 'Unused'),
        (STATUS_ACTIVE, 'Active'),
        (STATUS_USED, 'Used'),
        (STATUS_EXPIRED, 'Expired'),
        (STATUS_DISABLED, 'Disabled'),
        (STATUS_REFUNDED, 'Refunded'),
    ]

    TIMED_STATUSES = (STATUS_ACTIVE, STATUS_USED)
    LOCKED_STATUSES = (STATUS_ACTIVE, STATUS_USED, STATUS_EXPIRED)
    ENABLED_STATUSES = (STATUS_UNUSED, STATUS_ACTIVE, STATUS_USED)

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.PROTECT,
        related_name='vouchers'
    )
    customer = models.ForeignKey(
        'tenants.Customer',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='vouchers'
    )
    payment = models.OneToOneField(
        'payments.Payment',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='voucher',
        help_text="Payment that produced this voucher (unique)"
    )

    code = models.CharField(
        max_length=32,
        help_text="Voucher code, also the hotspot username"
    )
    password = models.CharField(max_length=32)
    package = models.CharField(max_length=50)
    profile = models.CharField(
        max_length=64,
        help_text="Access-controller user profile (bandwidth plan)"
    )
    validity_hours = models.PositiveIntegerField()
    data_limit_mb = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Data cap in MB, null for unlimited"
    )
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    currency = models.CharField(max_length=3, default='UGX')

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_UNUSED,
        db_index=True
    )
    activated_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True, db_index=True)
    used_at = models.DateTimeField(null=True, blank=True)
    disabled_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    sms_sent_at = models.DateTimeField(null=True, blank=True)
    router_synced_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last time the access controller was converged for this voucher"
    )

    notes = models.TextField(blank=True, default='')
    metadata = models.JSONField(default=dict, blank=True)

    objects = ScopedManager.from_queryset(VoucherQuerySet)()

    class Meta:
        db_table = 'vouchers'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(fields=['tenant', 'code'], name='uniq_voucher_code_per_tenant'),
        ]
        indexes = [
            models.Index(fields=['tenant', 'status']),
            models.Index(fields=['status', 'expires_at']),
        ]

    def __str__(self):
        return f"{self.code} ({self.status})"

    def is_expired(self, now=None):
        """True once ``expires_at`` has passed, whatever the stored status says."""
        if self.expires_at is None:
            return False
        return self.expires_at < (now or timezone.now())

    def should_be_enabled(self, now=None):
        """Whether the access controller should let this voucher log in."""
        if self.status not in self.ENABLED_STATUSES:
            return False
        return not self.is_expired(now)

    @property
    def is_editable(self):
        return self.status not in self.LOCKED_STATUSES
