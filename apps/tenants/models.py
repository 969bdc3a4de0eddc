"""
Tenant and customer models.

A tenant is one hotspot operator. Everything the billing pipeline stores
(payments, vouchers, router settings) hangs off a tenant and is queried
through a ``TenantScope``.
"""
import hashlib
import secrets

from django.db import models
from django.utils import timezone

from apps.core.models import BaseModel, BaseModelManager, BaseModelQuerySet
from apps.core.scope import ScopedManager, ScopedQuerySet


class TenantQuerySet(BaseModelQuerySet):

    def active(self):
        return self.filter(status='active')


class TenantManager(BaseModelManager.from_queryset(TenantQuerySet)):
    """Manager for tenant lookups."""

    def by_code(self, code):
        return self.get(code=code.upper())


class Tenant(BaseModel):
    """
    Hotspot operator and isolation boundary.

    Tenants are suspended through ``status`` rather than deleted; payments
    and vouchers reference them with PROTECT.
    """

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('suspended', 'Suspended'),
    ]

    name = models.CharField(
        max_length=255,
        help_text="Business name"
    )
    code = models.CharField(
        max_length=20,
        unique=True,
        help_text="Short uppercase code used in transaction id prefixes"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='active',
        db_index=True,
        help_text="Current tenant status"
    )

    max_vouchers_per_day = models.PositiveIntegerField(
        default=1000,
        help_text="Daily limit on manually issued vouchers"
    )
    data_retention_days = models.PositiveIntegerField(
        default=365,
        help_text="Days expired payment-less vouchers are kept before purging"
    )
    currency = models.CharField(
        max_length=3,
        default='UGX',
        help_text="Default ISO 4217 currency for payments"
    )
    sms_sender_name = models.CharField(
        max_length=11,
        blank=True,
        default='',
        help_text="Alphanumeric SMS sender id (optional)"
    )

    api_keys = models.JSONField(
        default=list,
        blank=True,
        help_text="Hashed API keys: [{key_hash, name, created_at}]"
    )

    objects = TenantManager()

    class Meta:
        db_table = 'tenants'
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.code})"

    def save(self, *args, **kwargs):
        if self.code:
            self.code = self.code.upper()
        super().save(*args, **kwargs)

    def is_active(self):
        return self.status == 'active'

    def suspend(self):
        self.status = 'suspended'
        self.save(update_fields=['status', 'updated_at'])

    @staticmethod
    def hash_api_key(api_key):
        return hashlib.sha256(api_key.encode('utf-8')).hexdigest()

    def issue_api_key(self, name='default'):
        """
        Generate a new API key and store its hash.

        Returns:
            str: The plain key. It is not stored and cannot be recovered.
        """
        api_key = secrets.token_urlsafe(32)
        self.api_keys = list(self.api_keys or []) + [{
            'key_hash': self.hash_api_key(api_key),
            'name': name,
            'created_at': timezone.now().isoformat(),
        }]
        self.save(update_fields=['api_keys', 'updated_at'])
        return api_key

    def check_api_key(self, api_key):
        if not api_key or not self.api_keys:
            return False
        api_key_hash = self.hash_api_key(api_key)
        return any(entry.get('key_hash') == api_key_hash for entry in self.api_keys)

    def revoke_api_keys(self, name):
        """Drop every key issued under ``name``. Returns the number removed."""
        kept = [entry for entry in (self.api_keys or []) if entry.get('name') != name]
        removed = len(self.api_keys or []) - len(kept)
        if removed:
            self.api_keys = kept
            self.save(update_fields=['api_keys', 'updated_at'])
        return removed


class CustomerQuerySet(ScopedQuerySet):
    pass


class Customer(BaseModel):
    """
    Hotspot customer, unique per (tenant, phone).

    The same phone number may buy from several tenants; each gets its own
    row.
    """

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name='customers',
        help_text="Tenant this customer belongs to"
    )
    phone_e164 = models.CharField(
        max_length=20,
        db_index=True,
        help_text="Phone number in E.164 format"
    )
    name = models.CharField(
        max_length=255,
        blank=True,
        default='',
        help_text="Customer name (if provided)"
    )

    objects = ScopedManager.from_queryset(CustomerQuerySet)()

    class Meta:
        db_table = 'customers'
        unique_together = [['tenant', 'phone_e164']]

    def __str__(self):
        return self.name or self.phone_e164
