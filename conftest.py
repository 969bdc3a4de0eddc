"""
Pytest configuration and fixtures.
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from django.conf import settings
import django
from django.core.management import call_command
from django.utils import timezone


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        }
    }
    settings.RATELIMIT_ENABLE = False
    settings.SMS_ENABLED = False
    settings.SENTRY_DSN = None
    settings.PAYMENT_WEBHOOK_SECRET = 'test-webhook-secret'
    settings.PAYMENT_WEBHOOK_REQUIRE_SIGNATURE = False
    settings.PLATFORM_API_KEY = 'test-platform-key'
    settings.CELERY_TASK_ALWAYS_EAGER = True
    settings.ROUTER_REREAD_DELAY = 0
    settings.SECURE_SSL_REDIRECT = False
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database without app migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def tenant(db):
    """Create a test tenant."""
    from apps.tenants.models import Tenant
    return Tenant.objects.create(
        name='Test Tenant',
        code='test',
        status='active',
        currency='UGX',
    )


@pytest.fixture
def other_tenant(db):
    """Create another test tenant for isolation tests."""
    from apps.tenants.models import Tenant
    return Tenant.objects.create(
        name='Other Tenant',
        code='other',
        status='active',
        currency='UGX',
    )


@pytest.fixture
def tenant_scope(tenant):
    from apps.core.scope import TenantScope
    return TenantScope.for_tenant(tenant)


@pytest.fixture
def global_scope():
    from apps.core.scope import TenantScope
    return TenantScope.global_scope()


@pytest.fixture
def customer(db, tenant):
    """Create a test customer."""
    from apps.tenants.models import Customer
    return Customer.objects.create(
        tenant=tenant,
        phone_e164='+256772123456',
        name='Test Customer'
    )


@pytest.fixture
def tenant_api_client(api_client, tenant):
    """API client authenticated with a fresh tenant API key."""
    api_key = tenant.issue_api_key(name='tests')
    api_client.credentials(HTTP_X_TENANT_ID=str(tenant.id), HTTP_X_TENANT_API_KEY=api_key)
    return api_client


@pytest.fixture
def make_payment(db, tenant, customer):
    """Factory for payments in any status."""
    from apps.payments.models import Payment

    counter = {'n': 0}

    def _make(status=Payment.STATUS_PENDING, tenant_obj=tenant, age_minutes=0, **fields):
        counter['n'] += 1
        defaults = {
            'tenant': tenant_obj,
            'customer': customer if tenant_obj is tenant else None,
            'phone': '+256772123456',
            'transaction_id': f"PAY-20240101-TEST{counter['n']:04d}",
            'provider': 'collectug',
            'amount': Decimal('5000.00'),
            'currency': 'UGX',
            'package': 'daily_1gb',
            'status': status,
        }
        if status == Payment.STATUS_COMPLETED:
            defaults['paid_at'] = timezone.now()
        defaults.update(fields)
        payment = Payment.objects.create(**defaults)
        if age_minutes:
            created = timezone.now() - timedelta(minutes=age_minutes)
            Payment.objects.by_pk(payment.pk).update(created_at=created)
            payment.refresh_from_db()
        return payment

    return _make


@pytest.fixture
def make_voucher(db, tenant, customer):
    """Factory for vouchers in any status."""
    from apps.vouchers.models import Voucher

    counter = {'n': 0}

    def _make(status=Voucher.STATUS_UNUSED, tenant_obj=tenant, **fields):
        counter['n'] += 1
        defaults = {
            'tenant': tenant_obj,
            'customer': customer if tenant_obj is tenant else None,
            'code': f"BIL-TEST-{counter['n']:04d}",
            'password': 'abcd2345',
            'package': 'daily_1gb',
            'profile': '1GB-DAILY',
            'validity_hours': 24,
            'data_limit_mb': 1024,
            'price': Decimal('5000.00'),
            'currency': 'UGX',
            'status': status,
        }
        if status in (Voucher.STATUS_ACTIVE, Voucher.STATUS_USED) and 'expires_at' not in fields:
            defaults['activated_at'] = timezone.now()
            defaults['expires_at'] = timezone.now() + timedelta(hours=24)
        defaults.update(fields)
        return Voucher.objects.create(**defaults)

    return _make


@pytest.fixture
def fake_router():
    from apps.routers.tests.fakes import InMemoryAccessController
    return InMemoryAccessController()
