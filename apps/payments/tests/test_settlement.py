"""
Tests for idempotent payment settlement.
"""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.db import DatabaseError, IntegrityError
from django.utils import timezone

from apps.payments.models import Payment
from apps.payments.services import (
    AlreadySettled,
    Settled,
    SettlementService,
    StorageFailure,
    ValidationFailed,
)
from apps.payments.tasks import retry_unsettled_payments
from apps.vouchers.models import Voucher
from apps.vouchers.services import VoucherCodeExhausted, VoucherService


@pytest.mark.django_db
class TestSettle:

    def test_settles_completed_payment(self, make_payment, tenant, customer):
        payment = make_payment(status=Payment.STATUS_COMPLETED, package='weekly_5gb', amount=Decimal('20000'))

        outcome = SettlementService.settle(payment)

        assert isinstance(outcome, Settled)
        assert outcome.ok
        voucher = outcome.voucher
        voucher.refresh_from_db()
        assert voucher.payment_id == payment.id
        assert voucher.tenant == tenant
        assert voucher.customer == customer
        assert voucher.status == Voucher.STATUS_ACTIVE
        assert voucher.package == 'weekly_5gb'
        assert voucher.profile == '5GB-WEEKLY'
        assert voucher.data_limit_mb == 5120
        assert voucher.price == Decimal('20000')
        assert voucher.currency == 'UGX'
        assert voucher.expires_at - voucher.activated_at == timedelta(hours=168)

    def test_second_call_is_already_settled(self, make_payment):
        payment = make_payment(status=Payment.STATUS_COMPLETED)

        first = SettlementService.settle(payment)
        second = SettlementService.settle(payment)

        assert isinstance(second, AlreadySettled)
        assert second.ok
        assert second.voucher.pk == first.voucher.pk
        assert Voucher.objects.unscoped().filter(payment=payment).count() == 1

    @pytest.mark.parametrize('status', [Payment.STATUS_PENDING, Payment.STATUS_FAILED])
    def test_non_completed_payment(self, make_payment, status):
        outcome = SettlementService.settle(make_payment(status=status))

        assert isinstance(outcome, ValidationFailed)
        assert not outcome.ok
        assert outcome.details == {'status': status}
        assert Voucher.objects.unscoped().count() == 0

    def test_platform_payment(self, make_payment):
        outcome = SettlementService.settle(make_payment(status=Payment.STATUS_COMPLETED, tenant_obj=None))

        assert isinstance(outcome, ValidationFailed)

    def test_unknown_package(self, make_payment):
        outcome = SettlementService.settle(make_payment(status=Payment.STATUS_COMPLETED, package='yearly'))

        assert isinstance(outcome, ValidationFailed)
        assert 'yearly' in outcome.reason
        assert Voucher.objects.unscoped().count() == 0

    def test_lost_insert_race_is_already_settled(self, make_payment, make_voucher):
        payment = make_payment(status=Payment.STATUS_COMPLETED)
        winner = make_voucher(status=Voucher.STATUS_ACTIVE, payment=payment)

        # The pre-check misses the other worker's voucher; the insert then
        # hits the unique payment constraint.
        with patch.object(SettlementService, '_existing_voucher', side_effect=[None, winner]):
            outcome = SettlementService.settle(payment)

        assert isinstance(outcome, AlreadySettled)
        assert outcome.voucher == winner
        assert Voucher.objects_with_deleted.filter(payment=payment).count() == 1

    def test_integrity_error_without_voucher_is_storage_failure(self, make_payment):
        payment = make_payment(status=Payment.STATUS_COMPLETED)

        with patch.object(VoucherService, 'issue_for_payment', side_effect=IntegrityError('disk full')):
            outcome = SettlementService.settle(payment)

        assert isinstance(outcome, StorageFailure)
        assert not outcome.ok

    def test_database_error_is_storage_failure(self, make_payment):
        payment = make_payment(status=Payment.STATUS_COMPLETED)

        with patch.object(VoucherService, 'issue_for_payment', side_effect=DatabaseError('locked')):
            outcome = SettlementService.settle(payment)

        assert isinstance(outcome, StorageFailure)
        assert Voucher.objects.unscoped().count() == 0

    def test_code_exhaustion_is_storage_failure(self, make_payment):
        payment = make_payment(status=Payment.STATUS_COMPLETED)

        with patch.object(
            VoucherService, 'create_with_unique_code',
            side_effect=VoucherCodeExhausted("no codes", details={'attempts': 10})
        ):
            outcome = SettlementService.settle(payment)

        assert isinstance(outcome, StorageFailure)
        assert isinstance(outcome.error, VoucherCodeExhausted)

    def test_follow_up_queued_after_commit(self, make_payment, django_capture_on_commit_callbacks):
        payment = make_payment(status=Payment.STATUS_COMPLETED)

        with patch('apps.integrations.tasks.send_voucher_sms.delay') as mock_sms, \
                patch('apps.routers.tasks.sync_voucher_to_router.delay') as mock_sync:
            with django_capture_on_commit_callbacks(execute=True) as callbacks:
                outcome = SettlementService.settle(payment)

        assert len(callbacks) == 1
        mock_sms.assert_called_once_with(str(outcome.voucher.id))
        mock_sync.assert_called_once_with(str(outcome.voucher.id))

    def test_nothing_queued_when_already_settled(self, make_payment, django_capture_on_commit_callbacks):
        payment = make_payment(status=Payment.STATUS_COMPLETED)
        SettlementService.settle(payment)

        with django_capture_on_commit_callbacks() as callbacks:
            SettlementService.settle(payment)

        assert callbacks == []


@pytest.mark.django_db
class TestSettlePending:

    def test_settles_only_unsettled_tenant_payments(self, make_payment, global_scope):
        unsettled = make_payment(status=Payment.STATUS_COMPLETED)
        also_unsettled = make_payment(status=Payment.STATUS_COMPLETED)
        settled = make_payment(status=Payment.STATUS_COMPLETED)
        SettlementService.settle(settled)
        make_payment(status=Payment.STATUS_COMPLETED, tenant_obj=None)
        make_payment(status=Payment.STATUS_PENDING)

        counts = SettlementService.settle_pending(global_scope)

        assert counts == {'settled': 2, 'already_settled': 0, 'failed': 0}
        assert Voucher.objects.unscoped().filter(payment__in=[unsettled, also_unsettled]).count() == 2

    def test_respects_scope(self, make_payment, other_tenant, tenant_scope):
        make_payment(status=Payment.STATUS_COMPLETED, tenant_obj=other_tenant)

        counts = SettlementService.settle_pending(tenant_scope)

        assert counts['settled'] == 0

    def test_failures_counted(self, make_payment, global_scope):
        make_payment(status=Payment.STATUS_COMPLETED, package='yearly')

        counts = SettlementService.settle_pending(global_scope)

        assert counts == {'settled': 0, 'already_settled': 0, 'failed': 1}

    def test_retry_task(self, make_payment):
        payment = make_payment(status=Payment.STATUS_COMPLETED, paid_at=timezone.now())

        result = retry_unsettled_payments.apply().get()

        assert result['settled'] == 1
        assert payment.voucher_or_none is not None
