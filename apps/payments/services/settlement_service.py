"""
Settlement: turning a completed payment into exactly one voucher.

The unique constraint on ``Voucher.payment`` is the idempotency marker.
Losing the insert race to another worker is an expected outcome and is
reported as ``AlreadySettled``, not raised.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from django.db import DatabaseError, IntegrityError, transaction as db_transaction

from apps.core.exceptions import HotspotException
from apps.core.sentry_utils import add_breadcrumb, capture_exception
from apps.payments.models import Payment
from apps.vouchers.models import Voucher
from apps.vouchers.services import VoucherService, VoucherCodeExhausted

logger = logging.getLogger(__name__)


@dataclass
class SettlementOutcome:
    """Base for tagged settlement results."""

    ok = False


@dataclass
class Settled(SettlementOutcome):
    voucher: Voucher
    ok = True


@dataclass
class AlreadySettled(SettlementOutcome):
    voucher: Optional[Voucher]
    ok = True


@dataclass
class ValidationFailed(SettlementOutcome):
    reason: str
    details: dict = field(default_factory=dict)


@dataclass
class StorageFailure(SettlementOutcome):
    error: Exception


class SettlementService:
    """Idempotent payment-to-voucher settlement."""

    @staticmethod
    def _existing_voucher(payment):
        return Voucher.objects_with_deleted.filter(payment_id=payment.pk).first()

    @staticmethod
    def settle(payment) -> SettlementOutcome:
        """
        Issue the voucher for a completed payment.

        Safe to call any number of times, from any number of workers. The
        voucher insert and activation commit together; the SMS and router
        sync are queued only after that commit.

        Args:
            payment: Payment instance

        Returns:
            Settled | AlreadySettled | ValidationFailed | StorageFailure
        """
        log_extra = {
            'payment_id': str(payment.pk),
            'transaction_id': payment.transaction_id,
            'tenant_id': str(payment.tenant_id) if payment.tenant_id else None,
        }

        if payment.status != Payment.STATUS_COMPLETED:
            return ValidationFailed(
                f"Payment is {payment.status}, not completed",
                details={'status': payment.status}
            )
        if payment.tenant_id is None:
            return ValidationFailed("Payment has no tenant to issue a voucher for")

        existing = SettlementService._existing_voucher(payment)
        if existing is not None:
            return AlreadySettled(existing)

        add_breadcrumb('settlement', 'Settling payment', data=log_extra)

        try:
            with db_transaction.atomic():
                voucher = VoucherService.issue_for_payment(payment)
                voucher_id = str(voucher.id)
                db_transaction.on_commit(lambda: SettlementService._after_commit(voucher_id))
        except IntegrityError as e:
            existing = SettlementService._existing_voucher(payment)
            if existing is not None:
                logger.info("Payment already settled by another worker", extra=log_extra)
                return AlreadySettled(existing)
            logger.error(f"Settlement insert failed: {e}", extra=log_extra, exc_info=True)
            capture_exception(e, settlement=log_extra)
            return StorageFailure(e)
        except HotspotException as e:
            if isinstance(e, VoucherCodeExhausted):
                logger.error(e.message, extra={**log_extra, **e.details})
                capture_exception(e, settlement=log_extra)
                return StorageFailure(e)
            logger.warning(f"Settlement rejected: {e.message}", extra=log_extra)
            return ValidationFailed(e.message, details=e.details)
        except DatabaseError as e:
            logger.error(f"Settlement failed: {e}", extra=log_extra, exc_info=True)
            capture_exception(e, settlement=log_extra)
            return StorageFailure(e)

        logger.info(
            "Payment settled",
            extra={**log_extra, 'voucher_id': str(voucher.id), 'code': voucher.code}
        )
        return Settled(voucher)

    @staticmethod
    def _after_commit(voucher_id):
        from apps.integrations.tasks import send_voucher_sms
        from apps.routers.tasks import sync_voucher_to_router

        send_voucher_sms.delay(voucher_id)
        sync_voucher_to_router.delay(voucher_id)

    @staticmethod
    def settle_pending(scope, limit=100):
        """
        Retry settlement for completed payments that still have no voucher.

        Returns:
            dict: Counts per outcome type
        """
        counts = {'settled': 0, 'already_settled': 0, 'failed': 0}
        payments = Payment.objects.for_scope(scope).awaiting_settlement().order_by('paid_at')[:limit]
        for payment in payments:
            outcome = SettlementService.settle(payment)
            if isinstance(outcome, Settled):
                counts['settled'] += 1
            elif isinstance(outcome, AlreadySettled):
                counts['already_settled'] += 1
            else:
                counts['failed'] += 1

        if counts['settled'] or counts['failed']:
            logger.info("Settlement retry sweep finished", extra={**scope.log_extra(), **counts})
        return counts
