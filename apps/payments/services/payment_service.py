"""
Payment service: initiation, verification and gateway callbacks.

A payment is written as ``pending`` before the gateway is called so the
transaction id survives a gateway outage. Verification (poll) and
callbacks (push) both finish a payment through the same compare-and-swap
on ``status``; only the caller that wins the swap runs settlement.
"""
import logging
import re
import secrets
import string
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from django.conf import settings
from django.db import IntegrityError, transaction as db_transaction
from django.utils import timezone

from apps.core.exceptions import (
    AuthenticationError, NotFoundError, PermissionDeniedError, ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.core.scope import TenantScope
from apps.payments.models import Payment
from apps.payments.services import callbacks
from apps.payments.services.gateway import GatewayError, get_gateway
from apps.payments.services.settlement_service import SettlementService
from apps.vouchers.packages import get_package

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r'^\+?\d{9,15}$')
TRANSACTION_ID_ALPHABET = string.ascii_uppercase + string.digits
TRANSACTION_ID_ATTEMPTS = 5


class PaymentNotFound(NotFoundError):
    code = 'PAYMENT_NOT_FOUND'


class MalformedCallback(ValidationError):
    """Raised when a callback carries no recognisable payment reference."""
    code = 'MALFORMED_CALLBACK'


class InvalidCallbackSignature(AuthenticationError):
    code = 'INVALID_SIGNATURE'


@dataclass
class PaymentResult:
    """What the caller is told about a payment."""

    transaction_id: str
    status: str
    amount: Decimal
    currency: str
    message: str = ''
    requires_confirmation: bool = False
    voucher_code: Optional[str] = None

    @classmethod
    def from_payment(cls, payment, message='', requires_confirmation=False):
        voucher = payment.voucher_or_none if payment.status == Payment.STATUS_COMPLETED else None
        return cls(
            transaction_id=payment.transaction_id,
            status=payment.status,
            amount=payment.amount,
            currency=payment.currency,
            message=message,
            requires_confirmation=requires_confirmation,
            voucher_code=voucher.code if voucher else None,
        )


@dataclass
class CallbackResult:
    """
    Outcome of one callback.

    ``outcome`` is completed/failed when this callback moved the payment,
    duplicate when it was already terminal, pending or ignored otherwise.
    """

    payment: Payment
    status: str
    outcome: str


class PaymentService:
    """Payment state machine."""

    @staticmethod
    def generate_transaction_id(tenant=None, now=None):
        """
        Build a transaction id.

        ``PAY-20240101-ABCDEFGH`` for platform payments,
        ``TENANT-<CODE>-20240101-ABCDEFGH`` for tenant payments.
        """
        now = now or timezone.now()
        suffix = ''.join(secrets.choice(TRANSACTION_ID_ALPHABET) for _ in range(8))
        date_part = now.strftime('%Y%m%d')
        if tenant is not None:
            return f"TENANT-{tenant.code}-{date_part}-{suffix}"
        return f"PAY-{date_part}-{suffix}"

    @staticmethod
    def normalize_phone(phone):
        cleaned = re.sub(r'[\s\-()]', '', phone or '')
        if not PHONE_PATTERN.match(cleaned):
            raise ValidationError("Invalid phone number", details={'phone': phone})
        return cleaned if cleaned.startswith('+') else f"+{cleaned}"

    @staticmethod
    def validate_request(amount, currency, phone, package):
        """
        Validate an initiation request.

        Returns:
            tuple: (Decimal amount, currency, normalised phone, package)

        Raises:
            ValidationError: On any invalid field
        """
        try:
            amount = Decimal(str(amount))
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError("Amount must be a number", details={'amount': amount})
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("Amount must be greater than zero", details={'amount': str(amount)})
        if amount > Decimal(str(settings.PAYMENT_MAX_AMOUNT)):
            raise ValidationError(
                "Amount exceeds the maximum allowed",
                details={'amount': str(amount), 'max_amount': str(settings.PAYMENT_MAX_AMOUNT)}
            )

        currency = (currency or '').upper()
        if currency not in settings.PAYMENT_CURRENCIES:
            raise ValidationError(
                f"Unsupported currency: {currency or 'none'}",
                details={'currency': currency, 'supported': list(settings.PAYMENT_CURRENCIES)}
            )

        resolved = get_package(package)
        if resolved is None:
            raise ValidationError(f"Unknown voucher package: {package}", details={'package': package})

        return amount, currency, PaymentService.normalize_phone(phone), resolved

    @staticmethod
    def _create_pending(tenant, customer, phone, amount, currency, package, description, provider, metadata):
        for attempt in range(TRANSACTION_ID_ATTEMPTS):
            try:
                with db_transaction.atomic():
                    return Payment.objects.create(
                        tenant=tenant,
                        customer=customer,
                        phone=phone,
                        transaction_id=PaymentService.generate_transaction_id(tenant),
                        provider=provider,
                        amount=amount,
                        currency=currency,
                        package=package,
                        description=description,
                        metadata=metadata,
                    )
            except IntegrityError:
                logger.warning("Transaction id collision", extra={'attempt': attempt + 1})
        raise ValidationError("Could not allocate a transaction id, try again")

    @staticmethod
    def initiate(scope, amount, phone, package, currency=None, customer_name='',
                 description='', metadata=None, gateway=None):
        """
        Start a payment.

        The pending Payment is committed before the gateway is called. If
        the gateway fails the payment stays pending (so a later poll or
        callback can still finish it) and the error is raised with the
        transaction id in its details.

        Args:
            scope: TenantScope of the caller; an untargeted global scope
                creates a platform payment
            amount: Amount to collect
            phone: Customer phone number
            package: Voucher package name
            currency: ISO currency, defaults to the tenant currency
            gateway: Optional PaymentGateway (defaults to the configured one)

        Returns:
            PaymentResult

        Raises:
            ValidationError: Invalid input, nothing stored
            GatewayError: Gateway unreachable or rejected the request
        """
        from apps.tenants.models import Customer, Tenant

        tenant = None
        if scope.effective_tenant_id is not None:
            tenant = Tenant.objects.get(id=scope.effective_tenant_id)
            if not tenant.is_active():
                raise PermissionDeniedError("Tenant is suspended", details={'tenant_id': str(tenant.id)})

        currency = currency or (tenant.currency if tenant else settings.PAYMENT_DEFAULT_CURRENCY)
        amount, currency, phone, package = PaymentService.validate_request(amount, currency, phone, package)
        gateway = gateway or get_gateway()
        description = description or f"Internet voucher ({package.name})"

        with db_transaction.atomic():
            customer = None
            if tenant is not None:
                customer, _ = Customer.objects.for_scope(scope).get_or_create(
                    tenant=tenant,
                    phone_e164=phone,
                    defaults={'name': customer_name or ''}
                )
            payment = PaymentService._create_pending(
                tenant, customer, phone, amount, currency, package.name,
                description, gateway.name, dict(metadata or {})
            )

        log_extra = {
            'transaction_id': payment.transaction_id,
            'tenant_id': str(tenant.id) if tenant else None,
            'provider': gateway.name,
        }
        logger.info("Payment created", extra={**log_extra, 'amount': str(amount), 'currency': currency})

        try:
            initiation = gateway.initiate(
                amount, currency, phone, description,
                metadata={**payment.metadata, 'transaction_id': payment.transaction_id},
            )
        except GatewayError as e:
            Payment.objects.by_pk(payment.pk).update(
                gateway_response={'error': e.message, 'details': e.details},
                updated_at=timezone.now(),
            )
            logger.error(f"Gateway initiation failed: {e.message}", extra=log_extra)
            e.details = {**e.details, 'transaction_id': payment.transaction_id, 'status': payment.status}
            raise

        Payment.objects.by_pk(payment.pk).update(
            gateway_response=initiation.raw,
            updated_at=timezone.now(),
        )
        if initiation.reference:
            try:
                payment.set_provider_reference(initiation.reference)
            except IntegrityError:
                logger.error(
                    "Provider reference already belongs to another payment",
                    extra={**log_extra, 'provider_reference': initiation.reference}
                )

        return PaymentResult.from_payment(
            payment,
            message=initiation.message,
            requires_confirmation=initiation.requires_confirmation,
        )

    @staticmethod
    def get_payment(scope, transaction_id):
        try:
            return Payment.objects.for_scope(scope).get(transaction_id=transaction_id)
        except Payment.DoesNotExist:
            raise PaymentNotFound(
                f"Payment {transaction_id} not found",
                details={'transaction_id': transaction_id}
            )

    @staticmethod
    def complete(payment, gateway_response=None, source=''):
        """
        CAS ``pending -> completed`` and settle if this call won.

        Returns:
            bool: True when this call completed the payment
        """
        won = payment.transition(Payment.STATUS_COMPLETED, gateway_response=gateway_response or {})
        log_extra = {'transaction_id': payment.transaction_id, 'source': source}
        if not won:
            logger.info(f"Payment already {payment.status}, skipping settlement", extra=log_extra)
            return False

        logger.info("Payment completed", extra=log_extra)
        outcome = SettlementService.settle(payment)
        if not outcome.ok:
            logger.warning(
                "Settlement deferred to retry sweep",
                extra={**log_extra, 'outcome': type(outcome).__name__}
            )
        return True

    @staticmethod
    def fail(payment, reason, gateway_response=None, source=''):
        fields = {'failure_reason': reason[:255]}
        if gateway_response is not None:
            fields['gateway_response'] = gateway_response
        won = payment.transition(Payment.STATUS_FAILED, **fields)
        if won:
            logger.info(
                "Payment failed",
                extra={'transaction_id': payment.transaction_id, 'reason': reason, 'source': source}
            )
        return won

    @staticmethod
    def verify(scope, transaction_id, gateway=None):
        """
        Poll the gateway for a payment and apply the result.

        Terminal payments are returned as stored without calling the
        gateway. A gateway outage is reported in the message but never
        turns into a payment failure; a pending payment is only failed once
        it is older than ``PAYMENT_VERIFICATION_TIMEOUT_MINUTES`` and the
        gateway still does not confirm it.

        Returns:
            PaymentResult: Current authoritative status
        """
        payment = PaymentService.get_payment(scope, transaction_id)
        if payment.is_terminal:
            return PaymentResult.from_payment(payment, message=f"Payment {payment.status}")

        gateway = gateway or get_gateway(payment.provider)
        reference = payment.provider_reference or payment.transaction_id
        now = timezone.now()

        try:
            verification = gateway.verify(reference)
        except GatewayError as e:
            Payment.objects.by_pk(payment.pk).update(last_checked_at=now)
            logger.warning(
                f"Verification unavailable: {e.message}",
                extra={'transaction_id': payment.transaction_id}
            )
            payment.refresh_from_db()
            return PaymentResult.from_payment(payment, message='Payment status could not be checked, try again shortly')

        Payment.objects.by_pk(payment.pk).update(last_checked_at=now)

        if verification.success:
            PaymentService.complete(payment, gateway_response=verification.provider_response, source='poll')
        elif payment.age_minutes(now) > settings.PAYMENT_VERIFICATION_TIMEOUT_MINUTES:
            PaymentService.fail(
                payment,
                'verification timeout',
                gateway_response=verification.provider_response,
                source='poll',
            )
        else:
            payment.refresh_from_db()

        return PaymentResult.from_payment(payment, message=verification.message)

    @staticmethod
    def _find_for_callback(payload):
        """Try every candidate reference: provider reference first, then transaction id."""
        payments = Payment.objects.for_scope(TenantScope.global_scope())
        for reference in callbacks.extract_references(payload):
            payment = payments.filter(provider_reference=reference).first()
            if payment is None:
                payment = payments.filter(transaction_id=reference).first()
            if payment is not None:
                return payment
        return None

    @staticmethod
    def handle_callback(payload, provider='', ip_address=None):
        """
        Apply a gateway push notification.

        Raises:
            InvalidCallbackSignature: Signature present but wrong, or
                missing while signatures are required
            MalformedCallback: No reference in the payload
            PaymentNotFound: Reference does not match any payment

        Returns:
            CallbackResult
        """
        if not isinstance(payload, dict):
            raise MalformedCallback("Callback body must be a JSON object")

        if 'signature' in payload:
            if not callbacks.verify_signature(payload, settings.PAYMENT_WEBHOOK_SECRET):
                SecurityLogger.log_invalid_webhook_signature(
                    provider, ip_address=ip_address, reference=callbacks.extract_reference(payload)
                )
                raise InvalidCallbackSignature("Invalid callback signature")
        elif settings.PAYMENT_WEBHOOK_REQUIRE_SIGNATURE:
            SecurityLogger.log_invalid_webhook_signature(provider, ip_address=ip_address)
            raise InvalidCallbackSignature("Callback signature is required")

        reference = callbacks.extract_reference(payload)
        if reference is None:
            raise MalformedCallback(
                "Callback carries no payment reference",
                details={'fields': list(callbacks.REFERENCE_FIELDS)}
            )

        payment = PaymentService._find_for_callback(payload)
        if payment is None:
            raise PaymentNotFound(f"No payment for reference {reference}", details={'reference': reference})

        raw_status = callbacks.extract_status(payload)
        status = callbacks.map_status(raw_status)
        response = {'callback': payload}

        if status == callbacks.STATUS_COMPLETED:
            won = PaymentService.complete(payment, gateway_response=response, source='callback')
            outcome = 'completed' if won else 'duplicate'
        elif status == callbacks.STATUS_FAILED:
            reason = payload.get('message') or payload.get('reason') or f"gateway reported {raw_status}"
            won = PaymentService.fail(payment, str(reason), gateway_response=response, source='callback')
            outcome = 'failed' if won else 'duplicate'
        elif status == callbacks.STATUS_PENDING:
            outcome = 'pending'
        else:
            SecurityLogger.log_unknown_payment_status(
                provider, reference, raw_status,
                tenant_id=str(payment.tenant_id) if payment.tenant_id else None,
            )
            outcome = 'ignored'

        logger.info(
            f"Callback processed: {outcome}",
            extra={'transaction_id': payment.transaction_id, 'status': status, 'provider': provider}
        )
        return CallbackResult(payment=payment, status=status, outcome=outcome)

    @staticmethod
    def poll_pending(scope, min_age_minutes=2, limit=100):
        """
        Verify pending payments that have not been confirmed by callback.

        Returns:
            dict: {'checked': int, 'completed': int, 'failed': int, 'errors': int}.
            A payment that cannot be verified is counted in ``errors`` and
            the sweep moves on.
        """
        counts = {'checked': 0, 'completed': 0, 'failed': 0, 'errors': 0}
        payments = Payment.objects.for_scope(scope).stale_pending(min_age_minutes).order_by('created_at')[:limit]
        for payment in payments:
            counts['checked'] += 1
            try:
                result = PaymentService.verify(scope, payment.transaction_id)
            except Exception as e:
                counts['errors'] += 1
                logger.error(
                    f"Pending payment check failed: {e}",
                    extra={'transaction_id': payment.transaction_id, 'provider': payment.provider},
                    exc_info=True
                )
                continue
            if result.status == Payment.STATUS_COMPLETED:
                counts['completed'] += 1
            elif result.status == Payment.STATUS_FAILED:
                counts['failed'] += 1
        return counts
