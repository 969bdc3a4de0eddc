"""
Voucher lifecycle service.

Handles code generation, issuance, state transitions (activate, consume,
disable, refund, expire), transfers, edits and the expiration policies.
Every status change is a guarded UPDATE filtered on the allowed source
statuses, so two workers can never both apply a transition.
"""
import logging
import secrets
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, transaction as db_transaction
from django.utils import timezone

from apps.core.exceptions import (
    HotspotException, InvariantViolation, NotFoundError, ValidationError, FeatureLimitExceeded,
)
from apps.vouchers.models import Voucher
from apps.vouchers.packages import get_package

logger = logging.getLogger(__name__)

# No 0/O, 1/I/L: codes are read off paper and SMS.
CODE_ALPHABET = 'ABCDEFGHJKMNPQRSTUVWXYZ23456789'
PASSWORD_ALPHABET = 'abcdefghjkmnpqrstuvwxyz23456789'
PASSWORD_LENGTH = 8


class InvalidVoucherTransition(InvariantViolation):
    """Raised when a lifecycle transition is not allowed from the current status."""
    code = 'INVALID_VOUCHER_TRANSITION'


class VoucherNotEditable(InvariantViolation):
    """Raised when editing or deleting a voucher that is locked by its status."""
    code = 'VOUCHER_NOT_EDITABLE'


class VoucherCodeExhausted(HotspotException):
    """Raised when no free voucher code was found within the attempt budget."""
    code = 'VOUCHER_CODE_EXHAUSTED'


class UnknownPackage(ValidationError):
    pass


class VoucherNotFound(NotFoundError):
    code = 'VOUCHER_NOT_FOUND'


class VoucherService:
    """Service for voucher issuance and lifecycle transitions."""

    EDITABLE_FIELDS = ('package', 'profile', 'validity_hours', 'data_limit_mb', 'price', 'notes', 'customer')

    # Code generation

    @staticmethod
    def generate_code(prefix=None):
        """
        Generate a voucher code such as ``BIL-7KQ2-M9XD``.

        Args:
            prefix: Code prefix, defaults to ``VOUCHER_CODE_PREFIX``
        """
        prefix = prefix or settings.VOUCHER_CODE_PREFIX
        first = ''.join(secrets.choice(CODE_ALPHABET) for _ in range(4))
        second = ''.join(secrets.choice(CODE_ALPHABET) for _ in range(4))
        return f"{prefix}-{first}-{second}"

    @staticmethod
    def generate_password():
        return ''.join(secrets.choice(PASSWORD_ALPHABET) for _ in range(PASSWORD_LENGTH))

    @staticmethod
    def resolve_package(name):
        package = get_package(name)
        if package is None:
            raise UnknownPackage(f"Unknown voucher package: {name}", details={'package': name})
        return package

    @staticmethod
    def create_with_unique_code(tenant, max_attempts=None, **fields):
        """
        Insert a voucher under a code that is free within ``tenant``.

        Each attempt runs in its own savepoint. An IntegrityError caused by
        a code collision triggers another attempt; one caused by the
        ``payment`` uniqueness constraint is re-raised so the caller can
        treat the payment as already settled.

        Raises:
            VoucherCodeExhausted: No free code after ``max_attempts``
            IntegrityError: The payment already has a voucher
        """
        max_attempts = max_attempts or settings.VOUCHER_CODE_MAX_ATTEMPTS
        payment_id = fields.get('payment').pk if fields.get('payment') else None

        for attempt in range(1, max_attempts + 1):
            code = VoucherService.generate_code()
            if Voucher.objects_with_deleted.filter(tenant=tenant, code=code).exists():
                logger.debug(
                    "Voucher code collision",
                    extra={'tenant_id': str(tenant.id), 'attempt': attempt}
                )
                continue
            try:
                with db_transaction.atomic():
                    return Voucher.objects.create(
                        tenant=tenant,
                        code=code,
                        password=VoucherService.generate_password(),
                        **fields
                    )
            except IntegrityError:
                if payment_id and Voucher.objects_with_deleted.filter(payment_id=payment_id).exists():
                    raise
                logger.debug(
                    "Voucher code taken concurrently",
                    extra={'tenant_id': str(tenant.id), 'attempt': attempt}
                )

        raise VoucherCodeExhausted(
            f"Could not allocate a unique voucher code after {max_attempts} attempts",
            details={'tenant_id': str(tenant.id), 'attempts': max_attempts}
        )

    # Issuance

    @staticmethod
    def issue_for_payment(payment):
        """
        Create and activate the voucher for a completed payment.

        Must run inside the settlement transaction.
        """
        package = VoucherService.resolve_package(payment.package)
        voucher = VoucherService.create_with_unique_code(
            payment.tenant,
            customer=payment.customer,
            payment=payment,
            package=package.name,
            profile=package.profile,
            validity_hours=package.validity_hours,
            data_limit_mb=package.data_limit_mb,
            price=payment.amount,
            currency=payment.currency,
        )
        return VoucherService.activate(voucher)

    @staticmethod
    @db_transaction.atomic
    def generate(scope, package, price, quantity=1, customer=None, currency=None):
        """
        Issue ``quantity`` unused vouchers outside the payment flow.

        Args:
            scope: TenantScope narrowed to a single tenant
            package: Package name
            price: Price printed on each voucher
            quantity: Number of vouchers to issue
            customer: Optional Customer to assign them to

        Returns:
            list: Created Voucher instances

        Raises:
            ValidationError: Bad quantity, price or package, or no tenant in scope
            FeatureLimitExceeded: Daily issuance limit would be exceeded
        """
        from apps.tenants.models import Tenant

        if scope.effective_tenant_id is None:
            raise ValidationError("Voucher issuance needs a target tenant")
        if quantity < 1 or quantity > 500:
            raise ValidationError("Quantity must be between 1 and 500", details={'quantity': quantity})
        price = Decimal(str(price))
        if price < 0:
            raise ValidationError("Price cannot be negative", details={'price': str(price)})

        package = VoucherService.resolve_package(package)
        tenant = Tenant.objects.select_for_update().get(id=scope.effective_tenant_id)
        if customer is not None and customer.tenant_id != tenant.id:
            raise ValidationError("Customer belongs to another tenant")

        issued_today = Voucher.objects.for_scope(scope).issued_today().count()
        if issued_today + quantity > tenant.max_vouchers_per_day:
            raise FeatureLimitExceeded(
                "Daily voucher limit reached",
                details={
                    'limit': tenant.max_vouchers_per_day,
                    'issued_today': issued_today,
                    'requested': quantity,
                }
            )

        vouchers = [
            VoucherService.create_with_unique_code(
                tenant,
                customer=customer,
                package=package.name,
                profile=package.profile,
                validity_hours=package.validity_hours,
                data_limit_mb=package.data_limit_mb,
                price=price,
                currency=currency or tenant.currency,
            )
            for _ in range(quantity)
        ]

        logger.info(
            "Vouchers generated",
            extra={'tenant_id': str(tenant.id), 'package': package.name, 'quantity': quantity}
        )
        for voucher in vouchers:
            VoucherService.schedule_router_sync(voucher)
        return vouchers

    # Lookups

    @staticmethod
    def get_by_code(scope, code):
        """
        Find a voucher by code within ``scope``.

        A global scope without a target may match several tenants; the
        most recent voucher wins.
        """
        voucher = Voucher.objects.for_scope(scope).by_code(code).select_related('tenant').first()
        if voucher is None:
            raise VoucherNotFound(f"Voucher {code} not found", details={'code': code})
        return voucher

    # Transitions

    @staticmethod
    def _transition(voucher, allowed_from, to_status, **fields):
        if voucher.status not in allowed_from:
            raise InvalidVoucherTransition(
                f"Cannot move voucher {voucher.code} from {voucher.status} to {to_status}",
                details={'code': voucher.code, 'status': voucher.status, 'target': to_status}
            )

        updated = Voucher.objects.by_pk(voucher.pk).filter(
            status__in=allowed_from,
        ).update(status=to_status, updated_at=timezone.now(), **fields)

        if not updated:
            voucher.refresh_from_db()
            raise InvalidVoucherTransition(
                f"Voucher {voucher.code} changed concurrently (now {voucher.status})",
                details={'code': voucher.code, 'status': voucher.status, 'target': to_status}
            )

        previous = voucher.status
        voucher.status = to_status
        for name, value in fields.items():
            setattr(voucher, name, value)

        logger.info(
            f"Voucher {previous} -> {to_status}",
            extra={'tenant_id': str(voucher.tenant_id), 'voucher_id': str(voucher.id), 'code': voucher.code}
        )
        return voucher

    @staticmethod
    def activate(voucher, now=None):
        """unused -> active; starts the validity window."""
        now = now or timezone.now()
        return VoucherService._transition(
            voucher,
            (Voucher.STATUS_UNUSED,),
            Voucher.STATUS_ACTIVE,
            activated_at=now,
            expires_at=now + timedelta(hours=voucher.validity_hours),
        )

    @staticmethod
    def consume(voucher):
        """active -> used."""
        return VoucherService._transition(
            voucher,
            (Voucher.STATUS_ACTIVE,),
            Voucher.STATUS_USED,
            used_at=timezone.now(),
        )

    @staticmethod
    def disable(voucher, reason=''):
        """unused/active -> disabled, then push the change to the router."""
        fields = {'disabled_at': timezone.now()}
        if reason:
            fields['notes'] = f"{voucher.notes}\nDisabled: {reason}".strip()
        VoucherService._transition(
            voucher,
            (Voucher.STATUS_UNUSED, Voucher.STATUS_ACTIVE),
            Voucher.STATUS_DISABLED,
            **fields
        )
        VoucherService.schedule_router_sync(voucher)
        return voucher

    @staticmethod
    def refund(voucher, allow_expired=False, reason=''):
        """
        Move a voucher to ``refunded``.

        Active vouchers cannot be refunded; expired ones only with
        ``allow_expired``.
        """
        allowed = [Voucher.STATUS_UNUSED, Voucher.STATUS_USED, Voucher.STATUS_DISABLED]
        if allow_expired:
            allowed.append(Voucher.STATUS_EXPIRED)

        fields = {'refunded_at': timezone.now()}
        if reason:
            fields['notes'] = f"{voucher.notes}\nRefunded: {reason}".strip()
        VoucherService._transition(voucher, tuple(allowed), Voucher.STATUS_REFUNDED, **fields)
        VoucherService.schedule_router_sync(voucher)
        return voucher

    @staticmethod
    def expire(voucher, now=None):
        """Materialise expiry for an active/used voucher whose window has passed."""
        now = now or timezone.now()
        if not voucher.is_expired(now):
            raise InvalidVoucherTransition(
                f"Voucher {voucher.code} has not reached its expiry time",
                details={'code': voucher.code, 'expires_at': voucher.expires_at.isoformat() if voucher.expires_at else None}
            )
        return VoucherService._transition(voucher, Voucher.TIMED_STATUSES, Voucher.STATUS_EXPIRED)

    @staticmethod
    def renew(voucher, additional_hours, now=None):
        """
        Extend an active voucher's window by ``additional_hours``.

        Raises:
            ValidationError: ``additional_hours`` is not a positive integer
            InvalidVoucherTransition: Voucher is not active or has expired
        """
        if isinstance(additional_hours, bool) or not isinstance(additional_hours, int) or additional_hours <= 0:
            raise ValidationError(
                "additional_hours must be a positive number of hours",
                details={'additional_hours': additional_hours}
            )
        now = now or timezone.now()
        if voucher.status != Voucher.STATUS_ACTIVE or voucher.is_expired(now):
            raise InvalidVoucherTransition(
                f"Cannot renew voucher {voucher.code} while {voucher.status}"
                + (" (expired)" if voucher.is_expired(now) else ""),
                details={'code': voucher.code, 'status': voucher.status}
            )

        expires_at = voucher.expires_at + timedelta(hours=additional_hours)
        validity_hours = voucher.validity_hours + additional_hours
        # Guarded on the window we read so two renewals cannot overwrite each other.
        updated = Voucher.objects.by_pk(voucher.pk).filter(
            status=Voucher.STATUS_ACTIVE,
            expires_at=voucher.expires_at,
            expires_at__gte=now,
        ).update(expires_at=expires_at, validity_hours=validity_hours, updated_at=timezone.now())
        if not updated:
            voucher.refresh_from_db()
            raise InvalidVoucherTransition(
                f"Voucher {voucher.code} changed concurrently (now {voucher.status})",
                details={'code': voucher.code, 'status': voucher.status}
            )

        voucher.expires_at = expires_at
        voucher.validity_hours = validity_hours
        logger.info(
            "Voucher renewed",
            extra={
                'tenant_id': str(voucher.tenant_id),
                'voucher_id': str(voucher.id),
                'additional_hours': additional_hours,
                'expires_at': expires_at.isoformat(),
            }
        )
        VoucherService.schedule_router_sync(voucher)
        return voucher

    # Edits

    @staticmethod
    def update(voucher, **fields):
        """
        Edit voucher attributes.

        Raises:
            VoucherNotEditable: Voucher is active, used or expired
            ValidationError: Unknown field
        """
        if not voucher.is_editable:
            raise VoucherNotEditable(
                f"Voucher {voucher.code} cannot be edited while {voucher.status}",
                details={'code': voucher.code, 'status': voucher.status}
            )
        unknown = set(fields) - set(VoucherService.EDITABLE_FIELDS)
        if unknown:
            raise ValidationError("Fields cannot be edited", details={'fields': sorted(unknown)})

        if 'package' in fields:
            package = VoucherService.resolve_package(fields['package'])
            fields['package'] = package.name
            fields.setdefault('profile', package.profile)
            fields.setdefault('validity_hours', package.validity_hours)
            fields.setdefault('data_limit_mb', package.data_limit_mb)
        customer = fields.get('customer')
        if customer is not None and customer.tenant_id != voucher.tenant_id:
            raise ValidationError("Customer belongs to another tenant")

        updated = Voucher.objects.by_pk(voucher.pk).filter(
            status=voucher.status,
        ).update(updated_at=timezone.now(), **fields)
        if not updated:
            voucher.refresh_from_db()
            raise VoucherNotEditable(
                f"Voucher {voucher.code} changed concurrently (now {voucher.status})",
                details={'code': voucher.code, 'status': voucher.status}
            )
        for name, value in fields.items():
            setattr(voucher, name, value)
        VoucherService.schedule_router_sync(voucher)
        return voucher

    @staticmethod
    def transfer(voucher, customer):
        """Reassign an unused voucher to another customer of the same tenant."""
        if voucher.status != Voucher.STATUS_UNUSED:
            raise InvalidVoucherTransition(
                f"Only unused vouchers can be transferred (voucher is {voucher.status})",
                details={'code': voucher.code, 'status': voucher.status}
            )
        if customer.tenant_id != voucher.tenant_id:
            raise ValidationError("Customer belongs to another tenant")

        updated = Voucher.objects.by_pk(voucher.pk).filter(
            status=Voucher.STATUS_UNUSED,
        ).update(customer=customer, updated_at=timezone.now())
        if not updated:
            voucher.refresh_from_db()
            raise InvalidVoucherTransition(
                f"Voucher {voucher.code} changed concurrently (now {voucher.status})",
                details={'code': voucher.code, 'status': voucher.status}
            )
        voucher.customer = customer
        logger.info(
            "Voucher transferred",
            extra={'tenant_id': str(voucher.tenant_id), 'voucher_id': str(voucher.id)}
        )
        return voucher

    @staticmethod
    def delete(voucher):
        if voucher.status == Voucher.STATUS_ACTIVE:
            raise VoucherNotEditable(
                f"Active voucher {voucher.code} cannot be deleted",
                details={'code': voucher.code}
            )
        voucher.delete()
        return voucher

    # Sweeps

    @staticmethod
    def expire_due(scope, now=None):
        """
        Materialise ``expired`` for every active/used voucher past its window.

        Returns:
            int: Number of vouchers moved to expired
        """
        now = now or timezone.now()
        count = 0
        for voucher in Voucher.objects.for_scope(scope).due_for_expiry(now).iterator():
            try:
                VoucherService.expire(voucher, now=now)
            except InvalidVoucherTransition:
                continue
            VoucherService.schedule_router_sync(voucher)
            count += 1

        if count:
            logger.info("Expired vouchers", extra={**scope.log_extra(), 'count': count})
        return count

    @staticmethod
    def apply_expiration_policies(scope, dry_run=False, now=None):
        """
        Disable long-expired vouchers and soft-delete stale payment-less ones.

        Vouchers expired for more than ``VOUCHER_AUTO_DISABLE_AFTER_DAYS``
        are marked disabled on the router (status stays ``expired``, the
        ``disabled_at`` stamp records the router action). Expired vouchers
        without a payment older than ``VOUCHER_DELETE_AFTER_DAYS`` are
        soft-deleted.

        Returns:
            dict: {'disabled': int, 'deleted': int, 'dry_run': bool}
        """
        now = now or timezone.now()
        disable_cutoff = now - timedelta(days=settings.VOUCHER_AUTO_DISABLE_AFTER_DAYS)
        delete_cutoff = now - timedelta(days=settings.VOUCHER_DELETE_AFTER_DAYS)

        expired = Voucher.objects.for_scope(scope).filter(status=Voucher.STATUS_EXPIRED)
        to_disable = expired.filter(expires_at__lt=disable_cutoff, disabled_at__isnull=True)
        to_delete = expired.filter(expires_at__lt=delete_cutoff, payment__isnull=True)

        result = {
            'disabled': to_disable.count(),
            'deleted': to_delete.count(),
            'dry_run': dry_run,
        }
        if dry_run:
            return result

        with db_transaction.atomic():
            disabled_ids = list(to_disable.values_list('id', flat=True))
            Voucher.objects.for_scope(scope).filter(id__in=disabled_ids).update(disabled_at=now, updated_at=now)
            result['deleted'] = to_delete.delete()

        for voucher in Voucher.objects.for_scope(scope).filter(id__in=disabled_ids):
            VoucherService.schedule_router_sync(voucher)

        logger.info("Voucher expiration policies applied", extra={**scope.log_extra(), **result})
        return result

    # Side effects

    @staticmethod
    def schedule_router_sync(voucher):
        """Queue a router convergence for ``voucher`` once the transaction commits."""
        from apps.routers.tasks import sync_voucher_to_router

        voucher_id = str(voucher.id)
        db_transaction.on_commit(lambda: sync_voucher_to_router.delay(voucher_id))
