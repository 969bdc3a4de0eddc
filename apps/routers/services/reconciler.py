"""
Router reconciliation.

Converges a tenant's hotspot user directory towards what the voucher
table says should exist. The database is authoritative; the device is
corrected, never the other way round. Runs are idempotent and a failure
on one voucher never stops the batch.
"""
import logging
import time
from dataclasses import dataclass, field, asdict
from datetime import timedelta
from typing import List, Optional

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from apps.core.exceptions import ValidationError
from apps.core.scope import TenantScope
from apps.core.sentry_utils import add_breadcrumb
from apps.routers.models import RouterConfig
from apps.routers.services.access_controller import (
    AccessControllerError, AccessControllerNotConfigured, HotspotUserSpec,
)
from apps.routers.services.routeros_service import RouterOsClient
from apps.vouchers.models import Voucher

logger = logging.getLogger(__name__)

MODE_ALL = 'all'
MODE_MISSING = 'missing'
MODE_DISABLED = 'disabled'
MODE_EXPIRED = 'expired'
MODES = (MODE_ALL, MODE_MISSING, MODE_DISABLED, MODE_EXPIRED)

ACTION_CREATED = 'created'
ACTION_ENABLED = 'enabled'
ACTION_DISABLED = 'disabled'
ACTION_SKIPPED = 'skipped'
ACTION_FAILED = 'failed'


@dataclass
class ReconcileDetail:
    code: str
    action: str
    error: str = ''


@dataclass
class ReconcileResult:
    tenant_id: Optional[str]
    mode: str
    total_processed: int = 0
    synced: int = 0
    skipped: int = 0
    failed: int = 0
    details: List[ReconcileDetail] = field(default_factory=list)

    @property
    def success(self):
        return self.failed == 0

    def record(self, detail):
        self.total_processed += 1
        self.details.append(detail)
        if detail.action == ACTION_FAILED:
            self.failed += 1
        elif detail.action == ACTION_SKIPPED:
            self.skipped += 1
        else:
            self.synced += 1

    def to_dict(self):
        data = asdict(self)
        data['success'] = self.success
        return data


def get_access_controller(tenant):
    """
    Build the access-controller client for ``tenant``.

    Raises:
        AccessControllerNotConfigured: No enabled router config
    """
    config = RouterConfig.objects.for_scope(TenantScope.for_tenant(tenant)).filter(is_enabled=True).first()
    if config is None:
        raise AccessControllerNotConfigured(
            "No router configured for tenant",
            details={'tenant_id': str(getattr(tenant, 'pk', tenant))}
        )
    return RouterOsClient.from_config(config)


class RouterReconciler:
    """
    Converges one access controller with the vouchers of one tenant.

    Args:
        controller: AccessController for the tenant's device
        reread_delay: Seconds to wait before re-reading a user that looked
            absent; freshly created users are not always visible at once.
            Defaults to ``ROUTER_REREAD_DELAY``.
    """

    def __init__(self, controller, reread_delay=None, sleep=time.sleep):
        self.controller = controller
        self.reread_delay = settings.ROUTER_REREAD_DELAY if reread_delay is None else reread_delay
        self.sleep = sleep

    @staticmethod
    def select_targets(scope, mode=MODE_ALL, now=None):
        if mode not in MODES:
            raise ValidationError(f"Unknown reconciliation mode: {mode}", details={'modes': list(MODES)})
        if scope.effective_tenant_id is None:
            raise ValidationError("Reconciliation runs for one tenant at a time")

        now = now or timezone.now()
        vouchers = Voucher.objects.for_scope(scope).select_related('customer')

        if mode == MODE_MISSING:
            # Presence on the device is checked per voucher in reconcile_voucher.
            vouchers = vouchers.filter(status__in=Voucher.ENABLED_STATUSES).filter(
                Q(expires_at__isnull=True) | Q(expires_at__gte=now)
            )
        elif mode == MODE_DISABLED:
            vouchers = vouchers.filter(status__in=(Voucher.STATUS_DISABLED, Voucher.STATUS_REFUNDED))
        elif mode == MODE_EXPIRED:
            vouchers = vouchers.logically_expired(now)

        return vouchers.order_by('created_at')

    def _get_user(self, code):
        remote = self.controller.get_user(code)
        if remote is None:
            if self.reread_delay:
                self.sleep(self.reread_delay)
            remote = self.controller.get_user(code)
        return remote

    def reconcile_voucher(self, voucher, now=None, only_missing=False) -> ReconcileDetail:
        """
        Bring one voucher's remote user in line with its intended state.

        With ``only_missing`` an existing remote user is left as it is; only
        absent users are created.

        Raises:
            AccessControllerError: Any remote failure
        """
        now = now or timezone.now()
        desired_enabled = voucher.should_be_enabled(now)
        remote = self._get_user(voucher.code)

        if remote is None:
            if not desired_enabled:
                action = ACTION_SKIPPED
            else:
                if not self.controller.create_user(HotspotUserSpec.from_voucher(voucher, now)):
                    raise AccessControllerError(f"Router refused to create {voucher.code}")
                action = ACTION_CREATED
        elif only_missing:
            action = ACTION_SKIPPED
        elif remote.enabled != desired_enabled:
            changed = (
                self.controller.enable_user(voucher.code)
                if desired_enabled
                else self.controller.disable_user(voucher.code)
            )
            if not changed:
                raise AccessControllerError(f"Router did not update {voucher.code}")
            action = ACTION_ENABLED if desired_enabled else ACTION_DISABLED
        else:
            action = ACTION_SKIPPED

        Voucher.objects.by_pk(voucher.pk).update(router_synced_at=now)
        return ReconcileDetail(code=voucher.code, action=action)

    def reconcile(self, scope, mode=MODE_ALL, now=None) -> ReconcileResult:
        """
        Run one reconciliation pass.

        Returns:
            ReconcileResult: counts plus one detail entry per voucher
        """
        now = now or timezone.now()
        vouchers = self.select_targets(scope, mode, now)
        result = ReconcileResult(tenant_id=str(scope.effective_tenant_id), mode=mode)

        add_breadcrumb('router', f"Reconciling ({mode})", data=scope.log_extra())

        for voucher in vouchers.iterator():
            try:
                detail = self.reconcile_voucher(voucher, now, only_missing=mode == MODE_MISSING)
            except Exception as e:
                logger.warning(
                    f"Reconciliation failed for {voucher.code}: {e}",
                    extra={**scope.log_extra(), 'voucher_id': str(voucher.id)},
                    exc_info=not isinstance(e, AccessControllerError)
                )
                detail = ReconcileDetail(code=voucher.code, action=ACTION_FAILED, error=str(e))
            result.record(detail)

        log = logger.info if result.success else logger.warning
        log(
            "Reconciliation finished",
            extra={
                **scope.log_extra(),
                'mode': mode,
                'total_processed': result.total_processed,
                'synced': result.synced,
                'skipped': result.skipped,
                'failed': result.failed,
            }
        )
        return result

    def cleanup_expired(self, scope, purge=False, retention_days=None, now=None):
        """
        Remove expired vouchers' users from the device; optionally purge rows.

        Purging hard-deletes expired vouchers that never had a payment and
        expired more than ``retention_days`` ago (defaults to the tenant's
        ``data_retention_days``).

        Returns:
            dict: {'removed': int, 'purged': int}
        """
        from apps.tenants.models import Tenant

        now = now or timezone.now()
        if scope.effective_tenant_id is None:
            raise ValidationError("Cleanup runs for one tenant at a time")

        codes = list(
            Voucher.objects.for_scope(scope).logically_expired(now).values_list('code', flat=True)
        )
        removed = self.controller.remove_expired_users(codes) if codes else 0

        purged = 0
        if purge:
            if retention_days is None:
                retention_days = Tenant.objects.get(id=scope.effective_tenant_id).data_retention_days
            cutoff = now - timedelta(days=retention_days)
            stale = Voucher.objects_with_deleted.filter(
                tenant_id=scope.effective_tenant_id,
                status=Voucher.STATUS_EXPIRED,
                payment__isnull=True,
                expires_at__lt=cutoff,
            )
            purged, _ = stale.hard_delete()

        logger.info(
            "Expired voucher cleanup finished",
            extra={**scope.log_extra(), 'removed': removed, 'purged': purged}
        )
        return {'removed': removed, 'purged': purged}
