"""
Management command to reconcile vouchers with a tenant's router.
"""
from django.core.management.base import BaseCommand, CommandError

from apps.core.scope import TenantScope
from apps.routers.services import (
    AccessControllerNotConfigured,
    RouterReconciler,
    get_access_controller,
    MODES,
)
from apps.tenants.models import Tenant


class Command(BaseCommand):
    help = 'Synchronise vouchers with the hotspot router of one tenant'

    def add_arguments(self, parser):
        parser.add_argument(
            '--tenant',
            type=str,
            required=True,
            help='Code of the tenant to synchronise'
        )
        parser.add_argument(
            '--mode',
            type=str,
            choices=MODES,
            default='all',
            help='Which vouchers to reconcile'
        )

    def handle(self, *args, **options):
        try:
            tenant = Tenant.objects.by_code(options['tenant'])
        except Tenant.DoesNotExist:
            raise CommandError(f'Tenant with code "{options["tenant"]}" does not exist')

        try:
            controller = get_access_controller(tenant)
        except AccessControllerNotConfigured:
            raise CommandError(f'Tenant "{tenant.code}" has no enabled router')

        result = RouterReconciler(controller).reconcile(
            TenantScope.for_tenant(tenant), mode=options['mode']
        )

        for detail in result.details:
            if detail.error:
                self.stdout.write(self.style.ERROR(f'  {detail.code}: {detail.action} ({detail.error})'))
            elif options['verbosity'] > 1:
                self.stdout.write(f'  {detail.code}: {detail.action}')

        summary = (
            f'Processed {result.total_processed}: synced {result.synced}, '
            f'skipped {result.skipped}, failed {result.failed}'
        )
        if result.success:
            self.stdout.write(self.style.SUCCESS(summary))
        else:
            self.stdout.write(self.style.WARNING(summary))
