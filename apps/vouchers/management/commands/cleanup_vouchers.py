"""
Management command to apply voucher expiration policies.
"""
from django.core.management.base import BaseCommand, CommandError

from apps.core.scope import TenantScope
from apps.tenants.models import Tenant
from apps.vouchers.services import VoucherService


class Command(BaseCommand):
    help = 'Expire due vouchers and apply the auto-disable / delete-after policies'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report what would change without writing'
        )
        parser.add_argument(
            '--tenant',
            type=str,
            help='Only process the tenant with this code'
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']

        if options.get('tenant'):
            try:
                tenants = [Tenant.objects.by_code(options['tenant'])]
            except Tenant.DoesNotExist:
                raise CommandError(f'Tenant with code "{options["tenant"]}" does not exist')
        else:
            tenants = list(Tenant.objects.active())

        if dry_run:
            self.stdout.write(self.style.WARNING('Dry run: no changes will be written'))

        for tenant in tenants:
            scope = TenantScope.for_tenant(tenant)
            expired = 0 if dry_run else VoucherService.expire_due(scope)
            result = VoucherService.apply_expiration_policies(scope, dry_run=dry_run)
            self.stdout.write(
                f'{tenant.code}: Expired {expired}, '
                f'Disable {result["disabled"]}, Delete {result["deleted"]}'
            )

        self.stdout.write(self.style.SUCCESS(f'Processed {len(tenants)} tenant(s)'))
