"""
Management command to issue, list and revoke tenant API keys.
"""
from django.core.management.base import BaseCommand, CommandError

from apps.tenants.models import Tenant


class Command(BaseCommand):
    help = 'Issue a tenant API key (or list/revoke existing keys)'

    def add_arguments(self, parser):
        parser.add_argument('tenant_code', type=str, help='Code of the tenant')
        parser.add_argument(
            '--name',
            type=str,
            default='API Key',
            help='Label stored with the new key'
        )
        group = parser.add_mutually_exclusive_group()
        group.add_argument('--list', action='store_true', help='List key labels instead of issuing one')
        group.add_argument('--revoke', type=str, metavar='NAME', help='Revoke every key with this label')

    def handle(self, *args, **options):
        try:
            tenant = Tenant.objects.by_code(options['tenant_code'])
        except Tenant.DoesNotExist:
            raise CommandError(f'Tenant with code "{options["tenant_code"]}" does not exist')

        if options['list']:
            for entry in tenant.api_keys or []:
                self.stdout.write(f"{entry.get('name')}  (issued {entry.get('created_at')})")
            if not tenant.api_keys:
                self.stdout.write('No API keys issued')
            return

        if options['revoke']:
            removed = tenant.revoke_api_keys(options['revoke'])
            if not removed:
                raise CommandError(f'{tenant.code} has no key named "{options["revoke"]}"')
            self.stdout.write(self.style.SUCCESS(f'Revoked {removed} key(s) from {tenant.code}'))
            return

        plain_key = tenant.issue_api_key(name=options['name'])
        self.stdout.write(self.style.SUCCESS(f'Issued key "{options["name"]}" for {tenant.name}'))
        self.stdout.write(self.style.WARNING('Store it now; only its hash is kept:'))
        self.stdout.write(plain_key)
        self.stdout.write(f'X-TENANT-ID: {tenant.id}')
