"""
Management command to apply default role rules to federations.

Idempotent: roles that already have rules are skipped unless --force is given.
"""
from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from apps.federations.models import Federation
from apps.policy.defaults import seed_default_permissions


class Command(BaseCommand):
    help = 'Seed default role permissions for federation(s) (idempotent)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--federation',
            type=str,
            help='Federation ID or slug to seed',
        )
        parser.add_argument(
            '--all',
            action='store_true',
            help='Seed every federation',
        )
        parser.add_argument(
            '--force',
            action='store_true',
            help='Replace existing rules with the defaults',
        )

    def handle(self, *args, **options):
        federation_ref = options.get('federation')
        seed_all = options.get('all')
        force = options.get('force')

        if not federation_ref and not seed_all:
            raise CommandError('Please specify --federation <id|slug> or --all')
        if federation_ref and seed_all:
            raise CommandError('Cannot use --federation and --all together')

        if seed_all:
            federations = list(Federation.objects.all())
        else:
            federations = [self._get_federation(federation_ref)]

        total = 0
        for federation in federations:
            seeded = seed_default_permissions(federation, force=force)
            total += len(seeded)
            if seeded:
                self.stdout.write(self.style.SUCCESS(f"  ✓ {federation.slug}: seeded {', '.join(seeded)}"))
            else:
                self.stdout.write(self.style.HTTP_INFO(f"    {federation.slug}: already configured"))

        self.stdout.write(self.style.SUCCESS(
            f"\nSeeded {total} role rule set(s) across {len(federations)} federation(s)"
        ))

    def _get_federation(self, ref):
        federation = Federation.objects.filter(slug=ref).first()
        if federation is None:
            try:
                federation = Federation.objects.filter(id=ref).first()
            except (ValueError, ValidationError):
                federation = None
        if federation is None:
            raise CommandError(f'Federation not found: {ref}')
        return federation
