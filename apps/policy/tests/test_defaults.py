"""
Tests for default role templates, seeding signal and management command.
"""
import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from apps.federations.models import Federation
from apps.policy.defaults import DEFAULT_TEMPLATES, seed_default_permissions, template_rules
from apps.policy.event_types import EventType
from apps.policy.models import AuditLog, RolePermission


@pytest.mark.django_db
class TestDefaultTemplates:

    def test_guardian_signs_everything(self):
        rules = template_rules('guardian')
        assert sorted(r['event_type'] for r in rules) == sorted(EventType.values)
        assert all(r['can_sign'] and not r['requires_approval'] for r in rules)

    def test_private_has_no_template(self):
        assert template_rules('private') == []

    def test_templates_only_use_known_event_types(self):
        for rules in DEFAULT_TEMPLATES.values():
            for event_type, _, _, _ in rules:
                assert event_type in EventType.values

    def test_new_federation_is_seeded(self, federation):
        for role in DEFAULT_TEMPLATES:
            assert RolePermission.objects.filter(federation=federation, role=role).count() == len(
                DEFAULT_TEMPLATES[role]
            )
        assert AuditLog.objects.by_action('federation_permissions_seeded').filter(federation=federation).exists()

    def test_seeding_skips_configured_roles(self, federation):
        RolePermission.objects.set_batch(federation, 'adult', [])
        assert seed_default_permissions(federation) == ['adult']
        assert seed_default_permissions(federation) == []

    def test_force_reapplies(self, federation):
        seeded = seed_default_permissions(federation, force=True)
        assert sorted(seeded) == sorted(DEFAULT_TEMPLATES)


@pytest.mark.django_db
class TestSeedCommand:

    def test_seed_by_slug(self, federation):
        RolePermission.objects.filter(federation=federation, role='offspring').hard_delete()
        call_command('seed_federation_permissions', federation=federation.slug)

        assert RolePermission.objects.filter(federation=federation, role='offspring').exists()

    def test_seed_all(self, federation, other_federation):
        RolePermission.objects.all().hard_delete()
        call_command('seed_federation_permissions', all=True)

        for fed in Federation.objects.all():
            assert RolePermission.objects.filter(federation=fed, role='guardian').exists()

    def test_requires_target(self):
        with pytest.raises(CommandError):
            call_command('seed_federation_permissions')

    def test_unknown_federation(self, db):
        with pytest.raises(CommandError):
            call_command('seed_federation_permissions', federation='missing')
