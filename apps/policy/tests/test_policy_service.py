"""
Tests for PolicyService administrative operations.
"""
from datetime import time, timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from apps.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from apps.policy.event_types import EventType
from apps.policy.models import AuditLog, MemberOverride, RolePermission, TimeWindow
from apps.policy.rate_limiter import RateLimiter, utc_day
from apps.policy.services import PolicyService


def rule(event_type, can_sign=True, requires_approval=False, max_daily_count=None):
    return {
        'event_type': event_type,
        'can_sign': can_sign,
        'requires_approval': requires_approval,
        'max_daily_count': max_daily_count,
    }


@pytest.mark.django_db
class TestSetRolePermissions:
    """Test replacing a role's rule set."""

    def test_round_trip(self, federation, guardian):
        PolicyService.set_role_permissions(
            federation, 'adult',
            [rule('payment', max_daily_count=5), rule('media_post', requires_approval=True)],
            configured_by=guardian
        )

        payment = RolePermission.objects.get_rule(federation, 'adult', 'payment')
        media = RolePermission.objects.get_rule(federation, 'adult', 'media_post')
        assert payment.can_sign and payment.max_daily_count == 5
        assert media.requires_approval
        assert RolePermission.objects.filter(federation=federation, role='adult').count() == 2

    def test_replace_removes_unlisted_rules(self, federation, guardian):
        PolicyService.set_role_permissions(federation, 'adult', [rule('payment')], configured_by=guardian)
        PolicyService.set_role_permissions(federation, 'adult', [rule('invoice')], configured_by=guardian)

        assert not RolePermission.objects.get_rule(federation, 'adult', 'payment').can_sign
        assert RolePermission.objects.get_rule(federation, 'adult', 'invoice').can_sign

    def test_absent_rule_defaults_to_denied(self, federation, guardian):
        PolicyService.set_role_permissions(federation, 'adult', [], configured_by=guardian)
        absent = RolePermission.objects.get_rule(federation, 'adult', 'payment')

        assert absent.can_sign is False
        assert absent._state.adding

    def test_adult_cannot_configure(self, federation, adult):
        with pytest.raises(PermissionDeniedError):
            PolicyService.set_role_permissions(federation, 'offspring', [rule('payment')], configured_by=adult)

    def test_steward_cannot_configure_peer_or_superior(self, federation, steward):
        with patch('apps.policy.services.SecurityLogger.log_privilege_escalation') as log_escalation:
            with pytest.raises(PermissionDeniedError):
                PolicyService.set_role_permissions(federation, 'guardian', [rule('payment')], configured_by=steward)
            with pytest.raises(PermissionDeniedError):
                PolicyService.set_role_permissions(federation, 'steward', [rule('payment')], configured_by=steward)

        assert log_escalation.call_count == 2

    def test_steward_configures_adult(self, federation, steward):
        created = PolicyService.set_role_permissions(federation, 'adult', [rule('payment')], configured_by=steward)
        assert created[0].configured_by == steward

    def test_actor_from_other_federation(self, federation, outsider):
        with pytest.raises(PermissionDeniedError):
            PolicyService.set_role_permissions(federation, 'adult', [rule('payment')], configured_by=outsider)

    @pytest.mark.parametrize('rules', [
        [rule('teleport')],
        [rule('payment'), rule('payment')],
        [rule('payment', max_daily_count=0)],
    ])
    def test_invalid_rules(self, federation, guardian, rules):
        with pytest.raises(ValidationError):
            PolicyService.set_role_permissions(federation, 'adult', rules, configured_by=guardian)

    def test_unknown_role(self, federation, guardian):
        with pytest.raises(ValidationError):
            PolicyService.set_role_permissions(federation, 'emperor', [], configured_by=guardian)

    def test_failed_batch_leaves_rules_untouched(self, federation, guardian):
        PolicyService.set_role_permissions(federation, 'adult', [rule('payment')], configured_by=guardian)
        with pytest.raises(ValidationError):
            PolicyService.set_role_permissions(
                federation, 'adult', [rule('invoice'), rule('teleport')], configured_by=guardian
            )

        assert RolePermission.objects.get_rule(federation, 'adult', 'payment').can_sign
        assert not RolePermission.objects.get_rule(federation, 'adult', 'invoice').can_sign

    def test_audited(self, federation, guardian):
        PolicyService.set_role_permissions(federation, 'adult', [rule('payment')], configured_by=guardian)
        entry = AuditLog.objects.by_action('role_permissions_set').get()

        assert entry.actor == guardian
        assert entry.diff['role'] == 'adult'
        assert entry.diff['after'][0]['event_type'] == 'payment'


@pytest.mark.django_db
class TestMemberOverrides:
    """Test creating and revoking overrides."""

    def test_create_override(self, federation, steward, adult):
        created = PolicyService.create_override(
            federation, adult, 'treasury_access', True, 'Covering the treasurer', created_by=steward
        )

        assert created.allowed
        assert created.is_active()
        assert AuditLog.objects.by_action('override_created').filter(target_id=str(created.id)).exists()

    def test_create_override_logs_security_event(self, federation, guardian, adult):
        with patch('apps.policy.services.SecurityLogger.log_event') as log_event:
            PolicyService.create_override(federation, adult, 'payment', True, 'trip', created_by=guardian)

        args, kwargs = log_event.call_args
        assert args == ('member_override_created',)
        assert kwargs['signing_event_type'] == 'payment'
        assert kwargs['member_id'] == str(adult.id)

    def test_create_override_is_atomic(self, federation, guardian, adult):
        with patch('apps.policy.services.SecurityLogger.log_event', side_effect=RuntimeError('sink down')):
            with pytest.raises(RuntimeError):
                PolicyService.create_override(federation, adult, 'payment', True, 'trip', created_by=guardian)

        assert not MemberOverride.objects.filter(member=adult).exists()
        assert not AuditLog.objects.by_action('override_created').exists()

    def test_reason_is_required(self, federation, steward, adult):
        with pytest.raises(ValidationError):
            PolicyService.create_override(federation, adult, 'payment', True, '   ', created_by=steward)

    def test_expiry_must_be_in_future(self, federation, steward, adult):
        with pytest.raises(ValidationError):
            PolicyService.create_override(
                federation, adult, 'payment', True, 'why',
                created_by=steward, expires_at=timezone.now() - timedelta(minutes=1)
            )

    def test_steward_cannot_override_guardian(self, federation, steward, guardian):
        with pytest.raises(PermissionDeniedError):
            PolicyService.create_override(federation, guardian, 'payment', False, 'why', created_by=steward)

    def test_adult_cannot_create_override(self, federation, adult, offspring):
        with pytest.raises(PermissionDeniedError):
            PolicyService.create_override(federation, offspring, 'payment', True, 'why', created_by=adult)

    def test_member_from_other_federation(self, federation, guardian, outsider):
        with pytest.raises(NotFoundError):
            PolicyService.create_override(federation, outsider, 'payment', True, 'why', created_by=guardian)

    def test_revoke_is_idempotent(self, federation, guardian, adult):
        created = PolicyService.create_override(federation, adult, 'payment', False, 'why', created_by=guardian)

        revoked, changed = PolicyService.revoke_override(federation, created.id, revoked_by=guardian, reason='done')
        again, changed_again = PolicyService.revoke_override(federation, created.id, revoked_by=guardian)

        assert changed is True
        assert changed_again is False
        assert not revoked.is_active()
        assert revoked.revoked_by == guardian
        assert again.revoke_reason == 'done'
        assert MemberOverride.objects.filter(id=created.id).exists()
        assert AuditLog.objects.by_action('override_revoked').count() == 1

    def test_revoke_unknown_override(self, federation, guardian):
        import uuid
        with pytest.raises(NotFoundError):
            PolicyService.revoke_override(federation, uuid.uuid4(), revoked_by=guardian)


@pytest.mark.django_db
class TestTimeWindowAdministration:

    def test_create_role_window(self, federation, steward):
        window = PolicyService.create_time_window(federation, {
            'scope_type': 'role',
            'scope_id': 'offspring',
            'event_type': 'media_post',
            'window_type': 'scheduled',
            'start_time': time(16, 0),
            'end_time': time(20, 0),
        }, created_by=steward)

        assert window.days_of_week == [1, 2, 3, 4, 5]
        assert window.timezone == 'UTC'
        assert AuditLog.objects.by_action('time_window_created').exists()

    def test_create_member_cooldown(self, federation, guardian, adult):
        window = PolicyService.create_time_window(federation, {
            'scope_type': 'member',
            'scope_id': adult.id,
            'event_type': 'payment',
            'window_type': 'cooldown',
            'expires_at': timezone.now() + timedelta(hours=1),
        }, created_by=guardian)

        assert window.scope_id == str(adult.id)

    def test_steward_cannot_gate_guardians(self, federation, steward):
        with pytest.raises(PermissionDeniedError):
            PolicyService.create_time_window(federation, {
                'scope_type': 'role',
                'scope_id': 'guardian',
                'event_type': 'payment',
                'window_type': 'cooldown',
                'expires_at': timezone.now() + timedelta(hours=1),
            }, created_by=steward)

    def test_member_scope_outside_federation(self, federation, guardian, outsider):
        with pytest.raises(NotFoundError):
            PolicyService.create_time_window(federation, {
                'scope_type': 'member',
                'scope_id': outsider.id,
                'event_type': 'payment',
                'window_type': 'cooldown',
                'expires_at': timezone.now() + timedelta(hours=1),
            }, created_by=guardian)

    def test_delete_window_soft_deletes(self, federation, guardian):
        window = TimeWindow.objects.create(
            federation=federation, scope_type='role', scope_id='adult',
            event_type='payment', window_type='cooldown',
            expires_at=timezone.now() + timedelta(hours=1),
        )
        PolicyService.delete_time_window(federation, window.id, actor=guardian)

        assert not TimeWindow.objects.filter(id=window.id).exists()
        assert TimeWindow.objects_with_deleted.filter(id=window.id).exists()


@pytest.mark.django_db
class TestCheckPermission:

    def test_self_check_is_audited(self, federation, adult):
        RolePermission.objects.set_batch(federation, 'adult', [rule('payment')])
        decision = PolicyService.check_permission(federation, adult, 'payment')

        assert decision.allowed
        entry = AuditLog.objects.by_action('permission_checked').get()
        assert entry.actor == adult
        assert entry.diff['allowed'] is True
        assert entry.diff['event_type'] == 'payment'

    def test_checking_others_requires_administrator(self, federation, adult, offspring):
        with pytest.raises(PermissionDeniedError):
            PolicyService.check_permission(federation, offspring, 'payment', actor=adult)

    def test_steward_can_check_others(self, federation, steward, offspring):
        RolePermission.objects.set_batch(federation, 'offspring', [rule('payment', requires_approval=True)])
        decision = PolicyService.check_permission(federation, offspring, 'payment', actor=steward)
        assert decision.requires_approval

    def test_resolution_error_is_audited_with_error(self, federation, adult):
        decision = PolicyService.check_permission(federation, adult, 'teleport')

        assert decision.is_error
        entry = AuditLog.objects.by_action('permission_checked').get()
        assert entry.metadata['error']


@pytest.mark.django_db
class TestSnapshot:

    def test_snapshot_lists_active_state(self, federation, guardian, adult):
        RolePermission.objects.set_batch(federation, 'adult', [rule('payment')])
        active = PolicyService.create_override(federation, adult, 'invoice', True, 'why', created_by=guardian)
        revoked = PolicyService.create_override(federation, adult, 'payment', False, 'why', created_by=guardian)
        PolicyService.revoke_override(federation, revoked.id, revoked_by=guardian)

        snapshot = PolicyService.get_permission_snapshot(federation)

        assert any(r.role == 'adult' and r.event_type == 'payment' for r in snapshot['role_permissions'])
        assert [o.id for o in snapshot['overrides']] == [active.id]
        assert snapshot['time_windows'] == []


@pytest.mark.django_db
class TestEffectivePermissions:
    """Test role rules merged with overrides and daily usage."""

    def by_event_type(self, entries):
        return {item['event_type']: item for item in entries}

    def test_role_rules_are_reported(self, federation, adult):
        entries = self.by_event_type(PolicyService.get_effective_permissions(federation, adult))

        payment = entries['payment']
        assert payment['can_sign'] is True
        assert payment['max_daily_count'] == 20
        assert payment['source'] == 'role'
        assert payment['source_id'] == str(RolePermission.objects.get(
            federation=federation, role='adult', event_type='payment').id)
        assert payment['category'] == 'financial'
        assert entries['social_post']['requires_approval'] is True

    def test_entries_follow_catalogue_order(self, federation, adult):
        entries = PolicyService.get_effective_permissions(federation, adult)
        event_types = [item['event_type'] for item in entries]
        assert event_types.index('payment') < event_types.index('social_post') < event_types.index('member_invite')

    def test_override_replaces_role_rule(self, federation, guardian, offspring):
        override = PolicyService.create_override(
            federation, offspring, 'payment', False, 'pocket money paused', created_by=guardian
        )
        payment = self.by_event_type(PolicyService.get_effective_permissions(federation, offspring))['payment']

        assert payment['can_sign'] is False
        assert payment['requires_approval'] is False
        assert payment['max_daily_count'] is None
        assert payment['source'] == 'override'
        assert payment['source_id'] == str(override.id)

    def test_grant_without_signing_rule_has_no_approval_or_cap(self, federation, guardian, offspring):
        expires_at = timezone.now() + timedelta(days=1)
        PolicyService.create_override(
            federation, offspring, 'invoice', True, 'school trip', created_by=guardian, expires_at=expires_at
        )
        invoice = self.by_event_type(PolicyService.get_effective_permissions(federation, offspring))['invoice']

        assert invoice['can_sign'] is True
        assert invoice['requires_approval'] is False
        assert invoice['max_daily_count'] is None
        assert invoice['expires_at'] == expires_at

    def test_daily_usage_counts_today(self, federation, adult):
        now = timezone.now()
        for _ in range(3):
            RateLimiter.increment_and_check(adult, 'payment', utc_day(now), cap=20)

        entries = self.by_event_type(PolicyService.get_effective_permissions(federation, adult, now=now))
        assert entries['payment']['daily_usage'] == 3
        assert entries['invoice']['daily_usage'] == 0

    def test_private_member_gets_every_event_type(self, federation, private_member):
        entries = PolicyService.get_effective_permissions(federation, private_member)

        assert len(entries) == len(EventType.values)
        assert all(item['can_sign'] and item['source'] == 'role' for item in entries)

    def test_suspended_federation_signs_nothing(self, federation, adult):
        federation.status = 'suspended'
        federation.save(update_fields=['status'])

        entries = PolicyService.get_effective_permissions(federation, adult)
        assert entries
        assert not any(item['can_sign'] or item['requires_approval'] for item in entries)

    def test_adult_cannot_read_other_member(self, federation, adult, offspring):
        with pytest.raises(PermissionDeniedError):
            PolicyService.get_effective_permissions(federation, offspring, actor=adult)

    def test_steward_reads_other_member(self, federation, steward, offspring):
        assert PolicyService.get_effective_permissions(federation, offspring, actor=steward)

    def test_member_of_other_federation(self, other_federation, adult):
        with pytest.raises(NotFoundError):
            PolicyService.get_effective_permissions(other_federation, adult)


@pytest.mark.django_db
class TestChangeMemberRole:

    def test_guardian_promotes_adult_to_steward(self, federation, guardian, adult):
        PolicyService.change_member_role(federation, adult, 'steward', actor=guardian)

        adult.refresh_from_db()
        assert adult.role == 'steward'
        entry = AuditLog.objects.by_action('member_role_changed').get()
        assert entry.diff == {'before': 'adult', 'after': 'steward'}

    def test_steward_cannot_promote_to_guardian(self, federation, steward, offspring):
        with pytest.raises(PermissionDeniedError):
            PolicyService.change_member_role(federation, offspring, 'guardian', actor=steward)

    def test_self_change_is_forbidden(self, federation, guardian):
        with pytest.raises(PermissionDeniedError):
            PolicyService.change_member_role(federation, guardian, 'adult', actor=guardian)

    def test_unknown_role(self, federation, guardian, adult):
        with pytest.raises(ValidationError):
            PolicyService.change_member_role(federation, adult, 'emperor', actor=guardian)
