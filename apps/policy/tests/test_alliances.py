"""
Tests for federation alliances and inherited rules.
"""
import pytest

from apps.core.exceptions import ValidationError
from apps.policy.models import AuditLog, FederationAlliance, RolePermission
from apps.policy.services import AllianceService


@pytest.fixture
def third_federation(db):
    from apps.federations.models import Federation
    return Federation.objects.create(name='Third Family', slug='third-family', status='active')


@pytest.mark.django_db
class TestCreateAlliance:

    def test_create(self, federation, other_federation, guardian):
        alliance = AllianceService.create(
            'Neighbours', [federation, other_federation], ['financial'],
            inherits_permissions_from=federation, created_by=guardian
        )

        assert alliance.status == FederationAlliance.STATUS_ACTIVE
        assert set(alliance.member_federations.all()) == {federation, other_federation}
        assert AuditLog.objects.by_action('alliance_joined').count() == 2

    def test_duplicate_members_collapse(self, federation, other_federation):
        alliance = AllianceService.create('Neighbours', [federation, other_federation, federation], ['social'])
        assert alliance.member_federations.count() == 2

    @pytest.mark.parametrize('name,members,categories', [
        ('', 2, ['financial']),
        ('Neighbours', 1, ['financial']),
        ('Neighbours', 2, []),
        ('Neighbours', 2, ['gardening']),
    ])
    def test_invalid(self, federation, other_federation, name, members, categories):
        federations = [federation, other_federation][:members]
        with pytest.raises(ValidationError):
            AllianceService.create(name, federations, categories)
        assert not FederationAlliance.objects.exists()

    def test_source_must_be_member(self, federation, other_federation, third_federation):
        with pytest.raises(ValidationError):
            AllianceService.create(
                'Neighbours', [federation, other_federation], ['financial'],
                inherits_permissions_from=third_federation
            )


@pytest.mark.django_db
class TestAlliancePermissions:
    """Test rules inherited through alliances."""

    def test_inherits_shared_categories_only(self, federation, other_federation):
        alliance = AllianceService.create(
            'Neighbours', [federation, other_federation], ['financial'],
            inherits_permissions_from=federation
        )

        result = AllianceService.get_alliance_permissions(other_federation)

        assert [a['alliance_id'] for a in result['alliances']] == [str(alliance.id)]
        assert result['alliances'][0]['member_federations'] == sorted(
            [str(federation.id), str(other_federation.id)]
        )
        inherited = result['inherited_permissions']
        assert inherited
        assert {item['category'] for item in inherited} == {'financial'}
        assert all(item['source_federation_id'] == str(federation.id) for item in inherited)

        adult_payment = next(
            item for item in inherited if item['role'] == 'adult' and item['event_type'] == 'payment'
        )
        source_rule = RolePermission.objects.get(federation=federation, role='adult', event_type='payment')
        assert adult_payment['max_daily_count'] == source_rule.max_daily_count

    def test_source_federation_inherits_nothing(self, federation, other_federation):
        AllianceService.create(
            'Neighbours', [federation, other_federation], ['financial'],
            inherits_permissions_from=federation
        )

        result = AllianceService.get_alliance_permissions(federation)

        assert len(result['alliances']) == 1
        assert result['inherited_permissions'] == []

    def test_dissolved_alliance_is_ignored(self, federation, other_federation):
        alliance = AllianceService.create(
            'Neighbours', [federation, other_federation], ['financial'],
            inherits_permissions_from=federation
        )
        alliance.status = FederationAlliance.STATUS_DISSOLVED
        alliance.save(update_fields=['status'])

        assert AllianceService.get_alliance_permissions(other_federation) == {
            'alliances': [],
            'inherited_permissions': [],
        }

    def test_outside_federation_sees_nothing(self, federation, other_federation, third_federation):
        AllianceService.create(
            'Neighbours', [federation, other_federation], ['social'],
            inherits_permissions_from=federation
        )

        assert AllianceService.get_alliance_permissions(third_federation)['alliances'] == []

    def test_inherited_rules_do_not_change_resolution(self, federation, other_federation, make_member):
        from apps.policy.services import PolicyService
        RolePermission.objects.set_batch(other_federation, 'adult', [])
        AllianceService.create(
            'Neighbours', [federation, other_federation], ['financial'],
            inherits_permissions_from=federation
        )
        borrower = make_member(other_federation, 'adult')

        decision = PolicyService.check_permission(other_federation, borrower, 'payment')

        assert decision.allowed is False
