"""
Tests for the approval request lifecycle.
"""
import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from apps.core.exceptions import ConflictError, NotFoundError, ValidationError
from apps.policy.models import ApprovalRequest, AuditLog
from apps.policy.services import ApprovalService


@pytest.mark.django_db
class TestCreateApproval:

    def test_create_is_pending(self, offspring):
        approval = ApprovalService.create(offspring, 'media_post', payload_ref='post:42')

        assert approval.status == ApprovalRequest.STATUS_PENDING
        assert approval.required_min_approver_role == 'steward'
        assert approval.federation_id == offspring.federation_id
        assert AuditLog.objects.by_action('approval_requested').exists()

    def test_default_ttl(self, offspring, settings):
        settings.POLICY_APPROVAL_TTL_HOURS = 2
        now = timezone.now()
        approval = ApprovalService.create(offspring, 'media_post', now=now)
        assert approval.expires_at == now + timedelta(hours=2)

    def test_unknown_event_type(self, offspring):
        with pytest.raises(ValidationError):
            ApprovalService.create(offspring, 'teleport')


@pytest.mark.django_db
class TestDecideApproval:
    """Test compare-and-set decisions."""

    def test_approve(self, federation, offspring, steward):
        approval = ApprovalService.create(offspring, 'media_post')
        decided = ApprovalService.decide(federation, approval.id, approver=steward, approved=True, reason='ok')

        assert decided.status == ApprovalRequest.STATUS_APPROVED
        assert decided.decided_by == steward
        assert decided.decided_at is not None
        assert decided.reason == 'ok'

    def test_reject(self, federation, offspring, guardian):
        approval = ApprovalService.create(offspring, 'media_post')
        decided = ApprovalService.decide(federation, approval.id, approver=guardian, approved=False)
        assert decided.status == ApprovalRequest.STATUS_REJECTED

    def test_second_decision_conflicts(self, federation, offspring, steward, guardian):
        approval = ApprovalService.create(offspring, 'media_post')
        ApprovalService.decide(federation, approval.id, approver=steward, approved=True)

        with pytest.raises(ConflictError):
            ApprovalService.decide(federation, approval.id, approver=guardian, approved=False)

        approval.refresh_from_db()
        assert approval.status == ApprovalRequest.STATUS_APPROVED
        assert approval.decided_by == steward

    def test_expired_request_conflicts_and_is_marked(self, federation, offspring, steward):
        created_at = timezone.now()
        approval = ApprovalService.create(offspring, 'media_post', ttl=timedelta(hours=1), now=created_at)

        with pytest.raises(ConflictError):
            ApprovalService.decide(
                federation, approval.id, approver=steward, approved=True,
                now=created_at + timedelta(hours=2)
            )

        approval.refresh_from_db()
        assert approval.status == ApprovalRequest.STATUS_EXPIRED
        assert AuditLog.objects.by_action('approval_expired').exists()

    def test_low_role_approver_conflicts(self, federation, offspring, adult):
        approval = ApprovalService.create(offspring, 'media_post')

        with pytest.raises(ConflictError):
            ApprovalService.decide(federation, approval.id, approver=adult, approved=True)

        approval.refresh_from_db()
        assert approval.status == ApprovalRequest.STATUS_PENDING

    def test_inactive_approver_conflicts(self, federation, offspring, steward):
        approval = ApprovalService.create(offspring, 'media_post')
        steward.is_active = False
        steward.save(update_fields=['is_active'])

        with pytest.raises(ConflictError):
            ApprovalService.decide(federation, approval.id, approver=steward, approved=True)

        approval.refresh_from_db()
        assert approval.status == ApprovalRequest.STATUS_PENDING

    def test_suspended_federation_cannot_decide(self, federation, offspring, guardian):
        approval = ApprovalService.create(offspring, 'media_post')
        federation.status = 'suspended'
        federation.save(update_fields=['status'])

        with pytest.raises(ConflictError):
            ApprovalService.decide(federation, approval.id, approver=guardian, approved=True)

        approval.refresh_from_db()
        assert approval.status == ApprovalRequest.STATUS_PENDING

    def test_requester_cannot_approve_own_request(self, federation, steward):
        approval = ApprovalService.create(steward, 'treasury_access')

        with patch('apps.policy.services.SecurityLogger.log_four_eyes_violation') as log_violation:
            with pytest.raises(ConflictError):
                ApprovalService.decide(federation, approval.id, approver=steward, approved=True)

        log_violation.assert_called_once()

    def test_other_steward_can_approve_steward_request(self, federation, steward, second_steward):
        approval = ApprovalService.create(steward, 'treasury_access')
        decided = ApprovalService.decide(federation, approval.id, approver=second_steward, approved=True)
        assert decided.status == ApprovalRequest.STATUS_APPROVED

    def test_request_in_other_federation_is_not_found(self, other_federation, offspring, outsider):
        approval = ApprovalService.create(offspring, 'media_post')
        with pytest.raises(NotFoundError):
            ApprovalService.decide(other_federation, approval.id, approver=outsider, approved=True)

    def test_unknown_request(self, federation, steward):
        with pytest.raises(NotFoundError):
            ApprovalService.decide(federation, uuid.uuid4(), approver=steward, approved=True)


@pytest.mark.django_db
class TestListApprovals:

    def test_listing_applies_lazy_expiry(self, federation, offspring):
        created_at = timezone.now() - timedelta(hours=3)
        stale = ApprovalService.create(offspring, 'media_post', ttl=timedelta(hours=1), now=created_at)
        fresh = ApprovalService.create(offspring, 'payment')

        pending = ApprovalService.list_for_federation(federation, status=ApprovalRequest.STATUS_PENDING)

        assert [a.id for a in pending] == [fresh.id]
        stale.refresh_from_db()
        assert stale.status == ApprovalRequest.STATUS_EXPIRED
