"""
Tests for policy housekeeping tasks.
"""
from datetime import timedelta

import pytest
from django.utils import timezone

from apps.policy.models import ApprovalRequest, DailyActionCounter
from apps.policy.services import ApprovalService
from apps.policy.tasks import expire_stale_approval_requests, prune_daily_action_counters


@pytest.mark.django_db
class TestExpireStaleApprovalRequests:

    def test_marks_only_stale_requests(self, offspring):
        stale = ApprovalService.create(
            offspring, 'media_post', ttl=timedelta(hours=1), now=timezone.now() - timedelta(hours=2)
        )
        fresh = ApprovalService.create(offspring, 'media_post')

        result = expire_stale_approval_requests()

        assert result == {'expired': 1}
        stale.refresh_from_db()
        fresh.refresh_from_db()
        assert stale.status == ApprovalRequest.STATUS_EXPIRED
        assert fresh.status == ApprovalRequest.STATUS_PENDING


@pytest.mark.django_db
class TestPruneDailyActionCounters:

    def test_prunes_old_counters(self, adult):
        today = timezone.now().date()
        DailyActionCounter.objects.create(member=adult, event_type='payment', day=today, count=2)
        DailyActionCounter.objects.create(
            member=adult, event_type='payment', day=today - timedelta(days=40), count=5
        )

        result = prune_daily_action_counters(retention_days=30)

        assert result['deleted'] == 1
        assert list(DailyActionCounter.objects.values_list('day', flat=True)) == [today]
