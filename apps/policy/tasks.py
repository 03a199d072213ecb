"""
Celery tasks for policy housekeeping.

Expiry is enforced lazily at read and decision time; these tasks only keep
stored state tidy for reporting.
"""
import logging
from datetime import timedelta
from celery import shared_task
from django.conf import settings
from django.utils import timezone

from apps.policy.models import ApprovalRequest, DailyActionCounter

logger = logging.getLogger(__name__)


@shared_task
def expire_stale_approval_requests():
    """
    Mark pending approval requests past their expiry as expired.

    Returns:
        dict: number of requests expired
    """
    expired = ApprovalRequest.objects.mark_expired(timezone.now())
    if expired:
        logger.info(f"Expired {expired} stale approval request(s)")
    return {'expired': expired}


@shared_task
def prune_daily_action_counters(retention_days=None):
    """
    Delete rate-limit counters older than the retention window.

    Only past days are removed; today's counter is never touched.
    """
    retention_days = retention_days or getattr(settings, 'POLICY_COUNTER_RETENTION_DAYS', 30)
    cutoff = timezone.now().date() - timedelta(days=max(retention_days, 1))
    deleted, _ = DailyActionCounter.objects_with_deleted.filter(day__lt=cutoff).hard_delete()
    logger.info(
        f"Pruned {deleted} daily action counter(s) older than {cutoff.isoformat()}",
        extra={'cutoff': cutoff.isoformat(), 'deleted': deleted}
    )
    return {'deleted': deleted, 'cutoff': cutoff.isoformat()}
