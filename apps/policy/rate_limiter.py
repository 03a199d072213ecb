"""
Per-day action counters.

Counters are keyed by (member, event type, UTC day) under a unique
constraint. The increment is an atomic ``F()`` update inside a transaction
followed by a read of the post-increment value, so two concurrent requests
near the cap cannot both pass on a stale count.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone as dt_timezone
from typing import Optional

from django.db import IntegrityError, transaction
from django.db.models import F

from apps.policy.models import DailyActionCounter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateCheck:
    within_limit: bool
    current_count: int


def utc_day(now: datetime) -> date:
    """Counter day for ``now``; days roll over at UTC midnight."""
    return now.astimezone(dt_timezone.utc).date()


class RateLimiter:
    """
    Atomic per-day counters per (member, event type).
    """

    @classmethod
    def increment_and_check(cls, member, event_type, day: date, cap: Optional[int]) -> RateCheck:
        """
        Increment the counter and report whether the new count is within ``cap``.

        Without a cap nothing is counted and the check always passes.
        """
        if cap is None:
            return RateCheck(within_limit=True, current_count=0)

        event_type = str(event_type)
        with transaction.atomic():
            counter = cls._get_or_create_counter(member, event_type, day)
            DailyActionCounter.objects.filter(id=counter.id).update(count=F('count') + 1)
            current = DailyActionCounter.objects.filter(id=counter.id).values_list('count', flat=True).get()

        within_limit = current <= cap
        if not within_limit:
            logger.info(
                "Daily action limit exceeded",
                extra={
                    'member_id': str(getattr(member, 'id', member)),
                    'event_type': event_type,
                    'day': day.isoformat(),
                    'count': current,
                    'cap': cap,
                }
            )
        return RateCheck(within_limit=within_limit, current_count=current)

    @classmethod
    def current_count(cls, member, event_type, day: date) -> int:
        return DailyActionCounter.objects.filter(
            member=member, event_type=str(event_type), day=day
        ).values_list('count', flat=True).first() or 0

    @staticmethod
    def _get_or_create_counter(member, event_type, day):
        try:
            with transaction.atomic():
                counter, _ = DailyActionCounter.objects.select_for_update().get_or_create(
                    member=member, event_type=event_type, day=day
                )
                return counter
        except IntegrityError:
            # Lost the insert race; the row exists now.
            return DailyActionCounter.objects.select_for_update().get(
                member=member, event_type=event_type, day=day
            )
