"""
Tests for daily action counters.
"""
from datetime import date, datetime, timezone as dt_timezone, timedelta

import pytest

from apps.policy.models import DailyActionCounter
from apps.policy.rate_limiter import RateLimiter, utc_day


class TestUtcDay:

    def test_day_rolls_over_at_utc_midnight(self):
        eat = dt_timezone(timedelta(hours=3))
        # 01:00 in UTC+3 is still the previous UTC day.
        assert utc_day(datetime(2026, 10, 19, 1, 0, tzinfo=eat)) == date(2026, 10, 18)
        assert utc_day(datetime(2026, 10, 19, 0, 0, tzinfo=dt_timezone.utc)) == date(2026, 10, 19)


@pytest.mark.django_db
class TestRateLimiter:

    def test_no_cap_does_not_count(self, adult):
        check = RateLimiter.increment_and_check(adult, 'payment', date(2026, 10, 19), None)

        assert check.within_limit
        assert not DailyActionCounter.objects.exists()

    def test_increments_up_to_cap(self, adult):
        day = date(2026, 10, 19)
        checks = [RateLimiter.increment_and_check(adult, 'payment', day, 2) for _ in range(3)]

        assert [c.within_limit for c in checks] == [True, True, False]
        assert [c.current_count for c in checks] == [1, 2, 3]
        assert RateLimiter.current_count(adult, 'payment', day) == 3

    def test_counters_are_keyed_by_member_type_and_day(self, adult, offspring):
        day = date(2026, 10, 19)
        RateLimiter.increment_and_check(adult, 'payment', day, 1)

        assert RateLimiter.increment_and_check(offspring, 'payment', day, 1).within_limit
        assert RateLimiter.increment_and_check(adult, 'invoice', day, 1).within_limit
        assert RateLimiter.increment_and_check(adult, 'payment', day + timedelta(days=1), 1).within_limit
        assert DailyActionCounter.objects.filter(member=adult).count() == 3
