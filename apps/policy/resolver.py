"""
Permission resolver.

Composes role rules, member overrides, time windows, the daily rate limit and
the approval flag into one Decision. Precedence, highest first:
member override > cooldown > schedule > rate limit > approval flag.

The only write performed is the rate counter increment, and only on a path
that would otherwise succeed.
"""
import logging
from datetime import datetime

from django.utils import timezone

from apps.policy import time_windows
from apps.policy.decisions import Decision, ReasonCode
from apps.policy.event_types import is_known_event_type
from apps.policy.hierarchy import Role
from apps.policy.models import MemberOverride, RolePermission, TimeWindow
from apps.policy.rate_limiter import RateLimiter, utc_day

logger = logging.getLogger(__name__)


class ResolutionError(Exception):
    """Configuration or input the resolver cannot evaluate."""


class PermissionResolver:
    """
    Decide whether ``actor`` may perform ``event_type`` at ``now``.
    """

    @classmethod
    def resolve(cls, actor, event_type, now: datetime = None) -> Decision:
        now = now or timezone.now()
        try:
            return cls._resolve(actor, event_type, now)
        except Exception as exc:
            # Never fail open: store errors and corrupt configuration deny.
            logger.error(
                "Permission resolution failed",
                extra={
                    'member_id': str(getattr(actor, 'id', '')),
                    'federation_id': str(getattr(actor, 'federation_id', '')),
                    'event_type': str(event_type),
                    'error': str(exc),
                },
                exc_info=True
            )
            return Decision.resolution_error(exc)

    @classmethod
    def _resolve(cls, actor, event_type, now):
        event_type = str(event_type)
        if not is_known_event_type(event_type):
            raise ResolutionError(f"Unknown event type '{event_type}'")

        # Sovereignty: the caller scopes the action to the actor's own resources.
        if actor.role == Role.PRIVATE:
            return Decision.allow()

        if not actor.is_active or not actor.federation.is_active():
            return Decision.deny(ReasonCode.FEDERATION_POLICY)

        base = RolePermission.objects.get_rule(actor.federation_id, actor.role, event_type)
        override = MemberOverride.objects.resolve_active(actor.federation_id, actor.id, event_type, now)

        if override is not None and not override.allowed:
            return Decision.deny(ReasonCode.MEMBER_OVERRIDE_REVOKED)

        can_attempt = override.allowed if override is not None else base.can_sign
        if not can_attempt:
            return Decision.deny(ReasonCode.ROLE_NOT_ALLOWED)

        windows = TimeWindow.objects.for_actor(actor.federation_id, actor.role, actor.id, event_type)
        agg = time_windows.aggregate(windows, now)
        if agg.cooldown_blocking:
            return Decision.deny(ReasonCode.COOLDOWN_ACTIVE)
        if not agg.schedule_gate_pass:
            return Decision.deny(ReasonCode.TIME_WINDOW_INACTIVE)

        # Approval and quota fields only apply when the role rule itself allows signing.
        rule_applies = base.can_sign

        if rule_applies and base.max_daily_count is not None:
            check = RateLimiter.increment_and_check(actor, event_type, utc_day(now), base.max_daily_count)
            if not check.within_limit:
                return Decision.deny(ReasonCode.DAILY_LIMIT_EXCEEDED)

        # A grant override only opens can-sign; the approval flag still applies.
        if rule_applies and base.requires_approval:
            return Decision.approval_required()

        return Decision.allow()
