"""
Human-readable renderings of denial reasons.

The resolver only emits reason codes; API responses and any UI pick a
style here.
"""
from types import MappingProxyType

from apps.policy.decisions import Decision, Outcome, ReasonCode

COMPACT = 'compact'
DETAILED = 'detailed'

_MESSAGES = MappingProxyType({
    ReasonCode.ROLE_NOT_ALLOWED.value: (
        'Not permitted for your role',
        'Your role is not permitted to sign this event type in this federation.',
    ),
    ReasonCode.REQUIRES_APPROVAL.value: (
        'Approval required',
        'This action requires approval from a steward or guardian before it can proceed.',
    ),
    ReasonCode.DAILY_LIMIT_EXCEEDED.value: (
        'Daily limit reached',
        'You have reached the daily limit for this event type. The limit resets at midnight UTC.',
    ),
    ReasonCode.TIME_WINDOW_INACTIVE.value: (
        'Outside signing hours',
        'This action is only permitted during the scheduled signing hours configured for you or your role.',
    ),
    ReasonCode.MEMBER_OVERRIDE_REVOKED.value: (
        'Permission revoked',
        'A steward or guardian has revoked your permission for this event type.',
    ),
    ReasonCode.COOLDOWN_ACTIVE.value: (
        'Cooldown active',
        'A cooldown period is in effect for this event type. Try again once it expires.',
    ),
    ReasonCode.FEDERATION_POLICY.value: (
        'Blocked by federation policy',
        'Your federation or membership is not currently active.',
    ),
    ReasonCode.UNKNOWN.value: (
        'Permission check failed',
        'The permission check could not be completed, so the action was denied.',
    ),
})

_ALLOWED = ('Allowed', 'You are permitted to perform this action.')


def describe(decision: Decision, style: str = COMPACT) -> str:
    index = 1 if style == DETAILED else 0
    if decision.outcome == Outcome.ALLOWED:
        return _ALLOWED[index]
    return _MESSAGES.get(decision.reason_code or ReasonCode.UNKNOWN.value, _MESSAGES[ReasonCode.UNKNOWN.value])[index]
