"""
Resolver output types.

A denial is an ordinary Decision with a reason code. ``RESOLUTION_ERROR``
marks a system failure; callers must treat it as a denial.
"""
from dataclasses import dataclass
from typing import Optional

from django.db import models


class ReasonCode(models.TextChoices):
    ROLE_NOT_ALLOWED = 'role_not_allowed', 'Role not allowed'
    REQUIRES_APPROVAL = 'requires_approval', 'Requires approval'
    DAILY_LIMIT_EXCEEDED = 'daily_limit_exceeded', 'Daily limit exceeded'
    TIME_WINDOW_INACTIVE = 'time_window_inactive', 'Outside time window'
    MEMBER_OVERRIDE_REVOKED = 'member_override_revoked', 'Member override revoked'
    COOLDOWN_ACTIVE = 'cooldown_active', 'Cooldown active'
    FEDERATION_POLICY = 'federation_policy', 'Federation policy'
    UNKNOWN = 'unknown', 'Unknown'


class Outcome(models.TextChoices):
    ALLOWED = 'allowed', 'Allowed'
    DENIED = 'denied', 'Denied'
    APPROVAL_REQUIRED = 'approval_required', 'Approval required'
    RESOLUTION_ERROR = 'resolution_error', 'Resolution error'


@dataclass(frozen=True)
class Decision:
    allowed: bool
    requires_approval: bool = False
    reason_code: Optional[str] = None
    outcome: str = Outcome.ALLOWED.value
    error: Optional[str] = None

    @classmethod
    def allow(cls):
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason_code):
        return cls(allowed=False, reason_code=str(reason_code), outcome=Outcome.DENIED.value)

    @classmethod
    def approval_required(cls):
        return cls(
            allowed=False,
            requires_approval=True,
            reason_code=ReasonCode.REQUIRES_APPROVAL.value,
            outcome=Outcome.APPROVAL_REQUIRED.value,
        )

    @classmethod
    def resolution_error(cls, error):
        # Fail closed.
        return cls(
            allowed=False,
            reason_code=ReasonCode.UNKNOWN.value,
            outcome=Outcome.RESOLUTION_ERROR.value,
            error=str(error),
        )

    @property
    def is_error(self) -> bool:
        return self.outcome == Outcome.RESOLUTION_ERROR

    def as_dict(self):
        return {
            'allowed': self.allowed,
            'requires_approval': self.requires_approval,
            'reason_code': self.reason_code,
            'outcome': self.outcome,
        }
