"""
Default role rules applied to new federations.

Guardians sign everything. Stewards need approval for treasury and governance
changes. Adults and offspring get capped, partly approval-gated social and
financial rules. Private members bypass role rules entirely and get no
template.
"""
from types import MappingProxyType

from apps.policy.event_types import EventType as E
from apps.policy.hierarchy import Role
from apps.policy.models import RolePermission

# (event_type, can_sign, requires_approval, max_daily_count)
DEFAULT_TEMPLATES = MappingProxyType({
    Role.GUARDIAN.value: tuple((event_type.value, True, False, None) for event_type in E),
    Role.STEWARD.value: (
        (E.PAYMENT.value, True, False, None),
        (E.INVOICE.value, True, False, None),
        (E.TREASURY_ACCESS.value, True, True, None),
        (E.SPENDING_APPROVAL.value, True, True, 10),
        (E.SOCIAL_POST.value, True, False, None),
        (E.MEDIA_POST.value, True, False, None),
        (E.PROFILE_UPDATE.value, True, False, None),
        (E.DIRECT_MESSAGE.value, True, False, None),
        (E.MEMBER_INVITE.value, True, False, None),
        (E.MEMBER_REMOVAL.value, True, True, None),
        (E.ROLE_CHANGE.value, True, True, None),
        (E.POLICY_UPDATE.value, True, True, None),
    ),
    Role.ADULT.value: (
        (E.PAYMENT.value, True, False, 20),
        (E.INVOICE.value, True, False, None),
        (E.SOCIAL_POST.value, True, True, 50),
        (E.MEDIA_POST.value, True, True, 5),
        (E.PROFILE_UPDATE.value, True, False, None),
        (E.DIRECT_MESSAGE.value, True, False, None),
        (E.MEMBER_INVITE.value, True, True, 3),
    ),
    Role.OFFSPRING.value: (
        (E.PAYMENT.value, True, True, 5),
        (E.MEDIA_POST.value, True, True, 3),
        (E.DIRECT_MESSAGE.value, True, False, 50),
    ),
})


def template_rules(role):
    return [
        {
            'event_type': event_type,
            'can_sign': can_sign,
            'requires_approval': requires_approval,
            'max_daily_count': max_daily_count,
        }
        for event_type, can_sign, requires_approval, max_daily_count in DEFAULT_TEMPLATES.get(role, ())
    ]


def seed_default_permissions(federation, force=False):
    """
    Apply the default templates to ``federation``.

    Roles that already have rules are left alone unless ``force`` is set.
    Returns the list of roles that were written.
    """
    seeded = []
    for role in DEFAULT_TEMPLATES:
        if not force and RolePermission.objects.filter(federation=federation, role=role).exists():
            continue
        RolePermission.objects.set_batch(federation, role, template_rules(role))
        seeded.append(role)
    return seeded
