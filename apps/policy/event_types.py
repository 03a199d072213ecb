"""
Closed catalogue of signable event types.

Categories are for display grouping only and never influence resolution.
"""
from types import MappingProxyType

from django.db import models


class EventType(models.TextChoices):
    # Financial
    PAYMENT = 'payment', 'Payment'
    INVOICE = 'invoice', 'Invoice'
    TREASURY_ACCESS = 'treasury_access', 'Treasury access'
    SPENDING_APPROVAL = 'spending_approval', 'Spending approval'
    # Social
    SOCIAL_POST = 'social_post', 'Social post'
    MEDIA_POST = 'media_post', 'Media post'
    PROFILE_UPDATE = 'profile_update', 'Profile update'
    DIRECT_MESSAGE = 'direct_message', 'Direct message'
    # Governance
    MEMBER_INVITE = 'member_invite', 'Member invite'
    MEMBER_REMOVAL = 'member_removal', 'Member removal'
    ROLE_CHANGE = 'role_change', 'Role change'
    POLICY_UPDATE = 'policy_update', 'Policy update'
    FEDERATION_SETTINGS = 'federation_settings', 'Federation settings'
    EMERGENCY_ACTION = 'emergency_action', 'Emergency action'


class EventCategory(models.TextChoices):
    FINANCIAL = 'financial', 'Financial'
    SOCIAL = 'social', 'Social'
    GOVERNANCE = 'governance', 'Governance'


EVENT_CATEGORIES = MappingProxyType({
    EventType.PAYMENT.value: EventCategory.FINANCIAL.value,
    EventType.INVOICE.value: EventCategory.FINANCIAL.value,
    EventType.TREASURY_ACCESS.value: EventCategory.FINANCIAL.value,
    EventType.SPENDING_APPROVAL.value: EventCategory.FINANCIAL.value,
    EventType.SOCIAL_POST.value: EventCategory.SOCIAL.value,
    EventType.MEDIA_POST.value: EventCategory.SOCIAL.value,
    EventType.PROFILE_UPDATE.value: EventCategory.SOCIAL.value,
    EventType.DIRECT_MESSAGE.value: EventCategory.SOCIAL.value,
    EventType.MEMBER_INVITE.value: EventCategory.GOVERNANCE.value,
    EventType.MEMBER_REMOVAL.value: EventCategory.GOVERNANCE.value,
    EventType.ROLE_CHANGE.value: EventCategory.GOVERNANCE.value,
    EventType.POLICY_UPDATE.value: EventCategory.GOVERNANCE.value,
    EventType.FEDERATION_SETTINGS.value: EventCategory.GOVERNANCE.value,
    EventType.EMERGENCY_ACTION.value: EventCategory.GOVERNANCE.value,
})


def is_known_event_type(value) -> bool:
    return value in EventType.values


def category_of(event_type) -> str:
    return EVENT_CATEGORIES[str(event_type)]


def catalogue():
    """Event types grouped by category, in declaration order."""
    grouped = {category.value: [] for category in EventCategory}
    for event_type in EventType:
        grouped[EVENT_CATEGORIES[event_type.value]].append({
            'value': event_type.value,
            'label': event_type.label,
        })
    return grouped
