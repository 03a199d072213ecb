"""
Buffered permission edits.

A PermissionDraft collects tentative rule changes keyed by (role, event type)
and submits them as a single atomic batch on commit.
"""
import logging
from typing import Dict, Tuple

from django.db import transaction

from apps.policy.models import RolePermission
from apps.policy.services import PolicyService

logger = logging.getLogger(__name__)

DraftKey = Tuple[str, str]


class PermissionDraft:
    """
    Pending ``(role, event_type) -> rule`` edits for one federation.

    ``apply`` stages an edit, ``discard`` drops one or all staged edits and
    ``commit`` overlays the staged edits on the stored rules of every touched
    role and replaces those roles' rule sets in one transaction.
    """

    def __init__(self, federation, actor):
        self.federation = federation
        self.actor = actor
        self._pending: Dict[DraftKey, dict] = {}

    def __len__(self):
        return len(self._pending)

    @property
    def pending(self):
        return dict(self._pending)

    def is_dirty(self) -> bool:
        return bool(self._pending)

    def apply(self, role, event_type, can_sign: bool, requires_approval: bool = False, max_daily_count=None):
        self._pending[(str(role), str(event_type))] = {
            'event_type': str(event_type),
            'can_sign': can_sign,
            'requires_approval': requires_approval,
            'max_daily_count': max_daily_count,
        }
        return self

    def discard(self, role=None, event_type=None):
        """Drop one staged edit, or every staged edit when called without arguments."""
        if role is None and event_type is None:
            self._pending.clear()
        else:
            self._pending.pop((str(role), str(event_type)), None)
        return self

    def commit(self, request=None):
        """
        Write every staged edit atomically.

        Either all touched roles are replaced or none are. Returns the
        resulting rules keyed by role. The draft is emptied on success.
        """
        if not self._pending:
            return {}

        by_role: Dict[str, Dict[str, dict]] = {}
        for (role, event_type), rule in self._pending.items():
            by_role.setdefault(role, {})[event_type] = rule

        results = {}
        with transaction.atomic():
            for role, staged in by_role.items():
                merged = {
                    rule.event_type: {
                        'event_type': rule.event_type,
                        'can_sign': rule.can_sign,
                        'requires_approval': rule.requires_approval,
                        'max_daily_count': rule.max_daily_count,
                    }
                    for rule in RolePermission.objects.filter(federation=self.federation, role=role)
                }
                merged.update(staged)
                results[role] = PolicyService.set_role_permissions(
                    self.federation, role, merged.values(), configured_by=self.actor, request=request
                )

        logger.info(
            "Permission draft committed",
            extra={
                'federation_id': str(self.federation.id),
                'member_id': str(self.actor.id),
                'roles': sorted(results),
                'edits': len(self._pending),
            }
        )
        self._pending.clear()
        return results
