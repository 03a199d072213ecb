"""
Policy administration and approval services.

Implements:
- PolicyService: role rules, member overrides, time windows, permission checks,
  snapshots and role changes, all gated by the role hierarchy
- ApprovalService: approval request lifecycle with compare-and-set decisions
- DelegationService: cross-federation delegations and their daily use
- AllianceService: alliances and the rules members inherit through them
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from apps.core.exceptions import (
    ConflictError, NotFoundError, PermissionDeniedError, ValidationError
)
from apps.core.logging import SecurityLogger
from apps.federations.models import Federation, Member
from apps.policy import time_windows
from apps.policy.decisions import Decision
from apps.policy.event_types import EventCategory, EventType, category_of, is_known_event_type
from apps.policy.hierarchy import Role, RoleHierarchy
from apps.policy.models import (
    ApprovalRequest, AuditLog, FederationAlliance, FederationDelegation, MemberOverride,
    RolePermission, TimeWindow
)
from apps.policy.rate_limiter import RateLimiter, utc_day
from apps.policy.resolver import PermissionResolver

logger = logging.getLogger(__name__)


def _rule_dict(rule):
    return {
        'event_type': rule.event_type,
        'can_sign': rule.can_sign,
        'requires_approval': rule.requires_approval,
        'max_daily_count': rule.max_daily_count,
    }


class PolicyService:
    """
    Administrative operations over a federation's signing policy.
    """

    @classmethod
    def require_administrator(cls, actor: Member, federation: Federation, operation: str):
        """Only guardians and stewards of the same federation may configure policy."""
        if actor.federation_id != federation.id:
            SecurityLogger.log_cross_federation_access(actor, federation.id)
            raise PermissionDeniedError('Actor does not belong to this federation')

        if not RoleHierarchy.is_administrator(actor.role):
            raise PermissionDeniedError(
                f"Only stewards and guardians may perform {operation}",
                details={'actor_role': actor.role}
            )

    @classmethod
    def require_manageable_role(cls, actor: Member, target_role: str, operation: str, target_member_id=None):
        if not RoleHierarchy.can_manage_role(actor.role, target_role):
            SecurityLogger.log_privilege_escalation(
                actor, operation, target_role=target_role, target_member_id=target_member_id
            )
            raise PermissionDeniedError(
                f"A {actor.role} cannot manage the {target_role} role",
                details={'actor_role': actor.role, 'target_role': target_role}
            )

    @classmethod
    def get_member(cls, federation: Federation, member_id) -> Member:
        try:
            member = Member.objects.filter(federation=federation, id=member_id).first()
        except (ValueError, DjangoValidationError):
            member = None
        if member is None:
            raise NotFoundError('Member not found in this federation', details={'member_id': str(member_id)})
        return member

    # Role rules

    @classmethod
    def validate_rules(cls, rules: Iterable[dict]) -> list:
        rules = list(rules)
        seen = set()
        errors = {}
        for index, rule in enumerate(rules):
            event_type = rule.get('event_type')
            if not is_known_event_type(event_type):
                errors[str(index)] = f"Unknown event type '{event_type}'"
            elif event_type in seen:
                errors[str(index)] = f"Duplicate rule for '{event_type}'"
            seen.add(event_type)

            cap = rule.get('max_daily_count')
            if cap is not None and (not isinstance(cap, int) or cap <= 0):
                errors[f"{index}.max_daily_count"] = 'max_daily_count must be a positive integer'

        if errors:
            raise ValidationError('Invalid role permissions', details=errors)
        return rules

    @classmethod
    def set_role_permissions(cls, federation: Federation, role: str, permissions: Iterable[dict],
                             configured_by: Member, request=None):
        """
        Replace the full rule set of ``role`` atomically.

        Raises:
            PermissionDeniedError: actor is not a steward/guardian, or a steward
                targets the steward or guardian role
            ValidationError: unknown role or event type, duplicate or bad cap
        """
        if role not in Role.values:
            raise ValidationError(f"Unknown role '{role}'")

        cls.require_administrator(configured_by, federation, 'set_role_permissions')
        cls.require_manageable_role(configured_by, role, 'set_role_permissions')
        rules = cls.validate_rules(permissions)

        before = [_rule_dict(rule) for rule in RolePermission.objects.filter(federation=federation, role=role)]
        created = RolePermission.objects.set_batch(federation, role, rules, configured_by=configured_by)

        AuditLog.log_action(
            action='role_permissions_set',
            actor=configured_by,
            federation=federation,
            target_type='RolePermission',
            diff={
                'role': role,
                'before': before,
                'after': [_rule_dict(rule) for rule in created],
            },
            request=request
        )
        logger.info(
            f"Role permissions replaced for {role}",
            extra={
                'federation_id': str(federation.id),
                'member_id': str(configured_by.id),
                'rule_count': len(created),
            }
        )
        return created

    # Member overrides

    @classmethod
    def create_override(cls, federation: Federation, member: Member, event_type: str, allowed: bool,
                        reason: str, created_by: Member, expires_at=None, now=None, request=None) -> MemberOverride:
        """
        Create a per-member override.

        ``reason`` must be non-empty and ``expires_at``, if given, strictly in
        the future.
        """
        now = now or timezone.now()
        cls.require_administrator(created_by, federation, 'create_member_override')

        if member.federation_id != federation.id:
            raise NotFoundError('Member not found in this federation')
        cls.require_manageable_role(created_by, member.role, 'create_member_override', target_member_id=member.id)

        if not is_known_event_type(event_type):
            raise ValidationError(f"Unknown event type '{event_type}'")
        if not reason or not reason.strip():
            raise ValidationError('A reason is required for member overrides', details={'reason': 'required'})
        if expires_at is not None and expires_at <= now:
            raise ValidationError('expires_at must be in the future', details={'expires_at': 'must be in the future'})

        with transaction.atomic():
            override = MemberOverride.objects.create(
                federation=federation,
                member=member,
                event_type=event_type,
                allowed=allowed,
                reason=reason.strip(),
                created_by=created_by,
                expires_at=expires_at,
            )

            AuditLog.log_action(
                action='override_created',
                actor=created_by,
                federation=federation,
                target_type='MemberOverride',
                target_id=override.id,
                diff={
                    'member_id': str(member.id),
                    'event_type': event_type,
                    'allowed': allowed,
                    'expires_at': expires_at.isoformat() if expires_at else None,
                },
                metadata={'reason': override.reason},
                request=request
            )
            SecurityLogger.log_event(
                'member_override_created',
                level='info',
                federation_id=str(federation.id),
                actor_id=str(created_by.id),
                member_id=str(member.id),
                signing_event_type=event_type,
                allowed=allowed,
            )
        return override

    @classmethod
    def revoke_override(cls, federation: Federation, override_id, revoked_by: Member,
                        reason: str = '', now=None, request=None):
        """
        Revoke an override by expiring it now. Idempotent.

        Returns:
            (override, changed): ``changed`` is False when the override was
            already inert.
        """
        now = now or timezone.now()
        cls.require_administrator(revoked_by, federation, 'revoke_member_override')

        override = MemberOverride.objects.select_related('member').filter(
            federation=federation, id=override_id
        ).first()
        if override is None:
            raise NotFoundError('Override not found', details={'override_id': str(override_id)})
        cls.require_manageable_role(
            revoked_by, override.member.role, 'revoke_member_override', target_member_id=override.member_id
        )

        changed = MemberOverride.objects.revoke(override.id, now=now, revoked_by=revoked_by, reason=reason)
        override.refresh_from_db()

        if changed:
            AuditLog.log_action(
                action='override_revoked',
                actor=revoked_by,
                federation=federation,
                target_type='MemberOverride',
                target_id=override.id,
                diff={'expires_at': override.expires_at.isoformat()},
                metadata={'reason': reason or ''},
                request=request
            )
        return override, changed

    # Time windows

    @classmethod
    def _window_target_role(cls, federation: Federation, scope_type: str, scope_id: str):
        if scope_type == TimeWindow.SCOPE_ROLE:
            if scope_id not in Role.values:
                raise ValidationError(f"Unknown role '{scope_id}'", details={'scope_id': 'unknown role'})
            return scope_id, None
        if scope_type == TimeWindow.SCOPE_MEMBER:
            member = cls.get_member(federation, scope_id)
            return member.role, member.id
        raise ValidationError(f"Unknown scope type '{scope_type}'", details={'scope_type': 'must be role or member'})

    @classmethod
    def create_time_window(cls, federation: Federation, data: dict, created_by: Member,
                           now=None, request=None) -> TimeWindow:
        now = now or timezone.now()
        cls.require_administrator(created_by, federation, 'create_time_window')

        data = dict(data)
        data['scope_id'] = str(data.get('scope_id', ''))
        target_role, target_member_id = cls._window_target_role(federation, data.get('scope_type'), data['scope_id'])
        cls.require_manageable_role(created_by, target_role, 'create_time_window', target_member_id=target_member_id)

        if not is_known_event_type(data.get('event_type')):
            raise ValidationError(f"Unknown event type '{data.get('event_type')}'")
        data = time_windows.validate_window(data, now)

        fields = {
            key: data[key] for key in (
                'scope_type', 'scope_id', 'event_type', 'window_type', 'start_time', 'end_time',
                'days_of_week', 'timezone', 'starts_at', 'expires_at', 'description',
            ) if data.get(key) is not None
        }
        window = TimeWindow.objects.create(federation=federation, created_by=created_by, **fields)

        AuditLog.log_action(
            action='time_window_created',
            actor=created_by,
            federation=federation,
            target_type='TimeWindow',
            target_id=window.id,
            diff={
                'scope_type': window.scope_type,
                'scope_id': window.scope_id,
                'event_type': window.event_type,
                'window_type': window.window_type,
            },
            request=request
        )
        return window

    @classmethod
    def delete_time_window(cls, federation: Federation, window_id, actor: Member, request=None):
        cls.require_administrator(actor, federation, 'delete_time_window')

        window = TimeWindow.objects.filter(federation=federation, id=window_id).first()
        if window is None:
            raise NotFoundError('Time window not found', details={'window_id': str(window_id)})

        target_role, target_member_id = cls._window_target_role(federation, window.scope_type, window.scope_id)
        cls.require_manageable_role(actor, target_role, 'delete_time_window', target_member_id=target_member_id)

        window.delete()
        AuditLog.log_action(
            action='time_window_deleted',
            actor=actor,
            federation=federation,
            target_type='TimeWindow',
            target_id=window.id,
            request=request
        )

    # Resolution

    @classmethod
    def check_permission(cls, federation: Federation, member: Member, event_type: str,
                         actor: Optional[Member] = None, now=None, request=None) -> Decision:
        """
        Resolve a decision for ``member`` and record it in the audit log.

        Members may check themselves; checking another member requires a
        steward or guardian of the same federation.
        """
        if member.federation_id != federation.id:
            raise NotFoundError('Member not found in this federation')
        if actor is not None and actor.id != member.id:
            cls.require_administrator(actor, federation, 'check_permission')

        decision = PermissionResolver.resolve(member, event_type, now)

        AuditLog.log_action(
            action='permission_checked',
            actor=actor or member,
            federation=federation,
            target_type='Member',
            target_id=member.id,
            diff={'event_type': str(event_type), **decision.as_dict()},
            metadata={'error': decision.error} if decision.error else None,
            request=request
        )
        return decision

    @classmethod
    def get_permission_snapshot(cls, federation: Federation, now=None) -> dict:
        now = now or timezone.now()
        return {
            'role_permissions': list(RolePermission.objects.filter(federation=federation)),
            'overrides': list(
                MemberOverride.objects.active(now).filter(federation=federation).select_related('member')
            ),
            'time_windows': list(TimeWindow.objects.filter(federation=federation)),
        }

    @classmethod
    def get_effective_permissions(cls, federation: Federation, member: Member,
                                  actor: Optional[Member] = None, now=None) -> list:
        """
        Role rules merged with the member's active overrides, one entry per
        event type, with today's usage.

        Entries report what resolution would use: approval and the daily cap
        only apply while the role rule itself can sign, and a suspended
        federation or inactive member can sign nothing. Time windows are not
        reflected.
        """
        now = now or timezone.now()
        if member.federation_id != federation.id:
            raise NotFoundError('Member not found in this federation')
        if actor is not None and actor.id != member.id:
            cls.require_administrator(actor, federation, 'get_effective_permissions')

        day = utc_day(now)

        def entry(event_type, can_sign, requires_approval, max_daily_count, source, source_id, expires_at=None):
            return {
                'event_type': event_type,
                'category': category_of(event_type),
                'can_sign': can_sign,
                'requires_approval': can_sign and requires_approval,
                'max_daily_count': max_daily_count if can_sign else None,
                'daily_usage': RateLimiter.current_count(member, event_type, day),
                'source': source,
                'source_id': str(source_id) if source_id else None,
                'expires_at': expires_at,
            }

        if member.role == Role.PRIVATE:
            return [entry(event_type.value, True, False, None, 'role', None) for event_type in EventType]

        rules = {
            rule.event_type: rule
            for rule in RolePermission.objects.filter(federation=federation, role=member.role)
        }
        effective = {
            event_type: entry(
                event_type, rule.can_sign, rule.requires_approval, rule.max_daily_count, 'role', rule.id
            )
            for event_type, rule in rules.items()
        }

        overridden = set()
        overrides = MemberOverride.objects.active(now).filter(
            federation=federation, member=member
        ).order_by('-created_at')
        for override in overrides:
            if override.event_type in overridden:
                continue
            overridden.add(override.event_type)

            base = rules.get(override.event_type)
            base_applies = base is not None and base.can_sign
            effective[override.event_type] = entry(
                override.event_type,
                override.allowed,
                base_applies and base.requires_approval,
                base.max_daily_count if base_applies else None,
                'override',
                override.id,
                expires_at=override.expires_at,
            )

        if not member.is_active or not federation.is_active():
            for item in effective.values():
                item['can_sign'] = False
                item['requires_approval'] = False

        order = {event_type: index for index, event_type in enumerate(EventType.values)}
        return sorted(effective.values(), key=lambda item: order[item['event_type']])

    # Roles

    @classmethod
    def change_member_role(cls, federation: Federation, member: Member, new_role: str,
                           actor: Member, request=None) -> Member:
        """
        Move ``member`` to ``new_role`` if the role hierarchy allows it.
        """
        if actor.federation_id != federation.id or member.federation_id != federation.id:
            raise NotFoundError('Member not found in this federation')
        if new_role not in Role.values:
            raise ValidationError(f"Unknown role '{new_role}'")
        if actor.id == member.id:
            raise PermissionDeniedError('Members cannot change their own role')

        validation = RoleHierarchy.can_change_role(actor.role, member.role, new_role)
        if not validation.valid:
            SecurityLogger.log_privilege_escalation(
                actor, 'change_member_role', target_role=new_role, target_member_id=member.id
            )
            raise PermissionDeniedError(validation.reason, details={
                'actor_role': actor.role,
                'current_role': member.role,
                'new_role': new_role,
            })

        old_role = member.role
        member.role = new_role
        member.save(update_fields=['role', 'updated_at'])

        AuditLog.log_action(
            action='member_role_changed',
            actor=actor,
            federation=federation,
            target_type='Member',
            target_id=member.id,
            diff={'before': old_role, 'after': new_role},
            request=request
        )
        return member


class ApprovalService:
    """
    Approval request lifecycle.

    Expiry is applied lazily: any read or decision past ``expires_at`` moves
    the request to ``expired`` first.
    """

    @classmethod
    def default_ttl(cls) -> timedelta:
        return timedelta(hours=getattr(settings, 'POLICY_APPROVAL_TTL_HOURS', 24))

    @classmethod
    def create(cls, member: Member, event_type: str, payload_ref: str = '', ttl: Optional[timedelta] = None,
               now=None, request=None) -> ApprovalRequest:
        now = now or timezone.now()
        if not is_known_event_type(event_type):
            raise ValidationError(f"Unknown event type '{event_type}'")
        ttl = ttl or cls.default_ttl()
        if ttl <= timedelta(0):
            raise ValidationError('ttl must be positive')

        approval = ApprovalRequest.objects.create(
            federation_id=member.federation_id,
            member=member,
            event_type=event_type,
            payload_ref=payload_ref or '',
            required_min_approver_role=RoleHierarchy.min_approver_role(),
            expires_at=now + ttl,
        )
        AuditLog.log_action(
            action='approval_requested',
            actor=member,
            federation=member.federation,
            target_type='ApprovalRequest',
            target_id=approval.id,
            diff={'event_type': event_type, 'expires_at': approval.expires_at.isoformat()},
            request=request
        )
        return approval

    @classmethod
    def list_for_federation(cls, federation: Federation, status: Optional[str] = None, now=None):
        ApprovalRequest.objects.mark_expired(now, federation=federation)
        queryset = ApprovalRequest.objects.for_federation(federation).select_related('member', 'decided_by')
        if status:
            queryset = queryset.filter(status=status)
        return queryset

    @classmethod
    def decide(cls, federation: Federation, request_id, approver: Member, approved: bool,
               reason: str = '', now=None, request=None) -> ApprovalRequest:
        """
        Approve or reject a pending request exactly once.

        Raises:
            NotFoundError: request is not in this federation
            ConflictError: request is not pending (including lazily expired),
                the approver is inactive or their federation suspended,
                the approver's role is below the required level, or the
                approver is the requester
        """
        now = now or timezone.now()
        expired = False
        conflict = None

        with transaction.atomic():
            approval = ApprovalRequest.objects.select_for_update().filter(
                federation=federation, id=request_id
            ).first()
            if approval is None or approver.federation_id != federation.id:
                raise NotFoundError('Approval request not found', details={'request_id': str(request_id)})

            if not approver.is_active or not federation.is_active():
                raise ConflictError(
                    'Approver is not eligible to decide requests',
                    details={'approver_active': approver.is_active, 'federation_status': federation.status}
                )

            if not (RoleHierarchy.is_at_least(approver.role, RoleHierarchy.min_approver_role())
                    and RoleHierarchy.is_at_least(approver.role, approval.required_min_approver_role)):
                raise ConflictError(
                    'Approver role is below the minimum approver role',
                    details={'approver_role': approver.role, 'required_role': approval.required_min_approver_role}
                )

            if approval.member_id == approver.id:
                SecurityLogger.log_four_eyes_violation(approver.id, approval.id, federation.id)
                raise ConflictError('Four-eyes validation failed: requester and approver must be different members')

            if approval.is_expired(now):
                ApprovalRequest.objects.filter(
                    id=approval.id, status=ApprovalRequest.STATUS_PENDING
                ).update(status=ApprovalRequest.STATUS_EXPIRED, updated_at=now)
                expired = True
            elif approval.status != ApprovalRequest.STATUS_PENDING:
                conflict = f"Approval request is already {approval.status}"
            else:
                updated = ApprovalRequest.objects.filter(
                    id=approval.id,
                    status=ApprovalRequest.STATUS_PENDING,
                    expires_at__gte=now,
                ).update(
                    status=ApprovalRequest.STATUS_APPROVED if approved else ApprovalRequest.STATUS_REJECTED,
                    decided_by=approver,
                    decided_at=now,
                    reason=reason or '',
                    updated_at=now,
                )
                if updated != 1:
                    conflict = 'Approval request was decided concurrently'

        if expired:
            AuditLog.log_action(
                action='approval_expired',
                federation=federation,
                target_type='ApprovalRequest',
                target_id=approval.id,
                request=request
            )
            raise ConflictError('Approval request has expired', details={'status': ApprovalRequest.STATUS_EXPIRED})

        if conflict:
            raise ConflictError(conflict, details={'status': approval.status})

        approval.refresh_from_db()
        AuditLog.log_action(
            action='approval_decided',
            actor=approver,
            federation=federation,
            target_type='ApprovalRequest',
            target_id=approval.id,
            diff={'status': approval.status},
            metadata={'reason': reason or ''},
            request=request
        )
        return approval


@dataclass(frozen=True)
class DelegationCheck:
    allowed: bool
    requires_source_approval: bool = False
    delegation_id: Optional[str] = None
    remaining_daily_uses: Optional[int] = None
    valid_until: Optional[datetime] = None

    def as_dict(self):
        return {
            'allowed': self.allowed,
            'requires_source_approval': self.requires_source_approval,
            'delegation_id': self.delegation_id,
            'remaining_daily_uses': self.remaining_daily_uses,
            'valid_until': self.valid_until,
        }


class DelegationService:
    """
    Cross-federation delegations.

    Only guardians of the source federation grant or revoke. A member of the
    target federation may sign a delegated event type while the delegation
    is active and its daily cap is not spent.
    """

    @classmethod
    def require_guardian(cls, actor: Member, federation: Federation, operation: str):
        if actor.federation_id != federation.id:
            SecurityLogger.log_cross_federation_access(actor, federation.id)
            raise PermissionDeniedError('Actor does not belong to this federation')
        if actor.role != Role.GUARDIAN:
            SecurityLogger.log_privilege_escalation(actor, operation, target_role=Role.GUARDIAN)
            raise PermissionDeniedError(
                'Only guardians can manage cross-federation delegations',
                details={'actor_role': actor.role}
            )

    @classmethod
    def create(cls, source_federation: Federation, granter: Member, target_federation_id, event_types,
               target_member_id=None, max_daily_uses=None, requires_source_approval=True,
               valid_until=None, now=None, request=None) -> FederationDelegation:
        now = now or timezone.now()
        cls.require_guardian(granter, source_federation, 'create_delegation')

        errors = {}
        event_types = list(dict.fromkeys(event_types or []))
        unknown = [event_type for event_type in event_types if not is_known_event_type(event_type)]
        if not event_types:
            errors['delegated_event_types'] = 'At least one event type is required'
        elif unknown:
            errors['delegated_event_types'] = f"Unknown event types: {', '.join(map(str, unknown))}"
        if max_daily_uses is not None and max_daily_uses <= 0:
            errors['max_daily_uses'] = 'max_daily_uses must be a positive integer'
        if valid_until is not None and valid_until <= now:
            errors['valid_until'] = 'valid_until must be in the future'
        if errors:
            raise ValidationError('Invalid delegation', details=errors)

        try:
            target_federation = Federation.objects.filter(id=target_federation_id).first()
        except (ValueError, DjangoValidationError):
            target_federation = None
        if target_federation is None:
            raise NotFoundError('Target federation not found',
                                details={'target_federation_id': str(target_federation_id)})
        if target_federation.id == source_federation.id:
            raise ValidationError('A federation cannot delegate to itself',
                                  details={'target_federation_id': 'must differ from the source'})

        target_member = None
        if target_member_id is not None:
            target_member = PolicyService.get_member(target_federation, target_member_id)

        with transaction.atomic():
            delegation = FederationDelegation.objects.create(
                source_federation=source_federation,
                target_federation=target_federation,
                target_member=target_member,
                delegated_event_types=event_types,
                max_daily_uses=max_daily_uses,
                requires_source_approval=requires_source_approval,
                valid_from=now,
                valid_until=valid_until,
                created_by=granter,
            )
            AuditLog.log_action(
                action='delegation_created',
                actor=granter,
                federation=source_federation,
                target_type='FederationDelegation',
                target_id=delegation.id,
                diff={
                    'target_federation_id': str(target_federation.id),
                    'target_member_id': str(target_member.id) if target_member else None,
                    'delegated_event_types': event_types,
                    'max_daily_uses': max_daily_uses,
                    'requires_source_approval': requires_source_approval,
                    'valid_until': valid_until.isoformat() if valid_until else None,
                },
                request=request
            )
        SecurityLogger.log_event(
            'delegation_created',
            level='info',
            federation_id=str(source_federation.id),
            actor_id=str(granter.id),
            target_federation_id=str(target_federation.id),
            delegated_event_types=event_types,
        )
        return delegation

    @classmethod
    def get(cls, federation: Federation, delegation_id) -> FederationDelegation:
        """Delegations are visible to both the granting and the receiving federation."""
        try:
            delegation = FederationDelegation.objects.involving(federation).filter(id=delegation_id).first()
        except (ValueError, DjangoValidationError):
            delegation = None
        if delegation is None:
            raise NotFoundError('Delegation not found', details={'delegation_id': str(delegation_id)})
        return delegation

    @classmethod
    def list_for_federation(cls, federation: Federation, direction: Optional[str] = None):
        if direction == 'granted':
            queryset = FederationDelegation.objects.filter(source_federation=federation)
        elif direction == 'received':
            queryset = FederationDelegation.objects.filter(target_federation=federation)
        else:
            queryset = FederationDelegation.objects.involving(federation)
        return queryset.select_related('source_federation', 'target_federation', 'target_member')

    @classmethod
    def revoke(cls, federation: Federation, delegation_id, revoked_by: Member, reason: str = '',
               now=None, request=None):
        """
        Revoke a delegation. Idempotent.

        Returns:
            (delegation, changed)
        """
        now = now or timezone.now()
        cls.require_guardian(revoked_by, federation, 'revoke_delegation')

        delegation = cls.get(federation, delegation_id)
        if delegation.source_federation_id != federation.id:
            raise PermissionDeniedError('Only the granting federation can revoke a delegation')

        changed = FederationDelegation.objects.revoke(delegation.id, now=now, revoked_by=revoked_by, reason=reason)
        delegation.refresh_from_db()

        if changed:
            AuditLog.log_action(
                action='delegation_revoked',
                actor=revoked_by,
                federation=federation,
                target_type='FederationDelegation',
                target_id=delegation.id,
                metadata={'reason': reason or ''},
                request=request
            )
        return delegation, changed

    @classmethod
    def check(cls, member: Member, source_federation_id, event_type: str, consume: bool = False,
              now=None, request=None) -> DelegationCheck:
        """
        Decide whether ``member`` may sign ``event_type`` on behalf of the
        source federation.

        With ``consume`` an allowed check also takes one daily use, so a
        capped delegation admits exactly ``max_daily_uses`` consuming checks
        per UTC day. Fails closed: anything unexpected is a denial.
        """
        now = now or timezone.now()
        if not is_known_event_type(event_type):
            raise ValidationError(f"Unknown event type '{event_type}'")

        try:
            result = cls._check(member, source_federation_id, str(event_type), consume, now)
        except Exception as e:
            logger.error(
                f"Delegation check failed: {e}",
                extra={
                    'member_id': str(member.id),
                    'federation_id': str(member.federation_id),
                    'source_federation_id': str(source_federation_id),
                },
                exc_info=True
            )
            result = DelegationCheck(allowed=False)

        AuditLog.log_action(
            action='delegated_permission_checked',
            actor=member,
            federation=member.federation,
            target_type='FederationDelegation',
            target_id=result.delegation_id,
            diff={
                'source_federation_id': str(source_federation_id),
                'event_type': str(event_type),
                'allowed': result.allowed,
                'consumed': bool(consume and result.allowed),
            },
            request=request
        )
        return result

    @classmethod
    def _check(cls, member, source_federation_id, event_type, consume, now):
        if not member.is_active or not member.federation.is_active():
            return DelegationCheck(allowed=False)

        source = Federation.objects.filter(id=source_federation_id).first()
        if source is None or not source.is_active() or source.id == member.federation_id:
            return DelegationCheck(allowed=False)

        delegation = FederationDelegation.objects.find_active(source, member, event_type, now)
        if delegation is None:
            return DelegationCheck(allowed=False)

        day = utc_day(now)
        if consume:
            allowed = FederationDelegation.objects.consume(delegation.id, day)
            delegation.refresh_from_db()
        else:
            remaining = delegation.remaining_uses(day)
            allowed = remaining is None or remaining > 0

        return DelegationCheck(
            allowed=allowed,
            requires_source_approval=delegation.requires_source_approval,
            delegation_id=str(delegation.id),
            remaining_daily_uses=delegation.remaining_uses(day),
            valid_until=delegation.valid_until,
        )


class AllianceService:
    """
    Federation alliances.

    Alliance membership is informational: inherited rules are reported to
    members but resolution only ever reads a federation's own rules.
    """

    @classmethod
    def create(cls, name: str, federations, shared_categories, inherits_permissions_from=None,
               created_by: Optional[Member] = None) -> FederationAlliance:
        federations = list({federation.id: federation for federation in federations}.values())
        shared_categories = list(dict.fromkeys(shared_categories or []))

        errors = {}
        if not name or not name.strip():
            errors['name'] = 'required'
        if len(federations) < 2:
            errors['member_federations'] = 'An alliance needs at least two federations'
        unknown = [category for category in shared_categories if category not in EventCategory.values]
        if not shared_categories or unknown:
            errors['shared_categories'] = 'Use one or more of: ' + ', '.join(EventCategory.values)
        if inherits_permissions_from is not None and inherits_permissions_from.id not in {f.id for f in federations}:
            errors['inherits_permissions_from'] = 'Must be a member of the alliance'
        if errors:
            raise ValidationError('Invalid alliance', details=errors)

        with transaction.atomic():
            alliance = FederationAlliance.objects.create(
                name=name.strip(),
                shared_categories=shared_categories,
                inherits_permissions_from=inherits_permissions_from,
                created_by=created_by,
            )
            alliance.member_federations.set(federations)
            for federation in federations:
                AuditLog.log_action(
                    action='alliance_joined',
                    actor=created_by,
                    federation=federation,
                    target_type='FederationAlliance',
                    target_id=alliance.id,
                    diff={'name': alliance.name, 'shared_categories': shared_categories},
                )
        return alliance

    @classmethod
    def get_alliance_permissions(cls, federation: Federation) -> dict:
        """
        Active alliances of ``federation`` and the role rules it inherits
        through them.
        """
        alliances = list(
            FederationAlliance.objects.active_for(federation).prefetch_related('member_federations')
        )
        result = {
            'alliances': [
                {
                    'alliance_id': str(alliance.id),
                    'name': alliance.name,
                    'shared_categories': list(alliance.shared_categories),
                    'member_federations': sorted(str(f.id) for f in alliance.member_federations.all()),
                    'inherits_permissions_from': (
                        str(alliance.inherits_permissions_from_id)
                        if alliance.inherits_permissions_from_id else None
                    ),
                }
                for alliance in alliances
            ],
            'inherited_permissions': [],
        }

        for alliance in alliances:
            source_id = alliance.inherits_permissions_from_id
            if source_id is None or source_id == federation.id:
                continue
            shared = set(alliance.shared_categories)
            event_types = [event_type for event_type in EventType.values if category_of(event_type) in shared]
            rules = RolePermission.objects.filter(federation_id=source_id, event_type__in=event_types)
            result['inherited_permissions'].extend(
                {
                    'alliance_id': str(alliance.id),
                    'source_federation_id': str(source_id),
                    'role': rule.role,
                    'event_type': rule.event_type,
                    'category': category_of(rule.event_type),
                    'can_sign': rule.can_sign,
                    'requires_approval': rule.requires_approval,
                    'max_daily_count': rule.max_daily_count,
                }
                for rule in rules
            )
        return result
