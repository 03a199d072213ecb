"""
Policy engine models.

Implements:
- RolePermission: per-role base rule for an event type
- MemberOverride: per-member exception with expiry and revocation trail
- TimeWindow: scheduled / temporary / cooldown gates for a role or member
- DailyActionCounter: per-day action counts backing the rate limiter
- ApprovalRequest: asynchronous approval of a gated action
- FederationDelegation: event types lent to another federation, with a daily cap
- FederationAlliance: federations sharing rules for some event categories
- AuditLog: append-only record of resolutions and configuration changes
"""
import logging

from django.core.cache import cache
from django.conf import settings
from django.db import models, transaction
from django.db.models import F, Q
from django.utils import timezone

from apps.core.models import BaseModel, BaseModelManager, BaseModelQuerySet
from apps.policy.event_types import EventType
from apps.policy.hierarchy import Role

logger = logging.getLogger(__name__)

DEFAULT_DAYS_OF_WEEK = [1, 2, 3, 4, 5]


def default_days_of_week():
    return list(DEFAULT_DAYS_OF_WEEK)


class RolePermissionManager(BaseModelManager):
    """Manager for role base rules with a per-(federation, role) read cache."""

    CACHE_PREFIX = 'policy:rules'

    def cache_key(self, federation_id, role):
        return f"{self.CACHE_PREFIX}:{federation_id}:{role}"

    def for_federation(self, federation):
        return self.filter(federation=federation)

    def rules_for_role(self, federation_id, role):
        """
        Return ``{event_type: (can_sign, requires_approval, max_daily_count)}``.

        Served from the cache when possible; cache errors fall through to the
        database.
        """
        key = self.cache_key(federation_id, role)
        try:
            cached = cache.get(key)
        except Exception:
            logger.warning("Rule cache read failed", extra={'cache_key': key}, exc_info=True)
            cached = None
        if cached is not None:
            return cached

        rules = {
            row['event_type']: (row['can_sign'], row['requires_approval'], row['max_daily_count'])
            for row in self.filter(federation_id=federation_id, role=role).values(
                'event_type', 'can_sign', 'requires_approval', 'max_daily_count'
            )
        }

        try:
            cache.set(key, rules, getattr(settings, 'POLICY_RULE_CACHE_TTL', 300))
        except Exception:
            logger.warning("Rule cache write failed", extra={'cache_key': key}, exc_info=True)
        return rules

    def invalidate(self, federation_id, role):
        try:
            cache.delete(self.cache_key(federation_id, role))
        except Exception:
            logger.warning("Rule cache invalidation failed", exc_info=True)

    def get_rule(self, federation, role, event_type):
        """
        Return the rule for ``(federation, role, event_type)``.

        An absent rule is an unsaved instance with ``can_sign=False``.
        """
        federation_id = getattr(federation, 'id', federation)
        stored = self.rules_for_role(federation_id, str(role)).get(str(event_type))
        if stored is None:
            return self.model(
                federation_id=federation_id,
                role=str(role),
                event_type=str(event_type),
                can_sign=False,
                requires_approval=False,
                max_daily_count=None,
            )
        can_sign, requires_approval, max_daily_count = stored
        return self.model(
            federation_id=federation_id,
            role=str(role),
            event_type=str(event_type),
            can_sign=can_sign,
            requires_approval=requires_approval,
            max_daily_count=max_daily_count,
        )

    def set_batch(self, federation, role, rules, configured_by=None):
        """
        Replace every rule of ``role`` in ``federation`` with ``rules``.

        ``rules`` is an iterable of dicts with ``event_type``, ``can_sign``,
        ``requires_approval`` and ``max_daily_count``. All-or-nothing.
        """
        with transaction.atomic():
            self.model.objects_with_deleted.filter(federation=federation, role=role).hard_delete()
            created = self.bulk_create([
                self.model(
                    federation=federation,
                    role=role,
                    event_type=rule['event_type'],
                    can_sign=rule.get('can_sign', False),
                    requires_approval=rule.get('requires_approval', False),
                    max_daily_count=rule.get('max_daily_count'),
                    configured_by=configured_by,
                )
                for rule in rules
            ])
            transaction.on_commit(lambda: self.invalidate(federation.id, role))
        self.invalidate(federation.id, role)
        return created


class RolePermission(BaseModel):
    """
    Base signing rule for one role and event type within a federation.

    When ``can_sign`` is False the other fields are not consulted.
    """

    federation = models.ForeignKey(
        'federations.Federation',
        on_delete=models.CASCADE,
        related_name='role_permissions'
    )
    role = models.CharField(max_length=20, choices=Role.choices, db_index=True)
    event_type = models.CharField(max_length=50, choices=EventType.choices, db_index=True)
    can_sign = models.BooleanField(default=False)
    requires_approval = models.BooleanField(default=False)
    max_daily_count = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Maximum allowed actions per UTC day (null for unlimited)"
    )
    configured_by = models.ForeignKey(
        'federations.Member',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='configured_role_permissions'
    )

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        ordering = ['role', 'event_type']
        unique_together = [('federation', 'role', 'event_type')]

    def __str__(self):
        return f"{self.role}:{self.event_type} sign={self.can_sign} approval={self.requires_approval}"


class MemberOverrideManager(BaseModelManager):
    """Manager for member overrides."""

    def active(self, now=None):
        now = now or timezone.now()
        return self.filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))

    def for_federation(self, federation):
        return self.filter(federation=federation)

    def resolve_active(self, federation, member, event_type, now=None):
        """Return the authoritative active override (latest created) or None."""
        return self.active(now).filter(
            federation=federation,
            member=member,
            event_type=str(event_type),
        ).order_by('-created_at').first()

    def revoke(self, override_id, now=None, revoked_by=None, reason=''):
        """
        Expire an override as of ``now``.

        Conditional update on the override still being active; returns True
        when this call performed the revocation and False when it was already
        inert.
        """
        now = now or timezone.now()
        updated = self.active(now).filter(id=override_id).update(
            expires_at=now,
            revoked_at=now,
            revoked_by=revoked_by,
            revoke_reason=reason or '',
            updated_at=now,
        )
        return updated == 1


class MemberOverride(BaseModel):
    """
    Per-member exception to the role's base rule.

    Overrides are never deleted; revoking sets ``expires_at`` to the
    revocation time so the row becomes inert while keeping its history.
    """

    federation = models.ForeignKey(
        'federations.Federation',
        on_delete=models.CASCADE,
        related_name='member_overrides'
    )
    member = models.ForeignKey(
        'federations.Member',
        on_delete=models.CASCADE,
        related_name='overrides'
    )
    event_type = models.CharField(max_length=50, choices=EventType.choices, db_index=True)
    allowed = models.BooleanField(help_text="True grants the event type, False revokes it")
    reason = models.TextField()
    created_by = models.ForeignKey(
        'federations.Member',
        on_delete=models.SET_NULL,
        null=True,
        related_name='created_overrides'
    )
    expires_at = models.DateTimeField(null=True, blank=True, db_index=True)

    revoked_by = models.ForeignKey(
        'federations.Member',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='revoked_overrides'
    )
    revoked_at = models.DateTimeField(null=True, blank=True)
    revoke_reason = models.TextField(blank=True)

    objects = MemberOverrideManager()

    class Meta:
        db_table = 'member_overrides'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['member', 'event_type', 'expires_at']),
        ]

    def __str__(self):
        action = 'grant' if self.allowed else 'revoke'
        return f"{action} {self.event_type} for {self.member_id}"

    def is_active(self, now=None):
        now = now or timezone.now()
        return self.expires_at is None or self.expires_at > now


class TimeWindowManager(BaseModelManager):
    """Manager for time windows."""

    def for_federation(self, federation):
        return self.filter(federation=federation)

    def for_actor(self, federation, role, member_id, event_type):
        """Windows scoped to the actor's role or to the actor directly."""
        return self.filter(federation=federation, event_type=str(event_type)).filter(
            Q(scope_type=TimeWindow.SCOPE_ROLE, scope_id=str(role))
            | Q(scope_type=TimeWindow.SCOPE_MEMBER, scope_id=str(member_id))
        )


class TimeWindow(BaseModel):
    """
    A temporal gate (scheduled, temporary) or blocker (cooldown).

    ``scope_id`` holds a role value for role scope and a member UUID for
    member scope. ``days_of_week`` uses 0=Sunday .. 6=Saturday.
    """

    SCOPE_ROLE = 'role'
    SCOPE_MEMBER = 'member'
    SCOPE_CHOICES = [
        (SCOPE_ROLE, 'Role'),
        (SCOPE_MEMBER, 'Member'),
    ]

    TYPE_SCHEDULED = 'scheduled'
    TYPE_TEMPORARY = 'temporary'
    TYPE_COOLDOWN = 'cooldown'
    TYPE_CHOICES = [
        (TYPE_SCHEDULED, 'Scheduled'),
        (TYPE_TEMPORARY, 'Temporary'),
        (TYPE_COOLDOWN, 'Cooldown'),
    ]

    federation = models.ForeignKey(
        'federations.Federation',
        on_delete=models.CASCADE,
        related_name='time_windows'
    )
    scope_type = models.CharField(max_length=10, choices=SCOPE_CHOICES)
    scope_id = models.CharField(max_length=64, db_index=True)
    event_type = models.CharField(max_length=50, choices=EventType.choices, db_index=True)
    window_type = models.CharField(max_length=20, choices=TYPE_CHOICES)

    # Scheduled
    start_time = models.TimeField(null=True, blank=True)
    end_time = models.TimeField(null=True, blank=True)
    days_of_week = models.JSONField(default=default_days_of_week, blank=True)
    timezone = models.CharField(max_length=64, default='UTC')

    # Temporary / cooldown
    starts_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)

    description = models.TextField(blank=True)
    created_by = models.ForeignKey(
        'federations.Member',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_time_windows'
    )

    objects = TimeWindowManager()

    class Meta:
        db_table = 'time_windows'
        ordering = ['event_type', 'window_type', '-created_at']
        indexes = [
            models.Index(fields=['federation', 'event_type', 'scope_type', 'scope_id']),
        ]

    def __str__(self):
        return f"{self.window_type} {self.event_type} for {self.scope_type}:{self.scope_id}"


class DailyActionCounter(BaseModel):
    """Number of allowed actions a member took for an event type on a UTC day."""

    member = models.ForeignKey(
        'federations.Member',
        on_delete=models.CASCADE,
        related_name='daily_counters'
    )
    event_type = models.CharField(max_length=50, choices=EventType.choices)
    day = models.DateField(db_index=True)
    count = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'daily_action_counters'
        ordering = ['-day']
        constraints = [
            models.UniqueConstraint(fields=['member', 'event_type', 'day'], name='uniq_daily_action_counter'),
        ]

    def __str__(self):
        return f"{self.member_id}:{self.event_type}:{self.day}={self.count}"


class ApprovalRequestManager(BaseModelManager):
    """Manager for approval requests."""

    def for_federation(self, federation):
        return self.filter(federation=federation)

    def pending(self):
        return self.filter(status=ApprovalRequest.STATUS_PENDING)

    def stale(self, now=None):
        """Pending requests whose expiry has passed."""
        now = now or timezone.now()
        return self.pending().filter(expires_at__lt=now)

    def mark_expired(self, now=None, federation=None):
        """Persist lazy expiry for stale requests; returns the row count."""
        now = now or timezone.now()
        queryset = self.stale(now)
        if federation is not None:
            queryset = queryset.filter(federation=federation)
        return queryset.update(status=ApprovalRequest.STATUS_EXPIRED, updated_at=now)


class ApprovalRequest(BaseModel):
    """
    Secondary authorization for an action whose rule requires approval.

    pending -> approved | rejected | expired. All three outcomes are terminal.
    """

    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'
    STATUS_EXPIRED = 'expired'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_EXPIRED, 'Expired'),
    ]

    federation = models.ForeignKey(
        'federations.Federation',
        on_delete=models.CASCADE,
        related_name='approval_requests'
    )
    member = models.ForeignKey(
        'federations.Member',
        on_delete=models.CASCADE,
        related_name='approval_requests',
        help_text="Member requesting to perform the action"
    )
    event_type = models.CharField(max_length=50, choices=EventType.choices, db_index=True)
    payload_ref = models.CharField(
        max_length=255,
        blank=True,
        help_text="Opaque reference to the action payload held by the calling subsystem"
    )
    required_min_approver_role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.STEWARD
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
        db_index=True
    )
    expires_at = models.DateTimeField(db_index=True)
    decided_by = models.ForeignKey(
        'federations.Member',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='decided_approval_requests'
    )
    decided_at = models.DateTimeField(null=True, blank=True)
    reason = models.TextField(blank=True)

    objects = ApprovalRequestManager()

    class Meta:
        db_table = 'approval_requests'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['federation', 'status', 'created_at']),
        ]

    def __str__(self):
        return f"{self.event_type} by {self.member_id} ({self.status})"

    def is_expired(self, now=None):
        now = now or timezone.now()
        return self.status == self.STATUS_PENDING and now > self.expires_at

    @property
    def is_terminal(self):
        return self.status != self.STATUS_PENDING


class FederationDelegationManager(BaseModelManager):
    """Manager for cross-federation delegations."""

    def active(self, now=None):
        now = now or timezone.now()
        return self.filter(revoked_at__isnull=True, valid_from__lte=now).filter(
            Q(valid_until__isnull=True) | Q(valid_until__gt=now)
        )

    def involving(self, federation):
        """Delegations the federation granted or received."""
        return self.filter(Q(source_federation=federation) | Q(target_federation=federation))

    def find_active(self, source_federation, member, event_type, now=None):
        """
        Latest active delegation from ``source_federation`` that covers
        ``member`` and ``event_type``, or None.

        A delegation without ``target_member`` covers every member of the
        target federation.
        """
        candidates = self.active(now).filter(
            source_federation=source_federation,
            target_federation_id=member.federation_id,
        ).filter(
            Q(target_member__isnull=True) | Q(target_member=member)
        ).order_by('-created_at')

        # JSON containment is not portable across backends.
        for delegation in candidates:
            if str(event_type) in (delegation.delegated_event_types or []):
                return delegation
        return None

    def consume(self, delegation_id, day):
        """
        Take one use for ``day``. Returns False when the daily cap is spent.

        Usage resets lazily the first time a new day is seen.
        """
        self.filter(id=delegation_id).exclude(uses_day=day).update(uses_day=day, uses_today=0)
        updated = self.filter(id=delegation_id, uses_day=day).filter(
            Q(max_daily_uses__isnull=True) | Q(uses_today__lt=F('max_daily_uses'))
        ).update(uses_today=F('uses_today') + 1)
        return updated == 1

    def revoke(self, delegation_id, now=None, revoked_by=None, reason=''):
        """Conditional revocation; True when this call revoked the delegation."""
        now = now or timezone.now()
        updated = self.filter(id=delegation_id, revoked_at__isnull=True).update(
            revoked_at=now,
            revoked_by=revoked_by,
            revoke_reason=reason or '',
            updated_at=now,
        )
        return updated == 1


class FederationDelegation(BaseModel):
    """
    A guardian of ``source_federation`` lends event types to members of
    another federation for a bounded period, optionally capped per UTC day.
    """

    source_federation = models.ForeignKey(
        'federations.Federation',
        on_delete=models.CASCADE,
        related_name='granted_delegations'
    )
    target_federation = models.ForeignKey(
        'federations.Federation',
        on_delete=models.CASCADE,
        related_name='received_delegations'
    )
    target_member = models.ForeignKey(
        'federations.Member',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='received_delegations',
        help_text="Restrict the delegation to one member of the target federation"
    )
    delegated_event_types = models.JSONField(default=list)
    requires_source_approval = models.BooleanField(default=True)

    max_daily_uses = models.PositiveIntegerField(null=True, blank=True)
    uses_today = models.PositiveIntegerField(default=0)
    uses_day = models.DateField(null=True, blank=True)

    valid_from = models.DateTimeField(default=timezone.now, db_index=True)
    valid_until = models.DateTimeField(null=True, blank=True, db_index=True)

    created_by = models.ForeignKey(
        'federations.Member',
        on_delete=models.SET_NULL,
        null=True,
        related_name='created_delegations'
    )
    revoked_by = models.ForeignKey(
        'federations.Member',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='revoked_delegations'
    )
    revoked_at = models.DateTimeField(null=True, blank=True)
    revoke_reason = models.TextField(blank=True)

    objects = FederationDelegationManager()

    class Meta:
        db_table = 'federation_delegations'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['source_federation', 'target_federation', 'revoked_at']),
        ]

    def __str__(self):
        return f"{self.source_federation_id} -> {self.target_federation_id} {self.delegated_event_types}"

    def is_active(self, now=None):
        now = now or timezone.now()
        if self.revoked_at is not None or self.valid_from > now:
            return False
        return self.valid_until is None or self.valid_until > now

    def uses_on(self, day):
        return self.uses_today if self.uses_day == day else 0

    def remaining_uses(self, day):
        if self.max_daily_uses is None:
            return None
        return max(self.max_daily_uses - self.uses_on(day), 0)


class FederationAllianceManager(BaseModelManager):

    def active_for(self, federation):
        return self.filter(
            status=FederationAlliance.STATUS_ACTIVE,
            member_federations=federation,
        ).distinct()


class FederationAlliance(BaseModel):
    """
    A group of federations sharing rules for some event categories.

    Members inherit the rules of ``inherits_permissions_from`` for the
    ``shared_categories``. Inherited rules are informational and never
    change a member's own resolution.
    """

    STATUS_ACTIVE = 'active'
    STATUS_DISSOLVED = 'dissolved'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_DISSOLVED, 'Dissolved'),
    ]

    name = models.CharField(max_length=200)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    member_federations = models.ManyToManyField(
        'federations.Federation',
        related_name='alliances'
    )
    shared_categories = models.JSONField(default=list)
    inherits_permissions_from = models.ForeignKey(
        'federations.Federation',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='alliances_sourced'
    )
    created_by = models.ForeignKey(
        'federations.Member',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_alliances'
    )

    objects = FederationAllianceManager()

    class Meta:
        db_table = 'federation_alliances'
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.status})"


class AppendOnlyQuerySet(BaseModelQuerySet):
    """QuerySet that refuses bulk mutation of audit rows."""

    def update(self, **kwargs):
        raise PermissionError("Audit log entries are append-only")

    def delete(self):
        raise PermissionError("Audit log entries are append-only")

    def hard_delete(self):
        raise PermissionError("Audit log entries are append-only")


class AuditLogManager(models.Manager.from_queryset(AppendOnlyQuerySet)):
    """Manager for AuditLog queries."""

    def for_federation(self, federation):
        return self.filter(federation=federation)

    def for_actor(self, actor):
        return self.filter(actor=actor)

    def by_action(self, action):
        return self.filter(action=action)


class AuditLog(BaseModel):
    """
    Append-only trail of every resolution and configuration mutation.

    Rows can be created but never updated or deleted.
    """

    federation = models.ForeignKey(
        'federations.Federation',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='audit_logs',
        db_index=True
    )
    actor = models.ForeignKey(
        'federations.Member',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        db_index=True,
        help_text="Member who performed the action (null for system actions)"
    )

    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g. 'permission_checked', 'override_created')"
    )
    target_type = models.CharField(max_length=50, db_index=True, blank=True)
    target_id = models.CharField(max_length=64, blank=True, db_index=True)

    diff = models.JSONField(default=dict, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)
    request_id = models.CharField(max_length=64, blank=True, db_index=True)

    objects = AuditLogManager()
    objects_with_deleted = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['federation', 'created_at']),
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['target_type', 'target_id']),
        ]

    def __str__(self):
        return f"{self.federation_id} - {self.actor_id or 'system'} - {self.action}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise PermissionError("Audit log entries are append-only")
        super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        raise PermissionError("Audit log entries are append-only")

    def hard_delete(self, using=None, keep_parents=False):
        raise PermissionError("Audit log entries are append-only")

    @classmethod
    def log_action(cls, action, actor=None, federation=None, target_type='',
                   target_id=None, diff=None, metadata=None, request=None):
        """
        Create an audit entry.

        Failures are logged and swallowed so that auditing never breaks the
        operation being audited.
        """
        log_data = {
            'action': action,
            'actor': actor,
            'federation': federation,
            'target_type': target_type or '',
            'target_id': str(target_id) if target_id else '',
            'diff': diff or {},
            'metadata': metadata or {},
        }

        if request is not None:
            log_data['ip_address'] = cls._get_client_ip(request)
            log_data['user_agent'] = request.META.get('HTTP_USER_AGENT', '')
            log_data['request_id'] = str(getattr(request, 'request_id', '') or '')

        try:
            with transaction.atomic():
                return cls.objects.create(**log_data)
        except Exception as e:
            logger.error(
                f"Failed to create audit log: {e}",
                extra={'action': action, 'federation_id': str(federation.id) if federation else None},
                exc_info=True
            )
            return None

    @staticmethod
    def _get_client_ip(request):
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')
