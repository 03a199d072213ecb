"""
Policy serializers for REST API endpoints.

Every external payload is validated against the closed Role / EventType
enumerations here before reaching the services.
"""
from django.utils import timezone
from rest_framework import serializers

from apps.policy.decisions import Outcome, ReasonCode
from apps.policy.event_types import EventCategory, EventType
from apps.policy.hierarchy import Role
from apps.policy.rate_limiter import utc_day
from apps.policy.models import (
    ApprovalRequest, AuditLog, FederationDelegation, MemberOverride, RolePermission, TimeWindow
)


# ===== ROLE RULES =====

class RolePermissionSerializer(serializers.ModelSerializer):
    """Serializer for stored role rules."""

    class Meta:
        model = RolePermission
        fields = [
            'id', 'role', 'event_type', 'can_sign', 'requires_approval',
            'max_daily_count', 'configured_by', 'updated_at',
        ]
        read_only_fields = fields


class RuleInputSerializer(serializers.Serializer):
    event_type = serializers.ChoiceField(choices=EventType.choices)
    can_sign = serializers.BooleanField()
    requires_approval = serializers.BooleanField(default=False)
    max_daily_count = serializers.IntegerField(
        min_value=1,
        required=False,
        allow_null=True,
        default=None,
        help_text="Maximum actions per UTC day (omit or null for unlimited)"
    )


class SetRolePermissionsSerializer(serializers.Serializer):
    """Full replacement rule set for one role."""

    permissions = RuleInputSerializer(many=True, allow_empty=True)

    def validate_permissions(self, value):
        event_types = [rule['event_type'] for rule in value]
        duplicates = sorted({e for e in event_types if event_types.count(e) > 1})
        if duplicates:
            raise serializers.ValidationError(
                f"Duplicate rules for event types: {', '.join(duplicates)}"
            )
        return value


# ===== OVERRIDES =====

class MemberOverrideSerializer(serializers.ModelSerializer):
    member_duid = serializers.CharField(source='member.duid', read_only=True)
    is_active = serializers.SerializerMethodField()

    class Meta:
        model = MemberOverride
        fields = [
            'id', 'member', 'member_duid', 'event_type', 'allowed', 'reason',
            'created_by', 'created_at', 'expires_at',
            'revoked_by', 'revoked_at', 'revoke_reason', 'is_active',
        ]
        read_only_fields = fields

    def get_is_active(self, obj):
        return obj.is_active()


class MemberOverrideCreateSerializer(serializers.Serializer):
    """Serializer for creating member overrides."""

    member_id = serializers.UUIDField()
    event_type = serializers.ChoiceField(choices=EventType.choices)
    allowed = serializers.BooleanField()
    reason = serializers.CharField(
        max_length=1000,
        help_text="Why this member is treated differently from their role"
    )
    expires_at = serializers.DateTimeField(required=False, allow_null=True, default=None)

    def validate_reason(self, value):
        if not value.strip():
            raise serializers.ValidationError("Reason is required")
        return value.strip()

    def validate_expires_at(self, value):
        if value is not None and value <= timezone.now():
            raise serializers.ValidationError("expires_at must be in the future")
        return value


class RevokeOverrideSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='', max_length=1000)


# ===== TIME WINDOWS =====

class TimeWindowSerializer(serializers.ModelSerializer):

    class Meta:
        model = TimeWindow
        fields = [
            'id', 'scope_type', 'scope_id', 'event_type', 'window_type',
            'start_time', 'end_time', 'days_of_week', 'timezone',
            'starts_at', 'expires_at', 'description', 'created_by', 'created_at',
        ]
        read_only_fields = fields


class TimeWindowCreateSerializer(serializers.Serializer):
    """
    Serializer for creating time windows.

    Scheduled windows use start_time/end_time/days_of_week (0=Sunday)/timezone;
    temporary windows use starts_at and/or expires_at; cooldowns use expires_at.
    """

    scope_type = serializers.ChoiceField(choices=TimeWindow.SCOPE_CHOICES)
    scope_id = serializers.CharField(max_length=64)
    event_type = serializers.ChoiceField(choices=EventType.choices)
    window_type = serializers.ChoiceField(choices=TimeWindow.TYPE_CHOICES)
    start_time = serializers.TimeField(required=False, allow_null=True)
    end_time = serializers.TimeField(required=False, allow_null=True)
    days_of_week = serializers.ListField(
        child=serializers.IntegerField(min_value=0, max_value=6),
        required=False,
        allow_empty=False
    )
    timezone = serializers.CharField(required=False, max_length=64)
    starts_at = serializers.DateTimeField(required=False, allow_null=True)
    expires_at = serializers.DateTimeField(required=False, allow_null=True)
    description = serializers.CharField(required=False, allow_blank=True, max_length=500)

    def validate(self, attrs):
        if attrs['scope_type'] == TimeWindow.SCOPE_ROLE and attrs['scope_id'] not in Role.values:
            raise serializers.ValidationError({'scope_id': f"Unknown role '{attrs['scope_id']}'"})
        return attrs


# ===== RESOLUTION =====

class PermissionCheckSerializer(serializers.Serializer):
    event_type = serializers.ChoiceField(choices=EventType.choices)
    member_id = serializers.UUIDField(
        required=False,
        help_text="Member to check (defaults to the caller)"
    )


class DecisionSerializer(serializers.Serializer):
    allowed = serializers.BooleanField()
    requires_approval = serializers.BooleanField()
    reason_code = serializers.ChoiceField(choices=ReasonCode.choices, allow_null=True)
    outcome = serializers.ChoiceField(choices=Outcome.choices)
    message = serializers.CharField()


class PermissionSnapshotSerializer(serializers.Serializer):
    role_permissions = RolePermissionSerializer(many=True)
    overrides = MemberOverrideSerializer(many=True)
    time_windows = TimeWindowSerializer(many=True)


class EffectivePermissionSerializer(serializers.Serializer):
    event_type = serializers.ChoiceField(choices=EventType.choices)
    category = serializers.ChoiceField(choices=EventCategory.choices)
    can_sign = serializers.BooleanField()
    requires_approval = serializers.BooleanField()
    max_daily_count = serializers.IntegerField(allow_null=True)
    daily_usage = serializers.IntegerField()
    source = serializers.ChoiceField(choices=[('role', 'Role'), ('override', 'Override')])
    source_id = serializers.CharField(allow_null=True)
    expires_at = serializers.DateTimeField(allow_null=True)


# ===== APPROVALS =====

class ApprovalRequestSerializer(serializers.ModelSerializer):

    class Meta:
        model = ApprovalRequest
        fields = [
            'id', 'member', 'event_type', 'payload_ref', 'required_min_approver_role',
            'status', 'created_at', 'expires_at', 'decided_by', 'decided_at', 'reason',
        ]
        read_only_fields = fields


class ApprovalRequestCreateSerializer(serializers.Serializer):
    event_type = serializers.ChoiceField(choices=EventType.choices)
    payload_ref = serializers.CharField(required=False, allow_blank=True, default='', max_length=255)
    ttl_hours = serializers.IntegerField(required=False, min_value=1, max_value=24 * 30)


class ApprovalDecisionSerializer(serializers.Serializer):
    approved = serializers.BooleanField()
    reason = serializers.CharField(required=False, allow_blank=True, default='', max_length=1000)


# ===== DELEGATIONS =====

class FederationDelegationSerializer(serializers.ModelSerializer):
    uses_today = serializers.SerializerMethodField()
    remaining_daily_uses = serializers.SerializerMethodField()
    is_active = serializers.SerializerMethodField()

    class Meta:
        model = FederationDelegation
        fields = [
            'id', 'source_federation', 'target_federation', 'target_member',
            'delegated_event_types', 'requires_source_approval', 'max_daily_uses',
            'uses_today', 'remaining_daily_uses', 'valid_from', 'valid_until',
            'created_by', 'created_at', 'revoked_by', 'revoked_at', 'revoke_reason',
            'is_active',
        ]
        read_only_fields = fields

    def _today(self):
        return utc_day(timezone.now())

    def get_uses_today(self, obj):
        return obj.uses_on(self._today())

    def get_remaining_daily_uses(self, obj):
        return obj.remaining_uses(self._today())

    def get_is_active(self, obj):
        return obj.is_active()


class DelegationCreateSerializer(serializers.Serializer):
    target_federation_id = serializers.UUIDField()
    target_member_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    delegated_event_types = serializers.ListField(
        child=serializers.ChoiceField(choices=EventType.choices),
        allow_empty=False
    )
    max_daily_uses = serializers.IntegerField(required=False, allow_null=True, default=None, min_value=1)
    requires_source_approval = serializers.BooleanField(default=True)
    valid_until = serializers.DateTimeField(required=False, allow_null=True, default=None)

    def validate_valid_until(self, value):
        if value is not None and value <= timezone.now():
            raise serializers.ValidationError("valid_until must be in the future")
        return value


class DelegationCheckSerializer(serializers.Serializer):
    source_federation_id = serializers.UUIDField()
    event_type = serializers.ChoiceField(choices=EventType.choices)
    consume = serializers.BooleanField(
        default=False,
        help_text="Take one daily use when allowed"
    )


class DelegationCheckResultSerializer(serializers.Serializer):
    allowed = serializers.BooleanField()
    requires_source_approval = serializers.BooleanField()
    delegation_id = serializers.CharField(allow_null=True)
    remaining_daily_uses = serializers.IntegerField(allow_null=True)
    valid_until = serializers.DateTimeField(allow_null=True)


# ===== ALLIANCES =====

class AllianceSummarySerializer(serializers.Serializer):
    alliance_id = serializers.CharField()
    name = serializers.CharField()
    shared_categories = serializers.ListField(child=serializers.CharField())
    member_federations = serializers.ListField(child=serializers.CharField())
    inherits_permissions_from = serializers.CharField(allow_null=True)


class InheritedPermissionSerializer(serializers.Serializer):
    alliance_id = serializers.CharField()
    source_federation_id = serializers.CharField()
    role = serializers.CharField()
    event_type = serializers.CharField()
    category = serializers.CharField()
    can_sign = serializers.BooleanField()
    requires_approval = serializers.BooleanField()
    max_daily_count = serializers.IntegerField(allow_null=True)


class AlliancePermissionsSerializer(serializers.Serializer):
    alliances = AllianceSummarySerializer(many=True)
    inherited_permissions = InheritedPermissionSerializer(many=True)


# ===== MEMBERS =====

class MemberRoleChangeSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=Role.choices)


# ===== AUDIT =====

class AuditLogSerializer(serializers.ModelSerializer):

    class Meta:
        model = AuditLog
        fields = [
            'id', 'federation', 'actor', 'action', 'target_type', 'target_id',
            'diff', 'metadata', 'ip_address', 'request_id', 'created_at',
        ]
        read_only_fields = fields
