"""
Django admin configuration for the policy app.
"""
from django.contrib import admin
from .models import (
    ApprovalRequest,
    AuditLog,
    DailyActionCounter,
    FederationAlliance,
    FederationDelegation,
    MemberOverride,
    RolePermission,
    TimeWindow,
)


@admin.register(RolePermission)
class RolePermissionAdmin(admin.ModelAdmin):
    list_display = ['federation', 'role', 'event_type', 'can_sign', 'requires_approval', 'max_daily_count']
    list_filter = ['role', 'can_sign', 'requires_approval']
    search_fields = ['federation__slug', 'event_type']
    raw_id_fields = ['federation', 'configured_by']


@admin.register(MemberOverride)
class MemberOverrideAdmin(admin.ModelAdmin):
    list_display = ['member', 'event_type', 'allowed', 'expires_at', 'revoked_at', 'created_at']
    list_filter = ['allowed', 'event_type']
    search_fields = ['member__duid', 'reason']
    raw_id_fields = ['federation', 'member', 'created_by', 'revoked_by']


@admin.register(TimeWindow)
class TimeWindowAdmin(admin.ModelAdmin):
    list_display = ['federation', 'scope_type', 'scope_id', 'event_type', 'window_type', 'expires_at']
    list_filter = ['scope_type', 'window_type']
    search_fields = ['federation__slug', 'scope_id']
    raw_id_fields = ['federation', 'created_by']


@admin.register(DailyActionCounter)
class DailyActionCounterAdmin(admin.ModelAdmin):
    list_display = ['member', 'event_type', 'day', 'count']
    list_filter = ['day']
    raw_id_fields = ['member']


@admin.register(ApprovalRequest)
class ApprovalRequestAdmin(admin.ModelAdmin):
    list_display = ['member', 'event_type', 'status', 'expires_at', 'decided_by', 'decided_at']
    list_filter = ['status', 'event_type']
    search_fields = ['member__duid', 'payload_ref']
    raw_id_fields = ['federation', 'member', 'decided_by']


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    """Read-only: audit entries are append-only."""
    list_display = ['action', 'federation', 'actor', 'target_type', 'target_id', 'created_at']
    list_filter = ['action', 'target_type']
    search_fields = ['target_id', 'request_id']
    readonly_fields = [
        'federation', 'actor', 'action', 'target_type', 'target_id', 'diff', 'metadata',
        'ip_address', 'user_agent', 'request_id', 'created_at',
    ]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(FederationDelegation)
class FederationDelegationAdmin(admin.ModelAdmin):
    list_display = [
        'source_federation', 'target_federation', 'target_member',
        'max_daily_uses', 'valid_until', 'revoked_at', 'created_at',
    ]
    list_filter = ['requires_source_approval']
    search_fields = ['source_federation__slug', 'target_federation__slug']
    raw_id_fields = ['source_federation', 'target_federation', 'target_member', 'created_by', 'revoked_by']
    readonly_fields = ['uses_today', 'uses_day']


@admin.register(FederationAlliance)
class FederationAllianceAdmin(admin.ModelAdmin):
    list_display = ['name', 'status', 'inherits_permissions_from', 'created_at']
    list_filter = ['status']
    search_fields = ['name']
    filter_horizontal = ['member_federations']
    raw_id_fields = ['inherits_permissions_from', 'created_by']
