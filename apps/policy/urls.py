"""
Policy API URLs.

Provides endpoints for:
- Event type catalogue
- Role rules and permission snapshots
- Member overrides and time windows
- Permission checks and approval requests
- Effective permissions, delegations and alliance permissions
- Member role changes and audit log viewing
"""
from django.urls import path
from apps.policy.views import (
    EventTypeListView,
    PermissionSnapshotView,
    RolePermissionsView,
    MemberOverrideCreateView,
    MemberOverrideRevokeView,
    TimeWindowListCreateView,
    TimeWindowDetailView,
    PermissionCheckView,
    ApprovalRequestListCreateView,
    ApprovalDecideView,
    MemberRoleView,
    AuditLogListView,
    EffectivePermissionsView,
    DelegationListCreateView,
    DelegationDetailView,
    DelegationRevokeView,
    DelegationCheckView,
    AlliancePermissionsView,
)

app_name = 'policy'

federation_prefix = 'federations/<uuid:federation_id>/'

urlpatterns = [
    path('event-types', EventTypeListView.as_view(), name='event-type-list'),

    # Rule endpoints
    path(federation_prefix + 'permissions', PermissionSnapshotView.as_view(), name='permission-snapshot'),
    path(federation_prefix + 'roles/<str:role>/permissions', RolePermissionsView.as_view(), name='role-permissions'),

    # Override endpoints
    path(federation_prefix + 'overrides', MemberOverrideCreateView.as_view(), name='override-create'),
    path(federation_prefix + 'overrides/<uuid:override_id>/revoke', MemberOverrideRevokeView.as_view(), name='override-revoke'),

    # Time window endpoints
    path(federation_prefix + 'time-windows', TimeWindowListCreateView.as_view(), name='time-window-list'),
    path(federation_prefix + 'time-windows/<uuid:window_id>', TimeWindowDetailView.as_view(), name='time-window-detail'),

    # Resolution
    path(federation_prefix + 'check', PermissionCheckView.as_view(), name='permission-check'),

    # Approval endpoints
    path(federation_prefix + 'approvals', ApprovalRequestListCreateView.as_view(), name='approval-list'),
    path(federation_prefix + 'approvals/<uuid:request_id>/decide', ApprovalDecideView.as_view(), name='approval-decide'),

    # Member endpoints
    path(federation_prefix + 'members/<uuid:member_id>/role', MemberRoleView.as_view(), name='member-role'),
    path(federation_prefix + 'members/<uuid:member_id>/effective-permissions', EffectivePermissionsView.as_view(), name='effective-permissions'),

    # Delegation endpoints
    path(federation_prefix + 'delegations', DelegationListCreateView.as_view(), name='delegation-list'),
    path(federation_prefix + 'delegations/check', DelegationCheckView.as_view(), name='delegation-check'),
    path(federation_prefix + 'delegations/<uuid:delegation_id>', DelegationDetailView.as_view(), name='delegation-detail'),
    path(federation_prefix + 'delegations/<uuid:delegation_id>/revoke', DelegationRevokeView.as_view(), name='delegation-revoke'),

    # Alliance endpoints
    path(federation_prefix + 'alliances/permissions', AlliancePermissionsView.as_view(), name='alliance-permissions'),

    # Audit log
    path(federation_prefix + 'audit-logs', AuditLogListView.as_view(), name='audit-log-list'),
]
