"""
Policy REST API views.

Implements endpoints for:
- Event type catalogue
- Role rule configuration and permission snapshots
- Member overrides (create, revoke)
- Time windows (list, create, delete)
- Permission checks
- Approval requests (create, list, decide)
- Effective permissions per member
- Cross-federation delegations (create, list, get, revoke, check)
- Alliance permissions
- Member role changes
- Audit log viewing
"""
from datetime import timedelta

from django.db import transaction
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.permissions import HasFederationRole, requires_role
from apps.policy.event_types import catalogue
from apps.policy.hierarchy import Role, RoleHierarchy
from apps.policy.messages import COMPACT, DETAILED, describe
from apps.policy.models import AuditLog, TimeWindow
from apps.policy.serializers import (
    AlliancePermissionsSerializer, ApprovalDecisionSerializer, ApprovalRequestCreateSerializer,
    ApprovalRequestSerializer, AuditLogSerializer, DecisionSerializer, DelegationCheckResultSerializer,
    DelegationCheckSerializer, DelegationCreateSerializer, EffectivePermissionSerializer,
    FederationDelegationSerializer, MemberOverrideCreateSerializer,
    MemberOverrideSerializer, MemberRoleChangeSerializer, PermissionCheckSerializer,
    PermissionSnapshotSerializer, RevokeOverrideSerializer, RolePermissionSerializer,
    SetRolePermissionsSerializer, TimeWindowCreateSerializer, TimeWindowSerializer,
)
from apps.policy.services import AllianceService, ApprovalService, DelegationService, PolicyService


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


@extend_schema_view(
    get=extend_schema(
        tags=['Policy - Reference'],
        summary='List event types',
        description='Closed catalogue of signable event types grouped by display category.',
        responses={200: OpenApiTypes.OBJECT}
    )
)
class EventTypeListView(APIView):
    """
    GET /v1/event-types
    """
    authentication_classes = []
    permission_classes = []

    def get(self, request):
        return Response({'categories': catalogue()})


@extend_schema_view(
    get=extend_schema(
        tags=['Policy - Rules'],
        summary='Get permission snapshot',
        description='''
Role rules, active member overrides and time windows for the federation.

Any member of the federation may read the snapshot.
        ''',
        responses={200: PermissionSnapshotSerializer, 403: OpenApiTypes.OBJECT}
    )
)
class PermissionSnapshotView(APIView):
    """
    GET /v1/federations/{federation_id}/permissions
    """
    permission_classes = [HasFederationRole]

    def get(self, request, federation_id):
        snapshot = PolicyService.get_permission_snapshot(request.user.federation)
        return Response(PermissionSnapshotSerializer(snapshot).data)


@extend_schema_view(
    put=extend_schema(
        tags=['Policy - Rules'],
        summary='Replace role rules',
        description='''
Replace the full rule set of one role atomically.

**Requires steward or guardian.** Stewards may only configure the private,
offspring and adult roles.
        ''',
        request=SetRolePermissionsSerializer,
        responses={
            200: RolePermissionSerializer(many=True),
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
        }
    )
)
@requires_role(Role.STEWARD)
class RolePermissionsView(APIView):
    """
    PUT /v1/federations/{federation_id}/roles/{role}/permissions
    """
    permission_classes = [HasFederationRole]

    def put(self, request, federation_id, role):
        serializer = SetRolePermissionsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        rules = PolicyService.set_role_permissions(
            request.user.federation,
            role,
            serializer.validated_data['permissions'],
            configured_by=request.user,
            request=request
        )
        return Response({
            'role': role,
            'permissions': RolePermissionSerializer(rules, many=True).data,
        })


@extend_schema_view(
    post=extend_schema(
        tags=['Policy - Overrides'],
        summary='Create member override',
        description='''
Grant or revoke one event type for a single member.

**Requires steward or guardian.** `reason` is mandatory and `expires_at`,
when given, must be in the future. Stewards cannot target stewards or
guardians.
        ''',
        request=MemberOverrideCreateSerializer,
        responses={
            201: MemberOverrideSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    )
)
@requires_role(Role.STEWARD)
class MemberOverrideCreateView(APIView):
    """
    POST /v1/federations/{federation_id}/overrides
    """
    permission_classes = [HasFederationRole]

    @transaction.atomic
    def post(self, request, federation_id):
        serializer = MemberOverrideCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        federation = request.user.federation
        member = PolicyService.get_member(federation, data['member_id'])
        override = PolicyService.create_override(
            federation,
            member,
            data['event_type'],
            data['allowed'],
            data['reason'],
            created_by=request.user,
            expires_at=data.get('expires_at'),
            request=request
        )
        return Response(MemberOverrideSerializer(override).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    post=extend_schema(
        tags=['Policy - Overrides'],
        summary='Revoke member override',
        description='''
Mark an override inert by expiring it now. Revoking an already inert
override succeeds without changes.

**Requires steward or guardian.**
        ''',
        request=RevokeOverrideSerializer,
        responses={
            200: MemberOverrideSerializer,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    )
)
@requires_role(Role.STEWARD)
class MemberOverrideRevokeView(APIView):
    """
    POST /v1/federations/{federation_id}/overrides/{override_id}/revoke
    """
    permission_classes = [HasFederationRole]

    def post(self, request, federation_id, override_id):
        serializer = RevokeOverrideSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        override, changed = PolicyService.revoke_override(
            request.user.federation,
            override_id,
            revoked_by=request.user,
            reason=serializer.validated_data['reason'],
            request=request
        )
        data = MemberOverrideSerializer(override).data
        data['changed'] = changed
        return Response(data)


@extend_schema_view(
    get=extend_schema(
        tags=['Policy - Time Windows'],
        summary='List time windows',
        parameters=[
            OpenApiParameter('event_type', OpenApiTypes.STR, description='Filter by event type'),
            OpenApiParameter('window_type', OpenApiTypes.STR, description='Filter by window type'),
        ],
        responses={200: TimeWindowSerializer(many=True)}
    ),
    post=extend_schema(
        tags=['Policy - Time Windows'],
        summary='Create time window',
        description='''
Create a scheduled, temporary or cooldown window for a role or a member.

**Requires steward or guardian.** `days_of_week` uses 0=Sunday..6=Saturday.
        ''',
        request=TimeWindowCreateSerializer,
        responses={
            201: TimeWindowSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
        }
    )
)
class TimeWindowListCreateView(APIView):
    """
    GET/POST /v1/federations/{federation_id}/time-windows
    """
    permission_classes = [HasFederationRole]

    def get(self, request, federation_id):
        windows = TimeWindow.objects.for_federation(request.user.federation)

        event_type = request.query_params.get('event_type')
        if event_type:
            windows = windows.filter(event_type=event_type)
        window_type = request.query_params.get('window_type')
        if window_type:
            windows = windows.filter(window_type=window_type)

        return Response(TimeWindowSerializer(windows, many=True).data)

    @requires_role(Role.STEWARD)
    def post(self, request, federation_id):
        serializer = TimeWindowCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        window = PolicyService.create_time_window(
            request.user.federation,
            serializer.validated_data,
            created_by=request.user,
            request=request
        )
        return Response(TimeWindowSerializer(window).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    delete=extend_schema(
        tags=['Policy - Time Windows'],
        summary='Delete time window',
        responses={204: None, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
@requires_role(Role.STEWARD)
class TimeWindowDetailView(APIView):
    """
    DELETE /v1/federations/{federation_id}/time-windows/{window_id}
    """
    permission_classes = [HasFederationRole]

    def delete(self, request, federation_id, window_id):
        PolicyService.delete_time_window(request.user.federation, window_id, actor=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    post=extend_schema(
        tags=['Policy - Resolution'],
        summary='Check permission',
        description='''
Resolve whether a member may perform an event type right now.

Action-executing subsystems must call this before every gated action.
`outcome` is `resolution_error` when the check itself failed; treat that
as a denial. Checking another member requires steward or guardian.

Query parameter `style=detailed` returns the long-form message.
        ''',
        parameters=[
            OpenApiParameter('style', OpenApiTypes.STR, description='compact (default) or detailed'),
        ],
        request=PermissionCheckSerializer,
        responses={200: DecisionSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT}
    )
)
class PermissionCheckView(APIView):
    """
    POST /v1/federations/{federation_id}/check
    """
    permission_classes = [HasFederationRole]

    def post(self, request, federation_id):
        serializer = PermissionCheckSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        federation = request.user.federation
        member_id = serializer.validated_data.get('member_id')
        member = PolicyService.get_member(federation, member_id) if member_id else request.user

        decision = PolicyService.check_permission(
            federation,
            member,
            serializer.validated_data['event_type'],
            actor=request.user,
            request=request
        )
        style = DETAILED if request.query_params.get('style') == DETAILED else COMPACT
        body = decision.as_dict()
        body['message'] = describe(decision, style)
        return Response(body)


@extend_schema_view(
    get=extend_schema(
        tags=['Policy - Approvals'],
        summary='List approval requests',
        description='''
Stewards and guardians see every request in the federation; other members
see only their own. Stale pending requests are reported as expired.
        ''',
        parameters=[
            OpenApiParameter('status', OpenApiTypes.STR, description='Filter by status'),
        ],
        responses={200: ApprovalRequestSerializer(many=True)}
    ),
    post=extend_schema(
        tags=['Policy - Approvals'],
        summary='Create approval request',
        description='Open an approval request for the calling member after a check returned `requires_approval`.',
        request=ApprovalRequestCreateSerializer,
        responses={201: ApprovalRequestSerializer, 400: OpenApiTypes.OBJECT}
    )
)
class ApprovalRequestListCreateView(APIView):
    """
    GET/POST /v1/federations/{federation_id}/approvals
    """
    permission_classes = [HasFederationRole]
    pagination_class = StandardResultsSetPagination

    def get(self, request, federation_id):
        approvals = ApprovalService.list_for_federation(
            request.user.federation,
            status=request.query_params.get('status')
        )
        if not RoleHierarchy.is_administrator(request.user.role):
            approvals = approvals.filter(member=request.user)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(approvals, request)
        return paginator.get_paginated_response(ApprovalRequestSerializer(page, many=True).data)

    def post(self, request, federation_id):
        serializer = ApprovalRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        ttl = timedelta(hours=data['ttl_hours']) if data.get('ttl_hours') else None
        approval = ApprovalService.create(
            request.user,
            data['event_type'],
            payload_ref=data['payload_ref'],
            ttl=ttl,
            request=request
        )
        return Response(ApprovalRequestSerializer(approval).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    post=extend_schema(
        tags=['Policy - Approvals'],
        summary='Decide approval request',
        description='''
Approve or reject a pending request.

Returns **409 Conflict** when the request is no longer pending (already
decided or expired), when the approver ranks below steward, or when the
approver is the requester.
        ''',
        request=ApprovalDecisionSerializer,
        responses={
            200: ApprovalRequestSerializer,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        }
    )
)
class ApprovalDecideView(APIView):
    """
    POST /v1/federations/{federation_id}/approvals/{request_id}/decide
    """
    permission_classes = [HasFederationRole]

    def post(self, request, federation_id, request_id):
        serializer = ApprovalDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        approval = ApprovalService.decide(
            request.user.federation,
            request_id,
            approver=request.user,
            approved=serializer.validated_data['approved'],
            reason=serializer.validated_data['reason'],
            request=request
        )
        return Response(ApprovalRequestSerializer(approval).data)


@extend_schema_view(
    post=extend_schema(
        tags=['Policy - Members'],
        summary='Change member role',
        description='''
Move a member to a new role.

Nobody may manage a peer or superior. Guardians may assign any lower role,
stewards move members between offspring and adult, adults may only keep
offspring as offspring.
        ''',
        request=MemberRoleChangeSerializer,
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT}
    )
)
class MemberRoleView(APIView):
    """
    POST /v1/federations/{federation_id}/members/{member_id}/role
    """
    permission_classes = [HasFederationRole]

    @transaction.atomic
    def post(self, request, federation_id, member_id):
        serializer = MemberRoleChangeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        federation = request.user.federation
        member = PolicyService.get_member(federation, member_id)
        previous_role = member.role
        member = PolicyService.change_member_role(
            federation, member, serializer.validated_data['role'], actor=request.user, request=request
        )
        return Response({
            'member_id': str(member.id),
            'previous_role': previous_role,
            'role': member.role,
        })


@extend_schema_view(
    get=extend_schema(
        tags=['Policy - Audit'],
        summary='List audit logs',
        description='''
Append-only audit trail of permission checks and configuration changes.

**Requires steward or guardian.**
        ''',
        parameters=[
            OpenApiParameter('action', OpenApiTypes.STR, description='Filter by action'),
            OpenApiParameter('target_type', OpenApiTypes.STR, description='Filter by target type'),
            OpenApiParameter('actor_id', OpenApiTypes.UUID, description='Filter by acting member'),
            OpenApiParameter('from_date', OpenApiTypes.DATETIME, description='Filter from date'),
            OpenApiParameter('to_date', OpenApiTypes.DATETIME, description='Filter to date'),
        ],
        responses={200: AuditLogSerializer(many=True), 403: OpenApiTypes.OBJECT}
    )
)
@requires_role(Role.STEWARD)
class AuditLogListView(APIView):
    """
    GET /v1/federations/{federation_id}/audit-logs
    """
    permission_classes = [HasFederationRole]
    pagination_class = StandardResultsSetPagination

    def get(self, request, federation_id):
        logs = AuditLog.objects.for_federation(request.user.federation).select_related('actor')

        action = request.query_params.get('action')
        if action:
            logs = logs.filter(action=action)

        target_type = request.query_params.get('target_type')
        if target_type:
            logs = logs.filter(target_type=target_type)

        actor_id = request.query_params.get('actor_id')
        if actor_id:
            logs = logs.filter(actor_id=actor_id)

        from_date = request.query_params.get('from_date')
        if from_date:
            logs = logs.filter(created_at__gte=from_date)

        to_date = request.query_params.get('to_date')
        if to_date:
            logs = logs.filter(created_at__lte=to_date)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(logs, request)
        return paginator.get_paginated_response(AuditLogSerializer(page, many=True).data)


@extend_schema_view(
    get=extend_schema(
        tags=['Policy - Resolution'],
        summary='Get effective permissions',
        description='''
Role rules merged with the member's active overrides, one entry per event
type, with today's usage against the daily cap. `source` says whether the
role rule or an override decides the entry.

Members may read their own; reading another member requires steward or
guardian.
        ''',
        responses={200: EffectivePermissionSerializer(many=True), 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
class EffectivePermissionsView(APIView):
    """
    GET /v1/federations/{federation_id}/members/{member_id}/effective-permissions
    """
    permission_classes = [HasFederationRole]

    def get(self, request, federation_id, member_id):
        federation = request.user.federation
        member = PolicyService.get_member(federation, member_id)
        permissions = PolicyService.get_effective_permissions(federation, member, actor=request.user)
        return Response({
            'member_id': str(member.id),
            'role': member.role,
            'permissions': EffectivePermissionSerializer(permissions, many=True).data,
        })


@extend_schema_view(
    get=extend_schema(
        tags=['Policy - Delegations'],
        summary='List delegations',
        description='Delegations this federation granted or received. **Requires steward or guardian.**',
        parameters=[
            OpenApiParameter('direction', OpenApiTypes.STR, description='granted or received'),
        ],
        responses={200: FederationDelegationSerializer(many=True), 403: OpenApiTypes.OBJECT}
    ),
    post=extend_schema(
        tags=['Policy - Delegations'],
        summary='Create delegation',
        description='''
Lend event types to another federation, or to one member of it.

**Requires guardian.** `requires_source_approval` defaults to true and
`max_daily_uses` caps consuming checks per UTC day.
        ''',
        request=DelegationCreateSerializer,
        responses={
            201: FederationDelegationSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    )
)
@requires_role(Role.STEWARD)
class DelegationListCreateView(APIView):
    """
    GET/POST /v1/federations/{federation_id}/delegations
    """
    permission_classes = [HasFederationRole]
    pagination_class = StandardResultsSetPagination

    def get(self, request, federation_id):
        delegations = DelegationService.list_for_federation(
            request.user.federation,
            direction=request.query_params.get('direction')
        )
        paginator = self.pagination_class()
        page = paginator.paginate_queryset(delegations, request)
        return paginator.get_paginated_response(FederationDelegationSerializer(page, many=True).data)

    @requires_role(Role.GUARDIAN)
    def post(self, request, federation_id):
        serializer = DelegationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        delegation = DelegationService.create(
            request.user.federation,
            request.user,
            data['target_federation_id'],
            data['delegated_event_types'],
            target_member_id=data.get('target_member_id'),
            max_daily_uses=data.get('max_daily_uses'),
            requires_source_approval=data['requires_source_approval'],
            valid_until=data.get('valid_until'),
            request=request
        )
        return Response(FederationDelegationSerializer(delegation).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['Policy - Delegations'],
        summary='Get delegation',
        description='One delegation with today\'s usage. **Requires steward or guardian.**',
        responses={200: FederationDelegationSerializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
@requires_role(Role.STEWARD)
class DelegationDetailView(APIView):
    """
    GET /v1/federations/{federation_id}/delegations/{delegation_id}
    """
    permission_classes = [HasFederationRole]

    def get(self, request, federation_id, delegation_id):
        delegation = DelegationService.get(request.user.federation, delegation_id)
        return Response(FederationDelegationSerializer(delegation).data)


@extend_schema_view(
    post=extend_schema(
        tags=['Policy - Delegations'],
        summary='Revoke delegation',
        description='Revoke a delegation this federation granted. Idempotent. **Requires guardian.**',
        request=RevokeOverrideSerializer,
        responses={200: FederationDelegationSerializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
@requires_role(Role.GUARDIAN)
class DelegationRevokeView(APIView):
    """
    POST /v1/federations/{federation_id}/delegations/{delegation_id}/revoke
    """
    permission_classes = [HasFederationRole]

    def post(self, request, federation_id, delegation_id):
        serializer = RevokeOverrideSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        delegation, changed = DelegationService.revoke(
            request.user.federation,
            delegation_id,
            revoked_by=request.user,
            reason=serializer.validated_data['reason'],
            request=request
        )
        data = FederationDelegationSerializer(delegation).data
        data['changed'] = changed
        return Response(data)


@extend_schema_view(
    post=extend_schema(
        tags=['Policy - Delegations'],
        summary='Check delegated permission',
        description='''
Whether the caller may sign an event type on behalf of another federation.

Send `consume=true` right before acting to take one daily use.
        ''',
        request=DelegationCheckSerializer,
        responses={200: DelegationCheckResultSerializer, 400: OpenApiTypes.OBJECT}
    )
)
class DelegationCheckView(APIView):
    """
    POST /v1/federations/{federation_id}/delegations/check
    """
    permission_classes = [HasFederationRole]

    def post(self, request, federation_id):
        serializer = DelegationCheckSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = DelegationService.check(
            request.user,
            data['source_federation_id'],
            data['event_type'],
            consume=data['consume'],
            request=request
        )
        return Response(DelegationCheckResultSerializer(result.as_dict()).data)


@extend_schema_view(
    get=extend_schema(
        tags=['Policy - Alliances'],
        summary='Get alliance permissions',
        description='''
Active alliances of the federation and the role rules inherited through
them for the shared categories. Inherited rules are informational.
        ''',
        responses={200: AlliancePermissionsSerializer}
    )
)
class AlliancePermissionsView(APIView):
    """
    GET /v1/federations/{federation_id}/alliances/permissions
    """
    permission_classes = [HasFederationRole]

    def get(self, request, federation_id):
        result = AllianceService.get_alliance_permissions(request.user.federation)
        return Response(AlliancePermissionsSerializer(result).data)
