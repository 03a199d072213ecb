"""
DRF permission classes and decorators for federation role enforcement.

This module provides:
- HasFederationRole: permission class enforcing federation isolation and a minimum role
- @requires_role: decorator declaring the minimum role on views
"""
import logging
from rest_framework.permissions import BasePermission

from apps.core.logging import SecurityLogger
from apps.policy.hierarchy import RoleHierarchy

logger = logging.getLogger(__name__)


class HasFederationRole(BasePermission):
    """
    Enforce that the authenticated member belongs to the federation in the URL
    and, when the view declares ``required_role``, that the member's level is
    at least that role's level.

    Usage:
        @requires_role('steward')
        class RolePermissionsView(APIView):
            permission_classes = [HasFederationRole]
    """

    def has_permission(self, request, view):
        member = getattr(request, 'user', None)
        if member is None or not getattr(member, 'is_authenticated', False) or not hasattr(member, 'role'):
            return False

        federation_id = view.kwargs.get('federation_id') if hasattr(view, 'kwargs') else None
        if federation_id is not None and str(federation_id) != str(member.federation_id):
            SecurityLogger.log_cross_federation_access(member, federation_id, path=request.path)
            return False

        handler = getattr(view, request.method.lower(), None)
        required_role = getattr(handler, 'required_role', None) or getattr(view, 'required_role', None)
        if not required_role:
            return True

        if not RoleHierarchy.is_at_least(member.role, required_role):
            logger.warning(
                f"Permission denied: member {member.id} with role {member.role} requires {required_role}",
                extra={
                    'member_id': str(member.id),
                    'federation_id': str(member.federation_id),
                    'required_role': required_role,
                    'view': view.__class__.__name__,
                    'method': request.method,
                    'path': request.path,
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            return False

        return True

    def has_object_permission(self, request, view, obj):
        """Objects outside the member's federation are never visible."""
        member = getattr(request, 'user', None)
        object_federation_id = getattr(obj, 'federation_id', None)
        if object_federation_id is None:
            return True
        return member is not None and object_federation_id == member.federation_id


def requires_role(role):
    """
    Declare the minimum federation role on a view class or handler method.

    The attribute is read by ``HasFederationRole``; a method-level role takes
    precedence over the class-level one.
    """
    def decorator(view_or_method):
        view_or_method.required_role = role
        return view_or_method

    return decorator
