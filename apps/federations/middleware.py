"""
Request context middleware for federation isolation.

Resolves the acting member from the bearer token so that every policy
operation knows which federation and role it runs under.
"""
import logging
import uuid
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from apps.core.logging import SecurityLogger
from apps.federations.services import MemberTokenService

logger = logging.getLogger(__name__)


class RequestIDMiddleware(MiddlewareMixin):
    """
    Attach a request ID to every request and echo it in the response.
    """

    def process_request(self, request):
        if not hasattr(request, 'request_id'):
            request.request_id = request.headers.get('X-Request-ID', str(uuid.uuid4()))
        return None

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        return response


class FederationContextMiddleware(MiddlewareMixin):
    """
    Authenticate the acting member from ``Authorization: Bearer <jwt>``.

    On success ``request.member`` and ``request.federation`` are set. Public
    paths (health, schema, admin, event type catalogue) bypass the check.
    """

    PUBLIC_PATHS = [
        '/v1/health',
        '/v1/event-types',
        '/schema',
        '/admin/',
    ]

    def process_request(self, request):
        request.member = None
        request.federation = None

        if self._is_public_path(request.path):
            return None

        header = request.headers.get('Authorization', '')
        if not header.startswith('Bearer '):
            return self._error_response(
                'MISSING_CREDENTIALS',
                'Authorization: Bearer <token> header is required',
                status=401
            )

        token = header[len('Bearer '):].strip()
        member = MemberTokenService.get_member_from_token(token)
        if member is None:
            SecurityLogger.log_invalid_token(
                'invalid, expired or inactive member token',
                ip_address=request.META.get('REMOTE_ADDR'),
                path=request.path
            )
            return self._error_response(
                'INVALID_TOKEN',
                'Token is invalid, expired or belongs to an inactive member',
                status=401
            )

        request.member = member
        request.federation = member.federation

        logger.debug(
            f"Federation context set: member {member.id} ({member.role}) @ {member.federation.slug}",
            extra={
                'request_id': getattr(request, 'request_id', None),
                'federation_id': str(member.federation_id),
                'member_id': str(member.id),
            }
        )
        return None

    def _is_public_path(self, path):
        return any(path.startswith(public_path) for public_path in self.PUBLIC_PATHS)

    def _error_response(self, code, message, status=400, details=None):
        error_data = {
            'error': {
                'code': code,
                'message': message,
            }
        }
        if details:
            error_data['error']['details'] = details
        return JsonResponse(error_data, status=status)
