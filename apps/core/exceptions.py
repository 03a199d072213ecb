"""
Exception types and the DRF exception handler.

Denials produced by the resolver are ordinary return values; the exceptions
here cover invalid input, authorization failures on administrative
operations and state conflicts.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status

logger = logging.getLogger(__name__)


class PolicyEngineException(Exception):
    """Base exception for policy engine errors."""

    status_code = 400
    code = 'POLICY_ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(PolicyEngineException):
    """Raised when input validation fails."""
    status_code = 400
    code = 'VALIDATION_ERROR'


class AuthenticationError(PolicyEngineException):
    """Raised when a member token is missing or invalid."""
    status_code = 401
    code = 'AUTHENTICATION_FAILED'


class PermissionDeniedError(PolicyEngineException):
    """Raised when an actor is not eligible for an administrative operation."""
    status_code = 403
    code = 'FORBIDDEN'


class NotFoundError(PolicyEngineException):
    status_code = 404
    code = 'NOT_FOUND'


class ConflictError(PolicyEngineException):
    """Raised when a compare-and-set transition loses (e.g. deciding a closed request)."""
    status_code = 409
    code = 'CONFLICT'


def _error_body(code, message, details=None, request_id=None):
    body = {
        'error': {
            'code': code,
            'message': message,
        }
    }
    if details:
        body['error']['details'] = details
    if request_id:
        body['request_id'] = request_id
    return body


def custom_exception_handler(exc, context):
    """
    Log every API exception and return a consistent error envelope.

    ``PolicyEngineException`` subclasses map to their ``status_code``;
    everything DRF already understands keeps DRF's status; anything else is
    a 500.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, PolicyEngineException):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"Policy exception: {exc.__class__.__name__}: {exc.message}",
            extra={
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
                'status_code': exc.status_code,
            }
        )
        return Response(
            _error_body(exc.code, exc.message, exc.details, request_id),
            status=exc.status_code
        )

    response = exception_handler(exc, context)

    logger.error(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
        },
        exc_info=response is None
    )

    if response is None:
        return Response(
            _error_body('INTERNAL_ERROR', 'An unexpected error occurred', request_id=request_id),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
