"""
Tests for the custom exception handler.
"""
from unittest.mock import Mock

from rest_framework import exceptions as drf_exceptions

from apps.core.exceptions import (
    ConflictError, NotFoundError, PermissionDeniedError, ValidationError,
    custom_exception_handler,
)


def make_context(request_id='req-1'):
    request = Mock()
    request.request_id = request_id
    request.path = '/v1/federations/x/check'
    request.method = 'POST'
    return {'request': request, 'view': None}


class TestCustomExceptionHandler:
    """Test error envelope mapping."""

    def test_policy_exceptions_map_to_status_and_code(self):
        cases = [
            (ValidationError('bad'), 400, 'VALIDATION_ERROR'),
            (PermissionDeniedError('no'), 403, 'FORBIDDEN'),
            (NotFoundError('missing'), 404, 'NOT_FOUND'),
            (ConflictError('closed'), 409, 'CONFLICT'),
        ]
        for exc, status_code, code in cases:
            response = custom_exception_handler(exc, make_context())
            assert response.status_code == status_code
            assert response.data['error']['code'] == code
            assert response.data['request_id'] == 'req-1'

    def test_details_are_included(self):
        exc = ValidationError('Invalid time window', details={'expires_at': 'required'})
        response = custom_exception_handler(exc, make_context())
        assert response.data['error']['details'] == {'expires_at': 'required'}

    def test_drf_exceptions_keep_their_status(self):
        response = custom_exception_handler(drf_exceptions.NotAuthenticated(), make_context())
        assert response.status_code == 401
        assert response.data['request_id'] == 'req-1'

    def test_unknown_exception_is_internal_error(self):
        response = custom_exception_handler(RuntimeError('boom'), make_context())
        assert response.status_code == 500
        assert response.data['error']['code'] == 'INTERNAL_ERROR'
        assert 'boom' not in response.data['error']['message']
