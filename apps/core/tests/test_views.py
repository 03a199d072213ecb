"""
Tests for core views and the API error envelope.
"""
import pytest
from django.urls import reverse
from rest_framework.test import APIClient


@pytest.mark.django_db
class TestHealthCheckView:
    """Test health check endpoint."""

    def test_health_check_success(self):
        """Database and cache are available in tests; Celery is skipped."""
        client = APIClient()
        response = client.get(reverse('health-check'))

        assert response.status_code == 200
        assert response.data['status'] == 'healthy'
        assert response.data['database'] == 'healthy'
        assert response.data['cache'] == 'healthy'
        assert response.data['celery'] == 'skipped'

    def test_health_check_no_auth_required(self):
        client = APIClient()
        response = client.get(reverse('health-check'))
        assert response.status_code not in [401, 403]

    def test_request_id_is_echoed(self):
        client = APIClient()
        response = client.get(reverse('health-check'), HTTP_X_REQUEST_ID='abc-123')
        assert response['X-Request-ID'] == 'abc-123'
