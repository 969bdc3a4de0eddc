"""
Tests for the health check endpoint.
"""
from unittest.mock import patch

import pytest


@pytest.mark.django_db
class TestHealthCheckView:

    url = '/v1/health/'

    @patch('config.celery.app.control.inspect')
    def test_healthy(self, mock_inspect, api_client):
        mock_inspect.return_value.stats.return_value = {'worker@host': {}}

        response = api_client.get(self.url)

        assert response.status_code == 200
        assert response.data['status'] == 'healthy'
        assert response.data['database'] == 'healthy'
        assert response.data['cache'] == 'healthy'
        assert response.data['celery'] == 'healthy'

    @patch('config.celery.app.control.inspect')
    def test_unhealthy_when_workers_missing(self, mock_inspect, api_client):
        mock_inspect.return_value.stats.return_value = None

        response = api_client.get(self.url)

        assert response.status_code == 503
        assert response.data['status'] == 'unhealthy'
        assert response.data['celery'] == 'unhealthy'
        assert response.data['errors'] == ['celery: No workers available']

    @patch('config.celery.app.control.inspect')
    def test_no_credentials_needed(self, mock_inspect, api_client):
        mock_inspect.return_value.stats.return_value = {'worker@host': {}}

        response = api_client.get(self.url, HTTP_X_TENANT_ID='not-a-uuid')

        assert response.status_code == 200
