"""
Tests for the RouterOS REST client.
"""
from unittest.mock import Mock

import pytest
import requests

from apps.routers.models import RouterConfig
from apps.routers.services import (
    AccessControllerError,
    AccessControllerNotConfigured,
    HotspotUserSpec,
    RouterOsClient,
    get_access_controller,
)


def _response(data=None, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.content = b'' if data is None else b'[]'
    response.json.return_value = data
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} Error")
    return response


USERS = [
    {'.id': '*1', 'name': 'BIL-AAAA-1111', 'disabled': 'false', 'profile': '1GB-DAILY', 'comment': 'Price: UGX 5000.00'},
    {'.id': '*2', 'name': 'BIL-BBBB-2222', 'disabled': 'true', 'profile': '1GB-DAILY'},
    {'.id': '*3', 'name': 'BIL-CCCC-3333', 'disabled': 'false', 'profile': 'WEEKLY'},
]


class TestRouterOsClient:

    def setup_method(self):
        self.client = RouterOsClient('10.0.0.1', 'api', 'secret', timeout=5)
        self.client.session = Mock()

    def _calls(self):
        return [(c.args[0], c.args[1]) for c in self.client.session.request.call_args_list]

    def test_base_url(self):
        assert self.client.base_url == 'https://10.0.0.1:443/rest'
        assert RouterOsClient('router.local', 'api', 'x', use_ssl=False, timeout=5).base_url == 'http://router.local:80/rest'
        assert RouterOsClient('10.0.0.1', 'api', 'x', port=8443, timeout=5).base_url == 'https://10.0.0.1:8443/rest'

    def test_session_credentials(self):
        client = RouterOsClient('10.0.0.1', 'api', 'secret', verify_ssl=False, timeout=5)

        assert client.session.auth == ('api', 'secret')
        assert client.session.verify is False

    def test_get_user(self):
        self.client.session.request.return_value = _response([USERS[0]])

        record = self.client.get_user('BIL-AAAA-1111')

        assert record.username == 'BIL-AAAA-1111'
        assert record.enabled
        assert record.profile == '1GB-DAILY'
        assert record.remote_id == '*1'
        args, kwargs = self.client.session.request.call_args
        assert args == ('GET', 'https://10.0.0.1:443/rest/ip/hotspot/user')
        assert kwargs['params'] == {'name': 'BIL-AAAA-1111'}
        assert kwargs['timeout'] == 5

    def test_get_disabled_user(self):
        self.client.session.request.return_value = _response([USERS[1]])

        assert not self.client.get_user('BIL-BBBB-2222').enabled

    def test_get_missing_user(self):
        self.client.session.request.return_value = _response([])

        assert self.client.get_user('BIL-ZZZZ-9999') is None

    def test_get_user_ignores_other_names(self):
        self.client.session.request.return_value = _response([USERS[2]])

        assert self.client.get_user('BIL-AAAA-1111') is None

    def test_create_user(self):
        self.client.session.request.return_value = _response({'.id': '*9'})
        spec = HotspotUserSpec(
            username='BIL-AAAA-1111',
            password='abcd2345',
            profile='1GB-DAILY',
            validity_hours=24,
            data_limit_bytes=1073741824,
            comment='Price: UGX 5000.00',
        )

        assert self.client.create_user(spec) is True

        args, kwargs = self.client.session.request.call_args
        assert args == ('PUT', 'https://10.0.0.1:443/rest/ip/hotspot/user')
        assert kwargs['json'] == {
            'server': 'all',
            'name': 'BIL-AAAA-1111',
            'password': 'abcd2345',
            'profile': '1GB-DAILY',
            'limit-uptime': '24:00:00',
            'comment': 'Price: UGX 5000.00',
            'disabled': 'false',
            'limit-bytes-total': '1073741824',
        }

    def test_create_user_without_data_limit(self):
        self.client.session.request.return_value = _response({'.id': '*9'})
        spec = HotspotUserSpec(
            username='BIL-AAAA-1111', password='p', profile='WEEKLY', validity_hours=168, enabled=False,
        )

        self.client.create_user(spec)

        body = self.client.session.request.call_args.kwargs['json']
        assert 'limit-bytes-total' not in body
        assert body['disabled'] == 'true'
        assert body['limit-uptime'] == '168:00:00'

    def test_disable_user(self):
        self.client.session.request.side_effect = [_response([USERS[0]]), _response({})]

        assert self.client.disable_user('BIL-AAAA-1111') is True

        assert self._calls() == [
            ('GET', 'https://10.0.0.1:443/rest/ip/hotspot/user'),
            ('PATCH', 'https://10.0.0.1:443/rest/ip/hotspot/user/*1'),
        ]
        assert self.client.session.request.call_args.kwargs['json'] == {'disabled': 'true'}

    def test_enable_user(self):
        self.client.session.request.side_effect = [_response([USERS[1]]), _response({})]

        assert self.client.enable_user('BIL-BBBB-2222') is True
        assert self.client.session.request.call_args.kwargs['json'] == {'disabled': 'false'}

    def test_enable_missing_user(self):
        self.client.session.request.return_value = _response([])

        assert self.client.enable_user('BIL-ZZZZ-9999') is False
        assert [method for method, _ in self._calls()] == ['GET']

    def test_remove_named_users(self):
        self.client.session.request.side_effect = [_response(USERS), _response(), _response()]

        removed = self.client.remove_expired_users(['BIL-AAAA-1111', 'BIL-CCCC-3333', 'BIL-GONE-0000'])

        assert removed == 2
        assert self._calls()[1:] == [
            ('DELETE', 'https://10.0.0.1:443/rest/ip/hotspot/user/*1'),
            ('DELETE', 'https://10.0.0.1:443/rest/ip/hotspot/user/*3'),
        ]

    def test_remove_disabled_users(self):
        self.client.session.request.side_effect = [_response(USERS), _response()]

        assert self.client.remove_expired_users() == 1
        assert self._calls()[1] == ('DELETE', 'https://10.0.0.1:443/rest/ip/hotspot/user/*2')

    def test_transport_error(self):
        self.client.session.request.side_effect = requests.exceptions.ConnectTimeout('timed out')

        with pytest.raises(AccessControllerError) as exc_info:
            self.client.get_user('BIL-AAAA-1111')

        assert 'timed out' in exc_info.value.message
        assert exc_info.value.details == {'method': 'GET', 'path': '/ip/hotspot/user'}

    def test_http_error(self):
        self.client.session.request.return_value = _response({'error': 401}, status_code=401)

        with pytest.raises(AccessControllerError):
            self.client.get_user('BIL-AAAA-1111')

    def test_non_json_body(self):
        response = _response([])
        response.json.side_effect = ValueError('no json')
        self.client.session.request.return_value = response

        with pytest.raises(AccessControllerError) as exc_info:
            self.client.get_user('BIL-AAAA-1111')

        assert 'non-JSON' in exc_info.value.message


@pytest.mark.django_db
class TestGetAccessController:

    def test_not_configured(self, tenant):
        with pytest.raises(AccessControllerNotConfigured):
            get_access_controller(tenant)

    def test_disabled_config(self, tenant):
        RouterConfig.objects.create(tenant=tenant, host='10.0.0.1', username='api', password='x', is_enabled=False)

        with pytest.raises(AccessControllerNotConfigured):
            get_access_controller(tenant)

    def test_builds_client(self, tenant, settings):
        settings.ROUTER_TIMEOUT = 7
        RouterConfig.objects.create(
            tenant=tenant,
            host='10.0.0.1',
            port=8729,
            username='api',
            password='secret',
            hotspot_server='hotspot1',
        )

        client = get_access_controller(tenant)

        assert isinstance(client, RouterOsClient)
        assert client.base_url == 'https://10.0.0.1:8729/rest'
        assert client.server == 'hotspot1'
        assert client.timeout == 7
