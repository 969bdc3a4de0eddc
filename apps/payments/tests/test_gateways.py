"""
Tests for the CollectUG and M-Pesa gateway clients.
"""
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
import requests
from django.core.cache import cache

from apps.core.exceptions import ValidationError
from apps.payments.services import GatewayError, get_gateway
from apps.payments.services.collectug_service import CollectUgGateway, format_ug_phone
from apps.payments.services.mpesa_service import MpesaGateway


def _response(status_code=200, data=None):
    response = Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = data if data is not None else {}
    response.text = ''
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} Error")
    return response


class TestGetGateway:

    def test_default_gateway(self, settings):
        settings.PAYMENT_GATEWAY = 'collectug'

        assert isinstance(get_gateway(), CollectUgGateway)

    def test_named_gateway(self):
        assert isinstance(get_gateway('mpesa'), MpesaGateway)

    def test_unknown_gateway(self):
        with pytest.raises(ValidationError):
            get_gateway('paypal')


class TestFormatUgPhone:

    @pytest.mark.parametrize('raw,expected', [
        ('0772123456', '256772123456'),
        ('772123456', '256772123456'),
        ('+256772123456', '256772123456'),
        ('256 772 123 456', '256772123456'),
    ])
    def test_formats(self, raw, expected):
        assert format_ug_phone(raw) == expected


class TestCollectUgGateway:

    def setup_method(self):
        self.gateway = CollectUgGateway(
            api_key='cug-key',
            base_url='https://collect.example.com/',
            callback_url='https://billing.example.com/v1/webhooks/payments/collectug',
            timeout=5,
        )

    @patch('apps.payments.services.collectug_service.requests.post')
    def test_initiate(self, mock_post):
        mock_post.return_value = _response(200, {
            'message': 'Payment initiated',
            'transaction': {'transaction_id': 'CUG-987', 'status': 'pending'},
        })

        result = self.gateway.initiate(
            Decimal('5000.00'), 'UGX', '+256772123456', 'Internet voucher',
            metadata={'transaction_id': 'PAY-20240101-ABCDEFGH'},
        )

        assert result.success
        assert result.reference == 'CUG-987'
        assert result.requires_confirmation
        assert result.message == 'Payment initiated'

        args, kwargs = mock_post.call_args
        assert args[0] == 'https://collect.example.com/api/v1/payments/collect'
        assert kwargs['headers']['Authorization'] == 'Bearer cug-key'
        assert kwargs['timeout'] == 5
        assert kwargs['json']['amount'] == 5000
        assert kwargs['json']['phoneNumber'] == '256772123456'
        assert kwargs['json']['merchant_reference'] == 'PAY-20240101-ABCDEFGH'
        assert kwargs['json']['callback_url'].endswith('/collectug')

    def test_initiate_rejects_other_currency(self):
        with pytest.raises(GatewayError):
            self.gateway.initiate(Decimal('10'), 'KES', '+254712345678', 'Internet voucher')

    @patch('apps.payments.services.collectug_service.requests.post')
    def test_initiate_api_error(self, mock_post):
        mock_post.return_value = _response(422, {'message': 'Invalid phone number'})

        with pytest.raises(GatewayError) as exc_info:
            self.gateway.initiate(Decimal('5000'), 'UGX', '0772123456', 'Internet voucher')

        assert exc_info.value.message == 'Invalid phone number'
        assert exc_info.value.details['status_code'] == 422

    @patch('apps.payments.services.collectug_service.requests.post')
    def test_initiate_transport_error(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectTimeout('timed out')

        with pytest.raises(GatewayError) as exc_info:
            self.gateway.initiate(Decimal('5000'), 'UGX', '0772123456', 'Internet voucher')

        assert 'timed out' in exc_info.value.message

    @patch('apps.payments.services.collectug_service.requests.get')
    def test_verify_successful(self, mock_get):
        mock_get.return_value = _response(200, {'transaction': {'status': 'successful'}})

        result = self.gateway.verify('CUG-987')

        assert result.success
        assert result.status == 'completed'
        assert mock_get.call_args[0][0] == 'https://collect.example.com/api/v1/payments/verify/CUG-987'

    @patch('apps.payments.services.collectug_service.requests.get')
    def test_verify_pending(self, mock_get):
        mock_get.return_value = _response(200, {'transaction': {'status': 'pending'}})

        result = self.gateway.verify('CUG-987')

        assert not result.success
        assert result.status == 'pending'

    @patch('apps.payments.services.collectug_service.requests.get')
    def test_verify_not_found_is_not_a_failure(self, mock_get):
        mock_get.return_value = _response(404, {'message': 'Not found'})

        result = self.gateway.verify('CUG-987')

        assert not result.success
        assert result.status == 'unknown'

    @patch('apps.payments.services.collectug_service.requests.get')
    def test_verify_transport_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError('refused')

        with pytest.raises(GatewayError):
            self.gateway.verify('CUG-987')

    def test_non_json_body(self):
        response = Mock()
        response.json.side_effect = ValueError('no json')
        response.text = '<html>Bad Gateway</html>'

        assert CollectUgGateway._json(response) == {'body': '<html>Bad Gateway</html>'}


class TestMpesaGateway:

    @pytest.fixture(autouse=True)
    def mpesa_settings(self, settings):
        settings.MPESA_API_URL = 'https://sandbox.safaricom.co.ke'
        settings.MPESA_CONSUMER_KEY = 'key'
        settings.MPESA_CONSUMER_SECRET = 'secret'
        settings.MPESA_SHORTCODE = '174379'
        settings.MPESA_PASSKEY = 'passkey'
        settings.MPESA_CALLBACK_URL = 'https://billing.example.com/v1/webhooks/payments/mpesa'
        cache.clear()
        yield
        cache.clear()

    def test_format_phone(self):
        assert MpesaGateway.format_phone('0712345678') == '254712345678'
        assert MpesaGateway.format_phone('+254 712 345 678') == '254712345678'

    @patch('apps.payments.services.mpesa_service.requests.post')
    @patch('apps.payments.services.mpesa_service.requests.get')
    def test_initiate_stk_push(self, mock_get, mock_post):
        mock_get.return_value = _response(200, {'access_token': 'token-1'})
        mock_post.return_value = _response(200, {
            'ResponseCode': '0',
            'CheckoutRequestID': 'ws_CO_1',
            'CustomerMessage': 'Success. Request accepted for processing',
        })

        result = MpesaGateway().initiate(
            Decimal('100'), 'KES', '0712345678', 'Internet voucher package',
            metadata={'transaction_id': 'TENANT-ACME-20240101-ABCDEFGH'},
        )

        assert result.reference == 'ws_CO_1'
        body = mock_post.call_args[1]['json']
        assert body['Amount'] == 100
        assert body['PhoneNumber'] == '254712345678'
        assert body['AccountReference'] == 'TENANT-ACME-'
        assert len(body['TransactionDesc']) <= 13
        assert mock_post.call_args[1]['headers']['Authorization'] == 'Bearer token-1'

    @patch('apps.payments.services.mpesa_service.requests.post')
    @patch('apps.payments.services.mpesa_service.requests.get')
    def test_token_is_cached(self, mock_get, mock_post):
        mock_get.return_value = _response(200, {'access_token': 'token-1'})
        mock_post.return_value = _response(200, {'ResultCode': '0', 'ResultDesc': 'ok'})

        gateway = MpesaGateway()
        gateway.verify('ws_CO_1')
        gateway.verify('ws_CO_1')

        assert mock_get.call_count == 1

    @patch('apps.payments.services.mpesa_service.requests.post')
    @patch('apps.payments.services.mpesa_service.requests.get')
    def test_initiate_rejected(self, mock_get, mock_post):
        mock_get.return_value = _response(200, {'access_token': 'token-1'})
        mock_post.return_value = _response(200, {'ResponseCode': '1', 'ResponseDescription': 'Rejected'})

        with pytest.raises(GatewayError):
            MpesaGateway().initiate(Decimal('100'), 'KES', '0712345678', 'Voucher')

    def test_initiate_other_currency(self):
        with pytest.raises(GatewayError):
            MpesaGateway().initiate(Decimal('100'), 'UGX', '0772123456', 'Voucher')

    @pytest.mark.parametrize('result_code,status', [
        ('0', 'completed'),
        ('1032', 'failed'),
        ('4999', 'pending'),
        ('', 'pending'),
    ])
    @patch('apps.payments.services.mpesa_service.requests.post')
    @patch('apps.payments.services.mpesa_service.requests.get')
    def test_verify_result_codes(self, mock_get, mock_post, result_code, status):
        mock_get.return_value = _response(200, {'access_token': 'token-1'})
        mock_post.return_value = _response(200, {'ResultCode': result_code, 'ResultDesc': 'desc'})

        result = MpesaGateway().verify('ws_CO_1')

        assert result.status == status
        assert result.success == (status == 'completed')

    @patch('apps.payments.services.mpesa_service.requests.get')
    def test_auth_failure(self, mock_get):
        mock_get.return_value = _response(401)

        with pytest.raises(GatewayError):
            MpesaGateway().verify('ws_CO_1')
