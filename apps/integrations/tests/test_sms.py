"""
Tests for voucher SMS delivery.
"""
from unittest.mock import MagicMock, patch

import pytest
from django.utils import timezone
from twilio.base.exceptions import TwilioRestException

from apps.integrations.services import SmsService, SmsServiceError, TwilioService
from apps.integrations.tasks import SmsNotSent, send_voucher_sms
from apps.vouchers.models import Voucher


@pytest.fixture
def sms_settings(settings):
    settings.SMS_ENABLED = True
    settings.TWILIO_ACCOUNT_SID = 'ACtest123'
    settings.TWILIO_AUTH_TOKEN = 'test_token_123'
    settings.TWILIO_FROM_NUMBER = 'HOTSPOT'
    settings.TWILIO_MESSAGING_SERVICE_SID = None
    settings.SMS_VOUCHER_TEMPLATE = None
    return settings


class TestTwilioService:

    @patch('apps.integrations.services.twilio_service.Client')
    def test_send_sms(self, mock_client_class):
        mock_client = MagicMock()
        mock_client.messages.create.return_value = MagicMock(sid='SM123', status='queued')
        mock_client_class.return_value = mock_client

        result = TwilioService('ACtest123', 'token', 'HOTSPOT').send_sms('+256772123456', 'hello')

        assert result == {'sid': 'SM123', 'status': 'queued', 'to': '+256772123456'}
        mock_client_class.assert_called_once_with('ACtest123', 'token')
        mock_client.messages.create.assert_called_once_with(to='+256772123456', body='hello', from_='HOTSPOT')

    @patch('apps.integrations.services.twilio_service.Client')
    def test_messaging_service(self, mock_client_class):
        mock_client = mock_client_class.return_value
        mock_client.messages.create.return_value = MagicMock(sid='SM123', status='accepted')

        TwilioService('ACtest123', 'token', 'HOTSPOT', messaging_service_sid='MG1').send_sms('+256772123456', 'hi')

        mock_client.messages.create.assert_called_once_with(
            to='+256772123456', body='hi', messaging_service_sid='MG1'
        )

    @patch('apps.integrations.services.twilio_service.Client')
    def test_rejected(self, mock_client_class):
        mock_client_class.return_value.messages.create.side_effect = TwilioRestException(
            400, '/Messages.json', msg='Invalid To number', code=21211
        )

        with pytest.raises(SmsServiceError) as exc_info:
            TwilioService('ACtest123', 'token', 'HOTSPOT').send_sms('+000', 'hi')

        assert exc_info.value.details == {'twilio_code': 21211, 'status': 400}


@pytest.mark.django_db
class TestSmsService:

    def test_is_enabled(self, sms_settings):
        assert SmsService.is_enabled()

        sms_settings.TWILIO_AUTH_TOKEN = None
        assert not SmsService.is_enabled()

    def test_disabled_by_default(self):
        assert not SmsService.is_enabled()

    def test_render_default_message(self, make_voucher, sms_settings):
        voucher = make_voucher()

        message = SmsService.render_voucher_message(voucher)

        assert message == (
            f"Your internet voucher: Code: {voucher.code}, Password: abcd2345, "
            "Valid for: 24 hours. Expires: on first use. Thank you!"
        )

    def test_render_with_expiry(self, make_voucher, sms_settings):
        voucher = make_voucher(status=Voucher.STATUS_ACTIVE)
        expected = timezone.localtime(voucher.expires_at).strftime('%Y-%m-%d %H:%M')

        assert f"Expires: {expected}." in SmsService.render_voucher_message(voucher)

    def test_render_custom_template(self, make_voucher, sms_settings):
        sms_settings.SMS_VOUCHER_TEMPLATE = '{package}: {code}/{password}'
        voucher = make_voucher()

        assert SmsService.render_voucher_message(voucher) == f'daily_1gb: {voucher.code}/abcd2345'

    def test_send(self):
        client = MagicMock()
        service = SmsService(client=client)

        assert service.send('+256772123456', 'hello')
        client.send_sms.assert_called_once_with('+256772123456', 'hello')

    def test_send_without_phone(self):
        client = MagicMock()

        assert not SmsService(client=client).send('', 'hello')
        client.send_sms.assert_not_called()

    def test_send_failure_is_reported(self):
        client = MagicMock()
        client.send_sms.side_effect = SmsServiceError('Failed to send SMS: down', details={'status': 503})

        assert not SmsService(client=client).send('+256772123456', 'hello')

    def test_send_voucher_stamps_delivery(self, make_voucher):
        client = MagicMock()
        voucher = make_voucher()

        assert SmsService(client=client).send_voucher(voucher)

        client.send_sms.assert_called_once()
        assert client.send_sms.call_args[0][0] == '+256772123456'
        voucher.refresh_from_db()
        assert voucher.sms_sent_at is not None

    def test_send_voucher_falls_back_to_payment_phone(self, make_voucher, make_payment):
        client = MagicMock()
        payment = make_payment(status='completed', customer=None, phone='+256700000001')
        voucher = make_voucher(customer=None, payment=payment)

        assert SmsService(client=client).send_voucher(voucher)
        assert client.send_sms.call_args[0][0] == '+256700000001'

    def test_send_voucher_without_recipient(self, make_voucher):
        client = MagicMock()
        voucher = make_voucher(customer=None)

        assert not SmsService(client=client).send_voucher(voucher)
        client.send_sms.assert_not_called()

    def test_failed_send_leaves_voucher_untouched(self, make_voucher):
        client = MagicMock()
        client.send_sms.side_effect = SmsServiceError('Failed to send SMS: down')
        voucher = make_voucher()

        assert not SmsService(client=client).send_voucher(voucher)
        voucher.refresh_from_db()
        assert voucher.sms_sent_at is None
        assert voucher.status == Voucher.STATUS_UNUSED


@pytest.mark.django_db
class TestSendVoucherSmsTask:

    def test_disabled(self, make_voucher):
        voucher = make_voucher()

        result = send_voucher_sms.apply(args=[str(voucher.id)]).get()

        assert result == {'status': 'disabled', 'voucher_id': str(voucher.id)}

    def test_voucher_not_found(self, db, sms_settings):
        result = send_voucher_sms.apply(args=['8f0c2a8e-0000-4000-8000-000000000000']).get()

        assert result['status'] == 'error'

    @patch('apps.integrations.services.sms_service.TwilioService')
    def test_sends(self, mock_twilio_class, make_voucher, sms_settings):
        voucher = make_voucher()

        result = send_voucher_sms.apply(args=[str(voucher.id)]).get()

        assert result == {'status': 'sent', 'voucher_id': str(voucher.id)}
        mock_twilio_class.assert_called_once_with(
            'ACtest123', 'test_token_123', 'HOTSPOT', messaging_service_sid=None
        )
        mock_twilio_class.return_value.send_sms.assert_called_once()
        voucher.refresh_from_db()
        assert voucher.sms_sent_at is not None

    @patch('apps.integrations.services.sms_service.TwilioService')
    def test_already_sent(self, mock_twilio_class, make_voucher, sms_settings):
        voucher = make_voucher(sms_sent_at=timezone.now())

        result = send_voucher_sms.apply(args=[str(voucher.id)]).get()

        assert result['status'] == 'already_sent'
        mock_twilio_class.return_value.send_sms.assert_not_called()

    @patch('apps.integrations.services.sms_service.TwilioService')
    def test_no_recipient(self, mock_twilio_class, make_voucher, sms_settings):
        voucher = make_voucher(customer=None)

        assert send_voucher_sms.apply(args=[str(voucher.id)]).get()['status'] == 'no_recipient'

    @patch('apps.integrations.services.sms_service.TwilioService')
    def test_undelivered_raises_for_retry(self, mock_twilio_class, make_voucher, sms_settings):
        mock_twilio_class.return_value.send_sms.side_effect = SmsServiceError('Failed to send SMS: down')
        voucher = make_voucher()

        with pytest.raises(SmsNotSent):
            send_voucher_sms(str(voucher.id))

        voucher.refresh_from_db()
        assert voucher.sms_sent_at is None
