"""
M-Pesa STK push gateway (Kenya, KES).

Initiation is an STK push (Lipa Na M-Pesa Online); verification queries
the push status by CheckoutRequestID.

Documentation: https://developer.safaricom.co.ke/APIs
"""
import base64
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import requests
from django.conf import settings
from django.core.cache import cache

from apps.payments.services.gateway import (
    GatewayError, GatewayInitiation, GatewayVerification, PaymentGateway,
)

logger = logging.getLogger(__name__)


class MpesaGateway(PaymentGateway):
    """M-Pesa Daraja client used as a payment gateway."""

    name = 'mpesa'
    TOKEN_CACHE_KEY = 'mpesa_access_token'
    TOKEN_TTL = 3300
    # STK query ResultCode values
    RESULT_SUCCESS = '0'
    RESULT_PENDING = {'4999', '500.001.1001'}

    def __init__(self, timeout=None, token_ttl=None):
        super().__init__(timeout=timeout)
        self.token_ttl = token_ttl or self.TOKEN_TTL

    def _get_access_token(self) -> str:
        """OAuth token, cached slightly under its one-hour lifetime."""
        token = cache.get(self.TOKEN_CACHE_KEY)
        if token:
            return token

        auth_string = f"{settings.MPESA_CONSUMER_KEY}:{settings.MPESA_CONSUMER_SECRET}"
        auth_bytes = base64.b64encode(auth_string.encode('utf-8'))
        try:
            response = requests.get(
                f"{settings.MPESA_API_URL}/oauth/v1/generate?grant_type=client_credentials",
                headers={'Authorization': f'Basic {auth_bytes.decode("utf-8")}'},
                timeout=self.timeout
            )
            response.raise_for_status()
            token = response.json()['access_token']
        except (requests.exceptions.RequestException, KeyError, ValueError) as e:
            logger.error(f"Failed to get M-Pesa access token: {str(e)}", exc_info=True)
            raise GatewayError(f"Failed to authenticate with M-Pesa: {str(e)}") from e

        cache.set(self.TOKEN_CACHE_KEY, token, self.token_ttl)
        return token

    def _headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {self._get_access_token()}',
            'Content-Type': 'application/json'
        }

    @staticmethod
    def _password() -> tuple:
        timestamp = datetime.now().strftime('%Y%m%d%H%M%S')
        raw = f"{settings.MPESA_SHORTCODE}{settings.MPESA_PASSKEY}{timestamp}"
        return base64.b64encode(raw.encode('utf-8')).decode('utf-8'), timestamp

    @staticmethod
    def format_phone(phone: str) -> str:
        phone = phone.replace('+', '').replace(' ', '')
        if phone.startswith('0'):
            phone = '254' + phone[1:]
        return phone

    def _post(self, path, payload) -> Dict[str, Any]:
        try:
            response = requests.post(
                f"{settings.MPESA_API_URL}{path}",
                json=payload,
                headers=self._headers(),
                timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"M-Pesa request to {path} failed: {str(e)}", exc_info=True)
            raise GatewayError(f"M-Pesa request failed: {str(e)}") from e

    def initiate(
        self,
        amount: Decimal,
        currency: str,
        phone: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GatewayInitiation:
        if currency != 'KES':
            raise GatewayError("M-Pesa only collects KES", details={'currency': currency})

        metadata = metadata or {}
        password, timestamp = self._password()
        msisdn = self.format_phone(phone)
        data = self._post('/mpesa/stkpush/v1/processrequest', {
            'BusinessShortCode': settings.MPESA_SHORTCODE,
            'Password': password,
            'Timestamp': timestamp,
            'TransactionType': 'CustomerPayBillOnline',
            'Amount': int(amount),
            'PartyA': msisdn,
            'PartyB': settings.MPESA_SHORTCODE,
            'PhoneNumber': msisdn,
            'CallBackURL': settings.MPESA_CALLBACK_URL,
            'AccountReference': str(metadata.get('transaction_id', ''))[:12],
            'TransactionDesc': description[:13],
        })

        if data.get('ResponseCode') != '0':
            raise GatewayError(
                f"STK Push failed: {data.get('ResponseDescription')}",
                details=data
            )

        logger.info(
            "M-Pesa STK Push initiated",
            extra={
                'transaction_id': metadata.get('transaction_id'),
                'checkout_request_id': data.get('CheckoutRequestID'),
            }
        )
        return GatewayInitiation(
            success=True,
            reference=data.get('CheckoutRequestID'),
            message=data.get('CustomerMessage') or 'Check your phone to confirm payment',
            requires_confirmation=True,
            raw=data,
        )

    def verify(self, reference: str) -> GatewayVerification:
        password, timestamp = self._password()
        data = self._post('/mpesa/stkpushquery/v1/query', {
            'BusinessShortCode': settings.MPESA_SHORTCODE,
            'Password': password,
            'Timestamp': timestamp,
            'CheckoutRequestID': reference,
        })

        result_code = str(data.get('ResultCode', ''))
        if result_code == self.RESULT_SUCCESS:
            status = 'completed'
        elif not result_code or result_code in self.RESULT_PENDING:
            status = 'pending'
        else:
            status = 'failed'

        return GatewayVerification(
            success=status == 'completed',
            status=status,
            message=data.get('ResultDesc') or '',
            provider_response=data,
        )

    @staticmethod
    def normalize_callback(payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Flatten a Daraja ``Body.stkCallback`` notification.

        Payloads that are not STK callbacks are returned unchanged.
        """
        if not isinstance(payload, dict):
            return payload
        body = payload.get('Body')
        callback = body.get('stkCallback') if isinstance(body, dict) else None
        if not isinstance(callback, dict):
            return payload

        result_code = str(callback.get('ResultCode', ''))
        normalized = {
            'checkout_request_id': callback.get('CheckoutRequestID'),
            'merchant_reference': callback.get('MerchantRequestID'),
            'status': 'completed' if result_code == MpesaGateway.RESULT_SUCCESS else 'failed',
            'message': callback.get('ResultDesc') or '',
            'result_code': result_code,
        }
        items = (callback.get('CallbackMetadata') or {}).get('Item') or []
        for item in items:
            if item.get('Name') == 'MpesaReceiptNumber':
                normalized['receipt'] = item.get('Value')
        return normalized
