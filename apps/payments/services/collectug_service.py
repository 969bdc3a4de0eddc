"""
CollectUG mobile-money gateway client (Uganda, UGX).

Collections are started with ``POST /api/v1/payments/collect`` and checked
with ``GET /api/v1/payments/verify/<reference>``. The customer confirms on
their handset, so every initiation requires confirmation.
"""
import logging
import re
from decimal import Decimal
from typing import Any, Dict, Optional

import requests
from django.conf import settings

from apps.payments.services.gateway import (
    GatewayError, GatewayInitiation, GatewayVerification, PaymentGateway,
)
from apps.payments.services.callbacks import map_status

logger = logging.getLogger(__name__)


def format_ug_phone(phone: str) -> str:
    """
    Normalise a Ugandan number to ``256XXXXXXXXX``.

    ``0772123456`` and ``772123456`` both become ``256772123456``; numbers
    already carrying a country code are returned digits-only.
    """
    digits = re.sub(r'\D', '', phone or '')
    if len(digits) == 9 and digits.startswith('7'):
        return '256' + digits
    if len(digits) == 10 and digits.startswith('0'):
        return '256' + digits[1:]
    return digits


class CollectUgGateway(PaymentGateway):
    """HTTP client for the CollectUG collections API."""

    name = 'collectug'
    SUPPORTED_CURRENCIES = ('UGX',)

    def __init__(self, api_key=None, base_url=None, callback_url=None, timeout=None):
        super().__init__(timeout=timeout)
        self.api_key = api_key or settings.COLLECTUG_API_KEY
        self.base_url = (base_url or settings.COLLECTUG_BASE_URL).rstrip('/')
        self.callback_url = callback_url or settings.COLLECTUG_CALLBACK_URL

    def _headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {self.api_key}',
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        }

    def initiate(
        self,
        amount: Decimal,
        currency: str,
        phone: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GatewayInitiation:
        """
        Start a mobile-money collection.

        ``metadata['transaction_id']`` is sent as the merchant reference so
        callbacks can be matched even before the provider reference is
        stored.
        """
        metadata = dict(metadata or {})
        if currency not in self.SUPPORTED_CURRENCIES:
            raise GatewayError(
                f"CollectUG does not support {currency}",
                details={'currency': currency}
            )

        payload = {
            'amount': int(amount),
            'phoneNumber': format_ug_phone(phone),
            'merchant_reference': metadata.get('transaction_id'),
            'callback_url': self.callback_url,
            'metadata': {**metadata, 'description': description},
        }

        try:
            response = requests.post(
                f"{self.base_url}/api/v1/payments/collect",
                json=payload,
                headers=self._headers(),
                timeout=self.timeout
            )
            data = self._json(response)
            if not response.ok:
                raise GatewayError(
                    data.get('message') or f"CollectUG returned HTTP {response.status_code}",
                    details={'status_code': response.status_code, 'response': data}
                )
        except requests.exceptions.RequestException as e:
            logger.error(
                f"CollectUG collect request failed: {str(e)}",
                extra={'transaction_id': metadata.get('transaction_id')},
                exc_info=True
            )
            raise GatewayError(f"Failed to reach CollectUG: {str(e)}") from e

        transaction = data.get('transaction') or {}
        reference = transaction.get('transaction_id')

        logger.info(
            "CollectUG collection initiated",
            extra={
                'transaction_id': metadata.get('transaction_id'),
                'provider_reference': reference,
                'provider_status': transaction.get('status'),
            }
        )

        return GatewayInitiation(
            success=True,
            reference=reference,
            message=data.get('message') or 'Payment initiated successfully',
            requires_confirmation=True,
            raw=data,
        )

    def verify(self, reference: str) -> GatewayVerification:
        try:
            response = requests.get(
                f"{self.base_url}/api/v1/payments/verify/{reference}",
                headers=self._headers(),
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(
                f"CollectUG verify request failed: {str(e)}",
                extra={'provider_reference': reference},
                exc_info=True
            )
            raise GatewayError(f"Failed to reach CollectUG: {str(e)}") from e

        data = self._json(response)
        if not response.ok:
            return GatewayVerification(
                success=False,
                status='unknown',
                message=f"Verification failed: {data.get('message') or response.status_code}",
                provider_response=data,
            )

        transaction = data.get('transaction') or {}
        status = map_status(transaction.get('status'))
        return GatewayVerification(
            success=status == 'completed',
            status=status,
            message=data.get('message') or 'Verification completed',
            provider_response=data,
        )

    @staticmethod
    def _json(response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {'body': response.text[:500]}
        return data if isinstance(data, dict) else {'body': data}
