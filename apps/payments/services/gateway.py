"""
Payment gateway interface and factory.

Gateways are thin HTTP clients. They never touch the database; the
payment service records whatever they return.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from django.conf import settings

from apps.core.exceptions import ExternalServiceError, ValidationError


class GatewayError(ExternalServiceError):
    """Raised when a gateway call fails at the transport or API level."""
    code = 'GATEWAY_ERROR'


@dataclass
class GatewayInitiation:
    """Result of starting a collection."""

    success: bool
    reference: Optional[str] = None
    message: str = ''
    requires_confirmation: bool = True
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayVerification:
    """
    Result of checking a collection.

    ``status`` is one of completed/failed/pending/unknown.
    """

    success: bool
    status: str = 'unknown'
    message: str = ''
    provider_response: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):
    """Interface every mobile-money gateway client implements."""

    name = ''

    def __init__(self, timeout=None):
        self.timeout = timeout or settings.PAYMENT_GATEWAY_TIMEOUT

    @abstractmethod
    def initiate(
        self,
        amount: Decimal,
        currency: str,
        phone: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GatewayInitiation:
        """
        Start a collection from ``phone``.

        Raises:
            GatewayError: Transport failure or rejected request
        """

    @abstractmethod
    def verify(self, reference: str) -> GatewayVerification:
        """
        Check the state of a collection.

        Raises:
            GatewayError: Transport failure
        """


def get_gateway(name=None) -> PaymentGateway:
    """
    Build the gateway client for ``name`` (defaults to ``PAYMENT_GATEWAY``).

    Raises:
        ValidationError: Unknown gateway name
    """
    from apps.payments.services.collectug_service import CollectUgGateway
    from apps.payments.services.mpesa_service import MpesaGateway

    gateways = {
        CollectUgGateway.name: CollectUgGateway,
        MpesaGateway.name: MpesaGateway,
    }
    name = name or settings.PAYMENT_GATEWAY
    gateway_class = gateways.get(name)
    if gateway_class is None:
        raise ValidationError(f"Unsupported payment gateway: {name}", details={'gateway': name})
    return gateway_class()
