"""
Payment services.
"""
from apps.payments.services.gateway import (
    PaymentGateway,
    GatewayError,
    GatewayInitiation,
    GatewayVerification,
    get_gateway,
)
from apps.payments.services.settlement_service import (
    SettlementService,
    SettlementOutcome,
    Settled,
    AlreadySettled,
    ValidationFailed,
    StorageFailure,
)
from apps.payments.services.payment_service import (
    PaymentService,
    PaymentResult,
    CallbackResult,
    PaymentNotFound,
    MalformedCallback,
    InvalidCallbackSignature,
)

__all__ = [
    'PaymentGateway',
    'GatewayError',
    'GatewayInitiation',
    'GatewayVerification',
    'get_gateway',
    'SettlementService',
    'SettlementOutcome',
    'Settled',
    'AlreadySettled',
    'ValidationFailed',
    'StorageFailure',
    'PaymentService',
    'PaymentResult',
    'CallbackResult',
    'PaymentNotFound',
    'MalformedCallback',
    'InvalidCallbackSignature',
]
