"""
Integration services for external APIs.
"""
from .twilio_service import TwilioService, SmsServiceError
from .sms_service import SmsService

__all__ = [
    'TwilioService',
    'SmsServiceError',
    'SmsService',
]
