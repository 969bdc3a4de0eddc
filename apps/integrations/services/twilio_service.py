"""
Twilio SMS client.
"""
import logging
from typing import Any, Dict, Optional

from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException

from apps.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class SmsServiceError(ExternalServiceError):
    """Raised when Twilio rejects or fails to send a message."""
    code = 'SMS_ERROR'


class TwilioService:
    """Thin wrapper over the Twilio REST client for plain SMS."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str,
                 messaging_service_sid: Optional[str] = None):
        """
        Args:
            account_sid: Twilio Account SID
            auth_token: Twilio Auth Token
            from_number: Sender number or alphanumeric sender id
            messaging_service_sid: Optional Messaging Service to send through
        """
        self.from_number = from_number
        self.messaging_service_sid = messaging_service_sid
        self.client = Client(account_sid, auth_token)

    def send_sms(self, to: str, body: str) -> Dict[str, Any]:
        """
        Send an SMS.

        Returns:
            dict: {'sid', 'status', 'to'}

        Raises:
            SmsServiceError: If Twilio rejects the message
        """
        params = {'to': to, 'body': body}
        if self.messaging_service_sid:
            params['messaging_service_sid'] = self.messaging_service_sid
        else:
            params['from_'] = self.from_number

        try:
            message = self.client.messages.create(**params)
        except TwilioRestException as e:
            logger.error(
                f"Twilio SMS failed: {e.msg}",
                extra={'to': to, 'twilio_code': e.code, 'twilio_status': e.status}
            )
            raise SmsServiceError(
                f"Failed to send SMS: {e.msg}",
                details={'twilio_code': e.code, 'status': e.status}
            ) from e

        logger.info(
            "SMS sent",
            extra={'message_sid': message.sid, 'to': to, 'status': message.status}
        )
        return {'sid': message.sid, 'status': message.status, 'to': to}
