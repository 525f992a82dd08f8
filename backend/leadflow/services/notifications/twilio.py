"""Twilio Messages REST API over HTTP."""

import httpx
import logging
from typing import Dict, Any, Optional

from leadflow.services.notifications.base import (
    NotificationSender,
    NotificationKind,
    NotificationResult,
)
from leadflow.services.notifications.templates import render_sms
from leadflow.services.tracking import hash_for_logging

logger = logging.getLogger(__name__)


class TwilioSmsSender(NotificationSender):

    BASE_URL = "https://api.twilio.com/2010-04-01"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout
        self.transport = transport

    async def send(
        self,
        kind: NotificationKind,
        recipient: str,
        template_type: str,
        template_data: Dict[str, Any]
    ) -> NotificationResult:
        if kind != NotificationKind.SMS:
            return NotificationResult(success=False, error=f"Twilio cannot send {kind.value}")
        if not recipient or not recipient.startswith("+"):
            return NotificationResult(success=False, error="SMS recipient must be E.164")

        body = render_sms(template_type, template_data)
        if body is None:
            return NotificationResult(success=False, error=f"Unknown SMS template: {template_type}")

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    f"{self.BASE_URL}/Accounts/{self.account_sid}/Messages.json",
                    auth=(self.account_sid, self.auth_token),
                    data={"To": recipient, "From": self.from_number, "Body": body},
                    timeout=self.timeout
                )
        except httpx.HTTPError as e:
            logger.error(f"Twilio request failed for {hash_for_logging(recipient)}: {e}")
            return NotificationResult(success=False, error=str(e))

        if response.status_code in (200, 201):
            sid = response.json().get("sid")
            logger.info(f"SMS '{template_type}' sent to {hash_for_logging(recipient)} (sid={sid})")
            return NotificationResult(success=True, provider_message_id=sid)

        try:
            message = response.json().get("message", response.text)
        except ValueError:
            message = response.text
        logger.warning(
            f"Twilio rejected '{template_type}' for {hash_for_logging(recipient)}: "
            f"{response.status_code} {message}"
        )
        return NotificationResult(
            success=False,
            error=f"Twilio returned {response.status_code}: {message}"
        )
