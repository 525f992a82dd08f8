"""SendGrid v3 mail send over HTTP."""

import httpx
import logging
from typing import Dict, Any, Optional

from leadflow.services.notifications.base import (
    NotificationSender,
    NotificationKind,
    NotificationResult,
)
from leadflow.services.notifications.templates import render_email
from leadflow.services.tracking import hash_for_logging

logger = logging.getLogger(__name__)


class SendGridEmailSender(NotificationSender):
    """Email sender backed by the SendGrid mail/send endpoint."""

    BASE_URL = "https://api.sendgrid.com/v3"

    def __init__(
        self,
        api_key: str,
        from_email: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    async def send(
        self,
        kind: NotificationKind,
        recipient: str,
        template_type: str,
        template_data: Dict[str, Any]
    ) -> NotificationResult:
        if kind != NotificationKind.EMAIL:
            return NotificationResult(success=False, error=f"SendGrid cannot send {kind.value}")
        if not recipient or "@" not in recipient:
            return NotificationResult(success=False, error="Invalid email recipient")

        rendered = render_email(template_type, template_data)
        if rendered is None:
            return NotificationResult(success=False, error=f"Unknown email template: {template_type}")

        payload = {
            "personalizations": [{"to": [{"email": recipient}]}],
            "from": {"email": self.from_email},
            "subject": rendered.subject,
            "content": [{"type": "text/plain", "value": rendered.text}],
        }
        tracking_id = template_data.get("tracking_id")
        if tracking_id:
            payload["custom_args"] = {"tracking_id": tracking_id}

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    f"{self.BASE_URL}/mail/send",
                    headers=self.headers,
                    json=payload,
                    timeout=self.timeout
                )
        except httpx.HTTPError as e:
            logger.error(f"SendGrid request failed for {hash_for_logging(recipient)}: {e}")
            return NotificationResult(success=False, error=str(e))

        if response.status_code in (200, 202):
            message_id = response.headers.get("X-Message-Id")
            logger.info(
                f"Email '{template_type}' sent to {hash_for_logging(recipient)} "
                f"(message_id={message_id})"
            )
            return NotificationResult(success=True, provider_message_id=message_id)

        logger.warning(
            f"SendGrid rejected '{template_type}' for {hash_for_logging(recipient)}: "
            f"{response.status_code}"
        )
        return NotificationResult(
            success=False,
            error=f"SendGrid returned {response.status_code}: {response.text[:200]}"
        )
