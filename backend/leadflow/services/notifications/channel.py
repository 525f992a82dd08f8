"""Routing and dry-run senders."""

import logging
import secrets
from typing import Dict, Any, Optional

from leadflow.services.notifications.base import (
    NotificationSender,
    NotificationKind,
    NotificationResult,
)
from leadflow.services.notifications.templates import render_email, render_sms
from leadflow.services.tracking import hash_for_logging

logger = logging.getLogger(__name__)


class ChannelNotificationSender(NotificationSender):
    """Routes each kind to its own sender."""

    def __init__(
        self,
        email_sender: Optional[NotificationSender] = None,
        sms_sender: Optional[NotificationSender] = None
    ):
        self.senders = {
            NotificationKind.EMAIL: email_sender,
            NotificationKind.SMS: sms_sender,
        }

    async def send(
        self,
        kind: NotificationKind,
        recipient: str,
        template_type: str,
        template_data: Dict[str, Any]
    ) -> NotificationResult:
        sender = self.senders.get(kind)
        if sender is None:
            return NotificationResult(success=False, error=f"No {kind.value} sender configured")
        return await sender.send(kind, recipient, template_type, template_data)


class LoggingNotificationSender(NotificationSender):
    """
    Dry-run sender: renders the message, logs it and reports success.

    Used when NOTIFICATIONS_DRY_RUN is set or provider credentials are missing.
    """

    def __init__(self):
        self.sent = []

    async def send(
        self,
        kind: NotificationKind,
        recipient: str,
        template_type: str,
        template_data: Dict[str, Any]
    ) -> NotificationResult:
        if kind == NotificationKind.EMAIL:
            rendered = render_email(template_type, template_data)
            if rendered is None:
                return NotificationResult(success=False, error=f"Unknown email template: {template_type}")
            summary = rendered.subject
        else:
            summary = render_sms(template_type, template_data)
            if summary is None:
                return NotificationResult(success=False, error=f"Unknown SMS template: {template_type}")

        message_id = f"dryrun_{secrets.token_hex(6)}"
        self.sent.append({
            "kind": kind.value,
            "recipient": recipient,
            "template_type": template_type,
            "message_id": message_id,
        })
        logger.info(
            f"[DRY RUN] {kind.value} '{template_type}' to {hash_for_logging(recipient)}: {summary}"
        )
        return NotificationResult(success=True, provider_message_id=message_id)
