"""Notification sender interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, Optional


class NotificationKind(str, Enum):
    EMAIL = "email"
    SMS = "sms"


@dataclass
class NotificationResult:
    success: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationSender(ABC):
    """
    Sends an email or SMS rendered from a template.

    Expected failures (bad recipient, provider rejection, timeouts) come back
    as NotificationResult(success=False); implementations do not raise for them.
    """

    @abstractmethod
    async def send(
        self,
        kind: NotificationKind,
        recipient: str,
        template_type: str,
        template_data: Dict[str, Any]
    ) -> NotificationResult:
        pass
