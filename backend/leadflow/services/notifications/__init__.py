"""
Outbound email/SMS senders.
"""
from .base import NotificationSender, NotificationKind, NotificationResult
from .sendgrid import SendGridEmailSender
from .twilio import TwilioSmsSender
from .channel import ChannelNotificationSender, LoggingNotificationSender


def build_notification_sender(settings) -> NotificationSender:
    """Pick real providers when configured, dry-run logging otherwise."""
    if settings.NOTIFICATIONS_DRY_RUN:
        return LoggingNotificationSender()

    dry_run = LoggingNotificationSender()
    email_sender = dry_run
    sms_sender = dry_run
    if settings.SENDGRID_API_KEY:
        email_sender = SendGridEmailSender(settings.SENDGRID_API_KEY, settings.EMAIL_FROM)
    if settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_FROM_NUMBER:
        sms_sender = TwilioSmsSender(
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN,
            settings.TWILIO_FROM_NUMBER,
        )
    return ChannelNotificationSender(email_sender=email_sender, sms_sender=sms_sender)


__all__ = [
    "NotificationSender",
    "NotificationKind",
    "NotificationResult",
    "SendGridEmailSender",
    "TwilioSmsSender",
    "ChannelNotificationSender",
    "LoggingNotificationSender",
    "build_notification_sender",
]
