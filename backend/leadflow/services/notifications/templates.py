"""
Message templates for workflow notifications.

Templates use str.format placeholders; missing values render as empty
strings so a sparse lead never breaks a send.
"""
import string
from typing import Dict, Any, NamedTuple, Optional


class EmailTemplate(NamedTuple):
    subject: str
    text: str


EMAIL_TEMPLATES: Dict[str, EmailTemplate] = {
    "welcome_email": EmailTemplate(
        subject="Thanks for reaching out, {name}!",
        text=(
            "Hi {name},\n\n"
            "Thanks for your interest. The quickest way to get started is a short call "
            "with one of our specialists. Pick a time that suits you:\n\n"
            "{booking_link}\n\n"
            "Talk soon!"
        ),
    ),
    "24h_reminder": EmailTemplate(
        subject="Still interested, {name}?",
        text=(
            "Hi {name},\n\n"
            "We noticed you haven't booked your consultation yet. "
            "Slots fill up quickly, grab one here:\n\n{booking_link}"
        ),
    ),
    "1h_email_reminder": EmailTemplate(
        subject="Your consultation is one click away",
        text=(
            "Hi {name},\n\n"
            "Just a quick reminder to schedule your free consultation:\n\n{booking_link}"
        ),
    ),
    "follow_up_email": EmailTemplate(
        subject="Following up, {name}",
        text=(
            "Hi {name},\n\n"
            "We wanted to follow up on your enquiry. If you still have questions, "
            "book a time with us here:\n\n{booking_link}\n\n"
            "If now isn't a good time, simply reply and let us know."
        ),
    ),
    "meeting_reminder_24h": EmailTemplate(
        subject="Reminder: your meeting is tomorrow",
        text=(
            "Hi {name},\n\n"
            "This is a reminder that your meeting starts in 24 hours, at {meeting_time}.\n"
            "{meeting_location}\n\n"
            "Need to change it? {booking_link}"
        ),
    ),
    "meeting_reminder_1h": EmailTemplate(
        subject="Reminder: your meeting starts in 1 hour",
        text=(
            "Hi {name},\n\n"
            "Your meeting starts in 1 hour, at {meeting_time}.\n"
            "{meeting_location}\n\n"
            "See you soon!"
        ),
    ),
}

SMS_TEMPLATES: Dict[str, str] = {
    "2h_sms_reminder": (
        "Hi {name}! Don't forget to book your free consultation: {booking_link} "
        "Reply STOP to opt out."
    ),
}


class _BlankFormatter(string.Formatter):
    def get_value(self, key, args, kwargs):
        value = kwargs.get(key) if isinstance(key, str) else None
        return "" if value is None else value


_formatter = _BlankFormatter()


def _render(template: str, data: Dict[str, Any]) -> str:
    return _formatter.format(template, **data)


def render_email(template_type: str, data: Dict[str, Any]) -> Optional[EmailTemplate]:
    """Render subject and text for an email template, or None if unknown."""
    template = EMAIL_TEMPLATES.get(template_type)
    if template is None:
        return None
    return EmailTemplate(
        subject=_render(template.subject, data),
        text=_render(template.text, data),
    )


def render_sms(template_type: str, data: Dict[str, Any]) -> Optional[str]:
    template = SMS_TEMPLATES.get(template_type)
    if template is None:
        return None
    return _render(template, data).strip()
