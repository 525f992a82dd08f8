"""
Step actions executed by the workflow orchestrator.

Every WorkflowStep maps to exactly one handler in STEP_HANDLERS; importing
this module fails if a step is left without one. Handlers raise
StepExecutionError when a send fails so the retry policy applies.
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional
import logging

from leadflow.exceptions import StepExecutionError
from leadflow.models import Lead, Meeting, WorkflowJob
from leadflow.services.notifications import NotificationKind, NotificationSender
from leadflow.services.tracking import hash_for_logging
from leadflow.services.workflow_steps import WorkflowStep
from leadflow.stores.base import MeetingStore, WorkflowStore

logger = logging.getLogger(__name__)


@dataclass
class ActionContext:
    """Everything a step handler may touch for one job."""
    job: WorkflowJob
    lead: Lead
    tracking_id: str
    notifier: NotificationSender
    meetings: MeetingStore
    workflows: WorkflowStore
    booking_link: str
    on_meeting_found: Callable[[Any, Meeting], Awaitable[bool]]


@dataclass
class StepOutcome:
    stop_recurrence: bool = False
    details: Dict[str, Any] = field(default_factory=dict)


StepHandler = Callable[[ActionContext], Awaitable[StepOutcome]]


def _display_name(lead: Lead) -> str:
    return lead.first_name or lead.full_name or "there"


def _template_data(ctx: ActionContext, meeting: Optional[Meeting] = None) -> Dict[str, Any]:
    data = {
        "name": _display_name(ctx.lead),
        "first_name": ctx.lead.first_name,
        "company": ctx.lead.company,
        "booking_link": ctx.booking_link,
        "tracking_id": ctx.tracking_id,
    }
    if meeting is not None:
        data["meeting_time"] = meeting.start_time.strftime("%A %d %B %Y at %H:%M UTC")
        data["meeting_location"] = f"Location: {meeting.location}" if meeting.location else ""
    return data


async def _send(
    ctx: ActionContext,
    kind: NotificationKind,
    recipient: str,
    template_type: str,
    meeting: Optional[Meeting] = None
) -> StepOutcome:
    result = await ctx.notifier.send(kind, recipient, template_type, _template_data(ctx, meeting))
    if not result.success:
        raise StepExecutionError(ctx.job.step, result.error or "notification failed")

    logger.info(
        f"[{ctx.tracking_id}] {kind.value} '{template_type}' sent to "
        f"{hash_for_logging(recipient)} for lead {ctx.lead.id}"
    )
    return StepOutcome(details={"provider_message_id": result.provider_message_id})


# ========================================
# EMAIL SEQUENCE
# ========================================

async def send_welcome_email(ctx: ActionContext) -> StepOutcome:
    return await _send(ctx, NotificationKind.EMAIL, ctx.lead.email, "welcome_email")


async def send_24h_reminder(ctx: ActionContext) -> StepOutcome:
    return await _send(ctx, NotificationKind.EMAIL, ctx.lead.email, "24h_reminder")


async def send_1h_email_reminder(ctx: ActionContext) -> StepOutcome:
    return await _send(ctx, NotificationKind.EMAIL, ctx.lead.email, "1h_email_reminder")


async def send_follow_up_email(ctx: ActionContext) -> StepOutcome:
    return await _send(ctx, NotificationKind.EMAIL, ctx.lead.email, "follow_up_email")


async def send_2h_sms_reminder(ctx: ActionContext) -> StepOutcome:
    if not ctx.lead.phone:
        logger.info(f"[{ctx.tracking_id}] Skipping SMS reminder for lead {ctx.lead.id}: no phone number")
        return StepOutcome(details={"skipped_reason": "no_phone"})
    if not ctx.lead.sms_opt_in:
        logger.info(f"[{ctx.tracking_id}] Skipping SMS reminder for lead {ctx.lead.id}: opted out")
        return StepOutcome(details={"skipped_reason": "sms_opt_out"})
    return await _send(ctx, NotificationKind.SMS, ctx.lead.phone, "2h_sms_reminder")


# ========================================
# MEETING MONITOR
# ========================================

async def check_meeting_status(ctx: ActionContext) -> StepOutcome:
    meeting = await ctx.meetings.find_scheduled_for_lead(ctx.lead.id)
    if meeting is None:
        logger.info(f"[{ctx.tracking_id}] No meeting scheduled yet for lead {ctx.lead.id}")
        return StepOutcome(details={"meeting_found": False})

    logger.info(f"[{ctx.tracking_id}] Meeting {meeting.id} found for lead {ctx.lead.id}")
    await ctx.on_meeting_found(ctx.lead.id, meeting)
    return StepOutcome(
        stop_recurrence=True,
        details={"meeting_found": True, "meeting_id": str(meeting.id)}
    )


async def _send_meeting_reminder(ctx: ActionContext, template_type: str) -> StepOutcome:
    meeting = await ctx.meetings.find_scheduled_for_lead(ctx.lead.id)
    if meeting is None:
        logger.info(
            f"[{ctx.tracking_id}] Skipping {template_type} for lead {ctx.lead.id}: "
            f"no scheduled meeting"
        )
        return StepOutcome(details={"skipped_reason": "no_meeting"})
    return await _send(ctx, NotificationKind.EMAIL, ctx.lead.email, template_type, meeting)


async def send_meeting_reminder_24h(ctx: ActionContext) -> StepOutcome:
    return await _send_meeting_reminder(ctx, "meeting_reminder_24h")


async def send_meeting_reminder_1h(ctx: ActionContext) -> StepOutcome:
    return await _send_meeting_reminder(ctx, "meeting_reminder_1h")


async def verify_zoom_link(ctx: ActionContext) -> StepOutcome:
    """Check the meeting location carries a Zoom URL. A missing link is a warning only."""
    meeting = await ctx.meetings.find_scheduled_for_lead(ctx.lead.id)
    if meeting is None:
        return StepOutcome(details={"skipped_reason": "no_meeting"})

    if meeting.location and "zoom.us" in meeting.location:
        logger.info(f"[{ctx.tracking_id}] Zoom link verified for meeting {meeting.id}")
        return StepOutcome(details={"has_zoom_link": True})

    logger.warning(f"[{ctx.tracking_id}] Meeting {meeting.id} has no Zoom link")
    await ctx.workflows.record_event(
        ctx.lead.id,
        "zoom_link_missing",
        {"meeting_id": str(meeting.id), "tracking_id": ctx.tracking_id},
        success=False,
    )
    return StepOutcome(details={"has_zoom_link": False})


STEP_HANDLERS: Dict[WorkflowStep, StepHandler] = {
    WorkflowStep.SEND_WELCOME_EMAIL: send_welcome_email,
    WorkflowStep.SEND_24H_REMINDER: send_24h_reminder,
    WorkflowStep.SEND_1H_EMAIL_REMINDER: send_1h_email_reminder,
    WorkflowStep.SEND_2H_SMS_REMINDER: send_2h_sms_reminder,
    WorkflowStep.CHECK_MEETING_STATUS: check_meeting_status,
    WorkflowStep.SEND_MEETING_REMINDER_24H: send_meeting_reminder_24h,
    WorkflowStep.SEND_MEETING_REMINDER_1H: send_meeting_reminder_1h,
    WorkflowStep.VERIFY_ZOOM_LINK: verify_zoom_link,
    WorkflowStep.SEND_FOLLOW_UP_EMAIL: send_follow_up_email,
}

_unhandled = set(WorkflowStep) - set(STEP_HANDLERS)
if _unhandled:
    raise RuntimeError(f"Workflow steps without a handler: {sorted(s.value for s in _unhandled)}")


def get_step_handler(step: str) -> StepHandler:
    """Resolve a persisted step name. Unknown names raise StepExecutionError."""
    try:
        return STEP_HANDLERS[WorkflowStep(step)]
    except ValueError:
        raise StepExecutionError(step, "Unknown workflow step")
