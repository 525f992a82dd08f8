"""
Workflow types, step names and the job plans built from them.
"""
from datetime import timedelta
from enum import Enum
from typing import List, NamedTuple


class WorkflowType(str, Enum):
    INITIAL_ENGAGEMENT = "initial_engagement"
    REMINDER_SEQUENCE = "reminder_sequence"
    MEETING_MONITOR = "meeting_monitor"
    FOLLOW_UP = "follow_up"


class WorkflowStep(str, Enum):
    SEND_WELCOME_EMAIL = "send_welcome_email"
    SEND_24H_REMINDER = "send_24h_reminder"
    SEND_1H_EMAIL_REMINDER = "send_1h_email_reminder"
    SEND_2H_SMS_REMINDER = "send_2h_sms_reminder"
    CHECK_MEETING_STATUS = "check_meeting_status"
    SEND_MEETING_REMINDER_24H = "send_meeting_reminder_24h"
    SEND_MEETING_REMINDER_1H = "send_meeting_reminder_1h"
    VERIFY_ZOOM_LINK = "verify_zoom_link"
    SEND_FOLLOW_UP_EMAIL = "send_follow_up_email"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class PlannedStep(NamedTuple):
    workflow_type: WorkflowType
    step: WorkflowStep
    offset: timedelta
    recurring: bool = False


# Offsets from lead creation
INITIAL_PLAN: List[PlannedStep] = [
    PlannedStep(WorkflowType.INITIAL_ENGAGEMENT, WorkflowStep.SEND_WELCOME_EMAIL, timedelta(minutes=1)),
    PlannedStep(WorkflowType.REMINDER_SEQUENCE, WorkflowStep.SEND_24H_REMINDER, timedelta(hours=24)),
    PlannedStep(WorkflowType.REMINDER_SEQUENCE, WorkflowStep.SEND_1H_EMAIL_REMINDER, timedelta(hours=1)),
    PlannedStep(WorkflowType.REMINDER_SEQUENCE, WorkflowStep.SEND_2H_SMS_REMINDER, timedelta(hours=2)),
    PlannedStep(WorkflowType.MEETING_MONITOR, WorkflowStep.CHECK_MEETING_STATUS, timedelta(minutes=30), recurring=True),
    PlannedStep(WorkflowType.FOLLOW_UP, WorkflowStep.SEND_FOLLOW_UP_EMAIL, timedelta(days=3)),
]

# Offsets from the meeting start time (negative = before)
MEETING_PLAN: List[PlannedStep] = [
    PlannedStep(WorkflowType.MEETING_MONITOR, WorkflowStep.SEND_MEETING_REMINDER_24H, -timedelta(hours=24)),
    PlannedStep(WorkflowType.MEETING_MONITOR, WorkflowStep.SEND_MEETING_REMINDER_1H, -timedelta(hours=1)),
    PlannedStep(WorkflowType.MEETING_MONITOR, WorkflowStep.VERIFY_ZOOM_LINK, -timedelta(hours=2)),
]
