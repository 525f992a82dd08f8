"""
Calendly meeting events.

Keeps Meeting rows and lead status in step with the booking page and hands
new bookings to the orchestrator so reminders are anchored to the meeting.
Every handler tolerates replays: a re-delivered event finds the state it
would have produced and does nothing.
"""

import logging
from datetime import datetime
from typing import Dict, Any, Optional, Tuple

from leadflow.exceptions import LeadValidationError
from leadflow.models import Lead, Meeting
from leadflow.services.lead_intake import LeadIntakeService
from leadflow.services.lead_normalizer import SOURCE_CALENDLY, normalize_email, parse_timestamp
from leadflow.services.tracking import generate_meeting_tracking_id, hash_for_logging
from leadflow.services.workflow_orchestrator import WorkflowOrchestrator
from leadflow.stores.base import LeadStore, MeetingStore

logger = logging.getLogger(__name__)


def _uri(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("uri")
    return value or None


def _location(event: Dict[str, Any]) -> Optional[str]:
    location = event.get("location")
    if not location:
        return None
    if isinstance(location, list):
        return ", ".join(str(item) for item in location if item) or None
    if isinstance(location, dict):
        return location.get("join_url") or location.get("location")
    return str(location)


class MeetingEventService:

    def __init__(
        self,
        lead_store: LeadStore,
        meeting_store: MeetingStore,
        orchestrator: WorkflowOrchestrator,
        intake: LeadIntakeService
    ):
        self.leads = lead_store
        self.meetings = meeting_store
        self.orchestrator = orchestrator
        self.intake = intake

    async def process_calendly_event(self, body: Dict[str, Any], tracking_id: str) -> Dict[str, Any]:
        """
        Dispatch a Calendly webhook body on its `event` name.

        Raises LeadValidationError when the payload lacks what the event needs;
        unknown events are logged and ignored.
        """
        event_name = body.get("event")
        payload = body.get("payload") or {}

        handlers = {
            "invitee.created": self._handle_invitee_created,
            "invitee.canceled": self._handle_invitee_canceled,
            "invitee.rescheduled": self._handle_invitee_rescheduled,
            "invitee_no_show.created": self._handle_no_show,
        }
        handler = handlers.get(event_name)
        if handler is None:
            logger.info(f"[{tracking_id}] Ignoring Calendly event '{event_name}'")
            return {"event": event_name, "action": "ignored"}

        result = await handler(payload, tracking_id)
        result["event"] = event_name
        return result

    # ----------------------------------------
    # Payload helpers
    # ----------------------------------------

    @staticmethod
    def _invitee(payload: Dict[str, Any]) -> Dict[str, Any]:
        invitee = payload.get("invitee")
        return invitee if isinstance(invitee, dict) else payload

    @staticmethod
    def _event(payload: Dict[str, Any]) -> Dict[str, Any]:
        event = payload.get("event") or payload.get("scheduled_event") or {}
        return event if isinstance(event, dict) else {"uri": event}

    @classmethod
    def _booking(cls, payload: Dict[str, Any]) -> Tuple[Dict[str, Any], str, datetime]:
        event = cls._event(payload)
        event_uri = _uri(event)
        start_time = parse_timestamp(event.get("start_time"))
        if not event_uri or start_time is None:
            raise LeadValidationError(["Scheduled event uri and start_time are required"])
        return event, event_uri, start_time

    async def _find_or_create_lead(self, payload: Dict[str, Any], tracking_id: str) -> Lead:
        email = normalize_email(self._invitee(payload).get("email"))
        if not email:
            raise LeadValidationError(["Invitee email is required"])

        lead = await self.leads.find_by_email(email)
        if lead is not None:
            return lead

        logger.info(f"[{tracking_id}] No lead for invitee {hash_for_logging(email)}, creating one")
        outcome = await self.intake.ingest(payload, SOURCE_CALENDLY, tracking_id)
        return await self.leads.get(outcome["lead_id"])

    async def _find_lead(self, payload: Dict[str, Any]) -> Optional[Lead]:
        email = normalize_email(self._invitee(payload).get("email"))
        return await self.leads.find_by_email(email) if email else None

    async def _close_meeting(self, meeting: Meeting, status: str, reason: Optional[str] = None) -> int:
        await self.meetings.update_status(meeting.id, status, cancellation_reason=reason)
        return await self.orchestrator.cancel_meeting_jobs(meeting.lead_id, meeting)

    # ----------------------------------------
    # Handlers
    # ----------------------------------------

    async def _handle_invitee_created(self, payload: Dict[str, Any], tracking_id: str) -> Dict[str, Any]:
        event, event_uri, start_time = self._booking(payload)

        lead = await self._find_or_create_lead(payload, tracking_id)
        meeting_tracking_id = generate_meeting_tracking_id(lead.id, "created")

        meeting, created = await self.meetings.get_or_create(
            lead.id,
            event_uri,
            name=(payload.get("event_type") or {}).get("name") or event.get("name") or "Consultation Meeting",
            start_time=start_time,
            end_time=parse_timestamp(event.get("end_time")),
            timezone=self._invitee(payload).get("timezone") or "UTC",
            location=_location(event),
        )
        if not created:
            logger.info(f"[{meeting_tracking_id}] Meeting {meeting.id} already recorded, replay ignored")
            return {"action": "duplicate", "lead_id": lead.id, "meeting_id": meeting.id}

        await self.leads.update_status(lead.id, "scheduled")
        jobs_created = await self.orchestrator.handle_meeting_scheduled(lead.id, meeting, meeting_tracking_id)

        logger.info(f"[{meeting_tracking_id}] Meeting {meeting.id} booked for lead {lead.id} at {start_time}")
        return {
            "action": "scheduled",
            "lead_id": lead.id,
            "meeting_id": meeting.id,
            "jobs_created": jobs_created,
        }

    async def _handle_invitee_canceled(self, payload: Dict[str, Any], tracking_id: str) -> Dict[str, Any]:
        invitee = self._invitee(payload)
        event_uri = _uri(self._event(payload))
        meeting = await self.meetings.get_by_external_id(event_uri) if event_uri else None
        if meeting is None:
            logger.warning(f"[{tracking_id}] Cancellation for unknown meeting {event_uri}")
            return {"action": "not_found"}
        if meeting.status != "scheduled":
            logger.info(f"[{tracking_id}] Meeting {meeting.id} already {meeting.status}, replay ignored")
            return {"action": "duplicate", "lead_id": meeting.lead_id, "meeting_id": meeting.id}

        # Calendly cancels the old booking when the invitee reschedules
        if invitee.get("rescheduled"):
            skipped = await self._close_meeting(meeting, "rescheduled")
            await self.leads.update_status(meeting.lead_id, "rescheduled")
            return {"action": "rescheduled", "lead_id": meeting.lead_id, "meeting_id": meeting.id, "jobs_skipped": skipped}

        reason = (invitee.get("cancellation") or {}).get("reason")
        skipped = await self._close_meeting(meeting, "canceled", reason or "No reason provided")
        await self.leads.update_status(meeting.lead_id, "canceled")

        logger.info(f"[{tracking_id}] Meeting {meeting.id} canceled, {skipped} pending jobs skipped")
        return {"action": "canceled", "lead_id": meeting.lead_id, "meeting_id": meeting.id, "jobs_skipped": skipped}

    async def _handle_invitee_rescheduled(self, payload: Dict[str, Any], tracking_id: str) -> Dict[str, Any]:
        lead = await self._find_lead(payload)
        if lead is None:
            logger.warning(f"[{tracking_id}] Reschedule for unknown invitee")
            return {"action": "not_found"}

        # Validate the new booking before the old one is closed
        _, event_uri, _ = self._booking(payload)
        previous = await self.meetings.find_scheduled_for_lead(lead.id)
        if previous is not None and previous.external_event_id != event_uri:
            await self._close_meeting(previous, "rescheduled")

        result = await self._handle_invitee_created(payload, tracking_id)
        if result["action"] == "scheduled":
            await self.leads.update_status(lead.id, "rescheduled")
            result["action"] = "rescheduled"
        return result

    async def _handle_no_show(self, payload: Dict[str, Any], tracking_id: str) -> Dict[str, Any]:
        event_uri = _uri(payload.get("event"))
        meeting = await self.meetings.get_by_external_id(event_uri) if event_uri else None
        if meeting is None:
            lead = await self._find_lead(payload)
            meeting = await self.meetings.find_scheduled_for_lead(lead.id) if lead else None
        if meeting is None:
            logger.warning(f"[{tracking_id}] No-show for unknown meeting")
            return {"action": "not_found"}
        if meeting.status == "no_show":
            return {"action": "duplicate", "lead_id": meeting.lead_id, "meeting_id": meeting.id}

        skipped = await self._close_meeting(meeting, "no_show")
        await self.leads.update_status(meeting.lead_id, "no_show")
        logger.info(f"[{tracking_id}] Lead {meeting.lead_id} marked no-show for meeting {meeting.id}")
        return {"action": "no_show", "lead_id": meeting.lead_id, "meeting_id": meeting.id, "jobs_skipped": skipped}
