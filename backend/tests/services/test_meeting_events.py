# tests/services/test_meeting_events.py
"""
Tests for MeetingEventService (Calendly webhooks)

Coverage:
- invitee.created for known and unknown invitees
- Replayed deliveries are no-ops
- invitee.canceled (plain cancel and cancel-for-reschedule)
- invitee.rescheduled moves the reminders to the new booking
- invitee_no_show.created
- Unknown events ignored, malformed payloads rejected
"""

import pytest
from datetime import datetime

from leadflow.exceptions import LeadValidationError


EVENT_1 = "https://api.calendly.com/scheduled_events/EV1"
EVENT_2 = "https://api.calendly.com/scheduled_events/EV2"
MEETING_START = datetime(2024, 1, 17, 15, 0)


def calendly_body(event_name, email="jane.doe@example.com", event_uri=EVENT_1,
                  start_time="2024-01-17T15:00:00.000000Z", **invitee):
    invitee_data = {
        "uri": f"{event_uri}/invitees/INV1",
        "email": email,
        "name": "Jane Doe",
        "timezone": "America/New_York",
    }
    invitee_data.update(invitee)
    return {
        "event": event_name,
        "payload": {
            "invitee": invitee_data,
            "event": {
                "uri": event_uri,
                "name": "Intro Call",
                "start_time": start_time,
                "end_time": "2024-01-17T15:30:00.000000Z",
                "location": {"type": "zoom", "join_url": "https://zoom.us/j/987"},
            },
            "event_type": {"name": "Intro Call"},
        },
    }


@pytest.fixture
def lead(lead_store):
    return lead_store.add_lead("jane.doe@example.com", first_name="Jane", last_name="Doe")


def _meeting_jobs(workflow_store, lead_id, meeting):
    return [
        j for j in workflow_store.jobs_for(lead_id)
        if (j.job_metadata or {}).get("meeting_id") == str(meeting.id)
    ]


# ============================================================================
# INVITEE CREATED
# ============================================================================

class TestInviteeCreated:

    @pytest.mark.asyncio
    async def test_books_meeting_for_known_lead(
        self, meeting_events, orchestrator, meeting_store, workflow_store, lead
    ):
        await orchestrator.initialize_workflow(lead.id)

        result = await meeting_events.process_calendly_event(calendly_body("invitee.created"), "track_1")

        assert result["action"] == "scheduled"
        assert result["event"] == "invitee.created"
        assert result["lead_id"] == lead.id
        assert result["jobs_created"] == 3

        meeting = await meeting_store.get_by_external_id(EVENT_1)
        assert meeting.start_time == MEETING_START
        assert meeting.timezone == "America/New_York"
        assert meeting.location == "https://zoom.us/j/987"
        assert meeting.name == "Intro Call"
        assert lead.status == "scheduled"

        reminders = [j for j in workflow_store.jobs_for(lead.id) if j.workflow_type == "reminder_sequence"]
        assert {j.status for j in reminders} == {"skipped"}

    @pytest.mark.asyncio
    async def test_unknown_invitee_becomes_lead(self, meeting_events, lead_store, workflow_store):
        result = await meeting_events.process_calendly_event(
            calendly_body("invitee.created", email="new.person@example.com"), "track_2"
        )

        lead = lead_store.leads[result["lead_id"]]
        assert lead.source == "calendly"
        assert lead.email == "new.person@example.com"
        assert lead.status == "scheduled"
        # Initial batch plus the meeting jobs
        assert len(workflow_store.jobs_for(lead.id)) == 9

    @pytest.mark.asyncio
    async def test_replay_is_ignored(self, meeting_events, meeting_store, workflow_store, lead):
        body = calendly_body("invitee.created")
        await meeting_events.process_calendly_event(body, "track_1")
        jobs_before = len(workflow_store.jobs)

        result = await meeting_events.process_calendly_event(body, "track_1b")

        assert result["action"] == "duplicate"
        assert len(workflow_store.jobs) == jobs_before
        assert len(meeting_store.meetings) == 1

    @pytest.mark.asyncio
    async def test_missing_email_rejected(self, meeting_events, meeting_store):
        with pytest.raises(LeadValidationError):
            await meeting_events.process_calendly_event(calendly_body("invitee.created", email=""), "t")

        assert meeting_store.meetings == {}

    @pytest.mark.asyncio
    async def test_missing_start_time_rejected(self, meeting_events, lead):
        with pytest.raises(LeadValidationError):
            await meeting_events.process_calendly_event(
                calendly_body("invitee.created", start_time=None), "t"
            )


# ============================================================================
# CANCEL / RESCHEDULE / NO-SHOW
# ============================================================================

class TestInviteeCanceled:

    @pytest.mark.asyncio
    async def test_cancel_skips_meeting_jobs(self, meeting_events, meeting_store, workflow_store, lead):
        await meeting_events.process_calendly_event(calendly_body("invitee.created"), "t1")
        meeting = await meeting_store.get_by_external_id(EVENT_1)

        result = await meeting_events.process_calendly_event(
            calendly_body("invitee.canceled", cancellation={"reason": "Double booked"}), "t2"
        )

        assert result["action"] == "canceled"
        assert result["jobs_skipped"] == 3
        assert meeting.status == "canceled"
        assert meeting.cancellation_reason == "Double booked"
        assert lead.status == "canceled"
        assert {j.status for j in _meeting_jobs(workflow_store, lead.id, meeting)} == {"skipped"}

    @pytest.mark.asyncio
    async def test_cancel_without_reason(self, meeting_events, meeting_store, lead):
        await meeting_events.process_calendly_event(calendly_body("invitee.created"), "t1")

        await meeting_events.process_calendly_event(calendly_body("invitee.canceled"), "t2")

        meeting = await meeting_store.get_by_external_id(EVENT_1)
        assert meeting.cancellation_reason == "No reason provided"

    @pytest.mark.asyncio
    async def test_cancel_replay(self, meeting_events, lead):
        await meeting_events.process_calendly_event(calendly_body("invitee.created"), "t1")
        await meeting_events.process_calendly_event(calendly_body("invitee.canceled"), "t2")

        result = await meeting_events.process_calendly_event(calendly_body("invitee.canceled"), "t3")

        assert result["action"] == "duplicate"

    @pytest.mark.asyncio
    async def test_cancel_for_reschedule(self, meeting_events, meeting_store, lead):
        await meeting_events.process_calendly_event(calendly_body("invitee.created"), "t1")

        result = await meeting_events.process_calendly_event(
            calendly_body("invitee.canceled", rescheduled=True), "t2"
        )

        assert result["action"] == "rescheduled"
        assert (await meeting_store.get_by_external_id(EVENT_1)).status == "rescheduled"
        assert lead.status == "rescheduled"

    @pytest.mark.asyncio
    async def test_unknown_meeting(self, meeting_events, lead):
        result = await meeting_events.process_calendly_event(calendly_body("invitee.canceled"), "t")

        assert result["action"] == "not_found"


class TestInviteeRescheduled:

    @pytest.mark.asyncio
    async def test_moves_reminders_to_new_booking(self, meeting_events, meeting_store, workflow_store, lead):
        await meeting_events.process_calendly_event(calendly_body("invitee.created"), "t1")
        old = await meeting_store.get_by_external_id(EVENT_1)

        result = await meeting_events.process_calendly_event(
            calendly_body("invitee.rescheduled", event_uri=EVENT_2, start_time="2024-01-18T15:00:00Z"), "t2"
        )

        new = await meeting_store.get_by_external_id(EVENT_2)
        assert result["action"] == "rescheduled"
        assert old.status == "rescheduled"
        assert new.status == "scheduled"
        assert lead.status == "rescheduled"
        assert {j.status for j in _meeting_jobs(workflow_store, lead.id, old)} == {"skipped"}
        assert {j.status for j in _meeting_jobs(workflow_store, lead.id, new)} == {"pending"}

    @pytest.mark.asyncio
    async def test_malformed_new_booking_keeps_old_meeting(
        self, meeting_events, meeting_store, workflow_store, lead
    ):
        await meeting_events.process_calendly_event(calendly_body("invitee.created"), "t1")
        old = await meeting_store.get_by_external_id(EVENT_1)

        with pytest.raises(LeadValidationError):
            await meeting_events.process_calendly_event(
                calendly_body("invitee.rescheduled", event_uri=EVENT_2, start_time=None), "t2"
            )

        assert old.status == "scheduled"
        assert lead.status == "scheduled"
        assert await meeting_store.get_by_external_id(EVENT_2) is None
        assert {j.status for j in _meeting_jobs(workflow_store, lead.id, old)} == {"pending"}

    @pytest.mark.asyncio
    async def test_unknown_invitee(self, meeting_events):
        result = await meeting_events.process_calendly_event(
            calendly_body("invitee.rescheduled", email="stranger@example.com"), "t"
        )

        assert result["action"] == "not_found"


class TestNoShow:

    @pytest.mark.asyncio
    async def test_marks_no_show(self, meeting_events, meeting_store, lead):
        await meeting_events.process_calendly_event(calendly_body("invitee.created"), "t1")

        body = {"event": "invitee_no_show.created", "payload": {"event": EVENT_1, "email": lead.email}}
        result = await meeting_events.process_calendly_event(body, "t2")

        assert result["action"] == "no_show"
        assert (await meeting_store.get_by_external_id(EVENT_1)).status == "no_show"
        assert lead.status == "no_show"

        replay = await meeting_events.process_calendly_event(body, "t3")
        assert replay["action"] == "duplicate"


class TestUnknownEvents:

    @pytest.mark.asyncio
    async def test_ignored(self, meeting_events, lead_store):
        result = await meeting_events.process_calendly_event({"event": "routing_form_submission.created"}, "t")

        assert result == {"event": "routing_form_submission.created", "action": "ignored"}
        assert lead_store.leads == {}
