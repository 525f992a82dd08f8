# tests/stores/test_sql_stores.py
"""
Tests for the SQLAlchemy stores against a real database
(in-memory SQLite unless TEST_DATABASE_URL points elsewhere).

Coverage:
- Lead upsert: external id match, email fallback in both arrival orders
- Workflow-initialized marker is set exactly once
- Lead listing filters and pagination
- Due-job selection order and retry ceiling
- Atomic job claim
- Skipping jobs by workflow type and meeting
- Meeting get_or_create idempotency
- Agent roster and lead assignment
- Sync checkpoints
"""

import pytest
import pytest_asyncio
from datetime import timedelta
from uuid import uuid4

from sqlalchemy import select

from leadflow.exceptions import DuplicateAgentError
from leadflow.models import LeadProcessingLog
from leadflow.schemas.lead import CanonicalLead
from leadflow.stores import (
    SqlAgentStore,
    SqlLeadStore,
    SqlMeetingStore,
    SqlSyncCheckpointStore,
    SqlWorkflowStore,
)
from fakes import START, MutableClock


@pytest.fixture
def sql_clock():
    return MutableClock(START)


@pytest.fixture
def leads(session_factory, sql_clock):
    return SqlLeadStore(session_factory, sql_clock)


@pytest.fixture
def workflows(session_factory, sql_clock):
    return SqlWorkflowStore(session_factory, sql_clock)


@pytest.fixture
def meetings(session_factory, sql_clock):
    return SqlMeetingStore(session_factory, sql_clock)


@pytest.fixture
def agents(session_factory, sql_clock):
    return SqlAgentStore(session_factory, sql_clock)


@pytest.fixture
def checkpoints(session_factory, sql_clock):
    return SqlSyncCheckpointStore(session_factory, sql_clock)


def canonical(source="hubspot_crm", external_id="c-1", email="ana@example.com", **fields):
    return CanonicalLead(source=source, external_id=external_id, email=email, **fields)


def job_spec(lead_id, step, scheduled_at, workflow_type="initial_engagement", **metadata):
    return {
        "lead_id": lead_id,
        "workflow_type": workflow_type,
        "step": step,
        "scheduled_at": scheduled_at,
        "max_retries": 3,
        "metadata": metadata,
    }


# ============================================================================
# LEADS
# ============================================================================

class TestSqlLeadStore:

    @pytest.mark.asyncio
    async def test_upsert_creates_then_updates_by_external_id(self, leads, sql_clock):
        created = await leads.upsert(canonical(first_name="Ana", company="Old"))
        sql_clock.advance(minutes=5)
        updated = await leads.upsert(canonical(first_name="Ana", company="New"))

        assert created.operation == "created"
        assert created.created is True
        assert updated.operation == "updated"
        assert updated.matched_by == "external_id"
        assert updated.lead.id == created.lead.id

        stored = await leads.get(created.lead.id)
        assert stored.company == "New"
        assert stored.created_at == START
        assert stored.updated_at == START + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_email_fallback_crm_first(self, leads):
        first = await leads.upsert(canonical(first_name="Ana"))
        second = await leads.upsert(canonical(
            source="facebook_lead_ads", external_id="fb-1", email="ANA@example.com", first_name="Anna",
            city="Lisbon",
        ))

        assert second.matched_by == "email"
        assert second.lead.id == first.lead.id

        lead = await leads.get(first.lead.id)
        assert lead.source == "hubspot_crm"
        assert lead.external_id == "c-1"
        assert lead.first_name == "Ana"
        assert lead.city == "Lisbon"
        assert lead.custom_fields["merged_external_ids"] == ["facebook_lead_ads:fb-1"]

    @pytest.mark.asyncio
    async def test_email_fallback_ads_first(self, leads):
        first = await leads.upsert(canonical(source="facebook_lead_ads", external_id="fb-1"))
        second = await leads.upsert(canonical())

        assert second.lead.id == first.lead.id
        lead = await leads.get(first.lead.id)
        assert lead.source == "facebook_lead_ads"
        assert lead.external_id == "fb-1"
        assert lead.custom_fields["merged_external_ids"] == ["hubspot_crm:c-1"]

        # Same record again does not duplicate the merged id
        await leads.upsert(canonical())
        lead = await leads.get(first.lead.id)
        assert lead.custom_fields["merged_external_ids"] == ["hubspot_crm:c-1"]

        total = (await leads.list_leads())[1]
        assert total == 1

    @pytest.mark.asyncio
    async def test_find_by_email_is_case_insensitive(self, leads):
        created = await leads.upsert(canonical())

        found = await leads.find_by_email("  Ana@Example.COM ")

        assert found.id == created.lead.id
        assert await leads.find_by_email("") is None

    @pytest.mark.asyncio
    async def test_workflow_marker_set_once(self, leads):
        lead = (await leads.upsert(canonical())).lead

        assert await leads.mark_workflow_initialized(lead.id, START) is True
        assert await leads.mark_workflow_initialized(lead.id, START) is False

        await leads.clear_workflow_initialized(lead.id)
        assert await leads.mark_workflow_initialized(lead.id, START) is True

    @pytest.mark.asyncio
    async def test_list_filters_and_paginates(self, leads, sql_clock):
        for i in range(5):
            sql_clock.advance(minutes=1)
            await leads.upsert(canonical(external_id=f"c-{i}", email=f"lead{i}@example.com"))
        await leads.upsert(canonical(source="zapier", external_id="z-1", email="z@example.com"))

        page, total = await leads.list_leads(source="hubspot_crm", offset=0, limit=2)
        assert total == 5
        assert [l.email for l in page] == ["lead4@example.com", "lead3@example.com"]

        lead = page[0]
        await leads.update_status(lead.id, "contacted")
        contacted, total = await leads.list_leads(status="contacted")
        assert total == 1
        assert contacted[0].id == lead.id

    @pytest.mark.asyncio
    async def test_update_status_unknown_lead(self, leads):
        from uuid import uuid4

        assert await leads.update_status(uuid4(), "contacted") is None


# ============================================================================
# WORKFLOW JOBS
# ============================================================================

class TestSqlWorkflowStore:

    @pytest_asyncio.fixture
    async def lead_id(self, leads):
        return (await leads.upsert(canonical())).lead.id

    @pytest.mark.asyncio
    async def test_due_jobs_ordered_by_time_then_type(self, workflows, lead_id):
        await workflows.insert_jobs([
            job_spec(lead_id, "send_follow_up_email", START, workflow_type="follow_up"),
            job_spec(lead_id, "send_welcome_email", START - timedelta(minutes=5)),
            job_spec(lead_id, "check_meeting_status", START, workflow_type="meeting_monitor"),
            job_spec(lead_id, "send_24h_reminder", START + timedelta(hours=1), workflow_type="reminder_sequence"),
        ])

        due = await workflows.get_due_jobs(START, limit=10)

        assert [j.step for j in due] == ["send_welcome_email", "send_follow_up_email", "check_meeting_status"]
        assert (await workflows.get_due_jobs(START, limit=1))[0].step == "send_welcome_email"

    @pytest.mark.asyncio
    async def test_metadata_round_trips(self, workflows, lead_id):
        (job,) = await workflows.insert_jobs([
            job_spec(lead_id, "check_meeting_status", START, recurring=True, occurrence=1)
        ])

        (stored,) = await workflows.list_jobs_for_lead(lead_id)
        assert stored.id == job.id
        assert stored.job_metadata == {"recurring": True, "occurrence": 1}
        assert stored.status == "pending"
        assert stored.retry_count == 0

    @pytest.mark.asyncio
    async def test_claim_is_exclusive(self, workflows, lead_id):
        (job,) = await workflows.insert_jobs([job_spec(lead_id, "send_welcome_email", START)])

        assert await workflows.claim_job(job.id) is True
        assert await workflows.claim_job(job.id) is False
        assert await workflows.get_due_jobs(START, 10) == []

    @pytest.mark.asyncio
    async def test_exhausted_retries_are_not_due(self, workflows, lead_id):
        (job,) = await workflows.insert_jobs([job_spec(lead_id, "send_welcome_email", START)])
        await workflows.claim_job(job.id)
        await workflows.reschedule_job(job.id, 3, START - timedelta(minutes=1), "boom")

        assert await workflows.get_due_jobs(START, 10) == []

    @pytest.mark.asyncio
    async def test_reschedule_complete_and_fail(self, workflows, lead_id):
        first, second = await workflows.insert_jobs([
            job_spec(lead_id, "send_welcome_email", START),
            job_spec(lead_id, "send_24h_reminder", START, workflow_type="reminder_sequence"),
        ])

        await workflows.claim_job(first.id)
        await workflows.reschedule_job(first.id, 1, START + timedelta(minutes=15), "timeout")
        await workflows.claim_job(second.id)
        await workflows.fail_job(second.id, 3, "rejected", START)

        jobs = {j.id: j for j in await workflows.list_jobs_for_lead(lead_id)}
        assert jobs[first.id].status == "pending"
        assert jobs[first.id].retry_count == 1
        assert jobs[first.id].error_message == "timeout"
        assert jobs[second.id].status == "failed"
        assert jobs[second.id].executed_at == START

        await workflows.claim_job(first.id)
        await workflows.complete_job(first.id, START + timedelta(minutes=15))
        jobs = {j.id: j for j in await workflows.list_jobs_for_lead(lead_id)}
        assert jobs[first.id].status == "completed"
        assert jobs[first.id].error_message is None

    @pytest.mark.asyncio
    async def test_skip_pending_by_type_and_meeting(self, workflows, lead_id):
        await workflows.insert_jobs([
            job_spec(lead_id, "send_24h_reminder", START, workflow_type="reminder_sequence"),
            job_spec(lead_id, "send_1h_email_reminder", START, workflow_type="reminder_sequence"),
            job_spec(lead_id, "send_meeting_reminder_1h", START, workflow_type="meeting_monitor", meeting_id="m-1"),
            job_spec(lead_id, "send_meeting_reminder_1h", START, workflow_type="meeting_monitor", meeting_id="m-2"),
        ])

        assert await workflows.skip_pending_jobs(lead_id, "reminder_sequence") == 2
        assert await workflows.skip_pending_jobs(lead_id, "meeting_monitor", meeting_id="m-1") == 1
        assert await workflows.skip_pending_jobs(lead_id, "reminder_sequence") == 0

        statuses = sorted(
            ((j.job_metadata or {}).get("meeting_id"), j.status)
            for j in await workflows.list_jobs_for_lead(lead_id)
            if j.workflow_type == "meeting_monitor"
        )
        assert statuses == [("m-1", "skipped"), ("m-2", "pending")]

    @pytest.mark.asyncio
    async def test_record_event(self, workflows, session_factory, lead_id):
        await workflows.record_event(lead_id, "zoom_link_missing", {"meeting_id": "m-1"}, success=False)

        async with session_factory() as session:
            rows = (await session.execute(select(LeadProcessingLog))).scalars().all()
        assert len(rows) == 1
        assert rows[0].event_type == "zoom_link_missing"
        assert rows[0].event_data == {"meeting_id": "m-1"}
        assert rows[0].success is False


# ============================================================================
# AGENTS
# ============================================================================

class TestSqlAgentStore:

    @pytest.mark.asyncio
    async def test_create_get_and_list(self, agents, sql_clock):
        rep = await agents.create_agent(" Rep@Example.com ", "Rae Rep")
        sql_clock.advance(minutes=1)
        boss = await agents.create_agent("boss@example.com", "Bo Boss", role="admin")

        fetched = await agents.get(rep.id)
        assert fetched.email == "rep@example.com"
        assert fetched.role == "agent"
        assert fetched.is_active is True
        assert [a.id for a in await agents.list_agents()] == [rep.id, boss.id]

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, agents):
        await agents.create_agent("rep@example.com", "Rae")

        with pytest.raises(DuplicateAgentError):
            await agents.create_agent("REP@example.com", "Ray")

        assert len(await agents.list_agents()) == 1

    @pytest.mark.asyncio
    async def test_assign_unassign_and_delete(self, agents, leads):
        agent = await agents.create_agent("rep@example.com", "Rae")
        first = (await leads.upsert(canonical(external_id="c-1", email="a@example.com"))).lead
        second = (await leads.upsert(canonical(external_id="c-2", email="b@example.com"))).lead

        assert await leads.assign_agent([first.id, second.id, uuid4()], agent.id) == 2
        assert (await leads.get(first.id)).assigned_agent_id == agent.id

        assert await leads.assign_agent([first.id], None) == 1
        assert (await leads.get(first.id)).assigned_agent_id is None
        assert await leads.assign_agent([], agent.id) == 0

        assert await agents.delete_agent(agent.id) is True
        assert await agents.get(agent.id) is None
        assert (await leads.get(second.id)).assigned_agent_id is None
        assert await agents.delete_agent(agent.id) is False


# ============================================================================
# MEETINGS & CHECKPOINTS
# ============================================================================

class TestSqlMeetingStore:

    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, leads, meetings):
        lead_id = (await leads.upsert(canonical())).lead.id

        meeting, created = await meetings.get_or_create(
            lead_id, "evt-1", start_time=START + timedelta(days=1), location="https://zoom.us/j/1"
        )
        again, created_again = await meetings.get_or_create(
            lead_id, "evt-1", start_time=START + timedelta(days=1)
        )

        assert created is True
        assert created_again is False
        assert again.id == meeting.id
        assert meeting.status == "scheduled"

    @pytest.mark.asyncio
    async def test_find_scheduled_returns_earliest(self, leads, meetings):
        lead_id = (await leads.upsert(canonical())).lead.id
        later, _ = await meetings.get_or_create(lead_id, "evt-late", start_time=START + timedelta(days=3))
        sooner, _ = await meetings.get_or_create(lead_id, "evt-soon", start_time=START + timedelta(days=1))

        assert (await meetings.find_scheduled_for_lead(lead_id)).id == sooner.id

        await meetings.update_status(sooner.id, "canceled", cancellation_reason="Conflict")
        assert (await meetings.find_scheduled_for_lead(lead_id)).id == later.id

        canceled = await meetings.get_by_external_id("evt-soon")
        assert canceled.status == "canceled"
        assert canceled.cancellation_reason == "Conflict"
        assert [m.external_event_id for m in await meetings.list_for_lead(lead_id)] == ["evt-soon", "evt-late"]


class TestSqlSyncCheckpointStore:

    @pytest.mark.asyncio
    async def test_set_and_get(self, checkpoints):
        assert await checkpoints.get_last_sync_time("hubspot_crm_polling") is None

        await checkpoints.set_last_sync_time("hubspot_crm_polling", START)
        await checkpoints.set_last_sync_time("hubspot_crm_polling", START + timedelta(minutes=15))

        assert await checkpoints.get_last_sync_time("hubspot_crm_polling") == START + timedelta(minutes=15)
        assert await checkpoints.get_last_sync_time("facebook_lead_ads_polling") is None
