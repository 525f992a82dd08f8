# tests/conftest.py
"""
Shared fixtures: a hand-driven clock, in-memory stores wired into the real
services, a SQLite-backed session factory for the SQL store tests and a
TestClient over the real app.
"""

import os
from datetime import timedelta

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from fakes import (
    FACEBOOK_VERIFY_TOKEN,
    InMemoryAgentStore,
    InMemoryCheckpointStore,
    InMemoryLeadStore,
    InMemoryMeetingStore,
    InMemoryWorkflowStore,
    MutableClock,
    START,
    RecordingNotifier,
    StaticLeadSource,
)
from leadflow.config import Settings
from leadflow.container import ServiceContainer
from leadflow.database import Base, create_engine_for_url, create_session_factory, init_models
from leadflow.main import create_app
from leadflow.services.lead_intake import LeadIntakeService
from leadflow.services.meeting_events import MeetingEventService
from leadflow.services.polling_reconciler import PollingReconciler
from leadflow.services.workflow_orchestrator import WorkflowOrchestrator

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


@pytest.fixture
def clock():
    return MutableClock(START)


@pytest.fixture
def lead_store(clock):
    return InMemoryLeadStore(clock)


@pytest.fixture
def workflow_store(clock):
    return InMemoryWorkflowStore(clock)


@pytest.fixture
def meeting_store(clock):
    return InMemoryMeetingStore(clock)


@pytest.fixture
def agent_store(clock, lead_store):
    return InMemoryAgentStore(clock, lead_store)


@pytest.fixture
def checkpoint_store():
    return InMemoryCheckpointStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def orchestrator(lead_store, workflow_store, meeting_store, notifier, clock):
    return WorkflowOrchestrator(
        lead_store=lead_store,
        workflow_store=workflow_store,
        meeting_store=meeting_store,
        notifier=notifier,
        clock=clock,
        batch_size=50,
        retry_delay=timedelta(minutes=15),
        max_retries=3,
        meeting_check_interval_minutes=30,
        recurrence_limit=4,
        booking_link="https://calendly.com/acme/intro",
    )


@pytest.fixture
def intake(lead_store, orchestrator):
    return LeadIntakeService(lead_store, orchestrator)


@pytest.fixture
def meeting_events(lead_store, meeting_store, orchestrator, intake):
    return MeetingEventService(lead_store, meeting_store, orchestrator, intake)


@pytest.fixture
def lead_source():
    return StaticLeadSource("hubspot_crm")


@pytest.fixture
def reconciler(lead_source, intake, checkpoint_store, clock):
    return PollingReconciler(
        source=lead_source,
        intake=intake,
        checkpoint_store=checkpoint_store,
        clock=clock,
        interval_minutes=15,
        max_leads_per_sync=100,
        initial_lookback=timedelta(hours=24),
    )


@pytest_asyncio.fixture
async def session_factory():
    """Fresh schema per test on TEST_DATABASE_URL (in-memory SQLite by default)."""
    engine = create_engine_for_url(TEST_DATABASE_URL)
    await init_models(engine)
    try:
        yield create_session_factory(engine)
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


# ============================================================================
# API
# ============================================================================

# No scheduler is attached, so the lifespan starts no timers.

@pytest.fixture
def app_settings():
    return Settings(
        ENVIRONMENT="test",
        CALENDLY_WEBHOOK_SECRET=None,
        FACEBOOK_APP_SECRET=None,
        FACEBOOK_VERIFY_TOKEN=FACEBOOK_VERIFY_TOKEN,
        NOTIFICATIONS_DRY_RUN=True,
    )


@pytest.fixture
def hubspot_source():
    return StaticLeadSource("hubspot_crm")


@pytest.fixture
def facebook_source():
    return StaticLeadSource("facebook_lead_ads")


@pytest.fixture
def container(app_settings, lead_store, meeting_store, agent_store, orchestrator, intake,
              meeting_events, reconciler, hubspot_source, facebook_source):
    return ServiceContainer(
        settings=app_settings,
        lead_store=lead_store,
        meeting_store=meeting_store,
        agent_store=agent_store,
        orchestrator=orchestrator,
        intake=intake,
        meeting_events=meeting_events,
        reconcilers={"hubspot": reconciler},
        sources={"hubspot": hubspot_source, "facebook": facebook_source},
    )


@pytest.fixture
def client(container, app_settings):
    with TestClient(create_app(container=container, app_settings=app_settings)) as test_client:
        yield test_client
