"""
Service wiring.

Everything the routes and timers need is constructed once here and passed
around explicitly; nothing below reads global settings on its own.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Optional
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import async_sessionmaker

from leadflow.clock import Clock, utcnow
from leadflow.config import Settings
from leadflow.services.lead_intake import LeadIntakeService
from leadflow.services.lead_normalizer import LeadNormalizer
from leadflow.services.meeting_events import MeetingEventService
from leadflow.services.notifications import NotificationSender, build_notification_sender
from leadflow.services.polling_reconciler import PollingReconciler
from leadflow.services.workflow_orchestrator import WorkflowOrchestrator
from leadflow.sources import LeadSource, HubSpotLeadSource, FacebookLeadSource
from leadflow.stores import (
    AgentStore,
    LeadStore,
    MeetingStore,
    SqlAgentStore,
    SqlLeadStore,
    SqlWorkflowStore,
    SqlMeetingStore,
    SqlSyncCheckpointStore,
)

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    lead_store: LeadStore
    meeting_store: MeetingStore
    agent_store: AgentStore
    orchestrator: WorkflowOrchestrator
    intake: LeadIntakeService
    meeting_events: MeetingEventService
    scheduler: Optional[AsyncIOScheduler] = None
    reconcilers: Dict[str, PollingReconciler] = field(default_factory=dict)
    # Sources usable for webhook lookups by id, keyed by short name
    sources: Dict[str, LeadSource] = field(default_factory=dict)


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker,
    scheduler: Optional[AsyncIOScheduler] = None,
    notifier: Optional[NotificationSender] = None,
    clock: Clock = utcnow
) -> ServiceContainer:
    lead_store = SqlLeadStore(session_factory, clock)
    workflow_store = SqlWorkflowStore(session_factory, clock)
    meeting_store = SqlMeetingStore(session_factory, clock)
    agent_store = SqlAgentStore(session_factory, clock)
    checkpoint_store = SqlSyncCheckpointStore(session_factory, clock)

    orchestrator = WorkflowOrchestrator(
        lead_store=lead_store,
        workflow_store=workflow_store,
        meeting_store=meeting_store,
        notifier=notifier or build_notification_sender(settings),
        clock=clock,
        scheduler=scheduler,
        batch_size=settings.WORKFLOW_BATCH_SIZE,
        processing_interval_minutes=settings.WORKFLOW_PROCESSING_INTERVAL_MINUTES,
        retry_delay=timedelta(minutes=settings.WORKFLOW_RETRY_DELAY_MINUTES),
        max_retries=settings.WORKFLOW_MAX_RETRIES,
        meeting_check_interval_minutes=settings.WORKFLOW_MEETING_CHECK_INTERVAL_MINUTES,
        recurrence_limit=settings.WORKFLOW_RECURRENCE_LIMIT,
        init_guard_enabled=settings.WORKFLOW_INIT_GUARD_ENABLED,
        booking_link=settings.CALENDLY_LINK,
    )
    intake = LeadIntakeService(lead_store, orchestrator, LeadNormalizer())
    meeting_events = MeetingEventService(lead_store, meeting_store, orchestrator, intake)

    container = ServiceContainer(
        settings=settings,
        lead_store=lead_store,
        meeting_store=meeting_store,
        agent_store=agent_store,
        orchestrator=orchestrator,
        intake=intake,
        meeting_events=meeting_events,
        scheduler=scheduler,
    )

    if settings.HUBSPOT_ACCESS_TOKEN:
        hubspot = HubSpotLeadSource(settings.HUBSPOT_ACCESS_TOKEN)
        container.sources["hubspot"] = hubspot
        container.reconcilers["hubspot"] = PollingReconciler(
            source=hubspot,
            intake=intake,
            checkpoint_store=checkpoint_store,
            clock=clock,
            scheduler=scheduler,
            interval_minutes=settings.HUBSPOT_SYNC_INTERVAL_MINUTES,
            max_leads_per_sync=settings.HUBSPOT_MAX_LEADS_PER_SYNC,
            initial_lookback=timedelta(hours=settings.HUBSPOT_INITIAL_LOOKBACK_HOURS),
        )

    if settings.FACEBOOK_PAGE_ACCESS_TOKEN:
        form_ids = [f.strip() for f in settings.FACEBOOK_FORM_IDS.split(",") if f.strip()]
        facebook = FacebookLeadSource(settings.FACEBOOK_PAGE_ACCESS_TOKEN, form_ids=form_ids)
        container.sources["facebook"] = facebook
        if form_ids:
            container.reconcilers["facebook"] = PollingReconciler(
                source=facebook,
                intake=intake,
                checkpoint_store=checkpoint_store,
                clock=clock,
                scheduler=scheduler,
                interval_minutes=settings.FACEBOOK_SYNC_INTERVAL_MINUTES,
            )

    logger.info(
        f"Services built: sources={sorted(container.sources)}, "
        f"pollers={sorted(container.reconcilers)}"
    )
    return container


def start_background_jobs(container: ServiceContainer) -> None:
    """Register the timers the configuration asks for."""
    settings = container.settings
    if settings.ENABLE_WORKFLOW_PROCESSOR:
        container.orchestrator.start_continuous_processing()

    polling_flags = {
        "hubspot": settings.ENABLE_HUBSPOT_POLLING,
        "facebook": settings.ENABLE_FACEBOOK_POLLING,
    }
    for name, reconciler in container.reconcilers.items():
        if polling_flags.get(name):
            reconciler.start()


def stop_background_jobs(container: ServiceContainer) -> None:
    if container.orchestrator.is_running:
        container.orchestrator.stop_continuous_processing()
    for reconciler in container.reconcilers.values():
        if reconciler.is_running:
            reconciler.stop()
