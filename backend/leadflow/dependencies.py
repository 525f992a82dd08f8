"""FastAPI dependencies resolving services from the application container."""

from fastapi import Depends, HTTPException, Request, status

from leadflow.container import ServiceContainer
from leadflow.services.lead_intake import LeadIntakeService
from leadflow.services.polling_reconciler import PollingReconciler
from leadflow.services.workflow_orchestrator import WorkflowOrchestrator
from leadflow.stores import AgentStore, LeadStore, MeetingStore


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services not initialized"
        )
    return container


def get_lead_store(container: ServiceContainer = Depends(get_container)) -> LeadStore:
    return container.lead_store


def get_meeting_store(container: ServiceContainer = Depends(get_container)) -> MeetingStore:
    return container.meeting_store


def get_agent_store(container: ServiceContainer = Depends(get_container)) -> AgentStore:
    return container.agent_store


def get_orchestrator(container: ServiceContainer = Depends(get_container)) -> WorkflowOrchestrator:
    return container.orchestrator


def get_intake(container: ServiceContainer = Depends(get_container)) -> LeadIntakeService:
    return container.intake


def get_reconciler(source: str, container: ServiceContainer = Depends(get_container)) -> PollingReconciler:
    reconciler = container.reconcilers.get(source)
    if reconciler is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No polling configured for source '{source}'"
        )
    return reconciler
