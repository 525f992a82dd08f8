"""Health check."""

from fastapi import APIRouter, Depends

from leadflow.container import ServiceContainer
from leadflow.dependencies import get_container

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(container: ServiceContainer = Depends(get_container)):
    return {
        "status": "healthy",
        "environment": container.settings.ENVIRONMENT,
        "workflow_processor": container.orchestrator.get_status(),
        "pollers": {
            name: {"is_running": reconciler.is_running, "is_syncing": reconciler.is_syncing}
            for name, reconciler in container.reconcilers.items()
        },
    }
