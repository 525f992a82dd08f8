# backend/leadflow/routers/workflow_routes.py
"""
Operator endpoints for the workflow engine.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from uuid import UUID
import logging

from leadflow.dependencies import get_lead_store, get_orchestrator
from leadflow.schemas.workflow import (
    InitializeWorkflowResponse,
    ProcessJobsResponse,
    ProcessorStatusResponse,
    WorkflowStatusResponse,
)
from leadflow.services.workflow_orchestrator import WorkflowOrchestrator
from leadflow.stores import LeadStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/workflows", tags=["workflows"])


@router.get("/processor/status", response_model=ProcessorStatusResponse)
async def get_processor_status(orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_status()


@router.post("/process", response_model=ProcessJobsResponse)
async def process_pending_jobs(
    limit: int = Query(50, ge=1, le=500),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
):
    """Run one batch of due jobs now."""
    try:
        processed = await orchestrator.process_pending_jobs(limit)
        return ProcessJobsResponse(processed_count=processed)
    except Exception as e:
        logger.error(f"Error processing workflow jobs: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process workflow jobs: {str(e)}"
        )


@router.post("/{lead_id}/initialize", response_model=InitializeWorkflowResponse)
async def initialize_workflow(
    lead_id: UUID,
    leads: LeadStore = Depends(get_lead_store),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
):
    if not await leads.get(lead_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")

    success = await orchestrator.initialize_workflow(lead_id)
    if not success:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to initialize workflow"
        )
    return InitializeWorkflowResponse(lead_id=lead_id, success=True)


@router.get("/{lead_id}/status", response_model=WorkflowStatusResponse)
async def get_workflow_status(
    lead_id: UUID,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
):
    try:
        return await orchestrator.get_workflow_status(lead_id)
    except Exception as e:
        logger.error(f"Error fetching workflow status: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
