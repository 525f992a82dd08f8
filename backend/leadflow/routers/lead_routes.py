"""
Lead Routes - list, read, manual create and status updates.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import Optional, List
from uuid import UUID
import logging

from leadflow.dependencies import get_intake, get_lead_store, get_meeting_store
from leadflow.exceptions import LeadValidationError
from leadflow.schemas.lead import (
    LeadCreate,
    LeadResponse,
    LeadListResponse,
    LeadStatus,
    LeadStatusUpdate,
    MeetingResponse,
    IntakeResponse,
)
from leadflow.services.lead_intake import LeadIntakeService
from leadflow.services.tracking import generate_tracking_id
from leadflow.stores import LeadStore, MeetingStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/leads", tags=["Leads"])


@router.get("", response_model=LeadListResponse)
async def list_leads(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    status_filter: Optional[LeadStatus] = Query(None, alias="status"),
    source: Optional[str] = None,
    leads: LeadStore = Depends(get_lead_store)
):
    rows, total = await leads.list_leads(
        status=status_filter.value if status_filter else None,
        source=source,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    return LeadListResponse(
        leads=[LeadResponse.model_validate(row) for row in rows],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("", response_model=IntakeResponse, status_code=status.HTTP_201_CREATED)
async def create_lead(
    lead_data: LeadCreate,
    intake: LeadIntakeService = Depends(get_intake)
):
    """Create (or merge) a lead by hand through the regular intake path."""
    tracking_id = generate_tracking_id("manual")
    payload = lead_data.model_dump(exclude_none=True)
    if lead_data.fields:
        payload["fields"] = lead_data.fields

    try:
        outcome = await intake.ingest(payload, "manual", tracking_id)
    except LeadValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors)

    return IntakeResponse(success=True, **outcome)


@router.get("/{lead_id}", response_model=LeadResponse)
async def get_lead(lead_id: UUID, leads: LeadStore = Depends(get_lead_store)):
    lead = await leads.get(lead_id)
    if not lead:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
    return lead


@router.patch("/{lead_id}/status", response_model=LeadResponse)
async def update_lead_status(
    lead_id: UUID,
    update: LeadStatusUpdate,
    leads: LeadStore = Depends(get_lead_store)
):
    lead = await leads.update_status(lead_id, update.status.value)
    if not lead:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
    logger.info(f"Lead {lead_id} status set to {update.status.value}")
    return lead


@router.get("/{lead_id}/meetings", response_model=List[MeetingResponse])
async def list_lead_meetings(
    lead_id: UUID,
    leads: LeadStore = Depends(get_lead_store),
    meetings: MeetingStore = Depends(get_meeting_store)
):
    if not await leads.get(lead_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
    return await meetings.list_for_lead(lead_id)
