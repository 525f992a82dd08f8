# backend/leadflow/schemas/lead.py
"""
Pydantic schemas for leads and meetings.

CanonicalLead is the source-agnostic shape every inbound payload is
normalized into before it reaches the lead store.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID
from enum import Enum


class LeadStatus(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    SCHEDULED = "scheduled"
    RESCHEDULED = "rescheduled"
    CANCELED = "canceled"
    NO_SHOW = "no_show"
    COMPLETED = "completed"


class MeetingStatus(str, Enum):
    SCHEDULED = "scheduled"
    CANCELED = "canceled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"


# ========================================
# CANONICAL LEAD
# ========================================

class CanonicalLead(BaseModel):
    """Normalized lead record, independent of where it came from."""
    source: str
    external_id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    website: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip: Optional[str] = None
    lead_source: Optional[str] = None
    lifecycle_stage: Optional[str] = None
    sms_opt_in: bool = True
    created_time: Optional[datetime] = None
    modified_time: Optional[datetime] = None

    # Source fields without a canonical home
    fields: Dict[str, Any] = Field(default_factory=dict)
    raw_data: Dict[str, Any] = Field(default_factory=dict)


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


# ========================================
# API SCHEMAS
# ========================================

class LeadCreate(BaseModel):
    """Manual lead creation; goes through the same intake path as webhooks."""
    email: str = Field(..., min_length=3, max_length=255)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    external_id: Optional[str] = None
    fields: Dict[str, Any] = Field(default_factory=dict)


class LeadStatusUpdate(BaseModel):
    status: LeadStatus


class LeadResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    source: str
    external_id: Optional[str] = None
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    status: str
    assigned_agent_id: Optional[UUID] = None
    custom_fields: Optional[Dict[str, Any]] = None
    workflow_initialized_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    last_source_sync_at: Optional[datetime] = None


class LeadListResponse(BaseModel):
    leads: List[LeadResponse]
    total: int
    page: int
    page_size: int


class MeetingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID
    external_event_id: str
    name: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    timezone: Optional[str] = None
    status: str
    location: Optional[str] = None


class IntakeResponse(BaseModel):
    success: bool
    tracking_id: str
    lead_id: Optional[UUID] = None
    operation: Optional[str] = None
    workflow_initialized: bool = False

    @field_validator("operation")
    @classmethod
    def validate_operation(cls, v):
        if v is not None and v not in ("created", "updated"):
            raise ValueError("operation must be 'created' or 'updated'")
        return v
