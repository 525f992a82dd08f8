"""Pydantic schemas for request/response validation."""

from leadflow.schemas.lead import (
    LeadStatus,
    MeetingStatus,
    CanonicalLead,
    ValidationResult,
    LeadCreate,
    LeadStatusUpdate,
    LeadResponse,
    LeadListResponse,
    MeetingResponse,
    IntakeResponse,
)
from leadflow.schemas.workflow import (
    WorkflowJobResponse,
    WorkflowStatusResponse,
    InitializeWorkflowResponse,
    ProcessJobsResponse,
    ProcessorStatusResponse,
    SyncErrorDetail,
    SyncResultResponse,
    SyncStatusResponse,
)

__all__ = [
    "LeadStatus",
    "MeetingStatus",
    "CanonicalLead",
    "ValidationResult",
    "LeadCreate",
    "LeadStatusUpdate",
    "LeadResponse",
    "LeadListResponse",
    "MeetingResponse",
    "IntakeResponse",
    "WorkflowJobResponse",
    "WorkflowStatusResponse",
    "InitializeWorkflowResponse",
    "ProcessJobsResponse",
    "ProcessorStatusResponse",
    "SyncErrorDetail",
    "SyncResultResponse",
    "SyncStatusResponse",
]
