# backend/leadflow/schemas/workflow.py
"""
Pydantic schemas for the workflow engine and the polling reconciler.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID


# ========================================
# WORKFLOW JOB SCHEMAS
# ========================================

class WorkflowJobResponse(BaseModel):
    id: UUID
    lead_id: UUID
    workflow_type: str
    step: str
    scheduled_at: datetime
    status: str
    retry_count: int
    max_retries: int
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    executed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class WorkflowStatusResponse(BaseModel):
    """Per-lead job counts by status plus the raw list."""
    lead_id: UUID
    total_jobs: int
    pending: int
    processing: int
    completed: int
    failed: int
    skipped: int
    jobs: List[WorkflowJobResponse]


class InitializeWorkflowResponse(BaseModel):
    lead_id: UUID
    success: bool


class ProcessJobsResponse(BaseModel):
    processed_count: int


class ProcessorStatusResponse(BaseModel):
    is_running: bool
    is_processing: bool
    batch_size: int
    interval_minutes: int
    retry_delay_minutes: float
    next_run_time: Optional[datetime] = None


# ========================================
# SYNC SCHEMAS
# ========================================

class SyncErrorDetail(BaseModel):
    external_id: Optional[str] = None
    error: str


class SyncResultResponse(BaseModel):
    success: bool
    tracking_id: str
    processed: int = 0
    created: int = 0
    updated: int = 0
    errors: int = 0
    error_details: List[SyncErrorDetail] = Field(default_factory=list)
    sync_time: datetime
    message: Optional[str] = None
    error: Optional[str] = None


class SyncStatusResponse(BaseModel):
    source: str
    is_running: bool
    is_syncing: bool
    last_sync_time: Optional[datetime] = None
    interval_minutes: int
    max_leads_per_sync: int
    next_run_time: Optional[datetime] = None
    last_result: Optional[SyncResultResponse] = None
