"""
Storage interfaces used by the workflow engine and the intake services.

Services only talk to these abstract stores; the SQLAlchemy implementations
live next to this module and tests substitute in-memory fakes.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Dict, Any, Optional, Tuple
from uuid import UUID

from leadflow.models import Agent, Lead, Meeting, WorkflowJob
from leadflow.schemas.lead import CanonicalLead


CONTACT_FIELDS = (
    "phone", "company", "job_title", "website", "city", "state", "country",
    "zip", "lead_source", "lifecycle_stage",
)
NAME_FIELDS = ("first_name", "last_name", "full_name")


@dataclass
class UpsertResult:
    """Outcome of LeadStore.upsert"""
    lead: Lead
    operation: str  # "created" | "updated"
    matched_by: Optional[str] = None  # "external_id" | "email" | None

    @property
    def created(self) -> bool:
        return self.operation == "created"


def new_lead_from_canonical(canonical: CanonicalLead, now: datetime) -> Lead:
    """Build an unsaved Lead row from a canonical lead."""
    lead = Lead(
        source=canonical.source,
        external_id=canonical.external_id,
        email=canonical.email,
        first_name=canonical.first_name,
        last_name=canonical.last_name,
        full_name=canonical.full_name,
        sms_opt_in=canonical.sms_opt_in,
        status="new",
        custom_fields=dict(canonical.fields),
        raw_data=dict(canonical.raw_data),
        created_at=now,
        updated_at=now,
        last_source_sync_at=now,
    )
    for field in CONTACT_FIELDS:
        setattr(lead, field, getattr(canonical, field))
    return lead


def merge_canonical_into_lead(
    lead: Lead,
    canonical: CanonicalLead,
    now: datetime,
    matched_by: str
) -> Lead:
    """
    Merge a canonical lead into an existing row.

    Matched by external id: the source owns the record, newer non-null values win.
    Matched by email: the first external id wins; names are only filled in when
    missing and the other record's id is kept in custom_fields["merged_external_ids"].
    """
    for field in CONTACT_FIELDS:
        value = getattr(canonical, field)
        if value is not None:
            setattr(lead, field, value)

    for field in NAME_FIELDS:
        value = getattr(canonical, field)
        if value is None:
            continue
        if matched_by == "external_id" or not getattr(lead, field):
            setattr(lead, field, value)

    custom_fields = dict(lead.custom_fields or {})
    custom_fields.update(canonical.fields)

    if matched_by == "email" and canonical.external_id:
        if lead.external_id is None and lead.source == canonical.source:
            lead.external_id = canonical.external_id
        elif lead.external_id != canonical.external_id or lead.source != canonical.source:
            merged_ids = list(custom_fields.get("merged_external_ids", []))
            key = f"{canonical.source}:{canonical.external_id}"
            if key not in merged_ids:
                merged_ids.append(key)
            custom_fields["merged_external_ids"] = merged_ids

    lead.custom_fields = custom_fields
    if canonical.raw_data:
        lead.raw_data = dict(canonical.raw_data)
    if not canonical.sms_opt_in:
        lead.sms_opt_in = False
    lead.last_source_sync_at = now
    lead.updated_at = now
    return lead


# ============================================================================
# LEADS
# ============================================================================

class LeadStore(ABC):
    """CRUD and upsert for leads."""

    @abstractmethod
    async def get(self, lead_id: UUID) -> Optional[Lead]:
        pass

    @abstractmethod
    async def find_by_external_id(self, source: str, external_id: str) -> Optional[Lead]:
        pass

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[Lead]:
        pass

    @abstractmethod
    async def upsert(self, canonical: CanonicalLead) -> UpsertResult:
        """
        Insert or update a lead.

        Looks up by (source, external_id) first and falls back to email.
        """
        pass

    @abstractmethod
    async def list_leads(
        self,
        status: Optional[str] = None,
        source: Optional[str] = None,
        offset: int = 0,
        limit: int = 50
    ) -> Tuple[List[Lead], int]:
        pass

    @abstractmethod
    async def update_status(self, lead_id: UUID, status: str) -> Optional[Lead]:
        pass

    @abstractmethod
    async def mark_workflow_initialized(self, lead_id: UUID, when: datetime) -> bool:
        """Set workflow_initialized_at if unset. Returns False if it was already set."""
        pass

    @abstractmethod
    async def clear_workflow_initialized(self, lead_id: UUID) -> None:
        pass

    @abstractmethod
    async def assign_agent(self, lead_ids: List[UUID], agent_id: Optional[UUID]) -> int:
        """Set (or with None, clear) assigned_agent_id. Returns how many leads matched."""
        pass


# ============================================================================
# AGENTS
# ============================================================================

class AgentStore(ABC):

    @abstractmethod
    async def create_agent(self, email: str, full_name: str, role: str = "agent") -> Agent:
        """Raises DuplicateAgentError when the email is taken."""
        pass

    @abstractmethod
    async def get(self, agent_id: UUID) -> Optional[Agent]:
        pass

    @abstractmethod
    async def list_agents(self, include_inactive: bool = False) -> List[Agent]:
        pass

    @abstractmethod
    async def delete_agent(self, agent_id: UUID) -> bool:
        """Unassign the agent's leads, then delete. False if there was no such agent."""
        pass


# ============================================================================
# WORKFLOW JOBS
# ============================================================================

class WorkflowStore(ABC):
    """Scheduled workflow jobs plus the per-lead audit trail."""

    @abstractmethod
    async def insert_jobs(self, jobs: List[Dict[str, Any]]) -> List[WorkflowJob]:
        """
        Insert pending jobs in one transaction.

        Each dict carries lead_id, workflow_type, step, scheduled_at and
        optionally max_retries and metadata.
        """
        pass

    @abstractmethod
    async def get_due_jobs(self, now: datetime, limit: int) -> List[WorkflowJob]:
        """Pending jobs due at `now` with retries left, by scheduled_at then workflow_type."""
        pass

    @abstractmethod
    async def claim_job(self, job_id: UUID) -> bool:
        """Atomically move a job pending -> processing. False if someone else got it."""
        pass

    @abstractmethod
    async def complete_job(self, job_id: UUID, executed_at: datetime) -> None:
        pass

    @abstractmethod
    async def reschedule_job(
        self,
        job_id: UUID,
        retry_count: int,
        scheduled_at: datetime,
        error_message: str
    ) -> None:
        """processing -> pending with a bumped retry count."""
        pass

    @abstractmethod
    async def fail_job(
        self,
        job_id: UUID,
        retry_count: int,
        error_message: str,
        executed_at: datetime
    ) -> None:
        pass

    @abstractmethod
    async def skip_pending_jobs(
        self,
        lead_id: UUID,
        workflow_type: str,
        meeting_id: Optional[str] = None
    ) -> int:
        """
        Mark pending jobs of a type as skipped. With meeting_id, only jobs
        anchored to that meeting. Returns the number of jobs skipped.
        """
        pass

    @abstractmethod
    async def list_jobs_for_lead(self, lead_id: UUID) -> List[WorkflowJob]:
        pass

    @abstractmethod
    async def record_event(
        self,
        lead_id: UUID,
        event_type: str,
        event_data: Dict[str, Any],
        success: bool = True
    ) -> None:
        pass


# ============================================================================
# MEETINGS
# ============================================================================

class MeetingStore(ABC):

    @abstractmethod
    async def get_by_external_id(self, external_event_id: str) -> Optional[Meeting]:
        pass

    @abstractmethod
    async def get_or_create(self, lead_id: UUID, external_event_id: str, **fields) -> Tuple[Meeting, bool]:
        """Return (meeting, created). Replayed webhooks get the existing row."""
        pass

    @abstractmethod
    async def find_scheduled_for_lead(self, lead_id: UUID) -> Optional[Meeting]:
        """Earliest meeting with status 'scheduled' for the lead."""
        pass

    @abstractmethod
    async def update_status(
        self,
        meeting_id: UUID,
        status: str,
        cancellation_reason: Optional[str] = None
    ) -> Optional[Meeting]:
        pass

    @abstractmethod
    async def list_for_lead(self, lead_id: UUID) -> List[Meeting]:
        pass


# ============================================================================
# SYNC CHECKPOINTS
# ============================================================================

class SyncCheckpointStore(ABC):

    @abstractmethod
    async def get_last_sync_time(self, sync_key: str) -> Optional[datetime]:
        pass

    @abstractmethod
    async def set_last_sync_time(self, sync_key: str, value: datetime) -> None:
        pass
