# backend/leadflow/models.py
"""
SQLAlchemy ORM models.

Leads own their workflow jobs and meetings by value (lead_id foreign keys);
no relationship back-references are loaded by the workflow engine.
Timestamps are naive UTC so the same models run on PostgreSQL and SQLite.
"""

from sqlalchemy import (
    Column, String, Boolean, Integer, Text, DateTime, JSON, Index,
    ForeignKey, CheckConstraint, UniqueConstraint, Uuid
)
from sqlalchemy.dialects.postgresql import JSONB
import uuid

from leadflow.database import Base
from leadflow.clock import utcnow

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


LEAD_STATUSES = (
    "new", "contacted", "scheduled", "rescheduled", "canceled", "no_show", "completed"
)
MEETING_STATUSES = ("scheduled", "canceled", "no_show", "rescheduled", "completed")
JOB_STATUSES = ("pending", "processing", "completed", "failed", "skipped")
AGENT_ROLES = ("agent", "admin")


def _in_clause(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


# ============================================================================
# AGENTS
# ============================================================================

class Agent(Base):
    """Sales agent that leads can be assigned to."""
    __tablename__ = "agents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="agent")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(_in_clause("role", AGENT_ROLES), name="chk_agent_role"),
    )

    def __repr__(self):
        return f"<Agent(id={self.id}, email='{self.email}', role='{self.role}')>"


# ============================================================================
# LEADS
# ============================================================================

class Lead(Base):
    """Prospective customer ingested from an external source."""
    __tablename__ = "leads"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Identity
    source = Column(String(50), nullable=False, default="manual")
    external_id = Column(String(255))  # CRM contact id, leadgen id, invitee uri
    email = Column(String(255), nullable=False, index=True)

    # Contact fields
    first_name = Column(String(255))
    last_name = Column(String(255))
    full_name = Column(String(255))
    phone = Column(String(50))
    company = Column(String(255))
    job_title = Column(String(255))
    website = Column(String(500))
    city = Column(String(100))
    state = Column(String(100))
    country = Column(String(100))
    zip = Column(String(20))

    # CRM-ish attributes
    lead_source = Column(String(255))
    lifecycle_stage = Column(String(100))
    sms_opt_in = Column(Boolean, default=True, nullable=False)

    status = Column(String(50), nullable=False, default="new")
    assigned_agent_id = Column(Uuid, ForeignKey("agents.id", ondelete="SET NULL"))

    # Unmapped source fields and the untouched payload
    custom_fields = Column(JSONType, default=dict)
    raw_data = Column(JSONType, default=dict)

    # Set once the initial workflow batch exists
    workflow_initialized_at = Column(DateTime)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    last_source_sync_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_lead_source_external_id"),
        CheckConstraint(_in_clause("status", LEAD_STATUSES), name="chk_lead_status"),
    )

    def __repr__(self):
        return f"<Lead(id={self.id}, source='{self.source}', status='{self.status}')>"


# ============================================================================
# MEETINGS
# ============================================================================

class Meeting(Base):
    """Booked meeting; external_event_id makes webhook replays idempotent."""
    __tablename__ = "meetings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    external_event_id = Column(String(500), nullable=False, unique=True)
    name = Column(String(255))
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime)
    timezone = Column(String(64), default="UTC")
    status = Column(String(50), nullable=False, default="scheduled")
    location = Column(Text)
    cancellation_reason = Column(Text)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(_in_clause("status", MEETING_STATUSES), name="chk_meeting_status"),
    )

    def __repr__(self):
        return f"<Meeting(id={self.id}, lead_id={self.lead_id}, status='{self.status}')>"


# ============================================================================
# WORKFLOW AUTOMATION
# ============================================================================

class WorkflowJob(Base):
    """One scheduled, retryable follow-up action for a lead."""
    __tablename__ = "workflow_automation"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    workflow_type = Column(String(50), nullable=False)
    step = Column(String(100), nullable=False)
    scheduled_at = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    error_message = Column(Text)
    # "metadata" is reserved on declarative classes
    job_metadata = Column("metadata", JSONType, default=dict)
    executed_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_workflow_automation_due", "status", "scheduled_at"),
        CheckConstraint(_in_clause("status", JOB_STATUSES), name="chk_workflow_job_status"),
    )

    def __repr__(self):
        return (
            f"<WorkflowJob(id={self.id}, step='{self.step}', "
            f"status='{self.status}', retry_count={self.retry_count})>"
        )


class LeadProcessingLog(Base):
    """Audit trail of workflow events per lead."""
    __tablename__ = "lead_processing_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    event_data = Column(JSONType, default=dict)
    success = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


# ============================================================================
# SYNC CHECKPOINTS
# ============================================================================

class SyncStatus(Base):
    """Single row per external source holding the polling checkpoint."""
    __tablename__ = "sync_status"

    sync_key = Column(String(100), primary_key=True)
    last_sync_time = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
