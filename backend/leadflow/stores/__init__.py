"""
Persistence layer: abstract stores and their SQLAlchemy implementations.
"""
from .base import (
    AgentStore,
    LeadStore,
    WorkflowStore,
    MeetingStore,
    SyncCheckpointStore,
    UpsertResult,
)
from .sql import (
    SqlAgentStore,
    SqlLeadStore,
    SqlWorkflowStore,
    SqlMeetingStore,
    SqlSyncCheckpointStore,
)

__all__ = [
    "AgentStore",
    "LeadStore",
    "WorkflowStore",
    "MeetingStore",
    "SyncCheckpointStore",
    "UpsertResult",
    "SqlLeadStore",
    "SqlWorkflowStore",
    "SqlMeetingStore",
    "SqlSyncCheckpointStore",
    "SqlAgentStore",
]
