# backend/leadflow/schemas/agent.py
"""
Pydantic schemas for agents and lead assignment.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional
from datetime import datetime
from uuid import UUID
from enum import Enum

from leadflow.services.lead_normalizer import EMAIL_PATTERN


class AgentRole(str, Enum):
    AGENT = "agent"
    ADMIN = "admin"


class AgentCreate(BaseModel):
    email: str = Field(..., max_length=255)
    full_name: str = Field(..., min_length=1, max_length=255)
    role: AgentRole = AgentRole.AGENT

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email format")
        return v


class AgentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    full_name: str
    role: str
    is_active: bool
    created_at: datetime


class LeadAssignmentRequest(BaseModel):
    lead_ids: List[UUID] = Field(..., min_length=1)


class LeadAssignmentResponse(BaseModel):
    success: bool
    agent_id: Optional[UUID] = None
    updated: int
