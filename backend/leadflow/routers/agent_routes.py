"""
Agent Routes - agent roster and lead assignment.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import List
from uuid import UUID
import logging

from leadflow.dependencies import get_agent_store, get_lead_store
from leadflow.exceptions import DuplicateAgentError
from leadflow.schemas.agent import (
    AgentCreate,
    AgentResponse,
    LeadAssignmentRequest,
    LeadAssignmentResponse,
)
from leadflow.stores import AgentStore, LeadStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/agents", tags=["Agents"])


async def _require_agent(agent_id: UUID, agents: AgentStore):
    agent = await agents.get(agent_id)
    if not agent:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found")
    return agent


@router.get("", response_model=List[AgentResponse])
async def list_agents(
    include_inactive: bool = Query(False),
    agents: AgentStore = Depends(get_agent_store)
):
    return await agents.list_agents(include_inactive=include_inactive)


@router.post("", response_model=AgentResponse, status_code=status.HTTP_201_CREATED)
async def create_agent(agent_data: AgentCreate, agents: AgentStore = Depends(get_agent_store)):
    try:
        agent = await agents.create_agent(agent_data.email, agent_data.full_name, agent_data.role.value)
    except DuplicateAgentError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    logger.info(f"✅ Agent {agent.id} created with role {agent.role}")
    return agent


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(agent_id: UUID, agents: AgentStore = Depends(get_agent_store)):
    return await _require_agent(agent_id, agents)


@router.delete("/{agent_id}")
async def delete_agent(agent_id: UUID, agents: AgentStore = Depends(get_agent_store)):
    """Delete an agent; its leads become unassigned."""
    if not await agents.delete_agent(agent_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found")
    return {"success": True, "agent_id": agent_id}


@router.post("/{agent_id}/leads", response_model=LeadAssignmentResponse)
async def assign_leads(
    agent_id: UUID,
    request: LeadAssignmentRequest,
    agents: AgentStore = Depends(get_agent_store),
    leads: LeadStore = Depends(get_lead_store)
):
    agent = await _require_agent(agent_id, agents)
    if not agent.is_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Agent is inactive")

    updated = await leads.assign_agent(request.lead_ids, agent_id)
    if updated == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No matching leads")

    logger.info(f"Assigned {updated}/{len(request.lead_ids)} leads to agent {agent_id}")
    return LeadAssignmentResponse(success=True, agent_id=agent_id, updated=updated)


@router.post("/unassign", response_model=LeadAssignmentResponse)
async def unassign_leads(request: LeadAssignmentRequest, leads: LeadStore = Depends(get_lead_store)):
    updated = await leads.assign_agent(request.lead_ids, None)
    logger.info(f"Unassigned {updated} leads")
    return LeadAssignmentResponse(success=True, updated=updated)
