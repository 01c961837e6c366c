"""
Agent Routes — the roster uploads are distributed over.
"""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from typing import Optional
import logging

from agentdesk.core.security import CurrentUser, require_admin
from agentdesk.db.repository import agent_to_dict
from agentdesk.services.container import ServiceContainer, get_services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/agents")

class AgentCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    mobile: str = Field(..., min_length=1)
    status: Optional[str] = None

@router.get("")
async def list_agents(
    user: CurrentUser = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    agents = await run_in_threadpool(services.repository.list_agents)
    return {"agents": [agent_to_dict(a) for a in agents]}

@router.post("", status_code=201)
async def create_agent(
    payload: AgentCreate,
    user: CurrentUser = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    try:
        agent = await run_in_threadpool(
            services.repository.create_agent,
            payload.name.strip(), payload.email, payload.mobile.strip(), payload.status,
        )
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Agent with this email already exists")
    logger.info(f"Agent {agent.email} created by {user.email}")
    return {"agent": agent_to_dict(agent)}
