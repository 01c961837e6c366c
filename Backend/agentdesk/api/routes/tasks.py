"""
Task Routes — listing and status changes.
"""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from typing import Optional
import logging

from agentdesk.core.security import CurrentUser, get_current_user
from agentdesk.db.repository import TASK_STATUSES, task_to_dict
from agentdesk.services.container import ServiceContainer, get_services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/tasks")

class StatusUpdate(BaseModel):
    status: str

async def _own_agent_id(user: CurrentUser, services: ServiceContainer) -> int:
    agent = await run_in_threadpool(services.repository.get_agent_by_email, user.email)
    if agent is None:
        raise HTTPException(status_code=403, detail="No agent profile for this account")
    return agent.id

@router.get("")
async def list_tasks(
    agent_id: Optional[int] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """Agents only ever see their own tasks; admins may filter by agent."""
    if not user.is_admin:
        agent_id = await _own_agent_id(user, services)

    tasks = await run_in_threadpool(
        services.repository.list_tasks,
        agent_id, status, category, max(1, min(limit, 500)), max(0, offset),
    )
    return {"tasks": [task_to_dict(t) for t in tasks], "count": len(tasks)}

@router.patch("/{task_id}/status")
async def update_task_status(
    task_id: int,
    payload: StatusUpdate,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    if payload.status not in TASK_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid status. Must be one of: {', '.join(TASK_STATUSES)}",
        )

    task = await run_in_threadpool(services.repository.get_task, task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    if not user.is_admin and task.agent_id != await _own_agent_id(user, services):
        raise HTTPException(status_code=403, detail="Not your task")

    updated = await run_in_threadpool(services.repository.update_task_status, task_id, payload.status)
    return {"task": task_to_dict(updated)}
