"""
Categorization Routes — vocabulary, health, statistics and re-labelling.
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field
from typing import List, Optional
import logging

from agentdesk.core.limiter import limiter, CATEGORIZE_LIMIT, ADMIN_LIMIT
from agentdesk.core.security import CurrentUser, get_current_user, require_admin
from agentdesk.db.repository import task_to_dict
from agentdesk.services.classification import (
    CATEGORIES,
    CategorySource,
    ClassifierRateLimitError,
    is_valid_category,
)
from agentdesk.services.classification.labels import default_result
from agentdesk.services.container import ServiceContainer, get_services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/categorization")

MAX_BULK_TASKS = 100

class CategorizeTaskRequest(BaseModel):
    category: Optional[str] = None  # manual label; omit to ask the classifier

class BulkCategorizeRequest(BaseModel):
    task_ids: List[int] = Field(..., min_length=1, max_length=MAX_BULK_TASKS)
    category: Optional[str] = None

def _check_category(category: str) -> None:
    if not is_valid_category(category):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid category. Must be one of: {', '.join(CATEGORIES)}",
        )

@router.get("/categories")
async def list_categories(user: CurrentUser = Depends(get_current_user)):
    return {"categories": list(CATEGORIES)}

@router.get("/health")
async def categorization_health(
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    snapshot = services.health.snapshot(services.models.working_model)
    return {
        "status": "healthy" if snapshot["is_healthy"] else "degraded",
        "ai_enabled": services.ai_enabled,
        "stats": snapshot,
        "cache": services.cache.stats(),
        "rate_limit": {
            "remaining": services.budget.remaining,
            "reset_in_seconds": round(services.budget.seconds_until_reset(), 1),
        },
        "active_jobs": len(services.progress.active_jobs()),
    }

@router.post("/rediscover")
@limiter.limit(ADMIN_LIMIT)
async def rediscover_model(
    request: Request,
    user: CurrentUser = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    logger.info(f"Model rediscovery requested by {user.email}")
    services.models.invalidate()
    model = await services.models.discover(force_refresh=True)
    return {
        "working_model": model,
        "message": f"Using model {model}" if model else "No working model found",
    }

@router.get("/stats")
async def category_statistics(
    agent_id: Optional[int] = None,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    stats = await run_in_threadpool(services.repository.category_stats, agent_id)
    return {"stats": stats, "total": sum(s["count"] for s in stats)}

@router.post("/task/{task_id}")
@limiter.limit(CATEGORIZE_LIMIT)
async def categorize_task(
    request: Request,
    task_id: int,
    payload: Optional[CategorizeTaskRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """
    Label one task: manually when a category is given, otherwise by the
    classifier. Classifier trouble falls back to General.
    """
    task = await run_in_threadpool(services.repository.get_task, task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")

    manual = payload.category if payload else None
    if manual is not None:
        _check_category(manual)
        category, source, confidence = manual, CategorySource.MANUAL.value, None
    else:
        try:
            result = await services.classifier.classify(task.notes)
        except ClassifierRateLimitError:
            logger.warning(f"Rate limit hit categorizing task {task_id}, using default")
            result = default_result()
        category, source, confidence = result.category, result.source.value, result.confidence

    updated = await run_in_threadpool(
        services.repository.set_task_category, task_id, category, source, confidence
    )
    return {"task": task_to_dict(updated)}

@router.post("/bulk")
@limiter.limit(ADMIN_LIMIT)
async def bulk_categorize(
    request: Request,
    payload: BulkCategorizeRequest,
    user: CurrentUser = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    if payload.category is not None:
        _check_category(payload.category)
        updated = await run_in_threadpool(
            services.repository.set_category_for_tasks, payload.task_ids, payload.category
        )
        return {"updated": updated, "category": payload.category}

    tasks = await run_in_threadpool(services.repository.get_tasks, payload.task_ids)
    if not tasks:
        raise HTTPException(status_code=404, detail="No matching tasks found")

    outcome = await services.batch_classifier.classify_tasks_batch([t.notes for t in tasks])
    updates = [
        (task.id, result.category, result.source.value, result.confidence)
        for task, result in zip(tasks, outcome.results)
    ]
    updated = await run_in_threadpool(services.repository.apply_categories, updates)
    return {
        "updated": updated,
        "ai_categorized": outcome.ai_count,
        "defaulted": outcome.default_count,
        "rate_limit_hit": outcome.rate_limit_hit,
    }

@router.delete("/cache")
async def clear_cache(
    user: CurrentUser = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    cleared = len(services.cache)
    services.cache.clear()
    logger.info(f"Classification cache cleared by {user.email} ({cleared} entries)")
    return {"message": "Cache cleared", "cleared": cleared}
