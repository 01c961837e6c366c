"""
Progress Routes — Upload job polling and WebSocket updates.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect
import logging
import asyncio

from agentdesk.core.limiter import limiter, PROGRESS_LIMIT
from agentdesk.core.security import CurrentUser, get_current_user
from agentdesk.services.container import ServiceContainer, get_services

logger = logging.getLogger(__name__)
router = APIRouter()

PUSH_INTERVAL_SECONDS = 1.0

NOT_FOUND_DETAIL = {"message": "Job not found or expired", "status": "not_found"}

@router.get("/upload/progress/{job_id}")
@limiter.limit(PROGRESS_LIMIT)
async def get_upload_progress(
    request: Request,
    job_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """
    Current state of an upload job. Terminal jobs stay visible for a
    short grace period, after which this returns 404.
    """
    job = services.progress.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
    return job.to_dict()


@router.websocket("/ws/upload/progress/{job_id}")
async def websocket_progress(websocket: WebSocket, job_id: str):
    """
    Pushes the job record every second until it is terminal or gone.
    """
    services: ServiceContainer = websocket.app.state.services
    await websocket.accept()
    logger.info(f"WebSocket connected for job {job_id}")

    try:
        while True:
            job = services.progress.get(job_id)
            if not job:
                await websocket.send_json(NOT_FOUND_DETAIL)
                break

            await websocket.send_json(job.to_dict())
            if job.status.is_terminal:
                break

            await asyncio.sleep(PUSH_INTERVAL_SECONDS)

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for job {job_id}")
        return

    await websocket.close()
