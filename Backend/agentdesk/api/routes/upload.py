"""
Upload Routes — CSV intake and upload history.
"""
from fastapi import APIRouter, UploadFile, File, HTTPException, BackgroundTasks, Request, Depends
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from typing import Any, Dict, List
import logging
import os
import re

from agentdesk.core.limiter import limiter, UPLOAD_LIMIT
from agentdesk.core.file_validation import validate_csv_upload
from agentdesk.core.security import CurrentUser, require_admin
from agentdesk.db.repository import upload_to_dict
from agentdesk.services.cleanup import cleanup_old_files
from agentdesk.services.container import ServiceContainer, get_services
from agentdesk.services.ingestion import IngestionRequest, estimate_task_count

logger = logging.getLogger(__name__)
router = APIRouter()

CHUNK_SIZE = 64 * 1024  # 64KB chunks

class UploadResponse(BaseModel):
    job_id: str
    message: str

def _safe_filename(filename: str) -> str:
    base_name = os.path.basename(filename)
    return re.sub(r'[^a-zA-Z0-9_.-]', '_', base_name) or "unnamed_file.csv"

@router.post("/upload", response_model=UploadResponse)
@limiter.limit(UPLOAD_LIMIT)
async def upload_file(
    request: Request,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    user: CurrentUser = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    """
    Accepts a contact CSV and starts ingestion in the background.
    Returns the job id immediately; progress is polled separately.
    """
    try:
        await validate_csv_upload(file)

        # Enforce file size limit by streaming in chunks
        max_bytes = services.config.MAX_UPLOAD_SIZE_MB * 1024 * 1024
        size = 0
        while True:
            chunk = await file.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > max_bytes:
                raise HTTPException(413, f"File too large. Max size: {services.config.MAX_UPLOAD_SIZE_MB}MB")
        await file.seek(0)  # Reset for downstream read

        safe_filename = _safe_filename(file.filename)
        file_ref = await run_in_threadpool(services.storage.save_upload, file.file, safe_filename)

        job_id = services.progress.create_job(estimated_total=estimate_task_count(size))
        services.launch_ingestion(IngestionRequest(
            job_id=job_id,
            file_ref=file_ref,
            filename=safe_filename,
            file_size=size,
            uploaded_by=user.email,
            mime_type=file.content_type,
        ))
        logger.info(f"Upload {safe_filename} ({size} bytes) by {user.email} → job {job_id}")

        # Lazy cleanup of orphaned uploads, at most once per hour
        if services.cleanup.due():
            background_tasks.add_task(cleanup_old_files, services.config.UPLOAD_DIR)

        return UploadResponse(
            job_id=job_id,
            message="File uploaded. Processing started."
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Upload failed: {str(e)}", exc_info=True)
        detail = "Upload failed" if services.config.is_production else str(e)
        raise HTTPException(status_code=500, detail=detail)

@router.get("/uploads")
async def list_uploads(
    limit: int = 50,
    user: CurrentUser = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, List[Dict[str, Any]]]:
    uploads = await run_in_threadpool(services.repository.list_uploads, None, max(1, min(limit, 200)))
    return {"uploads": [upload_to_dict(u) for u in uploads]}
