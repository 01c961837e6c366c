from fastapi import APIRouter

from agentdesk.api.routes import agents, categorization, progress, tasks, upload

router = APIRouter()

router.include_router(upload.router)
router.include_router(progress.router)
router.include_router(categorization.router)
router.include_router(agents.router)
router.include_router(tasks.router)
