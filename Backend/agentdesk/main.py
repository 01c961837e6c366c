import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from agentdesk.api import endpoints
from agentdesk.core.config import settings
from agentdesk.core.limiter import limiter
from agentdesk.db.base import init_db
from agentdesk.services.container import ServiceContainer

logger = logging.getLogger(__name__)

def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO if settings.is_production else logging.DEBUG,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # SDK request logs drown out the pipeline at DEBUG
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is None:
            configure_logging()
            try:
                init_db()
            except Exception as e:
                logger.error(f"DATABASE INIT FAILED: {e}")
            app.state.services = ServiceContainer(settings)
        else:
            app.state.services = services
        await app.state.services.startup()
        yield
        await app.state.services.shutdown()

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

    # Rate Limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    if settings.is_production and any("localhost" in o for o in cors_origins):
        logger.warning(
            "⚠ CORS allows localhost origins in production. "
            "Set CORS_ORIGINS env var to restrict origins."
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(endpoints.router, prefix="/api", tags=["api"])

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "project": settings.PROJECT_NAME}

    return app

app = create_app()
