"""
Per-client HTTP throttling for the API surface.

Counters live in Redis when it answers a ping at import time, otherwise
in process memory. The upstream classifier has its own request window
(RequestBudget); the limits here only guard our own endpoints.
"""
import logging

import redis
from slowapi import Limiter
from slowapi.util import get_remote_address
from agentdesk.core.config import settings

logger = logging.getLogger(__name__)

MEMORY_STORAGE = "memory://"

def _resolve_storage_uri() -> str:
    # Tests always count in memory so limits reset between apps
    if not settings.REDIS_URL or settings.ENVIRONMENT == "test":
        return MEMORY_STORAGE
    try:
        redis.from_url(settings.REDIS_URL, socket_connect_timeout=1).ping()
    except Exception as e:
        logger.warning(f"Limiter storage: Redis unreachable ({e}), counting in memory")
        return MEMORY_STORAGE
    logger.info(f"Limiter storage: Redis at {settings.REDIS_URL}")
    return settings.REDIS_URL

limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=_resolve_storage_uri(),
)

# Route limits
UPLOAD_LIMIT = "10/minute"       # admin CSV uploads
PROGRESS_LIMIT = "120/minute"    # pollers hit this every second or two
CATEGORIZE_LIMIT = "30/minute"   # each call may reach the upstream model
ADMIN_LIMIT = "10/minute"

if not settings.RATE_LIMIT_ENABLED:
    logger.warning("HTTP rate limiting is disabled")
