"""
Single-item task-note classifier.

Consults the cache, the shared request budget and the model manager,
then asks the upstream for one label with retry and backoff. Every
outcome except a rate-limit signal ends in a CategoryResult; the
rate-limit signal is raised so batch callers can stop early.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from .cache import ClassificationCache, RequestBudget, fingerprint
from .errors import ClassifierRateLimitError, ClassificationError, ModelNotFoundError
from .health import ClassifierHealth
from .labels import CategoryResult, CategorySource, ai_result, default_result, normalize_label
from .model_manager import ModelManager
from .prompts import build_single_prompt
from .upstream import TextGenerator, classify_upstream_error

logger = logging.getLogger(__name__)

# ─── Constants ───────────────────────────────────────────────────────────────
SINGLE_TIMEOUT_SECONDS: float = 5.0
MAX_RETRIES: int              = 2       # additional attempts after the first
RETRY_BASE_DELAY_SEC: float   = 1.0
RETRY_MAX_DELAY_SEC: float    = 3.0


class TaskClassifier:
    def __init__(
        self,
        generator: TextGenerator,
        cache: ClassificationCache,
        budget: RequestBudget,
        models: ModelManager,
        health: ClassifierHealth,
        enabled: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        timeout: float = SINGLE_TIMEOUT_SECONDS,
        max_retries: int = MAX_RETRIES,
    ):
        self._generator = generator
        self._cache = cache
        self._budget = budget
        self._models = models
        self._health = health
        self.enabled = enabled
        self._sleep = sleep
        self.timeout = timeout
        self.max_retries = max_retries

    async def classify(self, text: Any, count_request: bool = True) -> CategoryResult:
        """
        Classify one note.

        ``count_request=False`` is for callers that already counted the
        note in the health totals, such as the batch fallback.

        Returns:
            CategoryResult with source ``ai`` (fresh or cached) or ``default``.

        Raises:
            ClassifierRateLimitError: the upstream signalled a rate limit.
        """
        if count_request:
            self._health.record_request()

        if not isinstance(text, str) or not text.strip():
            return default_result()

        note = text.strip()
        key = fingerprint(note)
        cached = self._cache.get(key)
        if cached is not None:
            self._health.record_cache_hit()
            logger.debug("Cache hit for task notes")
            return CategoryResult(cached.category, CategorySource.AI, cached.confidence)

        if not self.enabled:
            logger.debug("AI categorization disabled, using default category")
            return default_result()

        if not self._budget.try_consume():
            self._health.record_failure(streak=False)
            logger.warning("Rate limit exceeded, using default category")
            return default_result()

        model = await self._models.get_working_model()
        if not model:
            self._health.record_failure()
            logger.warning("No working model available, using default category")
            return default_result()

        try:
            category = await self._call_with_retry(note, model)
        except ClassifierRateLimitError:
            self._health.record_failure()
            raise
        except Exception as e:
            self._health.record_failure()
            logger.error(f"Error categorizing task: {e}")
            if self._health.needs_rediscovery:
                self._health.is_healthy = False
                self._models.invalidate()
                await self._models.discover(force_refresh=True)
            return default_result()

        self._cache.put(key, category, None)
        self._health.record_success()
        logger.debug(f"Categorized as {category} (model: {model})")
        return ai_result(category)

    async def _call_with_retry(self, note: str, model: str) -> str:
        prompt = build_single_prompt(note)
        last_error: ClassificationError | None = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0 and not self._budget.try_consume():
                logger.warning("Request budget spent before retry — giving up on this note.")
                break

            self._budget.consume()
            try:
                reply = await self._generator.generate(model, prompt, timeout=self.timeout)
                return normalize_label(reply)
            except Exception as e:
                error = classify_upstream_error(e)
                if isinstance(error, ClassifierRateLimitError):
                    if error is e:
                        raise
                    raise error from e
                last_error = error

            if attempt >= self.max_retries:
                break

            if isinstance(last_error, ModelNotFoundError):
                logger.warning(f"Model {model} no longer available, re-discovering...")
                self._models.invalidate()
                replacement = await self._models.discover(force_refresh=True)
                if not replacement:
                    logger.warning("No replacement model found, giving up on this note.")
                    break
                model = replacement
                continue

            delay = min(RETRY_BASE_DELAY_SEC * (2 ** attempt), RETRY_MAX_DELAY_SEC)
            logger.warning(
                "Transient error on attempt %d (%s) — retrying in %.1f s.",
                attempt + 1, type(last_error).__name__, delay,
            )
            await self._sleep(delay)

        raise last_error or ClassificationError("Unexpected state in retry loop.")
