"""
Model availability manager.

Finds an upstream model identifier that currently answers, keeps it
for a revalidation interval, and rediscovers on demand (unrecognized
model, failure streak, admin request). Discovery shares the request
budget with classification, so probes are spaced out and a quota
signal stops the pass immediately.
"""
from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence

from .cache import RequestBudget
from .errors import ClassifierRateLimitError
from .health import ClassifierHealth
from .prompts import build_probe_prompt
from .upstream import TextGenerator, classify_upstream_error

logger = logging.getLogger(__name__)

# ─── Constants ───────────────────────────────────────────────────────────────
REVALIDATE_INTERVAL_SECONDS: float = 5 * 60.0
MAX_DISCOVERY_ATTEMPTS: int        = 3       # unforced passes without success
PROBE_TIMEOUT_SECONDS: float       = 3.0
PROBE_SPACING_SECONDS: float       = 13.0    # keeps probes under 5 requests/minute

Sleep = Callable[[float], Awaitable[None]]


class ModelState(str, Enum):
    UNKNOWN = "unknown"
    PROBING = "probing"
    KNOWN_GOOD = "known-good"
    KNOWN_BAD = "known-bad"


class ModelManager:
    def __init__(
        self,
        generator: TextGenerator,
        budget: RequestBudget,
        health: ClassifierHealth,
        candidates: Sequence[str],
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        revalidate_interval: float = REVALIDATE_INTERVAL_SECONDS,
        max_discovery_attempts: int = MAX_DISCOVERY_ATTEMPTS,
        probe_timeout: float = PROBE_TIMEOUT_SECONDS,
        probe_spacing: float = PROBE_SPACING_SECONDS,
    ):
        self._generator = generator
        self._budget = budget
        self._health = health
        self.candidates = list(candidates)
        self._clock = clock
        self._sleep = sleep
        self.revalidate_interval = revalidate_interval
        self.max_discovery_attempts = max_discovery_attempts
        self.probe_timeout = probe_timeout
        self.probe_spacing = probe_spacing

        self.working_model: Optional[str] = None
        self.state = ModelState.UNKNOWN
        self.discovery_attempts = 0
        self.last_discovery_at: Optional[float] = None
        self._lock = asyncio.Lock()

    async def get_working_model(self) -> Optional[str]:
        if self.working_model:
            return self.working_model
        return await self.discover(force_refresh=False)

    def invalidate(self) -> None:
        if self.working_model:
            logger.warning(f"Model {self.working_model} invalidated")
        self.working_model = None
        self.state = ModelState.UNKNOWN

    def _is_fresh(self) -> bool:
        return (
            self.working_model is not None
            and self.last_discovery_at is not None
            and self._clock() - self.last_discovery_at < self.revalidate_interval
        )

    async def discover(self, force_refresh: bool = False) -> Optional[str]:
        if not force_refresh and self._is_fresh():
            return self.working_model

        if self._lock.locked():
            # Another job is already probing; reuse whatever it finds
            async with self._lock:
                return self.working_model

        async with self._lock:
            return await self._discover(force_refresh)

    async def _discover(self, force_refresh: bool) -> Optional[str]:
        if not force_refresh and self.discovery_attempts >= self.max_discovery_attempts:
            logger.warning(
                f"Model discovery attempts exceeded, using cached model: {self.working_model or 'none'}"
            )
            return self.working_model

        if not force_refresh and not self._budget.try_consume():
            logger.warning(
                f"Rate limit active, skipping model discovery. Using cached model: {self.working_model or 'none'}"
            )
            return self.working_model

        logger.info("Starting model discovery...")
        self.state = ModelState.PROBING
        self.discovery_attempts += 1
        self.last_discovery_at = self._clock()
        prompt = build_probe_prompt()

        for position, candidate in enumerate(self.candidates):
            if not self._budget.try_consume():
                logger.warning(
                    f"Rate limit reached during discovery at model {position + 1}/{len(self.candidates)}. Stopping."
                )
                self.state = ModelState.KNOWN_GOOD if self.working_model else ModelState.UNKNOWN
                return self.working_model

            self._budget.consume()
            try:
                await self._generator.generate(candidate, prompt, timeout=self.probe_timeout)
            except Exception as e:
                error = classify_upstream_error(e)
                if isinstance(error, ClassifierRateLimitError):
                    # Not the candidate's fault; leave it eligible for the next pass
                    logger.warning(f"Rate limit hit while probing {candidate}. Stopping discovery.")
                    self._budget.exhaust()
                    self.state = ModelState.KNOWN_GOOD if self.working_model else ModelState.UNKNOWN
                    return self.working_model
                logger.debug(f"Model {candidate} probe failed: {str(error)[:100]}")
            else:
                self.working_model = candidate
                self.state = ModelState.KNOWN_GOOD
                self.discovery_attempts = 0
                self.last_discovery_at = self._clock()
                self._health.is_healthy = True
                self._health.consecutive_failures = 0
                logger.info(f"✓ Discovered working model: {candidate}")
                return candidate

            if position < len(self.candidates) - 1:
                await self._sleep(self.probe_spacing)

        logger.error(f"✗ No working model found after testing {len(self.candidates)} models")
        self.working_model = None
        self.state = ModelState.KNOWN_BAD
        self._health.is_healthy = False
        self._health.consecutive_failures += 1
        return None
