"""
Classification cache and the shared upstream request budget.

Both are process-wide: one instance of each is built by the service
container and shared by every job. Neither holds a suspension point
between reading and writing its state.
"""
from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# ─── Constants ───────────────────────────────────────────────────────────────
CACHE_TTL_SECONDS: float     = 24 * 60 * 60   # 24 h
CACHE_MAX_ENTRIES: int       = 1000
CACHE_EVICT_FRACTION: float  = 0.2            # drop oldest 20 % in one pass
WINDOW_SECONDS: float        = 60.0
DEFAULT_REQUESTS_PER_WINDOW: int = 5


def fingerprint(text: Any) -> Optional[str]:
    """Digest of case-folded, trimmed text. None for empty or non-text input."""
    if not isinstance(text, str):
        return None
    normalized = text.lower().strip()
    if not normalized:
        return None
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    category: str
    confidence: Optional[float]
    stored_at: float


class ClassificationCache:
    """Content-addressed cache of successful AI classifications."""

    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        max_entries: int = CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Optional[str]) -> Optional[CacheEntry]:
        if not key:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.ttl_seconds:
            return None
        return entry

    def put(self, key: Optional[str], category: str, confidence: Optional[float] = None) -> None:
        if not key:
            return
        self._entries[key] = CacheEntry(category, confidence, self._clock())
        if len(self._entries) > self.max_entries:
            self._evict_oldest()

    def _evict_oldest(self) -> None:
        count = max(1, int(self.max_entries * CACHE_EVICT_FRACTION))
        oldest = sorted(self._entries.items(), key=lambda item: item[1].stored_at)[:count]
        for key, _ in oldest:
            del self._entries[key]
        logger.debug(f"Cache evicted {len(oldest)} oldest entries")

    def clear(self) -> None:
        self._entries.clear()
        logger.info("Classification cache cleared")

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_size": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
        }


class RequestBudget:
    """
    Sliding per-minute request budget for the upstream classifier.

    ``try_consume()`` only answers whether a request may be made; the
    caller calls ``consume()`` once it actually issues the request.
    The window resets lazily on the next check.
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_REQUESTS_PER_WINDOW,
        window_seconds: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._count = 0
        self._reset_at = clock() + window_seconds

    def _roll_window(self) -> None:
        now = self._clock()
        if now >= self._reset_at:
            self._count = 0
            self._reset_at = now + self.window_seconds

    def try_consume(self) -> bool:
        self._roll_window()
        return self._count < self.max_requests

    def consume(self) -> None:
        self._roll_window()
        self._count += 1

    def exhaust(self) -> None:
        """Mark the window spent after the upstream reported a quota error."""
        self._count = self.max_requests
        self._reset_at = self._clock() + self.window_seconds

    @property
    def remaining(self) -> int:
        self._roll_window()
        return max(0, self.max_requests - self._count)

    def seconds_until_reset(self) -> float:
        return max(0.0, self._reset_at - self._clock())
