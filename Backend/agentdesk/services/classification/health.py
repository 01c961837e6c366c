from __future__ import annotations

import time
from typing import Any, Callable, Optional

# Consecutive failures that force model rediscovery
UNHEALTHY_STREAK: int = 5


class ClassifierHealth:
    """Track classification outcomes for the health endpoint."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.cache_hits = 0
        self.last_success_time: Optional[float] = None
        self.last_failure_time: Optional[float] = None
        self.consecutive_failures = 0
        self.is_healthy = True

    def record_request(self, count: int = 1) -> None:
        self.total_requests += count

    def record_cache_hit(self, count: int = 1) -> None:
        self.cache_hits += count

    def record_success(self, count: int = 1) -> None:
        self.successful_requests += count
        self.last_success_time = self._clock()
        self.consecutive_failures = 0
        self.is_healthy = True

    def record_failure(self, streak: bool = True) -> None:
        self.failed_requests += 1
        self.last_failure_time = self._clock()
        if streak:
            self.consecutive_failures += 1

    @property
    def needs_rediscovery(self) -> bool:
        return self.consecutive_failures >= UNHEALTHY_STREAK

    def snapshot(self, working_model: Optional[str]) -> dict[str, Any]:
        total = self.total_requests
        return {
            "total_requests": total,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "cache_hits": self.cache_hits,
            "last_success_time": self.last_success_time,
            "last_failure_time": self.last_failure_time,
            "consecutive_failures": self.consecutive_failures,
            "is_healthy": self.is_healthy,
            "success_rate": round(self.successful_requests / total * 100, 2) if total else 0.0,
            "cache_hit_rate": round(self.cache_hits / total * 100, 2) if total else 0.0,
            "working_model": working_model or "none",
        }
