"""
Progress tracking for upload jobs.

Process-wide, in-memory job state polled by clients. Each job has a
single writer (its ingestion task) and many readers (poll requests).
Terminal jobs are kept for a short grace window so a final poll can
observe them; abandoned jobs are dropped by a periodic sweep.
"""
import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# ─── Constants ───────────────────────────────────────────────────────────────
COMPLETED_GRACE_SECONDS: float = 60.0        # final poll window after success
FAILED_GRACE_SECONDS: float    = 5 * 60.0    # failures stay visible longer
STALE_TTL_SECONDS: float       = 10 * 60.0   # untouched non-terminal jobs are abandoned
SWEEP_INTERVAL_SECONDS: float  = 5 * 60.0


class JobStatus(str, Enum):
    INITIALIZING = "initializing"
    PARSING = "parsing"
    CATEGORIZING = "categorizing"
    SAVING = "saving"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# categorizing/saving jobs are only removed after reaching a terminal state
_SWEEP_EXEMPT = {JobStatus.CATEGORIZING, JobStatus.SAVING}


@dataclass
class JobProgress:
    job_id: str
    status: JobStatus = JobStatus.INITIALIZING
    current_step: str = "Initializing..."
    progress: int = 0
    total_tasks: int = 0
    processed_tasks: int = 0
    categorized_tasks: int = 0
    default_tasks: int = 0
    rate_limit_hit: bool = False
    error: Optional[str] = None
    upload_id: Optional[int] = None
    created_at: float = 0.0
    updated_at: float = 0.0
    expires_at: Optional[float] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data.pop("expires_at")
        return data


def generate_job_id() -> str:
    """Millisecond timestamp plus random bits, e.g. ``job_1718000000000_k3j9x2a1q``."""
    return f"job_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


class ProgressStore:
    """Keyed job progress records with grace-period expiry."""

    # Fields a caller may merge through update()/complete()
    _MUTABLE_FIELDS = {
        "status", "current_step", "progress", "total_tasks", "processed_tasks",
        "categorized_tasks", "default_tasks", "rate_limit_hit", "error", "upload_id",
    }

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._jobs: Dict[str, JobProgress] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._jobs)

    # ─── Lifecycle ───────────────────────────────────────────────────────

    def create_job(self, estimated_total: int = 0, job_id: Optional[str] = None) -> str:
        job_id = job_id or generate_job_id()
        while job_id in self._jobs:
            job_id = generate_job_id()
        now = self._clock()
        self._jobs[job_id] = JobProgress(
            job_id=job_id,
            total_tasks=max(0, int(estimated_total)),
            created_at=now,
            updated_at=now,
        )
        logger.info(f"Job {job_id} created (estimated {estimated_total} tasks)")
        return job_id

    def get(self, job_id: str) -> Optional[JobProgress]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if job.expires_at is not None and self._clock() >= job.expires_at:
            del self._jobs[job_id]
            return None
        return job

    def update(self, job_id: str, **fields: Any) -> Optional[JobProgress]:
        """
        Merge fields into a live job.

        ``progress`` never moves backwards and stays below 100 until the job
        completes. When ``processed_tasks`` is given without an explicit
        ``progress``, the percentage is derived from processed/total.
        Unknown or already-terminal jobs are left untouched.
        """
        job = self.get(job_id)
        if job is None:
            logger.warning(f"Progress update for unknown job {job_id} ignored")
            return None
        if job.status.is_terminal:
            logger.debug(f"Progress update for finished job {job_id} ignored")
            return None

        self._check_fields(fields)
        new_status = JobStatus(fields["status"]) if "status" in fields else None
        if new_status is not None and new_status.is_terminal:
            raise ValueError("Use complete() or fail() to finish a job")

        self._merge(job, fields)
        if new_status is not None:
            job.status = new_status

        if "progress" in fields and fields["progress"] is not None:
            candidate = int(fields["progress"])
        elif "processed_tasks" in fields and job.total_tasks > 0:
            candidate = round(job.processed_tasks / job.total_tasks * 100)
        else:
            candidate = job.progress
        job.progress = max(job.progress, min(99, candidate))
        job.updated_at = self._clock()
        return job

    def complete(self, job_id: str, **final_fields: Any) -> Optional[JobProgress]:
        job = self.get(job_id)
        if job is None or job.status.is_terminal:
            return None
        self._merge(job, final_fields)
        job.status = JobStatus.COMPLETED
        job.current_step = final_fields.get("current_step", "Completed")
        job.progress = 100
        job.updated_at = self._clock()
        job.expires_at = job.updated_at + COMPLETED_GRACE_SECONDS
        logger.info(f"Job {job_id} completed")
        return job

    def fail(self, job_id: str, error: Optional[str]) -> Optional[JobProgress]:
        job = self.get(job_id)
        if job is None or job.status.is_terminal:
            return None
        job.status = JobStatus.FAILED
        job.current_step = "Failed"
        job.error = error or "Unknown error"
        job.updated_at = self._clock()
        job.expires_at = job.updated_at + FAILED_GRACE_SECONDS
        logger.error(f"Job {job_id} failed: {job.error}")
        return job

    def _check_fields(self, fields: Dict[str, Any]) -> None:
        unknown = [key for key in fields if key not in self._MUTABLE_FIELDS]
        if unknown:
            raise KeyError(f"Unknown progress field '{unknown[0]}'")

    def _merge(self, job: JobProgress, fields: Dict[str, Any]) -> None:
        self._check_fields(fields)
        for key, value in fields.items():
            if key in ("status", "progress"):
                continue
            setattr(job, key, value)

    # ─── Housekeeping ────────────────────────────────────────────────────

    def sweep(self) -> int:
        """Drop expired terminal jobs and abandoned early-stage jobs."""
        now = self._clock()
        removed = 0
        for job_id, job in list(self._jobs.items()):
            expired = job.expires_at is not None and now >= job.expires_at
            abandoned = (
                not job.status.is_terminal
                and job.status not in _SWEEP_EXEMPT
                and now - job.updated_at > STALE_TTL_SECONDS
            )
            if expired or abandoned:
                del self._jobs[job_id]
                removed += 1
        if removed:
            logger.info(f"Cleaned up {removed} old progress entries")
        return removed

    def active_jobs(self) -> List[JobProgress]:
        return [
            job for job in self._jobs.values()
            if job.status in (JobStatus.PARSING, JobStatus.CATEGORIZING, JobStatus.SAVING)
        ]

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def start_sweeper(self, interval: float = SWEEP_INTERVAL_SECONDS) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever(interval))

    async def stop_sweeper(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
