"""
Ingestion pipeline — one upload job from stored CSV to persisted tasks.

State machine per job: parsing → categorizing → saving → completed,
with ``failed`` reachable from any state. The pipeline is the only
place that turns an exception into a terminal job state.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from fastapi.concurrency import run_in_threadpool

from agentdesk.db.repository import Repository
from agentdesk.services.classification.batch_classifier import BatchClassifier, BatchProgress
from agentdesk.services.classification.labels import CategoryResult
from agentdesk.services.csv_intake import load_contact_rows, row_to_task_fields
from agentdesk.services.progress_tracker import JobStatus, ProgressStore
from agentdesk.services.storage import StorageProvider

logger = logging.getLogger(__name__)

# ─── Progress Split ──────────────────────────────────────────────────────────
PARSE_START: int      = 5
PARSE_DONE: int       = 20
CATEGORIZE_SPAN: int  = 70     # categorizing runs from 20% to 90%
SAVING: int           = 90

# Rough bytes per CSV row, only used for the initial progress denominator
ESTIMATED_BYTES_PER_ROW: int = 100


class NoAgentsAvailableError(Exception):
    pass


def estimate_task_count(file_size: int) -> int:
    if not file_size or file_size <= 0:
        return 0
    return max(1, file_size // ESTIMATED_BYTES_PER_ROW)


def assign_round_robin(count: int, agent_ids: list[int]) -> list[int]:
    """``task[i]`` goes to ``agents[i mod len(agents)]``."""
    if not agent_ids:
        raise NoAgentsAvailableError("No agents available for task distribution")
    return [agent_ids[i % len(agent_ids)] for i in range(count)]


def build_task_rows(
    rows: list[dict[str, Any]],
    results: list[CategoryResult],
    agent_ids: list[int],
    upload_id: Optional[int],
    now: datetime,
) -> list[dict[str, Any]]:
    assignments = assign_round_robin(len(rows), agent_ids)
    task_rows = []
    for row, result, agent_id in zip(rows, results, assignments):
        fields = row_to_task_fields(row)
        fields.update(
            agent_id=agent_id,
            upload_id=upload_id,
            status="pending",
            category=result.category,
            category_source=result.source.value,
            category_confidence=result.confidence,
            categorized_at=now if result.is_ai else None,
        )
        task_rows.append(fields)
    return task_rows


@dataclass
class IngestionRequest:
    job_id: str
    file_ref: str
    filename: str
    file_size: int
    uploaded_by: str
    mime_type: Optional[str] = None


class IngestionPipeline:
    def __init__(
        self,
        repository: Repository,
        storage: StorageProvider,
        progress: ProgressStore,
        batch_classifier: BatchClassifier,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.repository = repository
        self.storage = storage
        self.progress = progress
        self.batch_classifier = batch_classifier
        self._clock = clock

    async def run(self, request: IngestionRequest) -> None:
        """
        Process one upload job to a terminal state. Never raises.
        """
        job_id = request.job_id
        started = self._clock()
        upload_id: Optional[int] = None

        try:
            upload = await run_in_threadpool(
                self.repository.create_upload,
                request.filename,
                request.file_size,
                request.uploaded_by,
                request.mime_type,
            )
            upload_id = upload.id

            # Roster is checked before a single row is read
            agents = await run_in_threadpool(self.repository.list_agents)
            agent_ids = [agent.id for agent in agents]
            if not agent_ids:
                raise NoAgentsAvailableError("No agents available for task distribution")

            # 1. Parse
            self.progress.update(
                job_id,
                status=JobStatus.PARSING,
                current_step="Parsing CSV file...",
                progress=PARSE_START,
                upload_id=upload_id,
            )
            path = self.storage.get_absolute_path(request.file_ref)
            rows = await run_in_threadpool(load_contact_rows, path)
            total = len(rows)
            logger.info(f"Job {job_id}: parsed {total} rows from {request.filename}")

            # 2. Categorize
            self.progress.update(
                job_id,
                status=JobStatus.CATEGORIZING,
                current_step=f"Categorizing {total} tasks...",
                total_tasks=total,
                processed_tasks=0,
                progress=PARSE_DONE,
            )
            outcome = await self.batch_classifier.classify_tasks_batch(
                [row_to_task_fields(row)["notes"] for row in rows],
                on_progress=lambda p: self._on_categorize_progress(job_id, p),
            )

            # 3. Assign and save
            self.progress.update(
                job_id,
                status=JobStatus.SAVING,
                current_step="Assigning tasks to agents...",
                processed_tasks=total,
                categorized_tasks=outcome.ai_count,
                default_tasks=outcome.default_count,
                rate_limit_hit=outcome.rate_limit_hit,
                progress=SAVING,
            )
            task_rows = build_task_rows(
                rows, outcome.results, agent_ids, upload_id, datetime.now(timezone.utc)
            )
            task_ids = await run_in_threadpool(self.repository.insert_tasks, task_rows)

            elapsed_ms = self._elapsed_ms(started)
            await run_in_threadpool(
                self.repository.update_upload,
                upload_id,
                status="success",
                row_count=total,
                tasks_created=len(task_ids),
                processing_time_ms=elapsed_ms,
            )
            self.storage.delete(request.file_ref)

            self.progress.complete(
                job_id,
                current_step="Upload completed successfully!",
                total_tasks=total,
                processed_tasks=total,
                categorized_tasks=outcome.ai_count,
                default_tasks=outcome.default_count,
                rate_limit_hit=outcome.rate_limit_hit,
                upload_id=upload_id,
            )
            logger.info(
                f"Job {job_id}: {len(task_ids)} tasks saved across {len(agent_ids)} agents "
                f"({outcome.ai_count} AI, {outcome.default_count} default) in {elapsed_ms}ms"
            )

        except Exception as e:
            logger.error(f"Job {job_id} failed: {e}", exc_info=True)
            await self._record_failure(request, upload_id, str(e), started)

    def _on_categorize_progress(self, job_id: str, update: BatchProgress) -> None:
        share = update.processed / update.total if update.total else 0
        self.progress.update(
            job_id,
            current_step=update.current_step,
            processed_tasks=update.processed,
            categorized_tasks=update.categorized,
            default_tasks=update.defaulted,
            rate_limit_hit=update.rate_limit_hit,
            progress=PARSE_DONE + round(share * CATEGORIZE_SPAN),
        )

    async def _record_failure(
        self,
        request: IngestionRequest,
        upload_id: Optional[int],
        message: str,
        started: float,
    ) -> None:
        if upload_id is not None:
            try:
                await run_in_threadpool(
                    self.repository.update_upload,
                    upload_id,
                    status="failed",
                    error_message=message,
                    processing_time_ms=self._elapsed_ms(started),
                )
            except Exception as db_error:
                logger.error(f"Failed to mark upload {upload_id} as failed: {db_error}")

        try:
            self.storage.delete(request.file_ref)
        except Exception as cleanup_error:
            logger.error(f"Failed to delete upload file {request.file_ref}: {cleanup_error}")

        self.progress.fail(request.job_id, message)

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)
