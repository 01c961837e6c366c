"""
Batch classification of many task notes.

Flow:
    1. Resolve cached notes (and blank ones) without touching the network.
    2. Partition the rest into token/size-bounded chunks.
    3. Classify chunks strictly one after another, spaced out to respect
       the shared request budget.
    4. A failed chunk falls back to one-by-one classification; a failed
       fallback defaults the chunk. A rate-limit signal or a spent budget
       defaults everything still pending and stops.
    5. Merge everything back into input order.

Nothing in here raises to the caller: the worst outcome is every note
labelled General with source ``default``.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence

from .batching import (
    MAX_ITEMS_PER_CHUNK,
    MAX_TOKENS_PER_CHUNK,
    MIN_ITEMS_PER_CHUNK,
    PendingItem,
    parse_batch_response,
    partition_into_chunks,
)
from .cache import ClassificationCache, RequestBudget, fingerprint
from .classifier import TaskClassifier
from .errors import ClassifierRateLimitError, NoWorkingModelError
from .health import ClassifierHealth
from .labels import CategoryResult, CategorySource, ai_result, default_result
from .model_manager import ModelManager
from .prompts import build_batch_prompt
from .upstream import TextGenerator, classify_upstream_error

logger = logging.getLogger(__name__)

# ─── Constants ───────────────────────────────────────────────────────────────
BATCH_TIMEOUT_SECONDS: float = 10.0
CHUNK_SPACING_SECONDS: float = 13.0   # 5 requests/minute free tier
ITEM_SPACING_SECONDS: float  = 2.0    # between one-by-one fallback calls


@dataclass
class BatchProgress:
    """Running counts handed to the progress listener."""
    processed: int
    total: int
    categorized: int
    defaulted: int
    current_step: str
    rate_limit_hit: bool = False


ProgressListener = Callable[[BatchProgress], None]


@dataclass
class BatchOutcome:
    results: list[CategoryResult] = field(default_factory=list)
    rate_limit_hit: bool = False
    ai_count: int = 0
    default_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "rate_limit_hit": self.rate_limit_hit,
            "ai_count": self.ai_count,
            "default_count": self.default_count,
        }


class _Tally:
    """Results keyed by input index plus the counts reported to listeners."""

    def __init__(self, total: int, listener: Optional[ProgressListener]):
        self.total = total
        self.resolved: dict[int, CategoryResult] = {}
        self.rate_limit_hit = False
        self._listener = listener

    def add(self, index: int, result: CategoryResult) -> None:
        self.resolved[index] = result

    @property
    def categorized(self) -> int:
        return sum(1 for r in self.resolved.values() if r.is_ai)

    def report(self, step: str) -> None:
        if self._listener is None:
            return
        processed = len(self.resolved)
        categorized = self.categorized
        try:
            self._listener(BatchProgress(
                processed=processed,
                total=self.total,
                categorized=categorized,
                defaulted=processed - categorized,
                current_step=step,
                rate_limit_hit=self.rate_limit_hit,
            ))
        except Exception as e:
            logger.warning(f"Progress listener failed: {e}")


class BatchClassifier:
    def __init__(
        self,
        generator: TextGenerator,
        classifier: TaskClassifier,
        cache: ClassificationCache,
        budget: RequestBudget,
        models: ModelManager,
        health: ClassifierHealth,
        enabled: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        batch_timeout: float = BATCH_TIMEOUT_SECONDS,
        chunk_spacing: float = CHUNK_SPACING_SECONDS,
        item_spacing: float = ITEM_SPACING_SECONDS,
        max_items_per_chunk: int = MAX_ITEMS_PER_CHUNK,
        max_tokens_per_chunk: int = MAX_TOKENS_PER_CHUNK,
        min_items_per_chunk: int = MIN_ITEMS_PER_CHUNK,
    ):
        self._generator = generator
        self._classifier = classifier
        self._cache = cache
        self._budget = budget
        self._models = models
        self._health = health
        self.enabled = enabled
        self._sleep = sleep
        self.batch_timeout = batch_timeout
        self.chunk_spacing = chunk_spacing
        self.item_spacing = item_spacing
        self.max_items_per_chunk = max_items_per_chunk
        self.max_tokens_per_chunk = max_tokens_per_chunk
        self.min_items_per_chunk = min_items_per_chunk

    # ─── One chunk, one request ──────────────────────────────────────────

    async def classify_chunk(self, chunk: Sequence[PendingItem]) -> list[tuple[int, CategoryResult]]:
        """
        Classify a whole chunk with a single upstream call.

        Raises:
            NoWorkingModelError:      discovery found nothing callable.
            ClassifierRateLimitError: budget spent or quota signal.
            BatchParseError / other ClassificationError: the call or its reply failed.
        """
        if not chunk:
            return []
        self._health.record_request(len(chunk))

        model = await self._models.get_working_model()
        if not model:
            raise NoWorkingModelError("No working model available")

        if not self._budget.try_consume():
            raise ClassifierRateLimitError("Rate limit exceeded")

        prompt = build_batch_prompt([item.text for item in chunk])
        self._budget.consume()
        try:
            reply = await self._generator.generate(model, prompt, timeout=self.batch_timeout)
        except Exception as e:
            error = classify_upstream_error(e)
            if error is e:
                raise
            raise error from e

        labels = parse_batch_response(reply, len(chunk))

        results: list[tuple[int, CategoryResult]] = []
        for ordinal, item in enumerate(chunk, start=1):
            category = labels.get(ordinal, "General")
            self._cache.put(fingerprint(item.text), category, None)
            results.append((item.index, ai_result(category)))

        self._health.record_success(len(chunk))
        return results

    # ─── Entry point ─────────────────────────────────────────────────────

    async def classify_tasks_batch(
        self,
        notes: Sequence[Any],
        on_progress: Optional[ProgressListener] = None,
    ) -> BatchOutcome:
        total = len(notes)
        if total == 0:
            return BatchOutcome()

        if not self.enabled:
            return self._finish([default_result() for _ in notes], rate_limit_hit=False)

        tally = _Tally(total, on_progress)
        try:
            await self._run(notes, tally)
        except Exception as e:
            logger.error(f"Batch categorization error: {e}", exc_info=True)

        results = [tally.resolved.get(i) or default_result() for i in range(total)]
        outcome = self._finish(results, tally.rate_limit_hit)
        logger.info(
            f"✓ Completed: {outcome.ai_count} categorized, {outcome.default_count} defaulted"
            + (" (rate limit hit)" if outcome.rate_limit_hit else "")
        )
        return outcome

    async def _run(self, notes: Sequence[Any], tally: _Tally) -> None:
        pending: list[PendingItem] = []
        cache_hits = 0
        for index, note in enumerate(notes):
            text = note.strip() if isinstance(note, str) else ""
            if not text:
                tally.add(index, default_result())
                continue
            cached = self._cache.get(fingerprint(text))
            if cached is not None:
                cache_hits += 1
                tally.add(index, CategoryResult(cached.category, CategorySource.AI, cached.confidence))
                continue
            pending.append(PendingItem(index, text))

        if cache_hits:
            self._health.record_request(cache_hits)
            self._health.record_cache_hit(cache_hits)
        logger.info(f"Found {cache_hits} cached, {len(pending)} uncached tasks")
        tally.report(f"Found {cache_hits} cached, categorizing {len(pending)} new tasks...")

        if not pending:
            return

        chunks = partition_into_chunks(
            pending,
            max_items=self.max_items_per_chunk,
            max_tokens=self.max_tokens_per_chunk,
            min_items=self.min_items_per_chunk,
        )
        logger.info(f"Processing {len(pending)} tasks in {len(chunks)} chunks")

        for number, chunk in enumerate(chunks, start=1):
            if not self._budget.try_consume():
                logger.warning(f"Rate limit reached at chunk {number}/{len(chunks)}")
                self._default_remaining(tally, chunks[number - 1:])
                return

            tally.report(f"Processing chunk {number}/{len(chunks)} ({len(chunk)} tasks)...")
            try:
                for index, result in await self.classify_chunk(chunk):
                    tally.add(index, result)
                logger.info(f"✓ Chunk {number}/{len(chunks)} categorized successfully")
                tally.report(f"Chunk {number}/{len(chunks)} complete")
            except ClassifierRateLimitError:
                logger.warning(f"Rate limit hit during chunk {number}, setting remaining to default")
                self._default_remaining(tally, chunks[number - 1:])
                return
            except Exception as e:
                logger.warning(f"Chunk {number} batch failed, using individual: {e}")
                try:
                    stopped = await self._classify_individually(chunk, tally)
                except Exception as individual_error:
                    logger.error(
                        f"Individual categorization also failed for chunk {number}: {individual_error}"
                    )
                    for item in chunk:
                        tally.resolved.setdefault(item.index, default_result())
                    tally.report(f"Chunk {number}/{len(chunks)} defaulted")
                else:
                    if stopped:
                        self._default_remaining(tally, chunks[number:])
                        return

            if number < len(chunks):
                await self._sleep(self.chunk_spacing)

    async def _classify_individually(self, chunk: Sequence[PendingItem], tally: _Tally) -> bool:
        """One call per note. Returns True when the rate limit stopped the run."""
        for position, item in enumerate(chunk):
            if not self._budget.try_consume():
                self._default_remaining(tally, [chunk[position:]])
                return True
            try:
                # already counted by classify_chunk
                result = await self._classifier.classify(item.text, count_request=False)
            except ClassifierRateLimitError:
                self._default_remaining(tally, [chunk[position:]])
                return True
            tally.add(item.index, result)
            tally.report(f"Processing task {position + 1}/{len(chunk)} individually...")

            if position < len(chunk) - 1:
                await self._sleep(self.item_spacing)
        return False

    def _default_remaining(self, tally: _Tally, chunks: Sequence[Sequence[PendingItem]]) -> None:
        tally.rate_limit_hit = True
        for chunk in chunks:
            for item in chunk:
                tally.resolved.setdefault(item.index, default_result())
        tally.report("Rate limit reached. Setting remaining tasks to default...")

    @staticmethod
    def _finish(results: list[CategoryResult], rate_limit_hit: bool) -> BatchOutcome:
        ai_count = sum(1 for r in results if r.is_ai)
        return BatchOutcome(
            results=results,
            rate_limit_hit=rate_limit_hit,
            ai_count=ai_count,
            default_count=len(results) - ai_count,
        )
