"""
Composition root.

Builds the process-wide singletons (progress store, classification
cache, request budget, model manager) once and shares them between
every job and request. Tests build their own container with fakes.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from fastapi import Request

from agentdesk.core.config import Settings, settings as default_settings
from agentdesk.db.repository import Repository
from agentdesk.services.classification import (
    BatchClassifier,
    ClassificationCache,
    ClassifierHealth,
    ModelManager,
    OpenAICompatibleGenerator,
    RequestBudget,
    TaskClassifier,
    TextGenerator,
    UnconfiguredGenerator,
)
from agentdesk.services.cleanup import LazyCleanup
from agentdesk.services.ingestion import IngestionPipeline, IngestionRequest
from agentdesk.services.progress_tracker import ProgressStore
from agentdesk.services.storage import LocalStorageProvider, StorageProvider

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class ServiceContainer:
    def __init__(
        self,
        config: Settings = default_settings,
        repository: Optional[Repository] = None,
        storage: Optional[StorageProvider] = None,
        generator: Optional[TextGenerator] = None,
        progress: Optional[ProgressStore] = None,
        cache: Optional[ClassificationCache] = None,
        budget: Optional[RequestBudget] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config
        self.repository = repository or Repository()
        self.storage = storage or LocalStorageProvider(config.UPLOAD_DIR)
        self.progress = progress or ProgressStore()
        self.cache = cache or ClassificationCache()
        self.budget = budget or RequestBudget(max_requests=config.AI_REQUESTS_PER_MINUTE)
        self.health = ClassifierHealth()
        self.cleanup = LazyCleanup()

        if generator is None:
            if config.AI_API_KEY:
                generator = OpenAICompatibleGenerator(config.AI_API_KEY, config.AI_BASE_URL)
            else:
                logger.warning("AI_API_KEY not set — tasks will be labelled General")
                generator = UnconfiguredGenerator()
        self.generator = generator

        self.ai_enabled = bool(
            config.ENABLE_AI_CATEGORIZATION and not isinstance(generator, UnconfiguredGenerator)
        )

        self.models = ModelManager(
            self.generator, self.budget, self.health, config.model_candidates, sleep=sleep
        )
        self.classifier = TaskClassifier(
            self.generator, self.cache, self.budget, self.models, self.health,
            enabled=self.ai_enabled, sleep=sleep,
        )
        self.batch_classifier = BatchClassifier(
            self.generator, self.classifier, self.cache, self.budget, self.models, self.health,
            enabled=self.ai_enabled, sleep=sleep,
        )
        self.pipeline = IngestionPipeline(
            self.repository, self.storage, self.progress, self.batch_classifier
        )
        self._jobs: Set[asyncio.Task] = set()

    def launch_ingestion(self, request: IngestionRequest) -> asyncio.Task:
        """Run the pipeline detached; the caller never awaits it."""
        task = asyncio.get_running_loop().create_task(self.pipeline.run(request))
        # Keep a reference until done, the loop only holds weak ones
        self._jobs.add(task)
        task.add_done_callback(self._jobs.discard)
        return task

    async def drain(self) -> None:
        if self._jobs:
            await asyncio.gather(*self._jobs, return_exceptions=True)

    async def startup(self) -> None:
        self.progress.start_sweeper()

    async def shutdown(self) -> None:
        await self.progress.stop_sweeper()
        for task in list(self._jobs):
            task.cancel()
        await self.drain()
        await self.generator.close()


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
