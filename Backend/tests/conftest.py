"""
Shared fixtures: a scripted upstream, fake time, and an app wired to an
in-memory database. Nothing here touches the network.
"""
from __future__ import annotations

import json
import os
import re

# before any agentdesk import: the module-level settings read it
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient

from agentdesk.core.config import Settings
from agentdesk.core.limiter import limiter
from agentdesk.db.base import init_db, make_engine, make_session_factory
from agentdesk.db.repository import Repository
from agentdesk.main import create_app
from agentdesk.services.classification import TextGenerator
from agentdesk.services.classification.cache import ClassificationCache, RequestBudget
from agentdesk.services.classification.health import ClassifierHealth
from agentdesk.services.classification.model_manager import ModelManager
from agentdesk.services.container import ServiceContainer
from agentdesk.services.progress_tracker import ProgressStore
from agentdesk.services.storage import LocalStorageProvider

ADMIN = {"X-User-Email": "admin@example.com"}

_NUMBERED_NOTE = re.compile(r'^(\d+)\. "(.*)"$', re.MULTILINE)
_SINGLE_NOTE = re.compile(r'Task note: "(.*)"')

KEYWORDS = (
    ("refund", "Billing"),
    ("invoice", "Billing"),
    ("bug", "Technical"),
    ("crash", "Technical"),
    ("price", "Sales"),
    ("buy", "Sales"),
    ("asap", "Urgent"),
)


def keyword_label(note: str) -> str:
    lowered = note.lower()
    for word, label in KEYWORDS:
        if word in lowered:
            return label
    return "Support"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Records requested delays instead of waiting; optionally moves a fake clock."""

    def __init__(self, clock: FakeClock | None = None):
        self.calls: list[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class FakeGenerator(TextGenerator):
    """
    Scripted upstream. Queued items in ``script`` are used first (an
    exception instance is raised); afterwards probes answer OK and
    classification prompts are answered by ``keyword_label``.
    """

    def __init__(self, script=None, label_for=keyword_label):
        self.script = list(script or [])
        self.label_for = label_for
        self.calls: list[tuple[str, str, float]] = []

    @property
    def prompts(self) -> list[str]:
        return [prompt for _, prompt, _ in self.calls]

    def count(self, kind: str) -> int:
        return sum(1 for prompt in self.prompts if prompt_kind(prompt) == kind)

    async def generate(self, model: str, prompt: str, timeout: float) -> str:
        self.calls.append((model, prompt, timeout))
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item

        kind = prompt_kind(prompt)
        if kind == "probe":
            return "OK"
        if kind == "batch":
            notes = _NUMBERED_NOTE.findall(prompt)
            return json.dumps([
                {"item": int(number), "category": self.label_for(note)} for number, note in notes
            ])
        match = _SINGLE_NOTE.search(prompt)
        return self.label_for(match.group(1) if match else "")


def prompt_kind(prompt: str) -> str:
    if prompt.startswith("Respond with only: OK"):
        return "probe"
    if "JSON array" in prompt:
        return "batch"
    return "single"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep(clock):
    return RecordingSleep(clock)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def budget(clock):
    return RequestBudget(max_requests=1000, clock=clock)


@pytest.fixture
def health(clock):
    return ClassifierHealth(clock=clock)


@pytest.fixture
def cache(clock):
    return ClassificationCache(clock=clock)


@pytest.fixture
def models(generator, budget, health, clock, sleep):
    return ModelManager(
        generator, budget, health, ["model-a", "model-b", "model-c"], clock=clock, sleep=sleep
    )


@pytest.fixture
def repository():
    engine = make_engine("sqlite://")
    init_db(bind=engine)
    return Repository(make_session_factory(engine))


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        ENVIRONMENT="test",
        AI_API_KEY=None,
        DATABASE_URL="sqlite://",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        AI_MODEL_CANDIDATES="model-a,model-b",
        AI_REQUESTS_PER_MINUTE=1000,
        _env_file=None,
    )


@pytest.fixture
def services(test_settings, repository, generator, sleep):
    return ServiceContainer(
        test_settings,
        repository=repository,
        storage=LocalStorageProvider(test_settings.UPLOAD_DIR),
        generator=generator,
        progress=ProgressStore(),
        sleep=sleep,
    )


@pytest.fixture
def client(services):
    limiter.reset()
    app = create_app(services)
    with TestClient(app) as test_client:
        yield test_client


def wait_for_jobs(client: TestClient, services: ServiceContainer) -> None:
    """Block until every detached ingestion job has finished."""
    client.portal.call(services.drain)
