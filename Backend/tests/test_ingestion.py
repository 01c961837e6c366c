"""
test_ingestion.py
~~~~~~~~~~~~~~~~~
The ingestion pipeline from stored CSV to persisted tasks, including
round-robin distribution and every failure path.
"""
from __future__ import annotations

import asyncio
import io
import os

import pytest

from agentdesk.services.classification.batch_classifier import BatchClassifier
from agentdesk.services.classification.classifier import TaskClassifier
from agentdesk.services.ingestion import (
    IngestionPipeline,
    IngestionRequest,
    NoAgentsAvailableError,
    assign_round_robin,
    estimate_task_count,
)
from agentdesk.services.progress_tracker import JobStatus, ProgressStore
from agentdesk.services.storage import LocalStorageProvider

CSV_SEVEN = (
    "FirstName,Phone,Notes\n"
    "Ann,1,refund please\n"
    "Ben,2,app crash\n"
    "Cat,3,price list\n"
    "Dan,4,\n"
    "Eve,5,invoice missing\n"
    "Fox,6,login bug\n"
    "Gus,7,hello\n"
)


class RecordingProgressStore(ProgressStore):
    def __init__(self):
        super().__init__()
        self.history = []

    def update(self, job_id, **fields):
        job = super().update(job_id, **fields)
        if job is not None:
            self.history.append((job.status, job.progress))
        return job


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(str(tmp_path / "uploads"))


@pytest.fixture
def progress():
    return RecordingProgressStore()


def _pipeline(repository, storage, progress, generator, cache, budget, models, health, sleep, enabled):
    classifier = TaskClassifier(generator, cache, budget, models, health, enabled=enabled, sleep=sleep)
    batch = BatchClassifier(generator, classifier, cache, budget, models, health, enabled=enabled, sleep=sleep)
    return IngestionPipeline(repository, storage, progress, batch)


@pytest.fixture
def make_pipeline(repository, storage, progress, generator, cache, budget, models, health, sleep):
    def build(enabled=True):
        return _pipeline(repository, storage, progress, generator, cache, budget, models, health, sleep, enabled)
    return build


def _submit(storage, progress, text: str):
    data = text.encode("utf-8")
    file_ref = storage.save_upload(io.BytesIO(data), "contacts.csv")
    job_id = progress.create_job(estimated_total=estimate_task_count(len(data)))
    return IngestionRequest(
        job_id=job_id,
        file_ref=file_ref,
        filename="contacts.csv",
        file_size=len(data),
        uploaded_by="admin@example.com",
        mime_type="text/csv",
    )


def _three_agents(repository):
    return [
        repository.create_agent("Alpha", "a@agent.com", "100").id,
        repository.create_agent("Bravo", "b@agent.com", "200").id,
        repository.create_agent("Charlie", "c@agent.com", "300").id,
    ]


class TestRoundRobin:

    def test_assignment(self):
        assert assign_round_robin(7, [1, 2, 3]) == [1, 2, 3, 1, 2, 3, 1]

    def test_empty_roster(self):
        with pytest.raises(NoAgentsAvailableError):
            assign_round_robin(3, [])

    def test_estimate(self):
        assert estimate_task_count(0) == 0
        assert estimate_task_count(50) == 1
        assert estimate_task_count(1000) == 10


class TestSuccessfulIngestion:

    def test_ai_disabled_distributes_and_defaults(self, repository, storage, progress, make_pipeline, generator):
        a, b, c = _three_agents(repository)
        request = _submit(storage, progress, CSV_SEVEN)

        asyncio.run(make_pipeline(enabled=False).run(request))

        tasks = repository.list_tasks()
        assert [t.agent_id for t in tasks] == [a, b, c, a, b, c, a]
        assert [t.first_name for t in tasks] == ["Ann", "Ben", "Cat", "Dan", "Eve", "Fox", "Gus"]
        assert all(t.category == "General" and t.category_source == "default" for t in tasks)
        assert all(t.categorized_at is None for t in tasks)
        assert generator.calls == []

        job = progress.get(request.job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.total_tasks == 7
        assert job.processed_tasks == 7
        assert job.default_tasks == 7
        assert job.categorized_tasks == 0

        upload = repository.list_uploads()[0]
        assert job.upload_id == upload.id
        assert upload.status == "success"
        assert upload.row_count == 7
        assert upload.tasks_created == 7
        assert not os.path.exists(request.file_ref)

    def test_ai_labels_persisted(self, repository, storage, progress, make_pipeline):
        _three_agents(repository)
        request = _submit(storage, progress, CSV_SEVEN)

        asyncio.run(make_pipeline().run(request))

        tasks = repository.list_tasks()
        assert [t.category for t in tasks] == [
            "Billing", "Technical", "Sales", "General", "Billing", "Technical", "Support",
        ]
        # Blank note is defaulted, everything else came from the classifier
        assert tasks[3].category_source == "default"
        assert tasks[3].categorized_at is None
        assert tasks[0].category_source == "ai"
        assert tasks[0].categorized_at is not None

        job = progress.get(request.job_id)
        assert job.categorized_tasks == 6
        assert job.default_tasks == 1

    def test_progress_is_monotonic(self, repository, storage, progress, make_pipeline):
        _three_agents(repository)
        request = _submit(storage, progress, CSV_SEVEN)

        asyncio.run(make_pipeline().run(request))

        percentages = [p for _, p in progress.history]
        assert percentages == sorted(percentages)
        assert max(percentages) < 100
        statuses = [s for s, _ in progress.history]
        order = [JobStatus.PARSING, JobStatus.CATEGORIZING, JobStatus.SAVING]
        assert [s for s in order if s in statuses] == order
        assert statuses.index(JobStatus.CATEGORIZING) > statuses.index(JobStatus.PARSING)


class TestFailedIngestion:

    def test_empty_roster_fails_before_parsing(self, repository, storage, progress, make_pipeline, generator):
        request = _submit(storage, progress, CSV_SEVEN)

        asyncio.run(make_pipeline().run(request))

        job = progress.get(request.job_id)
        assert job.status == JobStatus.FAILED
        assert "No agents available" in job.error
        assert JobStatus.PARSING not in [s for s, _ in progress.history]
        assert generator.calls == []
        assert repository.list_tasks() == []
        upload = repository.list_uploads()[0]
        assert upload.status == "failed"
        assert "No agents available" in upload.error_message
        assert not os.path.exists(request.file_ref)

    def test_bad_headers(self, repository, storage, progress, make_pipeline, generator):
        _three_agents(repository)
        request = _submit(storage, progress, "Name,Phone,Notes\nAnn,1,x\n")

        asyncio.run(make_pipeline().run(request))

        job = progress.get(request.job_id)
        assert job.status == JobStatus.FAILED
        assert "FirstName, Phone, and Notes" in job.error
        assert repository.list_tasks() == []
        assert repository.list_uploads()[0].status == "failed"
        assert generator.calls == []
        assert not os.path.exists(request.file_ref)

    def test_persistence_failure_is_contained(self, repository, storage, progress, make_pipeline, monkeypatch):
        _three_agents(repository)
        request = _submit(storage, progress, CSV_SEVEN)

        def broken_insert(rows):
            raise RuntimeError("disk full")

        def broken_update(upload_id, **fields):
            raise RuntimeError("still broken")

        monkeypatch.setattr(repository, "insert_tasks", broken_insert)
        monkeypatch.setattr(repository, "update_upload", broken_update)

        asyncio.run(make_pipeline(enabled=False).run(request))

        job = progress.get(request.job_id)
        assert job.status == JobStatus.FAILED
        assert job.error == "disk full"
        assert not os.path.exists(request.file_ref)
