"""Unit tests for the asyncio extraction worker pool."""

import asyncio
import threading

import pytest

from src.extraction.gemini_client import GeminiAPIError
from src.extraction.models import ClassificationResult, ItemOutcome, ItemOutcomeStatus
from src.extraction.worker import ExtractionWorkerPool, WorkerPoolNotRunningError
from src.ingestion.models import ProcessingState


class FlakyClassifier:
    """Fails the first ``failures`` calls, then admits everything."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    def classify(self, text):
        self.calls += 1
        if self.calls <= self.failures:
            raise GeminiAPIError("503 Service Unavailable")
        return ClassificationResult(actionable=True, rationale="ok")


def _run_pool(pool, item_ids):
    async def _main():
        await pool.start()
        try:
            futures = [pool.submit_for_extraction(i) for i in item_ids]
            return await asyncio.gather(*futures)
        finally:
            await pool.stop()

    return asyncio.run(_main())


def test_future_resolves_with_final_outcome(pipeline, ingest, settings):
    item = ingest()
    pool = ExtractionWorkerPool.from_settings(pipeline, settings)

    (outcome,) = _run_pool(pool, [item.id])

    assert isinstance(outcome, ItemOutcome)
    assert outcome.status == ItemOutcomeStatus.COMPLETED
    assert outcome.raw_item_id == item.id


def test_retryable_failure_is_retried(repository, pipeline, ingest, settings):
    flaky = FlakyClassifier(failures=2)
    pipeline.gate.classifier = flaky
    item = ingest()
    pool = ExtractionWorkerPool.from_settings(pipeline, settings)

    (outcome,) = _run_pool(pool, [item.id])

    assert outcome.status == ItemOutcomeStatus.COMPLETED
    assert outcome.attempt == 3
    assert flaky.calls == 3
    assert repository.get_raw_item(item.id).processing_state == ProcessingState.COMPLETED


def test_gives_up_after_max_attempts(repository, pipeline, ingest, settings, classifier):
    classifier.error = GeminiAPIError("503 Service Unavailable")
    item = ingest()
    pool = ExtractionWorkerPool.from_settings(pipeline, settings)

    (outcome,) = _run_pool(pool, [item.id])

    assert outcome.status == ItemOutcomeStatus.FAILED
    assert outcome.retryable is True
    assert len(classifier.calls) == settings.max_attempts
    stored = repository.get_raw_item(item.id)
    assert stored.processing_state == ProcessingState.FAILED
    assert stored.attempt_count == settings.max_attempts


def test_non_retryable_failure_runs_once(pipeline, ingest, settings, classifier):
    classifier.error = ValueError("unexpected payload")
    item = ingest()
    pool = ExtractionWorkerPool.from_settings(pipeline, settings)

    (outcome,) = _run_pool(pool, [item.id])

    assert outcome.status == ItemOutcomeStatus.FAILED
    assert outcome.retryable is False
    assert len(classifier.calls) == 1


def test_many_items_processed_concurrently(repository, pipeline, ingest, settings):
    ids = [
        ingest(f"api:req-{n}", externalId=f"req-{n}").id
        for n in range(6)
    ]
    pool = ExtractionWorkerPool.from_settings(pipeline, settings)

    outcomes = _run_pool(pool, ids)

    assert sorted(o.raw_item_id for o in outcomes) == sorted(ids)
    assert all(o.status == ItemOutcomeStatus.COMPLETED for o in outcomes)
    assert repository.count_raw_items_by_state() == {"completed": 6}


def test_duplicate_submissions_process_once(pipeline, ingest, settings, classifier):
    item = ingest()
    pool = ExtractionWorkerPool.from_settings(pipeline, settings)

    outcomes = _run_pool(pool, [item.id, item.id])

    statuses = sorted(o.status.value for o in outcomes)
    assert statuses == ["completed", "skipped"]
    assert len(classifier.calls) == 1


def test_submit_requires_running_pool(pipeline, settings):
    pool = ExtractionWorkerPool.from_settings(pipeline, settings)

    async def _submit():
        pool.submit_for_extraction("raw_x")

    with pytest.raises(WorkerPoolNotRunningError):
        asyncio.run(_submit())


def test_crashing_pipeline_sets_exception_on_future(pipeline, settings, monkeypatch):
    def _boom(raw_item_id):
        raise RuntimeError("repository offline")

    monkeypatch.setattr(pipeline, "process", _boom)
    pool = ExtractionWorkerPool.from_settings(pipeline, settings)

    async def _main():
        await pool.start()
        try:
            future = pool.submit_for_extraction("raw_x")
            with pytest.raises(RuntimeError, match="repository offline"):
                await future
        finally:
            await pool.stop()

    asyncio.run(_main())


def test_stop_without_drain_cancels_outstanding_jobs(pipeline, settings, monkeypatch):
    release = threading.Event()

    def _blocked(raw_item_id):
        release.wait(5)
        return ItemOutcome(raw_item_id=raw_item_id, status=ItemOutcomeStatus.COMPLETED)

    monkeypatch.setattr(pipeline, "process", _blocked)
    pool = ExtractionWorkerPool.from_settings(pipeline, settings)

    async def _main():
        await pool.start()
        futures = [pool.submit_for_extraction(f"raw_{i}") for i in range(3)]
        # Both workers hold a job; the third is still queued.
        while pool.queue_depth > 1:
            await asyncio.sleep(0.01)
        await pool.stop(drain=False)
        release.set()
        return futures

    futures = asyncio.run(_main())

    assert [f.cancelled() for f in futures] == [True, True, True]
    assert not pool.running
