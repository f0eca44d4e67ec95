"""Pytest configuration and shared fixtures.

Loads the .env file (integration tests need real credentials) and provides
an in-memory repository plus fake model capabilities for unit and contract
tests.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path for `src.` and `tests.` imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.common.env import load_env

load_env(verbose=False)

from src.common.config import PipelineSettings
from src.extraction.pipeline import FeedbackPipeline
from src.ingestion.models import RawFeedbackItem
from src.ingestion.service import IngestionService
from src.storage.memory_repository import InMemoryFeedbackRepository

from tests.fakes import (
    API_KEY,
    DARK_MODE_VECTOR,
    Clock,
    FakeClassifier,
    FakeEmbedder,
    FakeInterpreter,
    ingest_payload,
)


@pytest.fixture
def repository() -> InMemoryFeedbackRepository:
    return InMemoryFeedbackRepository()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder({"dark mode": DARK_MODE_VECTOR})


@pytest.fixture
def classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture
def interpreter() -> FakeInterpreter:
    return FakeInterpreter()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def settings() -> PipelineSettings:
    return PipelineSettings(
        retry_backoff_min_sec=0.0,
        retry_backoff_max_sec=0.0,
        default_board_id="board_general",
        worker_concurrency=2,
    )


@pytest.fixture
def pipeline(repository, settings, classifier, embedder, clock) -> FeedbackPipeline:
    """Pipeline with the deterministic fallback extractor (no interpreter)."""
    return FeedbackPipeline.from_settings(
        repository,
        settings,
        classifier=classifier,
        embedder=embedder,
        interpreter=None,
        clock=clock,
    )


@pytest.fixture
def ingest(repository, clock):
    """Store a raw item from a payload and return it."""
    service = IngestionService(repository, clock=clock)

    def _ingest(dedupe_key: str = "helpdesk:conv-1:msg-1", **overrides) -> RawFeedbackItem:
        item, _ = service.ingest(ingest_payload(dedupe_key, **overrides))
        return item

    return _ingest


@pytest.fixture
def components(repository, settings, classifier, embedder):
    """API components wired to the in-memory repository and fakes."""
    from src.api.dependencies import assemble_components

    return assemble_components(
        repository,
        settings,
        classifier=classifier,
        embedder=embedder,
        interpreter=None,
        storage_backend="memory",
    )


@pytest.fixture
def api_client(components, monkeypatch):
    """TestClient with the worker pool running; sends a valid API key."""
    from fastapi.testclient import TestClient

    from src.api.main import create_app

    monkeypatch.setenv("PIPELINE_API_KEY", API_KEY)
    monkeypatch.delenv("STORAGE_BACKEND", raising=False)
    with TestClient(create_app(components), headers={"X-API-Key": API_KEY}) as client:
        yield client
