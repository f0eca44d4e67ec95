"""Pipeline components shared by the API routers.

The app's lifespan hook builds one ``PipelineComponents`` and stores it on
``app.state.components``; routers reach it through the dependency functions
below. Tests build components from fakes and pass them to ``create_app``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from src.common.config import (
    ApiConfig,
    PipelineSettings,
    load_api_config,
    load_embedding_config,
    load_firestore_config,
    load_gemini_config,
    load_pipeline_settings,
)
from src.common.logging import get_logger
from src.deduplication.embedding_client import EmbeddingClient
from src.extraction.capabilities import (
    ActionabilityClassifier,
    Embedder,
    PostDrafter,
    SignalInterpreter,
)
from src.extraction.gemini_client import create_gemini_client
from src.extraction.pipeline import FeedbackPipeline
from src.extraction.worker import ExtractionWorkerPool
from src.ingestion.service import IngestionService
from src.resolution.engine import ResolutionEngine
from src.storage import create_repository
from src.storage.base import FeedbackRepository

logger = get_logger(__name__)


@dataclass
class PipelineComponents:
    settings: PipelineSettings
    repository: FeedbackRepository
    pipeline: FeedbackPipeline
    worker_pool: ExtractionWorkerPool
    ingestion: IngestionService
    resolution: ResolutionEngine
    storage_backend: str = "firestore"


def assemble_components(
    repository: FeedbackRepository,
    settings: PipelineSettings,
    *,
    classifier: ActionabilityClassifier,
    embedder: Optional[Embedder],
    interpreter: Optional[SignalInterpreter] = None,
    drafter: Optional[PostDrafter] = None,
    storage_backend: str = "memory",
) -> PipelineComponents:
    """Wire repository and capabilities into the pipeline, pool and services."""
    pipeline = FeedbackPipeline.from_settings(
        repository,
        settings,
        classifier=classifier,
        embedder=embedder,
        interpreter=interpreter,
        drafter=drafter,
    )
    worker_pool = ExtractionWorkerPool.from_settings(pipeline, settings)
    return PipelineComponents(
        settings=settings,
        repository=repository,
        pipeline=pipeline,
        worker_pool=worker_pool,
        ingestion=IngestionService(
            repository,
            worker_pool,
            default_workspace_id=settings.default_workspace_id,
        ),
        resolution=ResolutionEngine(repository),
        storage_backend=storage_backend,
    )


def build_components(api_config: Optional[ApiConfig] = None) -> PipelineComponents:
    """Build production components (Firestore or memory, Gemini, Vertex AI) from env."""
    api_config = api_config or load_api_config()
    settings = load_pipeline_settings()

    firestore_config = (
        load_firestore_config() if api_config.storage_backend == "firestore" else None
    )
    repository = create_repository(api_config.storage_backend, firestore_config)

    gemini = create_gemini_client(load_gemini_config())
    logger.info(
        "Capabilities configured",
        extra={"storage_backend": api_config.storage_backend, **gemini.get_model_info()},
    )
    return assemble_components(
        repository,
        settings,
        classifier=gemini,
        embedder=EmbeddingClient(load_embedding_config()),
        interpreter=gemini,
        drafter=gemini,
        storage_backend=api_config.storage_backend,
    )


def get_components(request: Request) -> PipelineComponents:
    return request.app.state.components


def get_repository(request: Request) -> FeedbackRepository:
    return get_components(request).repository


def get_ingestion_service(request: Request) -> IngestionService:
    return get_components(request).ingestion


def get_resolution_engine(request: Request) -> ResolutionEngine:
    return get_components(request).resolution
