"""Configuration loader for the feedback pipeline services.

Provides shared configuration dataclasses and environment variable helpers
used by the extraction pipeline, the worker pool and the API.

Exports:
    - ConfigError: Exception for configuration errors
    - _get_env, _int_env, _float_env, _optional_env, _bool_env: Environment helpers
    - FirestoreConfig, GeminiConfig, EmbeddingConfig: Backing service configurations
    - PipelineSettings: Quality gate, matching and worker tunables
    - ApiConfig: API key and storage backend selection
    - load_*: Load each configuration from environment
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Optional


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


def _get_env(key: str, default: Optional[str] = None, required: bool = False) -> str:
    value = os.getenv(key, default)
    if required and (value is None or value == ""):
        raise ConfigError(f"Missing required environment variable: {key}")
    if value is None:
        raise ConfigError(f"Environment variable {key} is not set and no default provided")
    if value == "" and default is None:
        raise ConfigError(f"Environment variable {key} is empty and no default provided")
    return value


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid int for {key}: {raw}") from exc


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid float for {key}: {raw}") from exc


def _bool_env(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"Invalid bool for {key}: {raw}")


def _optional_env(key: str) -> Optional[str]:
    value = os.getenv(key)
    if value is None or value == "":
        return None
    return value


def parse_board_routing(raw: Optional[str]) -> Dict[str, str]:
    """Parse ``signal_type=board_id`` pairs separated by commas.

    Example: ``"bug_report=board_bugs, feature_request=board_ideas"``.
    """
    routing: Dict[str, str] = {}
    if not raw:
        return routing
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        if "=" not in pair:
            raise ConfigError(f"Invalid BOARD_ROUTING entry (expected type=board): {pair}")
        signal_type, board_id = (part.strip() for part in pair.split("=", 1))
        if not signal_type or not board_id:
            raise ConfigError(f"Invalid BOARD_ROUTING entry: {pair}")
        routing[signal_type] = board_id
    return routing


@dataclass
class FirestoreConfig:
    """Firestore connection configuration used across all services."""

    collection_prefix: str
    project_id: Optional[str] = None
    database_id: str = "(default)"


@dataclass
class GeminiConfig:
    """Gemini model configuration for classification and signal interpretation."""

    model: str
    temperature: float
    max_output_tokens: int
    location: str
    request_timeout_sec: float = 10.0


@dataclass
class EmbeddingConfig:
    """Vertex AI embedding configuration for similarity matching."""

    model: str
    project: Optional[str]
    location: str
    output_dimensionality: int = 768
    request_timeout_sec: float = 10.0
    cache_max_entries: int = 2048


@dataclass
class PipelineSettings:
    """Tunables for the extraction pipeline and worker pool."""

    min_word_count: int = 5
    similarity_threshold: float = 0.80
    min_signal_confidence: float = 0.5
    max_signals_per_item: int = 5
    max_attempts: int = 3
    claim_stale_after_sec: float = 600.0
    worker_concurrency: int = 4
    retry_backoff_min_sec: float = 1.0
    retry_backoff_max_sec: float = 30.0
    default_workspace_id: str = "default"
    default_board_id: Optional[str] = None
    board_routing: Dict[str, str] = field(default_factory=dict)
    use_signal_interpreter: bool = True
    use_post_drafter: bool = True

    def validate(self) -> "PipelineSettings":
        if self.min_word_count < 0:
            raise ConfigError(f"QUALITY_GATE_MIN_WORDS must be >= 0, got {self.min_word_count}")
        for name, value in (
            ("SIMILARITY_THRESHOLD", self.similarity_threshold),
            ("MIN_SIGNAL_CONFIDENCE", self.min_signal_confidence),
        ):
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be between 0 and 1, got {value}")
        for name, value in (
            ("MAX_SIGNALS_PER_ITEM", self.max_signals_per_item),
            ("MAX_EXTRACTION_ATTEMPTS", self.max_attempts),
            ("WORKER_CONCURRENCY", self.worker_concurrency),
        ):
            if value < 1:
                raise ConfigError(f"{name} must be >= 1, got {value}")
        if self.claim_stale_after_sec <= 0:
            raise ConfigError("CLAIM_STALE_AFTER_SECONDS must be positive")
        if self.retry_backoff_max_sec < self.retry_backoff_min_sec:
            raise ConfigError("RETRY_BACKOFF_MAX_SEC must be >= RETRY_BACKOFF_MIN_SEC")
        return self


@dataclass
class ApiConfig:
    """Configuration for the pipeline HTTP API."""

    api_key: Optional[str]
    storage_backend: str = "firestore"


# Default values for Gemini configuration
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_GEMINI_TEMPERATURE = 0.1
DEFAULT_GEMINI_MAX_OUTPUT_TOKENS = 2048
DEFAULT_VERTEX_AI_LOCATION = "us-central1"

# Default values for embeddings
DEFAULT_EMBEDDING_MODEL = "text-embedding-004"
DEFAULT_EMBEDDING_DIMENSIONALITY = 768

STORAGE_BACKENDS = ("firestore", "memory")


def load_firestore_config() -> FirestoreConfig:
    """Load Firestore configuration from environment variables."""
    return FirestoreConfig(
        collection_prefix=_get_env("FIRESTORE_COLLECTION_PREFIX", default="feedback_"),
        project_id=_optional_env("GOOGLE_CLOUD_PROJECT"),
        database_id=_get_env("FIRESTORE_DATABASE_ID", default="(default)"),
    )


def load_gemini_config() -> GeminiConfig:
    """Load Gemini configuration from environment variables."""
    return GeminiConfig(
        model=_get_env("GEMINI_MODEL", default=DEFAULT_GEMINI_MODEL),
        temperature=_float_env("GEMINI_TEMPERATURE", default=DEFAULT_GEMINI_TEMPERATURE),
        max_output_tokens=_int_env("GEMINI_MAX_OUTPUT_TOKENS", default=DEFAULT_GEMINI_MAX_OUTPUT_TOKENS),
        location=_get_env("VERTEX_AI_LOCATION", default=DEFAULT_VERTEX_AI_LOCATION),
        request_timeout_sec=_float_env("GEMINI_TIMEOUT_SEC", default=10.0),
    )


def load_embedding_config() -> EmbeddingConfig:
    """Load embedding configuration from environment variables."""
    return EmbeddingConfig(
        model=_get_env("EMBEDDING_MODEL", default=DEFAULT_EMBEDDING_MODEL),
        project=_optional_env("GOOGLE_CLOUD_PROJECT"),
        location=_get_env("VERTEX_AI_LOCATION", default=DEFAULT_VERTEX_AI_LOCATION),
        output_dimensionality=_int_env(
            "EMBEDDING_OUTPUT_DIMENSIONALITY", default=DEFAULT_EMBEDDING_DIMENSIONALITY
        ),
        request_timeout_sec=_float_env("EMBEDDING_TIMEOUT_SEC", default=10.0),
        cache_max_entries=_int_env("EMBEDDING_CACHE_MAX_ENTRIES", default=2048),
    )


def load_pipeline_settings() -> PipelineSettings:
    """Load pipeline tunables from environment variables."""
    settings = PipelineSettings(
        min_word_count=_int_env("QUALITY_GATE_MIN_WORDS", default=5),
        similarity_threshold=_float_env("SIMILARITY_THRESHOLD", default=0.80),
        min_signal_confidence=_float_env("MIN_SIGNAL_CONFIDENCE", default=0.5),
        max_signals_per_item=_int_env("MAX_SIGNALS_PER_ITEM", default=5),
        max_attempts=_int_env("MAX_EXTRACTION_ATTEMPTS", default=3),
        claim_stale_after_sec=_float_env("CLAIM_STALE_AFTER_SECONDS", default=600.0),
        worker_concurrency=_int_env("WORKER_CONCURRENCY", default=4),
        retry_backoff_min_sec=_float_env("RETRY_BACKOFF_MIN_SEC", default=1.0),
        retry_backoff_max_sec=_float_env("RETRY_BACKOFF_MAX_SEC", default=30.0),
        default_workspace_id=_get_env("DEFAULT_WORKSPACE_ID", default="default"),
        default_board_id=_optional_env("DEFAULT_BOARD_ID"),
        board_routing=parse_board_routing(_optional_env("BOARD_ROUTING")),
        use_signal_interpreter=_bool_env("USE_SIGNAL_INTERPRETER", default=True),
        use_post_drafter=_bool_env("USE_POST_DRAFTER", default=True),
    )
    return settings.validate()


def load_api_config() -> ApiConfig:
    """Load API configuration from environment variables."""
    backend = _get_env("STORAGE_BACKEND", default="firestore").lower()
    if backend not in STORAGE_BACKENDS:
        raise ConfigError(f"STORAGE_BACKEND must be one of {STORAGE_BACKENDS}, got {backend}")
    return ApiConfig(
        api_key=_optional_env("PIPELINE_API_KEY"),
        storage_backend=backend,
    )
