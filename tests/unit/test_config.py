"""Unit tests for environment-driven configuration."""

import pytest

from src.common.config import (
    ConfigError,
    PipelineSettings,
    load_api_config,
    load_embedding_config,
    load_gemini_config,
    load_pipeline_settings,
    parse_board_routing,
)

PIPELINE_KEYS = [
    "QUALITY_GATE_MIN_WORDS",
    "SIMILARITY_THRESHOLD",
    "MIN_SIGNAL_CONFIDENCE",
    "MAX_SIGNALS_PER_ITEM",
    "MAX_EXTRACTION_ATTEMPTS",
    "CLAIM_STALE_AFTER_SECONDS",
    "WORKER_CONCURRENCY",
    "RETRY_BACKOFF_MIN_SEC",
    "RETRY_BACKOFF_MAX_SEC",
    "DEFAULT_WORKSPACE_ID",
    "DEFAULT_BOARD_ID",
    "BOARD_ROUTING",
    "USE_SIGNAL_INTERPRETER",
    "USE_POST_DRAFTER",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in PIPELINE_KEYS + ["STORAGE_BACKEND", "PIPELINE_API_KEY", "GEMINI_MODEL"]:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_pipeline_defaults(clean_env):
    settings = load_pipeline_settings()

    assert settings.min_word_count == 5
    assert settings.similarity_threshold == 0.80
    assert settings.max_attempts == 3
    assert settings.default_board_id is None
    assert settings.board_routing == {}
    assert settings.use_signal_interpreter is True
    assert settings.use_post_drafter is True


def test_pipeline_overrides(clean_env):
    clean_env.setenv("QUALITY_GATE_MIN_WORDS", "8")
    clean_env.setenv("SIMILARITY_THRESHOLD", "0.85")
    clean_env.setenv("WORKER_CONCURRENCY", "16")
    clean_env.setenv("DEFAULT_BOARD_ID", "board_general")
    clean_env.setenv("BOARD_ROUTING", "bug_report=board_bugs")
    clean_env.setenv("USE_SIGNAL_INTERPRETER", "off")
    clean_env.setenv("USE_POST_DRAFTER", "false")

    settings = load_pipeline_settings()

    assert settings.min_word_count == 8
    assert settings.similarity_threshold == 0.85
    assert settings.worker_concurrency == 16
    assert settings.default_board_id == "board_general"
    assert settings.board_routing == {"bug_report": "board_bugs"}
    assert settings.use_signal_interpreter is False
    assert settings.use_post_drafter is False


@pytest.mark.parametrize(
    "key, value",
    [
        ("SIMILARITY_THRESHOLD", "1.5"),
        ("SIMILARITY_THRESHOLD", "high"),
        ("MAX_EXTRACTION_ATTEMPTS", "0"),
        ("USE_SIGNAL_INTERPRETER", "maybe"),
        ("QUALITY_GATE_MIN_WORDS", "-1"),
    ],
)
def test_invalid_pipeline_values(clean_env, key, value):
    clean_env.setenv(key, value)

    with pytest.raises(ConfigError):
        load_pipeline_settings()


def test_backoff_bounds_validated():
    with pytest.raises(ConfigError):
        PipelineSettings(retry_backoff_min_sec=10.0, retry_backoff_max_sec=1.0).validate()


def test_parse_board_routing():
    assert parse_board_routing(None) == {}
    assert parse_board_routing(" bug_report = board_bugs ,feature_request=board_ideas,") == {
        "bug_report": "board_bugs",
        "feature_request": "board_ideas",
    }
    with pytest.raises(ConfigError):
        parse_board_routing("bug_report")
    with pytest.raises(ConfigError):
        parse_board_routing("=board_bugs")


def test_api_config(clean_env):
    clean_env.setenv("STORAGE_BACKEND", "Memory")
    clean_env.setenv("PIPELINE_API_KEY", "secret")

    config = load_api_config()

    assert config.storage_backend == "memory"
    assert config.api_key == "secret"


def test_api_config_rejects_unknown_backend(clean_env):
    clean_env.setenv("STORAGE_BACKEND", "postgres")

    with pytest.raises(ConfigError):
        load_api_config()


def test_gemini_defaults(clean_env):
    clean_env.delenv("GEMINI_TEMPERATURE", raising=False)

    config = load_gemini_config()

    assert config.model == "gemini-2.5-flash"
    assert config.temperature == 0.1


def test_embedding_cache_size_from_env(monkeypatch):
    monkeypatch.setenv("EMBEDDING_CACHE_MAX_ENTRIES", "16")

    assert load_embedding_config().cache_max_entries == 16
