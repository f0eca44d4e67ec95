"""Unit tests for the Vertex AI embedding adapter (SDK stubbed)."""

import time
from unittest.mock import MagicMock

import pytest

from src.common.config import EmbeddingConfig
from src.deduplication.embedding_client import (
    EmbeddingClient,
    EmbeddingServiceError,
    EmbeddingTimeoutError,
)


def _config(timeout=5.0, cache_max_entries=2048):
    return EmbeddingConfig(
        model="text-embedding-004",
        project="test-project",
        location="us-central1",
        output_dimensionality=3,
        request_timeout_sec=timeout,
        cache_max_entries=cache_max_entries,
    )


def test_embed_uses_cache():
    client = EmbeddingClient(_config())
    api_call = MagicMock(return_value=[0.1, 0.2, 0.3])
    client._call_embedding_api = api_call

    first = client.embed("dark mode")
    second = client.embed("dark mode")

    assert first == second == [0.1, 0.2, 0.3]
    assert api_call.call_count == 1
    assert client.clear_cache() == 1


def test_cache_evicts_least_recently_used_entry():
    client = EmbeddingClient(_config(cache_max_entries=2))
    api_call = MagicMock(return_value=[0.1, 0.2, 0.3])
    client._call_embedding_api = api_call

    client.embed("dark mode")
    client.embed("pdf export")
    client.embed("dark mode")
    client.embed("sso login")
    assert api_call.call_count == 3

    client.embed("dark mode")
    assert api_call.call_count == 3
    client.embed("pdf export")
    assert api_call.call_count == 4
    assert client.clear_cache() == 2


def test_cache_can_be_disabled():
    client = EmbeddingClient(_config(), cache_enabled=False)
    api_call = MagicMock(return_value=[0.1, 0.2, 0.3])
    client._call_embedding_api = api_call

    client.embed("dark mode")
    client.embed("dark mode")

    assert api_call.call_count == 2


def test_slow_call_times_out():
    client = EmbeddingClient(_config(timeout=0.05))

    def _slow(text):
        time.sleep(0.5)
        return [0.0, 0.0, 1.0]

    client._call_embedding_api = _slow

    with pytest.raises(EmbeddingTimeoutError) as exc_info:
        client.embed("dark mode")

    assert exc_info.value.retryable is True


def test_service_errors_propagate():
    client = EmbeddingClient(_config())
    client._call_embedding_api = MagicMock(side_effect=EmbeddingServiceError("Embedding API error: 400"))

    with pytest.raises(EmbeddingServiceError):
        client.embed("dark mode")


def test_model_name_comes_from_config():
    assert EmbeddingClient(_config()).model_name == "text-embedding-004"
