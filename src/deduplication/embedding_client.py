"""Vertex AI embedding client used to embed signal summaries.

Uses text-embedding-004 (768 dimensions) with task type SEMANTIC_SIMILARITY.
Rate-limit errors are retried 3 times with exponential backoff (1s -> 2s -> 4s);
each API call is bounded by ``EmbeddingConfig.request_timeout_sec``.
"""

from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import List, Optional
import hashlib
import logging
import threading

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from src.common.config import EmbeddingConfig, load_embedding_config
from src.extraction.capabilities import (
    CapabilityConfigurationError,
    CapabilityError,
    CapabilityTimeoutError,
)

logger = logging.getLogger(__name__)


class EmbeddingServiceError(CapabilityError):
    """Base exception for embedding service errors."""

    pass


class RateLimitError(EmbeddingServiceError):
    """Raised when Vertex AI returns a rate limit (429) error."""

    pass


class EmbeddingTimeoutError(EmbeddingServiceError, CapabilityTimeoutError):
    """Embedding call exceeded its timeout."""

    pass


class EmbeddingConfigurationError(EmbeddingServiceError, CapabilityConfigurationError):
    """Vertex AI SDK missing or model could not be initialized."""

    retryable = False


class EmbeddingClient:
    """Embedder backed by Vertex AI text embeddings.

    Provides:
    - Single text embedding with a bounded LRU cache keyed by text hash
    - Exponential backoff retry for rate limit handling
    - A hard per-call timeout so a stalled request cannot hold a worker

    Usage:
        client = EmbeddingClient()
        vector = client.embed("Export dashboards to PDF")
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        cache_enabled: bool = True,
    ):
        self.config = config or load_embedding_config()
        self.cache_enabled = cache_enabled
        self._cache: "OrderedDict[str, List[float]]" = OrderedDict()
        self._cache_lock = threading.Lock()
        self._model = None
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="embedding-call")

    @property
    def model_name(self) -> str:
        return self.config.model

    def _get_model(self):
        """Lazy-load the Vertex AI embedding model.

        Raises:
            EmbeddingConfigurationError: If model initialization fails.
        """
        if self._model is None:
            try:
                import vertexai
                from vertexai.language_models import TextEmbeddingModel

                vertexai.init(
                    project=self.config.project,
                    location=self.config.location,
                )
                self._model = TextEmbeddingModel.from_pretrained(self.config.model)
                logger.info(
                    "Initialized embedding model",
                    extra={
                        "model": self.config.model,
                        "project": self.config.project,
                        "location": self.config.location,
                    },
                )
            except Exception as e:
                raise EmbeddingConfigurationError(f"Failed to initialize embedding model: {e}") from e
        return self._model

    def _cache_key(self, text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_exception_type(RateLimitError),
        reraise=True,
    )
    def _call_embedding_api(self, text: str) -> List[float]:
        """Call Vertex AI with retry on rate limits.

        Raises:
            RateLimitError: If rate limited (triggers retry).
            EmbeddingServiceError: For other API errors.
        """
        model = self._get_model()

        try:
            from vertexai.language_models import TextEmbeddingInput

            inputs = [TextEmbeddingInput(text=text, task_type="SEMANTIC_SIMILARITY")]
            embeddings = model.get_embeddings(
                texts=inputs,
                output_dimensionality=self.config.output_dimensionality,
            )
            return list(embeddings[0].values)
        except Exception as e:
            error_str = str(e).lower()
            if "429" in error_str or "quota" in error_str or "rate" in error_str:
                logger.warning(
                    "Rate limit hit, will retry",
                    extra={"error": str(e), "text_length": len(text)},
                )
                raise RateLimitError(str(e)) from e
            raise EmbeddingServiceError(f"Embedding API error: {e}") from e

    def embed(self, text: str) -> List[float]:
        """Embed ``text``, consulting the cache first.

        Raises:
            EmbeddingTimeoutError: If the call exceeds the configured timeout.
            EmbeddingServiceError: If embedding generation fails.
        """
        key = self._cache_key(text)
        cached = self._cache_get(key) if self.cache_enabled else None
        if cached is not None:
            logger.debug("Cache hit for embedding", extra={"text_length": len(text)})
            return cached

        future = self._executor.submit(self._call_embedding_api, text)
        try:
            embedding = future.result(timeout=self.config.request_timeout_sec)
        except FuturesTimeoutError:
            future.cancel()
            message = f"Embedding request exceeded timeout of {self.config.request_timeout_sec}s"
            logger.warning(message)
            raise EmbeddingTimeoutError(message)

        if self.cache_enabled:
            self._cache_put(key, embedding)
        return embedding

    def _cache_get(self, key: str) -> Optional[List[float]]:
        with self._cache_lock:
            embedding = self._cache.get(key)
            if embedding is not None:
                self._cache.move_to_end(key)
            return embedding

    def _cache_put(self, key: str, embedding: List[float]) -> None:
        with self._cache_lock:
            self._cache[key] = embedding
            self._cache.move_to_end(key)
            while len(self._cache) > self.config.cache_max_entries:
                self._cache.popitem(last=False)

    def clear_cache(self) -> int:
        """Clear the in-memory cache and return how many entries were dropped."""
        with self._cache_lock:
            count = len(self._cache)
            self._cache.clear()
        return count
