"""Model capabilities consumed by the pipeline.

The pipeline never talks to Vertex AI or Gemini directly; it receives objects
satisfying these protocols. Production adapters live in
``src.deduplication.embedding_client`` and ``src.extraction.gemini_client``;
tests pass fakes.

Adapters enforce their own timeouts and raise ``CapabilityError`` subclasses.
``retryable`` tells the state machine whether a failure is worth another
queue attempt.
"""

from typing import List, Protocol, Sequence, runtime_checkable

from src.extraction.models import ClassificationResult, FeedbackSignal, PostDraft, SignalDraft
from src.ingestion.models import RawFeedbackItem


class CapabilityError(Exception):
    """Base exception for embedder, classifier, interpreter and drafter failures."""

    retryable: bool = True


class CapabilityTimeoutError(CapabilityError):
    """A capability call exceeded its time budget."""

    pass


class CapabilityConfigurationError(CapabilityError):
    """The capability cannot be used at all (missing package, bad credentials)."""

    retryable = False


@runtime_checkable
class Embedder(Protocol):
    model_name: str

    def embed(self, text: str) -> List[float]:
        """Return a fixed-length vector for ``text``."""
        ...


@runtime_checkable
class ActionabilityClassifier(Protocol):
    def classify(self, text: str) -> ClassificationResult:
        """Judge whether ``text`` is actionable product feedback."""
        ...


@runtime_checkable
class SignalInterpreter(Protocol):
    def interpret(self, text: str) -> List[SignalDraft]:
        """Propose typed signals found in ``text``."""
        ...


@runtime_checkable
class PostDrafter(Protocol):
    def draft_post(
        self,
        signal: FeedbackSignal,
        item: RawFeedbackItem,
        board_ids: Sequence[str],
    ) -> PostDraft:
        """Write a board post title and body for a signal with no merge target.

        ``board_ids`` lists the boards the draft may pick from.
        """
        ...
