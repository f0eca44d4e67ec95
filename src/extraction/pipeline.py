"""Ingestion state machine: drives one raw item through the pipeline.

    ready_for_extraction -> extracting -> completed | failed

``process()`` claims the item with a conditional update, then runs quality
gate -> signal extractor -> similarity matcher -> suggestion builder and marks
the item completed. Any exception in those stages is caught here, persisted as
``last_error`` on a failed item, and reported in the returned ItemOutcome; it
never escapes into the worker.

Re-running ``process()`` for an item is safe: signals are replaced and the
builder will not insert a second pending suggestion of the same type. A pass
that ends at the quality gate removes whatever an earlier pass of the same
item left behind, so a rejected item never owns signals or pending
suggestions.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, List, Optional

from src.common.config import PipelineSettings
from src.common.logging import log_error, log_item, log_outcome
from src.common.timestamps import utc_now
from src.deduplication.matcher import SimilarityMatcher
from src.deduplication.suggestion_builder import SuggestionBuilder
from src.extraction.capabilities import (
    ActionabilityClassifier,
    CapabilityError,
    Embedder,
    PostDrafter,
    SignalInterpreter,
)
from src.extraction.models import ItemOutcome, ItemOutcomeStatus
from src.extraction.quality_gate import QualityGate
from src.extraction.signal_extractor import SignalExtractor
from src.ingestion.models import ProcessingState, RawFeedbackItem
from src.storage.base import FeedbackRepository

logger = logging.getLogger(__name__)

# Recorded as resolved_by_principal_id on suggestions dismissed by a gate reject.
GATE_PRINCIPAL_ID = "system:quality_gate"


def is_retryable(error: BaseException) -> bool:
    """Capability failures are worth another attempt; anything else is not."""
    return isinstance(error, CapabilityError) and error.retryable


def describe_error(error: BaseException) -> str:
    message = str(error).strip()
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


class FeedbackPipeline:
    """Per-item pipeline with explicit dependencies.

    All collaborators are passed in so tests can substitute fakes; use
    ``from_settings`` to wire the standard stages from configuration.
    """

    def __init__(
        self,
        repository: FeedbackRepository,
        gate: QualityGate,
        extractor: SignalExtractor,
        matcher: SimilarityMatcher,
        builder: SuggestionBuilder,
        *,
        max_attempts: int = 3,
        claim_stale_after_sec: float = 600.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.gate = gate
        self.extractor = extractor
        self.matcher = matcher
        self.builder = builder
        self.max_attempts = max_attempts
        self.claim_stale_after_sec = claim_stale_after_sec
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        repository: FeedbackRepository,
        settings: PipelineSettings,
        *,
        classifier: ActionabilityClassifier,
        embedder: Optional[Embedder],
        interpreter: Optional[SignalInterpreter] = None,
        drafter: Optional[PostDrafter] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "FeedbackPipeline":
        return cls(
            repository,
            QualityGate(classifier, min_word_count=settings.min_word_count),
            SignalExtractor(
                embedder,
                interpreter if settings.use_signal_interpreter else None,
                min_confidence=settings.min_signal_confidence,
                max_signals=settings.max_signals_per_item,
            ),
            SimilarityMatcher(repository, threshold=settings.similarity_threshold),
            SuggestionBuilder(
                repository,
                default_board_id=settings.default_board_id,
                board_routing=settings.board_routing,
                drafter=drafter if settings.use_post_drafter else None,
            ),
            max_attempts=settings.max_attempts,
            claim_stale_after_sec=settings.claim_stale_after_sec,
            clock=clock,
        )

    def process(self, raw_item_id: str) -> ItemOutcome:
        """Run one pass of the pipeline for ``raw_item_id``.

        Returns an ItemOutcome; never raises for pipeline-stage errors.
        """
        started_at = time.monotonic()
        item = self.repository.claim_raw_item(
            raw_item_id,
            now=self.clock(),
            stale_after_sec=self.claim_stale_after_sec,
            max_attempts=self.max_attempts,
        )
        if item is None:
            log_item(logger, "item_not_claimed", item_id=raw_item_id)
            return ItemOutcome(raw_item_id=raw_item_id, status=ItemOutcomeStatus.SKIPPED)

        log_item(
            logger,
            "item_claimed",
            item_id=item.id,
            attempt=item.attempt_count,
            source_type=item.source_type.value,
            source_id=item.source_id,
        )

        try:
            outcome = self._run_stages(item)
            completed = self.repository.transition_raw_item(
                item.id,
                expected_state=ProcessingState.EXTRACTING,
                new_state=ProcessingState.COMPLETED,
                now=self.clock(),
                expected_attempt=item.attempt_count,
            )
        except Exception as e:
            return self._fail(item, e, started_at)

        if not completed:
            logger.warning(
                "item_completion_superseded",
                extra={"event": "item_completion_superseded", "item_id": item.id},
            )
        log_outcome(
            logger,
            item_id=item.id,
            status=outcome.status.value,
            started_at=started_at,
            attempt=item.attempt_count,
            gate_reason=outcome.gate_reason.value if outcome.gate_reason else None,
            signal_count=outcome.signal_count,
            created_suggestion_count=outcome.created_suggestion_count,
        )
        return outcome

    def _run_stages(self, item: RawFeedbackItem) -> ItemOutcome:
        decision = self.gate.admit(item)
        if not decision.passed:
            self._discard_earlier_output(item)
            return ItemOutcome(
                raw_item_id=item.id,
                status=ItemOutcomeStatus.GATE_REJECTED,
                gate_reason=decision.reason,
                attempt=item.attempt_count,
            )

        signals = self.extractor.extract(item)
        self.repository.replace_signals(item.id, signals)

        suggestion_ids: List[str] = []
        created_count = 0
        for signal in signals:
            match = None
            if signal.has_embedding:
                match = self.matcher.match(signal.embedding, item.workspace_id, item_id=item.id)
            suggestion, created = self.builder.build(item, signal, match)
            if suggestion.id not in suggestion_ids:
                suggestion_ids.append(suggestion.id)
            if created:
                created_count += 1

        return ItemOutcome(
            raw_item_id=item.id,
            status=ItemOutcomeStatus.COMPLETED,
            gate_reason=decision.reason,
            signal_count=len(signals),
            suggestion_ids=suggestion_ids,
            created_suggestion_count=created_count,
            attempt=item.attempt_count,
        )

    def _discard_earlier_output(self, item: RawFeedbackItem) -> None:
        self.repository.replace_signals(item.id, [])
        dismissed = self.repository.dismiss_pending_suggestions(
            item.id, now=self.clock(), principal_id=GATE_PRINCIPAL_ID
        )
        if dismissed:
            log_item(
                logger,
                "stale_suggestions_dismissed",
                item_id=item.id,
                attempt=item.attempt_count,
                dismissed_count=dismissed,
            )

    def _fail(self, item: RawFeedbackItem, error: Exception, started_at: float) -> ItemOutcome:
        message = describe_error(error)
        retryable = is_retryable(error)

        log_error(
            logger,
            "item_failed",
            item_id=item.id,
            error=error,
            event="item_failed",
            attempt=item.attempt_count,
            retryable=retryable,
        )
        try:
            self.repository.transition_raw_item(
                item.id,
                expected_state=ProcessingState.EXTRACTING,
                new_state=ProcessingState.FAILED,
                now=self.clock(),
                last_error=message,
                expected_attempt=item.attempt_count,
            )
        except Exception as persist_error:
            # Item stays extracting and becomes reclaimable once stale.
            log_error(
                logger,
                "item_failure_not_persisted",
                item_id=item.id,
                error=persist_error,
                event="item_failure_not_persisted",
            )

        log_outcome(
            logger,
            item_id=item.id,
            status=ItemOutcomeStatus.FAILED.value,
            started_at=started_at,
            attempt=item.attempt_count,
            retryable=retryable,
        )

        return ItemOutcome(
            raw_item_id=item.id,
            status=ItemOutcomeStatus.FAILED,
            retryable=retryable,
            error=message,
            attempt=item.attempt_count,
        )
