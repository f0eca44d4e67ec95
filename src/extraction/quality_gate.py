"""Quality gate deciding whether a raw item is worth extracting.

Two stages:
1. Word-count floor on the normalized content. Cheap; filters "ok"/"thanks".
2. ActionabilityClassifier on what survives. Filters greetings, auto-replies
   and support acknowledgements.

Classifier errors are not caught here; the state machine turns them into a
failed item.
"""

import logging
import re

from src.common.logging import log_decision
from src.extraction.capabilities import ActionabilityClassifier
from src.extraction.models import GateDecision, GateReason
from src.ingestion.models import RawFeedbackItem

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Collapse runs of whitespace and trim."""
    return _WHITESPACE.sub(" ", text).strip()


def count_words(text: str) -> int:
    normalized = normalize_text(text)
    return len(normalized.split(" ")) if normalized else 0


class QualityGate:
    """Admit/reject filter applied before signal extraction."""

    def __init__(self, classifier: ActionabilityClassifier, min_word_count: int = 5):
        self.classifier = classifier
        self.min_word_count = min_word_count

    def admit(self, item: RawFeedbackItem) -> GateDecision:
        text = normalize_text(item.content.combined_text())
        word_count = count_words(text)

        if word_count < self.min_word_count:
            decision = GateDecision.reject(
                GateReason.TOO_SHORT,
                word_count,
                rationale=f"{word_count} words is below the floor of {self.min_word_count}",
            )
        else:
            result = self.classifier.classify(text)
            if result.actionable:
                decision = GateDecision.admit(word_count, rationale=result.rationale)
            else:
                decision = GateDecision.reject(
                    GateReason.NOT_ACTIONABLE, word_count, rationale=result.rationale
                )

        log_decision(
            logger,
            item_id=item.id,
            action="quality_gate",
            outcome=decision.reason.value,
            word_count=word_count,
            rationale=decision.rationale,
        )
        return decision
