"""Signal extraction for raw items that passed the quality gate.

Signals come from the SignalInterpreter when one is configured; low-confidence
drafts are dropped and at most ``max_signals`` are kept. When there is no
interpreter, or it finds nothing usable, a single summary signal is derived
from the content so a passed item always yields at least one signal.

Each signal summary is embedded. Embedding failures are logged and leave the
signal with ``embedding=None``; such signals skip similarity matching.
"""

import logging
import re
import uuid
from typing import List, Optional, Tuple

from src.common.logging import log_error, log_item
from src.common.timestamps import utc_now
from src.extraction.capabilities import Embedder, SignalInterpreter
from src.extraction.models import FeedbackSignal, SignalDraft, SignalType
from src.extraction.quality_gate import normalize_text
from src.ingestion.models import RawFeedbackItem

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.5
MAX_SUMMARY_LENGTH = 150
MAX_EVIDENCE_LENGTH = 280

_SENTENCE_END = re.compile(r"(?<=[.!?])\s")

_BUG_WORDS = ("bug", "broken", "error", "crash", "fails", "failing", "doesn't work", "not working")
_USABILITY_WORDS = ("confusing", "hard to", "difficult", "unclear", "too slow", "clunky")
_QUESTION_STARTS = ("how", "can", "is", "does", "what", "why", "where", "when", "do", "are")


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def infer_signal_type(text: str) -> SignalType:
    """Keyword heuristic used when no interpreter output is available."""
    lowered = text.lower()
    if any(word in lowered for word in _BUG_WORDS):
        return SignalType.BUG_REPORT
    if any(word in lowered for word in _USABILITY_WORDS):
        return SignalType.USABILITY_ISSUE
    first_word = lowered.split(" ", 1)[0] if lowered else ""
    if "?" in lowered and first_word in _QUESTION_STARTS:
        return SignalType.QUESTION
    return SignalType.FEATURE_REQUEST


def fallback_draft(item: RawFeedbackItem) -> SignalDraft:
    """Summary signal built from the subject, else the first sentence of the body."""
    body = normalize_text(item.content.text or "")
    subject = normalize_text(item.content.subject or "")
    if subject:
        summary = subject
    else:
        summary = _SENTENCE_END.split(body, maxsplit=1)[0] if body else ""
    summary = _truncate(summary or body, MAX_SUMMARY_LENGTH)

    combined = normalize_text(item.content.combined_text())
    return SignalDraft(
        signal_type=infer_signal_type(combined),
        summary=summary,
        evidence=[_truncate(body or combined, MAX_EVIDENCE_LENGTH)],
        confidence=FALLBACK_CONFIDENCE,
    )


def new_signal_id() -> str:
    return f"sig_{uuid.uuid4().hex}"


class SignalExtractor:
    """Turns an admitted raw item into one or more embedded signals."""

    def __init__(
        self,
        embedder: Optional[Embedder],
        interpreter: Optional[SignalInterpreter] = None,
        *,
        min_confidence: float = 0.5,
        max_signals: int = 5,
    ):
        self.embedder = embedder
        self.interpreter = interpreter
        self.min_confidence = min_confidence
        self.max_signals = max_signals

    def _select_drafts(self, item: RawFeedbackItem) -> List[SignalDraft]:
        if self.interpreter is None:
            return [fallback_draft(item)]

        drafts = self.interpreter.interpret(item.content.combined_text())
        kept = [d for d in drafts if d.confidence >= self.min_confidence]
        kept.sort(key=lambda d: d.confidence, reverse=True)
        kept = kept[: self.max_signals]

        if len(kept) < len(drafts):
            log_item(
                logger,
                "signals_filtered",
                item_id=item.id,
                proposed=len(drafts),
                kept=len(kept),
                min_confidence=self.min_confidence,
            )
        if not kept:
            return [fallback_draft(item)]
        return kept

    def _embed(self, item: RawFeedbackItem, text: str) -> Tuple[Optional[List[float]], Optional[str]]:
        if self.embedder is None:
            return None, None
        try:
            return list(self.embedder.embed(text)), getattr(self.embedder, "model_name", None)
        except Exception as e:
            log_error(
                logger,
                "signal_embedding_failed",
                item_id=item.id,
                error=e,
                event="signal_embedding_failed",
                error_type=type(e).__name__,
            )
            return None, None

    def extract(self, item: RawFeedbackItem) -> List[FeedbackSignal]:
        """Produce signals for ``item``. Interpreter errors propagate."""
        signals: List[FeedbackSignal] = []
        for draft in self._select_drafts(item):
            embedding, embedding_model = self._embed(item, draft.summary)
            signals.append(
                FeedbackSignal(
                    id=new_signal_id(),
                    raw_feedback_item_id=item.id,
                    signal_type=draft.signal_type,
                    summary=draft.summary,
                    evidence=draft.evidence,
                    implicit_need=draft.implicit_need,
                    extraction_confidence=draft.confidence,
                    embedding=embedding,
                    embedding_model=embedding_model,
                    created_at=utc_now(),
                )
            )

        log_item(
            logger,
            "signals_extracted",
            item_id=item.id,
            signal_count=len(signals),
            embedded_count=sum(1 for s in signals if s.has_embedding),
        )
        return signals
