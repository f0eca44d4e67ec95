"""Pydantic models for the quality gate, signal extraction, post drafts and
per-item outcomes.

Also holds the Gemini response schemas used for structured JSON output.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from src.common.timestamps import to_iso, utc_now


# ============================================================================
# Enums
# ============================================================================


class SignalType(str, Enum):
    """Kinds of product signal a raw item can carry."""

    FEATURE_REQUEST = "feature_request"
    BUG_REPORT = "bug_report"
    USABILITY_ISSUE = "usability_issue"
    QUESTION = "question"
    PRAISE = "praise"
    OTHER = "other"


class GateReason(str, Enum):
    """Why the quality gate admitted or rejected an item."""

    PASSED = "passed"
    TOO_SHORT = "too_short"
    NOT_ACTIONABLE = "not_actionable"


class ItemOutcomeStatus(str, Enum):
    """Result of one pass of the pipeline over a raw item."""

    COMPLETED = "completed"
    GATE_REJECTED = "gate_rejected"
    FAILED = "failed"
    SKIPPED = "skipped"


# ============================================================================
# Gate
# ============================================================================


@dataclass
class GateDecision:
    """Verdict of the quality gate. Not persisted; only logged."""

    passed: bool
    reason: GateReason
    word_count: int
    rationale: Optional[str] = None

    @classmethod
    def admit(cls, word_count: int, rationale: Optional[str] = None) -> "GateDecision":
        return cls(passed=True, reason=GateReason.PASSED, word_count=word_count, rationale=rationale)

    @classmethod
    def reject(
        cls, reason: GateReason, word_count: int, rationale: Optional[str] = None
    ) -> "GateDecision":
        return cls(passed=False, reason=reason, word_count=word_count, rationale=rationale)


class ClassificationResult(BaseModel):
    """Output of an ActionabilityClassifier call."""

    actionable: bool
    rationale: str = ""


# ============================================================================
# Signals
# ============================================================================


class SignalDraft(BaseModel):
    """A signal proposed by the interpreter, before embedding and persistence."""

    signal_type: SignalType = SignalType.OTHER
    summary: str = Field(..., min_length=1)
    evidence: List[str] = Field(default_factory=list)
    implicit_need: Optional[str] = None
    confidence: float = Field(0.5, ge=0.0, le=1.0)

    @field_validator("signal_type", mode="before")
    @classmethod
    def _unknown_type_is_other(cls, value: Any) -> Any:
        if isinstance(value, str) and value not in {t.value for t in SignalType}:
            return SignalType.OTHER
        return value

    @field_validator("summary")
    @classmethod
    def _strip_summary(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("summary must not be blank")
        return stripped


class FeedbackSignal(BaseModel):
    """A typed, possibly embedded distillation of a raw item.

    Immutable once stored; owned by its raw item.
    """

    id: str
    raw_feedback_item_id: str
    signal_type: SignalType
    summary: str
    evidence: List[str] = Field(default_factory=list)
    implicit_need: Optional[str] = None
    extraction_confidence: float = 1.0
    embedding: Optional[List[float]] = None
    embedding_model: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to Firestore-friendly dict."""
        return {
            "id": self.id,
            "raw_feedback_item_id": self.raw_feedback_item_id,
            "signal_type": self.signal_type.value,
            "summary": self.summary,
            "evidence": list(self.evidence),
            "implicit_need": self.implicit_need,
            "extraction_confidence": self.extraction_confidence,
            "embedding": list(self.embedding) if self.embedding is not None else None,
            "embedding_model": self.embedding_model,
            "created_at": to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedbackSignal":
        return cls.model_validate(data)


# ============================================================================
# Post drafts
# ============================================================================


class PostDraft(BaseModel):
    """Title and body a PostDrafter proposes for a create_post suggestion."""

    title: str = Field(..., min_length=1)
    body: str = ""
    board_id: Optional[str] = None
    reasoning: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("title must not be blank")
        return stripped

    @field_validator("body")
    @classmethod
    def _strip_body(cls, value: str) -> str:
        return value.strip()


# ============================================================================
# Outcome
# ============================================================================


class ItemOutcome(BaseModel):
    """Per-item result returned by the pipeline and resolved on worker futures."""

    raw_item_id: str = Field(..., alias="rawItemId")
    status: ItemOutcomeStatus
    retryable: bool = False
    gate_reason: Optional[GateReason] = Field(None, alias="gateReason")
    signal_count: int = Field(0, alias="signalCount")
    suggestion_ids: List[str] = Field(default_factory=list, alias="suggestionIds")
    created_suggestion_count: int = Field(0, alias="createdSuggestionCount")
    error: Optional[str] = None
    attempt: int = 0

    model_config = {"populate_by_name": True}


# ============================================================================
# Gemini Response Schemas (for structured output)
# ============================================================================


def get_classification_response_schema() -> Dict[str, Any]:
    """JSON schema for the actionability classifier response."""
    return {
        "type": "object",
        "properties": {
            "actionable": {"type": "boolean"},
            "rationale": {"type": "string"},
        },
        "required": ["actionable", "rationale"],
    }


def get_signal_response_schema() -> Dict[str, Any]:
    """JSON schema for the signal interpreter response."""
    return {
        "type": "object",
        "properties": {
            "signals": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "signal_type": {
                            "type": "string",
                            "enum": [t.value for t in SignalType],
                        },
                        "summary": {"type": "string"},
                        "evidence": {"type": "array", "items": {"type": "string"}},
                        "implicit_need": {"type": "string"},
                        "confidence": {"type": "number"},
                    },
                    "required": ["signal_type", "summary", "evidence", "confidence"],
                },
            },
        },
        "required": ["signals"],
    }


def get_post_draft_response_schema() -> Dict[str, Any]:
    """JSON schema for the create_post drafting response."""
    return {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "body": {"type": "string"},
            "board_id": {"type": "string", "nullable": True},
            "reasoning": {"type": "string"},
        },
        "required": ["title", "body", "reasoning"],
    }
