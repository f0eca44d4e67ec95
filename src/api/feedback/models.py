"""Request/response models for the /feedback/items endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from src.extraction.models import FeedbackSignal, SignalType
from src.ingestion.models import ProcessingState, RawFeedbackItem, SourceType


class SignalView(BaseModel):
    """A signal extracted from a raw item."""

    model_config = {"populate_by_name": True}

    id: str
    signal_type: SignalType = Field(..., alias="signalType")
    summary: str
    evidence: List[str] = Field(default_factory=list)
    implicit_need: Optional[str] = Field(None, alias="implicitNeed")
    extraction_confidence: float = Field(..., alias="extractionConfidence")
    has_embedding: bool = Field(..., alias="hasEmbedding")
    created_at: datetime = Field(..., alias="createdAt")

    @classmethod
    def from_signal(cls, signal: FeedbackSignal) -> "SignalView":
        return cls(
            id=signal.id,
            signal_type=signal.signal_type,
            summary=signal.summary,
            evidence=signal.evidence,
            implicit_need=signal.implicit_need,
            extraction_confidence=signal.extraction_confidence,
            has_embedding=signal.has_embedding,
            created_at=signal.created_at,
        )


class RawItemView(BaseModel):
    """Processing state of a raw item as shown to operators."""

    model_config = {"populate_by_name": True}

    id: str
    workspace_id: str = Field(..., alias="workspaceId")
    source_id: str = Field(..., alias="sourceId")
    source_type: SourceType = Field(..., alias="sourceType")
    external_id: str = Field(..., alias="externalId")
    external_url: Optional[str] = Field(None, alias="externalUrl")
    processing_state: ProcessingState = Field(..., alias="processingState")
    attempt_count: int = Field(..., alias="attemptCount")
    last_error: Optional[str] = Field(None, alias="lastError")
    state_changed_at: datetime = Field(..., alias="stateChangedAt")
    processed_at: Optional[datetime] = Field(None, alias="processedAt")
    created_at: datetime = Field(..., alias="createdAt")

    @classmethod
    def _fields_from(cls, item: RawFeedbackItem) -> Dict[str, Any]:
        return dict(
            id=item.id,
            workspace_id=item.workspace_id,
            source_id=item.source_id,
            source_type=item.source_type,
            external_id=item.external_id,
            external_url=item.external_url,
            processing_state=item.processing_state,
            attempt_count=item.attempt_count,
            last_error=item.last_error,
            state_changed_at=item.state_changed_at,
            processed_at=item.processed_at,
            created_at=item.created_at,
        )

    @classmethod
    def from_item(cls, item: RawFeedbackItem) -> "RawItemView":
        return cls(**cls._fields_from(item))


class RawItemDetail(RawItemView):
    """Raw item plus its content and extracted signals."""

    subject: Optional[str] = None
    text: str = ""
    signals: List[SignalView] = Field(default_factory=list)

    @classmethod
    def from_item_and_signals(
        cls, item: RawFeedbackItem, signals: List[FeedbackSignal]
    ) -> "RawItemDetail":
        return cls(
            **cls._fields_from(item),
            subject=item.content.subject,
            text=item.content.text,
            signals=[SignalView.from_signal(s) for s in signals],
        )


class IngestResponse(BaseModel):
    created: bool
    submitted: bool = False
    item: RawItemView


class ExtractionQueuedResponse(BaseModel):
    model_config = {"populate_by_name": True}

    raw_item_id: str = Field(..., alias="rawItemId")
    status: str = "queued"


class RetryFailedResponse(BaseModel):
    resubmitted: int
