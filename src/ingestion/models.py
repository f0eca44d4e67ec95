"""Models for raw feedback items delivered by external ingestion adapters.

A raw item is one inbound message (helpdesk thread, chat message, email, API
call) before any model-based processing. Its ``context_envelope`` is an opaque
bag of source metadata; the pipeline only reads the handful of typed hints
exposed by ``EnvelopeHints``.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from src.common.timestamps import to_iso, utc_now


class SourceType(str, Enum):
    """Kind of external channel that produced a raw item."""

    HELPDESK_CHAT = "helpdesk_chat"
    EMAIL = "email"
    API = "api"
    TICKETING = "ticketing"
    OTHER = "other"


class ProcessingState(str, Enum):
    """Lifecycle of a raw item.

    ready_for_extraction -> extracting -> completed | failed
    """

    READY_FOR_EXTRACTION = "ready_for_extraction"
    EXTRACTING = "extracting"
    COMPLETED = "completed"
    FAILED = "failed"


class FeedbackAuthor(BaseModel):
    """Free-form author details as supplied by the source."""

    model_config = {"populate_by_name": True}

    name: Optional[str] = None
    email: Optional[str] = None
    external_user_id: Optional[str] = Field(None, alias="externalUserId")


class FeedbackContent(BaseModel):
    """Subject line plus body text of an inbound message."""

    subject: Optional[str] = None
    text: str = ""

    def combined_text(self) -> str:
        """Subject and body joined into the text the gate and extractor see."""
        parts = [p.strip() for p in (self.subject, self.text) if p and p.strip()]
        return "\n\n".join(parts)


class EnvelopeHints(BaseModel):
    """Typed view over the few context envelope keys the pipeline reads.

    ``board_id`` pins create_post suggestions to a board; the other hints are
    context for the post drafter.
    """

    channel: Optional[str] = None
    thread_excerpt: Optional[str] = None
    customer_tier: Optional[str] = None
    board_id: Optional[str] = None


def parse_context_envelope(envelope: Optional[Dict[str, Any]]) -> EnvelopeHints:
    """Pull known keys out of an opaque envelope, ignoring everything else.

    Accepts both snake_case and camelCase spellings since adapters differ.
    Non-string values are dropped rather than coerced.
    """
    if not envelope:
        return EnvelopeHints()

    def _pick(*keys: str) -> Optional[str]:
        for key in keys:
            value = envelope.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None

    return EnvelopeHints(
        channel=_pick("channel", "channelName"),
        thread_excerpt=_pick("thread_excerpt", "threadExcerpt"),
        customer_tier=_pick("customer_tier", "customerTier", "plan"),
        board_id=_pick("board_id", "boardId"),
    )


def raw_item_id_for(dedupe_key: str) -> str:
    """Deterministic document id for a dedupe key."""
    digest = hashlib.sha256(dedupe_key.encode("utf-8")).hexdigest()[:32]
    return f"raw_{digest}"


class RawFeedbackItem(BaseModel):
    """One inbound external message and its processing lifecycle."""

    id: str
    workspace_id: str = "default"
    source_id: str
    source_type: SourceType
    external_id: str
    dedupe_key: str
    external_url: Optional[str] = None
    principal_id: Optional[str] = None
    author: FeedbackAuthor = Field(default_factory=FeedbackAuthor)
    content: FeedbackContent
    context_envelope: Dict[str, Any] = Field(default_factory=dict)
    processing_state: ProcessingState = ProcessingState.READY_FOR_EXTRACTION
    state_changed_at: datetime = Field(default_factory=utc_now)
    last_error: Optional[str] = None
    attempt_count: int = 0
    processed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def envelope_hints(self) -> EnvelopeHints:
        return parse_context_envelope(self.context_envelope)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to Firestore-friendly dict."""
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "source_id": self.source_id,
            "source_type": self.source_type.value,
            "external_id": self.external_id,
            "dedupe_key": self.dedupe_key,
            "external_url": self.external_url,
            "principal_id": self.principal_id,
            "author": self.author.model_dump(),
            "content": self.content.model_dump(),
            "context_envelope": dict(self.context_envelope),
            "processing_state": self.processing_state.value,
            "state_changed_at": to_iso(self.state_changed_at),
            "last_error": self.last_error,
            "attempt_count": self.attempt_count,
            "processed_at": to_iso(self.processed_at),
            "created_at": to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawFeedbackItem":
        return cls.model_validate(data)


class IngestRequest(BaseModel):
    """Payload an ingestion adapter submits for one external event."""

    model_config = {"populate_by_name": True}

    source_id: str = Field(..., alias="sourceId", min_length=1)
    source_type: SourceType = Field(..., alias="sourceType")
    external_id: str = Field(..., alias="externalId", min_length=1)
    dedupe_key: str = Field(..., alias="dedupeKey", min_length=1)
    content: FeedbackContent
    author: Optional[FeedbackAuthor] = None
    context_envelope: Optional[Dict[str, Any]] = Field(None, alias="contextEnvelope")
    external_url: Optional[str] = Field(None, alias="externalUrl")
    principal_id: Optional[str] = Field(None, alias="principalId")
    workspace_id: Optional[str] = Field(None, alias="workspaceId")

    @field_validator("source_id", "external_id", "dedupe_key")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @field_validator("content")
    @classmethod
    def _content_not_empty(cls, value: FeedbackContent) -> FeedbackContent:
        if not value.combined_text():
            raise ValueError("content must include a subject or text")
        return value
