"""Pydantic models for posts, votes, similarity matches and suggestions.

Posts and votes belong to the wider product; the pipeline only reads posts as
merge candidates and writes them through the resolution engine.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from src.common.timestamps import to_iso, utc_now


# ============================================================================
# Enums
# ============================================================================


class SuggestionType(str, Enum):
    """What accepting the suggestion does."""

    MERGE_POST = "merge_post"
    CREATE_POST = "create_post"


class SuggestionStatus(str, Enum):
    """Status of a suggestion.

    State transitions:
    - pending -> accepted (terminal)
    - pending -> dismissed (terminal)
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    DISMISSED = "dismissed"


class SuggestionSort(str, Enum):
    """Ordering for suggestion listings."""

    NEWEST = "newest"
    SIMILARITY = "similarity"


# ============================================================================
# Posts and votes
# ============================================================================


class Post(BaseModel):
    """An existing feature request that signals may be merged into."""

    id: str
    workspace_id: str = "default"
    board_id: Optional[str] = None
    title: str
    content: str = ""
    vote_count: int = 0
    embedding: Optional[List[float]] = None
    author_principal_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to Firestore-friendly dict."""
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "board_id": self.board_id,
            "title": self.title,
            "content": self.content,
            "vote_count": self.vote_count,
            "embedding": list(self.embedding) if self.embedding is not None else None,
            "author_principal_id": self.author_principal_id,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Post":
        return cls.model_validate(data)


def vote_key(post_id: str, principal_id: str) -> str:
    """Document id enforcing one vote per (post, principal)."""
    return f"{post_id}:{principal_id}".replace("/", "_")


class Vote(BaseModel):
    post_id: str
    principal_id: str
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def key(self) -> str:
        return vote_key(self.post_id, self.principal_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "post_id": self.post_id,
            "principal_id": self.principal_id,
            "created_at": to_iso(self.created_at),
        }


@dataclass
class MatchResult:
    """Best merge candidate for a signal embedding."""

    post: Post
    score: float


# ============================================================================
# Core Entity: FeedbackSuggestion
# ============================================================================


class FeedbackSuggestion(BaseModel):
    """A proposed merge into an existing post, or a proposed new post.

    ``result_post_id`` stays null until the suggestion is accepted.
    """

    id: str
    raw_feedback_item_id: str
    signal_id: Optional[str] = None
    workspace_id: str = "default"
    suggestion_type: SuggestionType
    status: SuggestionStatus = SuggestionStatus.PENDING

    # merge_post
    target_post_id: Optional[str] = None
    target_post_title: Optional[str] = None
    similarity_score: Optional[float] = Field(None, ge=0.0, le=1.0)

    # create_post
    suggested_title: Optional[str] = None
    suggested_body: Optional[str] = None
    board_id: Optional[str] = None
    embedding: Optional[List[float]] = None

    reasoning: Optional[str] = None
    result_post_id: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by_principal_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_resolved(self) -> bool:
        return self.status != SuggestionStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to Firestore-friendly dict.

        Nullable fields are written explicitly so ordering on
        ``similarity_score`` still includes create_post rows.
        """
        return {
            "id": self.id,
            "raw_feedback_item_id": self.raw_feedback_item_id,
            "signal_id": self.signal_id,
            "workspace_id": self.workspace_id,
            "suggestion_type": self.suggestion_type.value,
            "status": self.status.value,
            "target_post_id": self.target_post_id,
            "target_post_title": self.target_post_title,
            "similarity_score": self.similarity_score,
            "suggested_title": self.suggested_title,
            "suggested_body": self.suggested_body,
            "board_id": self.board_id,
            "embedding": list(self.embedding) if self.embedding is not None else None,
            "reasoning": self.reasoning,
            "result_post_id": self.result_post_id,
            "resolved_at": to_iso(self.resolved_at),
            "resolved_by_principal_id": self.resolved_by_principal_id,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedbackSuggestion":
        return cls.model_validate(data)


class SuggestionEdits(BaseModel):
    """Reviewer overrides applied when accepting a create_post suggestion."""

    model_config = {"populate_by_name": True}

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    body: Optional[str] = None
    board_id: Optional[str] = Field(None, alias="boardId")
