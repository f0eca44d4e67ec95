"""Pydantic request/response models for the suggestion review API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from src.deduplication.models import (
    FeedbackSuggestion,
    Post,
    SuggestionEdits,
    SuggestionStatus,
    SuggestionType,
)


# =============================================================================
# Request Models
# =============================================================================


class AcceptRequest(BaseModel):
    """Request body for accepting a suggestion."""

    model_config = {"populate_by_name": True}

    acting_principal_id: str = Field(..., alias="actingPrincipalId", min_length=1)
    edits: Optional[SuggestionEdits] = Field(
        None, description="Title/body/board overrides for create_post suggestions"
    )

    @field_validator("acting_principal_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class DismissRequest(BaseModel):
    """Request body for dismissing a suggestion."""

    model_config = {"populate_by_name": True}

    acting_principal_id: str = Field(..., alias="actingPrincipalId", min_length=1)

    @field_validator("acting_principal_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


# =============================================================================
# Response Models
# =============================================================================


class SuggestionView(BaseModel):
    """A suggestion as shown in the review queue."""

    model_config = {"populate_by_name": True}

    id: str
    raw_feedback_item_id: str = Field(..., alias="rawFeedbackItemId")
    signal_id: Optional[str] = Field(None, alias="signalId")
    workspace_id: str = Field(..., alias="workspaceId")
    type: SuggestionType
    status: SuggestionStatus
    target_post_id: Optional[str] = Field(None, alias="targetPostId")
    target_post_title: Optional[str] = Field(None, alias="targetPostTitle")
    similarity_score: Optional[float] = Field(None, alias="similarityScore")
    suggested_title: Optional[str] = Field(None, alias="suggestedTitle")
    suggested_body: Optional[str] = Field(None, alias="suggestedBody")
    board_id: Optional[str] = Field(None, alias="boardId")
    reasoning: Optional[str] = None
    result_post_id: Optional[str] = Field(None, alias="resultPostId")
    resolved_at: Optional[datetime] = Field(None, alias="resolvedAt")
    resolved_by_principal_id: Optional[str] = Field(None, alias="resolvedByPrincipalId")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    @classmethod
    def from_suggestion(cls, suggestion: FeedbackSuggestion) -> "SuggestionView":
        return cls(
            id=suggestion.id,
            raw_feedback_item_id=suggestion.raw_feedback_item_id,
            signal_id=suggestion.signal_id,
            workspace_id=suggestion.workspace_id,
            type=suggestion.suggestion_type,
            status=suggestion.status,
            target_post_id=suggestion.target_post_id,
            target_post_title=suggestion.target_post_title,
            similarity_score=suggestion.similarity_score,
            suggested_title=suggestion.suggested_title,
            suggested_body=suggestion.suggested_body,
            board_id=suggestion.board_id,
            reasoning=suggestion.reasoning,
            result_post_id=suggestion.result_post_id,
            resolved_at=suggestion.resolved_at,
            resolved_by_principal_id=suggestion.resolved_by_principal_id,
            created_at=suggestion.created_at,
            updated_at=suggestion.updated_at,
        )


class SuggestionListResponse(BaseModel):
    """Response for listing suggestions with cursor-based pagination."""

    model_config = {"populate_by_name": True}

    suggestions: List[SuggestionView]
    limit: int
    next_cursor: Optional[str] = Field(
        None,
        alias="nextCursor",
        description="Cursor for next page (last suggestion ID), null if no more results",
    )
    has_more: bool = Field(..., alias="hasMore")


class SuggestionStatsResponse(BaseModel):
    """Pending suggestion counts."""

    model_config = {"populate_by_name": True}

    merge_post: int = Field(0, alias="mergePost")
    create_post: int = Field(0, alias="createPost")
    total: int = 0


class PostView(BaseModel):
    """The post a suggestion was accepted into."""

    model_config = {"populate_by_name": True}

    id: str
    workspace_id: str = Field(..., alias="workspaceId")
    board_id: Optional[str] = Field(None, alias="boardId")
    title: str
    content: str = ""
    vote_count: int = Field(..., alias="voteCount")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @classmethod
    def from_post(cls, post: Post) -> "PostView":
        return cls(
            id=post.id,
            workspace_id=post.workspace_id,
            board_id=post.board_id,
            title=post.title,
            content=post.content,
            vote_count=post.vote_count,
            created_at=post.created_at,
            updated_at=post.updated_at,
        )
