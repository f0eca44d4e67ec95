"""FastAPI router for the suggestion review endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.api.auth import verify_api_key
from src.api.dependencies import get_repository, get_resolution_engine
from src.api.suggestions.models import (
    AcceptRequest,
    DismissRequest,
    PostView,
    SuggestionListResponse,
    SuggestionStatsResponse,
    SuggestionView,
)
from src.common.logging import get_logger
from src.deduplication.models import SuggestionSort, SuggestionStatus, SuggestionType
from src.resolution.engine import (
    BoardRequiredError,
    InvalidStatusTransitionError,
    ResolutionEngine,
    ResolutionError,
)
from src.storage.base import (
    FeedbackRepository,
    InvalidCursorError,
    PostNotFoundError,
    SuggestionNotFoundError,
)

logger = get_logger(__name__)

router = APIRouter(tags=["suggestions"])


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Suggestion not found",
    )


@router.get(
    "/suggestions",
    response_model=SuggestionListResponse,
    responses={
        401: {"description": "Invalid or missing API key"},
        422: {"description": "Invalid query parameters or unknown cursor"},
    },
)
def list_suggestions(
    raw_item_id: Optional[str] = Query(None, alias="rawItemId"),
    status_filter: SuggestionStatus = Query(
        SuggestionStatus.PENDING,
        alias="status",
        description="Filter by suggestion status",
    ),
    type_filter: Optional[SuggestionType] = Query(
        None,
        alias="type",
        description="Filter by suggestion type",
    ),
    board_id: Optional[str] = Query(None, alias="boardId"),
    sort: SuggestionSort = Query(SuggestionSort.NEWEST),
    limit: int = Query(
        50,
        ge=1,
        le=100,
        description="Maximum number of suggestions to return",
    ),
    cursor: Optional[str] = Query(
        None,
        description="Cursor for pagination (last suggestion ID from previous page)",
    ),
    api_key: str = Depends(verify_api_key),
    repository: FeedbackRepository = Depends(get_repository),
) -> SuggestionListResponse:
    """List suggestions, pending by default, newest first or by similarity."""
    try:
        suggestions, next_cursor = repository.list_suggestions(
            raw_item_id=raw_item_id,
            status=status_filter,
            suggestion_type=type_filter,
            board_id=board_id,
            sort=sort,
            limit=limit,
            cursor=cursor,
        )
    except InvalidCursorError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )
    return SuggestionListResponse(
        suggestions=[SuggestionView.from_suggestion(s) for s in suggestions],
        limit=limit,
        next_cursor=next_cursor,
        has_more=next_cursor is not None,
    )


@router.get(
    "/suggestions/stats",
    response_model=SuggestionStatsResponse,
    responses={401: {"description": "Invalid or missing API key"}},
)
def suggestion_stats(
    api_key: str = Depends(verify_api_key),
    repository: FeedbackRepository = Depends(get_repository),
) -> SuggestionStatsResponse:
    """Pending suggestion counts per type plus the total."""
    stats = repository.suggestion_stats()
    return SuggestionStatsResponse(
        merge_post=stats.get(SuggestionType.MERGE_POST.value, 0),
        create_post=stats.get(SuggestionType.CREATE_POST.value, 0),
        total=stats.get("total", 0),
    )


@router.get(
    "/suggestions/{suggestionId}",
    response_model=SuggestionView,
    responses={
        401: {"description": "Invalid or missing API key"},
        404: {"description": "Suggestion not found"},
    },
)
def get_suggestion_detail(
    suggestionId: str,
    api_key: str = Depends(verify_api_key),
    repository: FeedbackRepository = Depends(get_repository),
) -> SuggestionView:
    suggestion = repository.get_suggestion(suggestionId)
    if suggestion is None:
        raise _not_found()
    return SuggestionView.from_suggestion(suggestion)


@router.post(
    "/suggestions/{suggestionId}/accept",
    response_model=PostView,
    responses={
        401: {"description": "Invalid or missing API key"},
        404: {"description": "Suggestion or target post not found"},
        409: {"description": "Suggestion is not in pending state"},
        422: {"description": "Board required or invalid edits"},
    },
)
def accept_suggestion(
    suggestionId: str,
    request: AcceptRequest,
    api_key: str = Depends(verify_api_key),
    engine: ResolutionEngine = Depends(get_resolution_engine),
) -> PostView:
    """Accept a pending suggestion.

    merge_post adds the acting principal's vote to the target post;
    create_post creates a new post. Returns the resulting post.
    """
    try:
        post = engine.accept(suggestionId, request.acting_principal_id, request.edits)
    except SuggestionNotFoundError:
        raise _not_found()
    except PostNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Target post not found",
        )
    except InvalidStatusTransitionError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Suggestion is not in pending state (current: {e.current_status})",
        )
    except BoardRequiredError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )
    except ResolutionError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )
    return PostView.from_post(post)


@router.post(
    "/suggestions/{suggestionId}/dismiss",
    response_model=SuggestionView,
    responses={
        401: {"description": "Invalid or missing API key"},
        404: {"description": "Suggestion not found"},
    },
)
def dismiss_suggestion(
    suggestionId: str,
    request: DismissRequest,
    api_key: str = Depends(verify_api_key),
    engine: ResolutionEngine = Depends(get_resolution_engine),
) -> SuggestionView:
    """Dismiss a suggestion. Already-resolved suggestions are returned unchanged."""
    try:
        suggestion = engine.dismiss(suggestionId, request.acting_principal_id)
    except SuggestionNotFoundError:
        raise _not_found()
    return SuggestionView.from_suggestion(suggestion)
