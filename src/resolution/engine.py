"""Resolution engine: reviewer accept/dismiss and the shared vote primitive.

Every mutation runs inside ``FeedbackRepository.run_in_transaction`` so a
suggestion is never observable as accepted without its vote and vote-count
change, or vice versa. Transaction bodies read everything first and write
last.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional, Tuple

from src.common.logging import log_audit
from src.common.timestamps import utc_now
from src.deduplication.models import (
    FeedbackSuggestion,
    Post,
    SuggestionEdits,
    SuggestionStatus,
    SuggestionType,
    Vote,
)
from src.storage.base import (
    FeedbackRepository,
    PostNotFoundError,
    RepositoryTransaction,
    SuggestionNotFoundError,
)

logger = logging.getLogger(__name__)


class ResolutionError(Exception):
    """Base exception for suggestion resolution errors."""

    pass


class InvalidStatusTransitionError(ResolutionError):
    """Raised when attempting an invalid status transition."""

    def __init__(self, current_status: str, target_status: str):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Cannot transition from '{current_status}' to '{target_status}'"
        )


class BoardRequiredError(ResolutionError):
    """Raised when a create_post acceptance has no board to put the post on."""

    pass


def new_post_id() -> str:
    return f"post_{uuid.uuid4().hex}"


def _resolve(
    suggestion: FeedbackSuggestion,
    status: SuggestionStatus,
    actor_id: str,
    now: datetime,
    result_post_id: Optional[str] = None,
) -> FeedbackSuggestion:
    return suggestion.model_copy(update={
        "status": status,
        "result_post_id": result_post_id,
        "resolved_at": now,
        "resolved_by_principal_id": actor_id,
        "updated_at": now,
    })


class ResolutionEngine:
    """Applies reviewer decisions to suggestions."""

    def __init__(
        self,
        repository: FeedbackRepository,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.clock = clock

    def accept(
        self,
        suggestion_id: str,
        actor_id: str,
        edits: Optional[SuggestionEdits] = None,
    ) -> Post:
        """Accept a pending suggestion and return the resulting post.

        merge_post adds the actor's vote to the target post (at most once per
        principal). create_post creates a post with the actor's vote on it.

        Raises:
            SuggestionNotFoundError: If the suggestion does not exist.
            InvalidStatusTransitionError: If the suggestion is not pending.
            PostNotFoundError: If a merge target no longer exists.
            BoardRequiredError: If a create_post has no board after edits.
        """
        if not actor_id or not actor_id.strip():
            raise ResolutionError("An acting principal is required to accept a suggestion")

        now = self.clock()

        def _accept(txn: RepositoryTransaction) -> Tuple[FeedbackSuggestion, Post, bool]:
            suggestion = txn.get_suggestion(suggestion_id)
            if suggestion is None:
                raise SuggestionNotFoundError(f"Suggestion {suggestion_id} not found")
            if suggestion.status != SuggestionStatus.PENDING:
                raise InvalidStatusTransitionError(
                    suggestion.status.value, SuggestionStatus.ACCEPTED.value
                )
            if suggestion.suggestion_type == SuggestionType.MERGE_POST:
                post, vote_added = self._accept_merge(txn, suggestion, actor_id, now)
            else:
                post = self._accept_create(txn, suggestion, actor_id, edits, now)
                vote_added = True
            return suggestion, post, vote_added

        suggestion, post, vote_added = self.repository.run_in_transaction(_accept)

        log_audit(
            logger,
            actor=actor_id,
            action="accept_suggestion",
            target=suggestion_id,
            status="accepted",
            suggestion_type=suggestion.suggestion_type.value,
            result_post_id=post.id,
            vote_added=vote_added,
            edited=edits is not None,
        )
        return post

    @staticmethod
    def _accept_merge(
        txn: RepositoryTransaction,
        suggestion: FeedbackSuggestion,
        actor_id: str,
        now: datetime,
    ) -> Tuple[Post, bool]:
        post = txn.get_post(suggestion.target_post_id) if suggestion.target_post_id else None
        if post is None:
            raise PostNotFoundError(
                f"Target post {suggestion.target_post_id} for suggestion {suggestion.id} not found"
            )
        already_voted = txn.vote_exists(post.id, actor_id)

        inserted = 0
        if not already_voted:
            txn.insert_vote(Vote(post_id=post.id, principal_id=actor_id, created_at=now))
            txn.increment_vote_count(post.id, 1, now)
            inserted = 1
        txn.save_suggestion(
            _resolve(suggestion, SuggestionStatus.ACCEPTED, actor_id, now, result_post_id=post.id)
        )

        updated = post.model_copy(update={"vote_count": post.vote_count + inserted, "updated_at": now})
        return updated, bool(inserted)

    @staticmethod
    def _accept_create(
        txn: RepositoryTransaction,
        suggestion: FeedbackSuggestion,
        actor_id: str,
        edits: Optional[SuggestionEdits],
        now: datetime,
    ) -> Post:
        edits = edits or SuggestionEdits()
        title = edits.title or suggestion.suggested_title
        body = edits.body if edits.body is not None else suggestion.suggested_body
        board_id = edits.board_id or suggestion.board_id

        if not board_id:
            raise BoardRequiredError(
                f"Suggestion {suggestion.id} has no board; supply edits.boardId"
            )
        if not title:
            raise ResolutionError(f"Suggestion {suggestion.id} has no title; supply edits.title")

        post = Post(
            id=new_post_id(),
            workspace_id=suggestion.workspace_id,
            board_id=board_id,
            title=title,
            content=body or "",
            vote_count=1,
            embedding=suggestion.embedding,
            author_principal_id=actor_id,
            created_at=now,
            updated_at=now,
        )
        txn.create_post(post)
        txn.insert_vote(Vote(post_id=post.id, principal_id=actor_id, created_at=now))
        txn.save_suggestion(
            _resolve(suggestion, SuggestionStatus.ACCEPTED, actor_id, now, result_post_id=post.id)
        )
        return post

    def dismiss(self, suggestion_id: str, actor_id: str) -> FeedbackSuggestion:
        """Dismiss a pending suggestion.

        Already-resolved suggestions are returned unchanged.

        Raises:
            SuggestionNotFoundError: If the suggestion does not exist.
        """
        if not actor_id or not actor_id.strip():
            raise ResolutionError("An acting principal is required to dismiss a suggestion")

        now = self.clock()

        def _dismiss(txn: RepositoryTransaction) -> Tuple[FeedbackSuggestion, bool]:
            suggestion = txn.get_suggestion(suggestion_id)
            if suggestion is None:
                raise SuggestionNotFoundError(f"Suggestion {suggestion_id} not found")
            if suggestion.is_resolved:
                return suggestion, False
            dismissed = _resolve(suggestion, SuggestionStatus.DISMISSED, actor_id, now)
            txn.save_suggestion(dismissed)
            return dismissed, True

        suggestion, changed = self.repository.run_in_transaction(_dismiss)

        log_audit(
            logger,
            actor=actor_id,
            action="dismiss_suggestion",
            target=suggestion_id,
            status="dismissed" if changed else "unchanged",
            current_status=suggestion.status.value,
        )
        return suggestion

    def cast_vote(self, post_id: str, principal_id: str) -> bool:
        """Add ``principal_id``'s vote to a post. Returns False if it already existed.

        Raises:
            PostNotFoundError: If the post does not exist.
        """
        now = self.clock()

        def _vote(txn: RepositoryTransaction) -> bool:
            if txn.get_post(post_id) is None:
                raise PostNotFoundError(f"Post {post_id} not found")
            if txn.vote_exists(post_id, principal_id):
                return False
            txn.insert_vote(Vote(post_id=post_id, principal_id=principal_id, created_at=now))
            txn.increment_vote_count(post_id, 1, now)
            return True

        added = self.repository.run_in_transaction(_vote)
        log_audit(
            logger,
            actor=principal_id,
            action="cast_vote",
            target=post_id,
            status="added" if added else "unchanged",
        )
        return added
