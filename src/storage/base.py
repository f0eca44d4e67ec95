"""Repository interface shared by the Firestore and in-memory backends.

Every conditional or multi-document mutation is expressed either as a
dedicated repository method (claim, transition, idempotent insert) or as a
callable run through ``run_in_transaction``. Transaction callables must do all
of their reads before their first write; Firestore rejects reads after writes.
"""

from __future__ import annotations

import abc
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from src.common.timestamps import to_iso
from src.deduplication.models import (
    FeedbackSuggestion,
    Post,
    SuggestionSort,
    SuggestionStatus,
    SuggestionType,
    Vote,
)
from src.extraction.models import FeedbackSignal
from src.ingestion.models import ProcessingState, RawFeedbackItem

T = TypeVar("T")

MAX_LAST_ERROR_LENGTH = 1000


class RepositoryError(Exception):
    """Base exception for repository errors."""

    pass


class RawItemNotFoundError(RepositoryError):
    pass


class SuggestionNotFoundError(RepositoryError):
    """Raised when a suggestion is not found."""

    pass


class PostNotFoundError(RepositoryError):
    pass


class InvalidCursorError(RepositoryError):
    """Raised when a pagination cursor does not name a stored suggestion."""

    def __init__(self, cursor: str):
        self.cursor = cursor
        super().__init__(f"Unknown cursor: {cursor}")


class InvalidItemStateError(RepositoryError):
    """Raised when a raw item is not in the state an operation requires."""

    def __init__(self, item_id: str, current_state: str, expected_state: str):
        self.item_id = item_id
        self.current_state = current_state
        self.expected_state = expected_state
        super().__init__(
            f"Raw item {item_id} is '{current_state}', expected '{expected_state}'"
        )


class ClaimDecision(str, Enum):
    CLAIM = "claim"
    ABANDON = "abandon"
    SKIP = "skip"


def decide_claim(
    item: RawFeedbackItem,
    *,
    now: datetime,
    stale_after_sec: float,
    max_attempts: int,
) -> ClaimDecision:
    """Decide whether a worker may take ownership of ``item``.

    - ready_for_extraction: always claimable.
    - failed: claimable while attempts remain (queue-level retry).
    - extracting: claimable only once stale; abandoned if no attempts remain.
    - completed: never.
    """
    state = item.processing_state
    if state == ProcessingState.READY_FOR_EXTRACTION:
        return ClaimDecision.CLAIM
    if state == ProcessingState.FAILED:
        return ClaimDecision.CLAIM if item.attempt_count < max_attempts else ClaimDecision.SKIP
    if state == ProcessingState.EXTRACTING:
        age = (now - item.state_changed_at).total_seconds()
        if age < stale_after_sec:
            return ClaimDecision.SKIP
        if item.attempt_count < max_attempts:
            return ClaimDecision.CLAIM
        return ClaimDecision.ABANDON
    return ClaimDecision.SKIP


def truncate_error(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    if len(message) <= MAX_LAST_ERROR_LENGTH:
        return message
    return message[: MAX_LAST_ERROR_LENGTH - 3] + "..."


def abandoned_error(attempts: int) -> str:
    return f"Processing abandoned after {attempts} attempts (stale claim)"


def transition_fields(
    new_state: ProcessingState, now: datetime, last_error: Optional[str]
) -> Dict[str, Any]:
    """Document fields written when a raw item enters ``new_state``."""
    fields: Dict[str, Any] = {
        "processing_state": new_state.value,
        "state_changed_at": to_iso(now),
    }
    if new_state == ProcessingState.COMPLETED:
        fields["processed_at"] = to_iso(now)
        fields["last_error"] = None
    elif new_state == ProcessingState.FAILED:
        fields["last_error"] = truncate_error(last_error)
    return fields


def dismissal_fields(now: datetime, principal_id: str) -> Dict[str, Any]:
    """Document fields written when a pending suggestion is dismissed."""
    return {
        "status": SuggestionStatus.DISMISSED.value,
        "resolved_at": to_iso(now),
        "resolved_by_principal_id": principal_id,
        "updated_at": to_iso(now),
    }


class RepositoryTransaction(abc.ABC):
    """View over the store inside one atomic unit of work."""

    @abc.abstractmethod
    def get_suggestion(self, suggestion_id: str) -> Optional[FeedbackSuggestion]:
        ...

    @abc.abstractmethod
    def get_post(self, post_id: str) -> Optional[Post]:
        ...

    @abc.abstractmethod
    def vote_exists(self, post_id: str, principal_id: str) -> bool:
        ...

    @abc.abstractmethod
    def insert_vote(self, vote: Vote) -> None:
        ...

    @abc.abstractmethod
    def increment_vote_count(self, post_id: str, amount: int, now: datetime) -> None:
        ...

    @abc.abstractmethod
    def create_post(self, post: Post) -> None:
        ...

    @abc.abstractmethod
    def save_suggestion(self, suggestion: FeedbackSuggestion) -> None:
        ...


class FeedbackRepository(abc.ABC):
    """Persistence for raw items, signals, suggestions, posts and votes."""

    # --- raw items -------------------------------------------------------

    @abc.abstractmethod
    def insert_raw_item(self, item: RawFeedbackItem) -> Tuple[RawFeedbackItem, bool]:
        """Insert unless the dedupe key exists. Returns (stored item, created)."""

    @abc.abstractmethod
    def get_raw_item(self, item_id: str) -> Optional[RawFeedbackItem]:
        ...

    @abc.abstractmethod
    def list_raw_items(
        self, state: Optional[ProcessingState] = None, limit: int = 100
    ) -> List[RawFeedbackItem]:
        ...

    @abc.abstractmethod
    def claim_raw_item(
        self,
        item_id: str,
        *,
        now: datetime,
        stale_after_sec: float,
        max_attempts: int,
    ) -> Optional[RawFeedbackItem]:
        """Atomically move a claimable item to extracting. None if not claimed."""

    @abc.abstractmethod
    def transition_raw_item(
        self,
        item_id: str,
        *,
        expected_state: ProcessingState,
        new_state: ProcessingState,
        now: datetime,
        last_error: Optional[str] = None,
        expected_attempt: Optional[int] = None,
    ) -> bool:
        """Conditional state change. Returns False if the item moved on.

        With ``expected_attempt`` the change also requires ``attempt_count`` to
        still equal the claim's attempt, so a worker whose claim went stale
        and was taken over cannot finish the new owner's pass.
        """

    @abc.abstractmethod
    def reset_raw_item_for_retry(self, item_id: str, *, now: datetime) -> RawFeedbackItem:
        """failed -> ready_for_extraction with attempts and last_error cleared.

        Raises:
            RawItemNotFoundError: If the item does not exist.
            InvalidItemStateError: If the item is not failed.
        """

    # --- signals ---------------------------------------------------------

    @abc.abstractmethod
    def replace_signals(self, item_id: str, signals: List[FeedbackSignal]) -> None:
        ...

    @abc.abstractmethod
    def list_signals(self, item_id: str) -> List[FeedbackSignal]:
        ...

    # --- suggestions -----------------------------------------------------

    @abc.abstractmethod
    def insert_suggestion_if_absent(
        self, suggestion: FeedbackSuggestion
    ) -> Tuple[FeedbackSuggestion, bool]:
        """Insert unless a pending suggestion exists for (item, type)."""

    @abc.abstractmethod
    def dismiss_pending_suggestions(
        self, raw_item_id: str, *, now: datetime, principal_id: str
    ) -> int:
        """Dismiss every pending suggestion of a raw item. Returns how many."""

    @abc.abstractmethod
    def get_suggestion(self, suggestion_id: str) -> Optional[FeedbackSuggestion]:
        ...

    @abc.abstractmethod
    def list_suggestions(
        self,
        *,
        raw_item_id: Optional[str] = None,
        status: Optional[SuggestionStatus] = None,
        suggestion_type: Optional[SuggestionType] = None,
        board_id: Optional[str] = None,
        sort: SuggestionSort = SuggestionSort.NEWEST,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[FeedbackSuggestion], Optional[str]]:
        """Filtered page of suggestions plus the cursor for the next page."""

    # --- posts -----------------------------------------------------------

    @abc.abstractmethod
    def list_candidate_posts(self, workspace_id: str) -> List[Post]:
        ...

    @abc.abstractmethod
    def get_post(self, post_id: str) -> Optional[Post]:
        ...

    @abc.abstractmethod
    def save_post(self, post: Post) -> Post:
        """Upsert a post. Used by seeding and by the wider product."""

    @abc.abstractmethod
    def has_vote(self, post_id: str, principal_id: str) -> bool:
        ...

    # --- transactions and stats ------------------------------------------

    @abc.abstractmethod
    def run_in_transaction(self, fn: Callable[[RepositoryTransaction], T]) -> T:
        """Run ``fn`` atomically. Either every write in it lands or none does."""

    @abc.abstractmethod
    def count_raw_items_by_state(self) -> Dict[str, int]:
        ...

    @abc.abstractmethod
    def count_signals(self) -> int:
        ...

    @abc.abstractmethod
    def count_pending_suggestions_by_type(self) -> Dict[str, int]:
        ...

    def suggestion_stats(self) -> Dict[str, int]:
        """Pending suggestion counts per type plus the total."""
        counts = {t.value: 0 for t in SuggestionType}
        counts.update(self.count_pending_suggestions_by_type())
        counts["total"] = sum(counts[t.value] for t in SuggestionType)
        return counts

    def pipeline_stats(self) -> Dict[str, object]:
        """Raw items by state, stored signals and pending suggestions."""
        by_state = {s.value: 0 for s in ProcessingState}
        by_state.update(self.count_raw_items_by_state())
        return {
            "raw_items": by_state,
            "signals": self.count_signals(),
            "pending_suggestions": self.suggestion_stats()["total"],
        }
