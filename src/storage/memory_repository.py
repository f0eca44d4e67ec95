"""In-process repository backend.

Backs local development (``STORAGE_BACKEND=memory``) and the test suite.
Documents are stored as plain dicts, the same shape Firestore stores, and every
mutation happens under one re-entrant lock. ``run_in_transaction`` stages
writes in an ``InMemoryTransaction`` and applies them only when the callable
returns, so a failure part-way through leaves nothing behind.
"""

from __future__ import annotations

import copy
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from src.common.timestamps import to_iso
from src.deduplication.models import (
    FeedbackSuggestion,
    Post,
    SuggestionSort,
    SuggestionStatus,
    SuggestionType,
    Vote,
    vote_key,
)
from src.extraction.models import FeedbackSignal
from src.ingestion.models import ProcessingState, RawFeedbackItem
from src.storage.base import (
    ClaimDecision,
    FeedbackRepository,
    InvalidCursorError,
    InvalidItemStateError,
    RawItemNotFoundError,
    RepositoryTransaction,
    T,
    abandoned_error,
    decide_claim,
    dismissal_fields,
    transition_fields,
)

Document = Dict[str, Any]


class InMemoryTransaction(RepositoryTransaction):
    """Stages writes until commit; reads see committed data plus staged writes."""

    def __init__(self, repository: "InMemoryFeedbackRepository"):
        self._repo = repository
        self._posts: Dict[str, Document] = {}
        self._votes: Dict[str, Document] = {}
        self._suggestions: Dict[str, Document] = {}
        self._increments: Dict[str, Tuple[int, datetime]] = {}

    def get_suggestion(self, suggestion_id: str) -> Optional[FeedbackSuggestion]:
        data = self._suggestions.get(suggestion_id) or self._repo._suggestions.get(suggestion_id)
        return FeedbackSuggestion.from_dict(copy.deepcopy(data)) if data else None

    def get_post(self, post_id: str) -> Optional[Post]:
        data = self._posts.get(post_id) or self._repo._posts.get(post_id)
        return Post.from_dict(copy.deepcopy(data)) if data else None

    def vote_exists(self, post_id: str, principal_id: str) -> bool:
        key = vote_key(post_id, principal_id)
        return key in self._votes or key in self._repo._votes

    def insert_vote(self, vote: Vote) -> None:
        if self.vote_exists(vote.post_id, vote.principal_id):
            raise ValueError(f"Vote {vote.key} already exists")
        self._votes[vote.key] = vote.to_dict()

    def increment_vote_count(self, post_id: str, amount: int, now: datetime) -> None:
        previous, _ = self._increments.get(post_id, (0, now))
        self._increments[post_id] = (previous + amount, now)

    def create_post(self, post: Post) -> None:
        if post.id in self._posts or post.id in self._repo._posts:
            raise ValueError(f"Post {post.id} already exists")
        self._posts[post.id] = post.to_dict()

    def save_suggestion(self, suggestion: FeedbackSuggestion) -> None:
        self._suggestions[suggestion.id] = suggestion.to_dict()

    def commit(self) -> None:
        repo = self._repo
        for post_id in self._increments:
            if post_id not in self._posts and post_id not in repo._posts:
                raise ValueError(f"Cannot increment votes on missing post {post_id}")
        repo._posts.update(self._posts)
        repo._votes.update(self._votes)
        repo._suggestions.update(self._suggestions)
        for post_id, (amount, now) in self._increments.items():
            post = repo._posts[post_id]
            post["vote_count"] = post.get("vote_count", 0) + amount
            post["updated_at"] = to_iso(now)


class InMemoryFeedbackRepository(FeedbackRepository):
    """Thread-safe dict-backed repository."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._raw_items: Dict[str, Document] = {}
        self._dedupe_index: Dict[str, str] = {}
        self._signals: Dict[str, Document] = {}
        self._suggestions: Dict[str, Document] = {}
        self._posts: Dict[str, Document] = {}
        self._votes: Dict[str, Document] = {}

    # --- raw items -------------------------------------------------------

    def insert_raw_item(self, item: RawFeedbackItem) -> Tuple[RawFeedbackItem, bool]:
        with self._lock:
            existing_id = self._dedupe_index.get(item.dedupe_key)
            if existing_id is not None:
                return RawFeedbackItem.from_dict(copy.deepcopy(self._raw_items[existing_id])), False
            self._raw_items[item.id] = item.to_dict()
            self._dedupe_index[item.dedupe_key] = item.id
            return item, True

    def get_raw_item(self, item_id: str) -> Optional[RawFeedbackItem]:
        with self._lock:
            data = self._raw_items.get(item_id)
            return RawFeedbackItem.from_dict(copy.deepcopy(data)) if data else None

    def list_raw_items(
        self, state: Optional[ProcessingState] = None, limit: int = 100
    ) -> List[RawFeedbackItem]:
        with self._lock:
            docs = [
                d for d in self._raw_items.values()
                if state is None or d["processing_state"] == state.value
            ]
            docs.sort(key=lambda d: d["created_at"])
            return [RawFeedbackItem.from_dict(copy.deepcopy(d)) for d in docs[:limit]]

    def claim_raw_item(
        self,
        item_id: str,
        *,
        now: datetime,
        stale_after_sec: float,
        max_attempts: int,
    ) -> Optional[RawFeedbackItem]:
        with self._lock:
            data = self._raw_items.get(item_id)
            if data is None:
                return None
            item = RawFeedbackItem.from_dict(copy.deepcopy(data))
            decision = decide_claim(
                item, now=now, stale_after_sec=stale_after_sec, max_attempts=max_attempts
            )
            if decision == ClaimDecision.ABANDON:
                data.update({
                    "processing_state": ProcessingState.FAILED.value,
                    "state_changed_at": to_iso(now),
                    "last_error": abandoned_error(item.attempt_count),
                })
                return None
            if decision != ClaimDecision.CLAIM:
                return None
            data.update({
                "processing_state": ProcessingState.EXTRACTING.value,
                "state_changed_at": to_iso(now),
                "attempt_count": item.attempt_count + 1,
            })
            return RawFeedbackItem.from_dict(copy.deepcopy(data))

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
        with self._lock:
            data = self._raw_items.get(item_id)
            if data is None or data["processing_state"] != expected_state.value:
                return False
            if expected_attempt is not None and data.get("attempt_count", 0) != expected_attempt:
                return False
            data.update(transition_fields(new_state, now, last_error))
            return True

    def reset_raw_item_for_retry(self, item_id: str, *, now: datetime) -> RawFeedbackItem:
        with self._lock:
            data = self._raw_items.get(item_id)
            if data is None:
                raise RawItemNotFoundError(f"Raw item {item_id} not found")
            if data["processing_state"] != ProcessingState.FAILED.value:
                raise InvalidItemStateError(
                    item_id, data["processing_state"], ProcessingState.FAILED.value
                )
            data.update({
                "processing_state": ProcessingState.READY_FOR_EXTRACTION.value,
                "state_changed_at": to_iso(now),
                "last_error": None,
                "attempt_count": 0,
            })
            return RawFeedbackItem.from_dict(copy.deepcopy(data))

    # --- signals ---------------------------------------------------------

    def replace_signals(self, item_id: str, signals: List[FeedbackSignal]) -> None:
        with self._lock:
            for signal_id in [
                sid for sid, d in self._signals.items() if d["raw_feedback_item_id"] == item_id
            ]:
                del self._signals[signal_id]
            for signal in signals:
                self._signals[signal.id] = signal.to_dict()

    def list_signals(self, item_id: str) -> List[FeedbackSignal]:
        with self._lock:
            docs = [d for d in self._signals.values() if d["raw_feedback_item_id"] == item_id]
            docs.sort(key=lambda d: d["created_at"])
            return [FeedbackSignal.from_dict(copy.deepcopy(d)) for d in docs]

    # --- suggestions -----------------------------------------------------

    def insert_suggestion_if_absent(
        self, suggestion: FeedbackSuggestion
    ) -> Tuple[FeedbackSuggestion, bool]:
        with self._lock:
            for data in self._suggestions.values():
                if (
                    data["raw_feedback_item_id"] == suggestion.raw_feedback_item_id
                    and data["suggestion_type"] == suggestion.suggestion_type.value
                    and data["status"] == SuggestionStatus.PENDING.value
                ):
                    return FeedbackSuggestion.from_dict(copy.deepcopy(data)), False
            self._suggestions[suggestion.id] = suggestion.to_dict()
            return suggestion, True

    def dismiss_pending_suggestions(
        self, raw_item_id: str, *, now: datetime, principal_id: str
    ) -> int:
        with self._lock:
            dismissed = 0
            for data in self._suggestions.values():
                if (
                    data["raw_feedback_item_id"] != raw_item_id
                    or data["status"] != SuggestionStatus.PENDING.value
                ):
                    continue
                data.update(dismissal_fields(now, principal_id))
                dismissed += 1
            return dismissed

    def get_suggestion(self, suggestion_id: str) -> Optional[FeedbackSuggestion]:
        with self._lock:
            data = self._suggestions.get(suggestion_id)
            return FeedbackSuggestion.from_dict(copy.deepcopy(data)) if data else None

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
        with self._lock:
            docs = list(self._suggestions.values())
            anchor = self._suggestions.get(cursor) if cursor else None
        if cursor and anchor is None:
            raise InvalidCursorError(cursor)

        def _sort_key(d: Document) -> Tuple:
            if sort == SuggestionSort.SIMILARITY:
                score = d.get("similarity_score")
                return (score if score is not None else -1.0, d["created_at"], d["id"])
            return (d["created_at"], d["id"])

        if raw_item_id:
            docs = [d for d in docs if d["raw_feedback_item_id"] == raw_item_id]
        if status:
            docs = [d for d in docs if d["status"] == status.value]
        if suggestion_type:
            docs = [d for d in docs if d["suggestion_type"] == suggestion_type.value]
        if board_id:
            docs = [d for d in docs if d.get("board_id") == board_id]

        docs.sort(key=_sort_key, reverse=True)

        if anchor is not None:
            # The anchor may have left the filtered set since the last page.
            anchor_key = _sort_key(anchor)
            docs = [d for d in docs if _sort_key(d) < anchor_key]

        page = docs[:limit]
        next_cursor = page[-1]["id"] if page and len(docs) > limit else None
        return [FeedbackSuggestion.from_dict(copy.deepcopy(d)) for d in page], next_cursor

    # --- posts -----------------------------------------------------------

    def list_candidate_posts(self, workspace_id: str) -> List[Post]:
        with self._lock:
            return [
                Post.from_dict(copy.deepcopy(d))
                for d in self._posts.values()
                if d.get("workspace_id") == workspace_id
            ]

    def get_post(self, post_id: str) -> Optional[Post]:
        with self._lock:
            data = self._posts.get(post_id)
            return Post.from_dict(copy.deepcopy(data)) if data else None

    def save_post(self, post: Post) -> Post:
        with self._lock:
            self._posts[post.id] = post.to_dict()
            return post

    def has_vote(self, post_id: str, principal_id: str) -> bool:
        with self._lock:
            return vote_key(post_id, principal_id) in self._votes

    # --- transactions and stats ------------------------------------------

    def run_in_transaction(self, fn: Callable[[RepositoryTransaction], T]) -> T:
        with self._lock:
            transaction = InMemoryTransaction(self)
            result = fn(transaction)
            transaction.commit()
            return result

    def count_raw_items_by_state(self) -> Dict[str, int]:
        with self._lock:
            counts: Dict[str, int] = {}
            for data in self._raw_items.values():
                state = data["processing_state"]
                counts[state] = counts.get(state, 0) + 1
            return counts

    def count_signals(self) -> int:
        with self._lock:
            return len(self._signals)

    def count_pending_suggestions_by_type(self) -> Dict[str, int]:
        with self._lock:
            counts: Dict[str, int] = {}
            for data in self._suggestions.values():
                if data["status"] != SuggestionStatus.PENDING.value:
                    continue
                kind = data["suggestion_type"]
                counts[kind] = counts.get(kind, 0) + 1
            return counts

