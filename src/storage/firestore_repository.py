"""Firestore repository for the feedback pipeline.

Collections (prefixed by FIRESTORE_COLLECTION_PREFIX):
- raw_feedback_items: document id derived from the dedupe key
- feedback_signals: one document per signal, keyed ``sig_{uuid}``
- feedback_suggestions: keyed ``sugg_{uuid}``
- posts, votes: votes keyed ``{post_id}:{principal_id}``

Claims, state transitions, idempotent suggestion inserts and resolution all
run inside ``@firestore.transactional`` functions. Reads happen before writes
in each of them.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from google.api_core.exceptions import AlreadyExists
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from src.common.config import FirestoreConfig, load_firestore_config
from src.common.firestore import (
    get_firestore_client,
    posts_collection,
    raw_items_collection,
    signals_collection,
    suggestions_collection,
    votes_collection,
)
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
    RepositoryError,
    RepositoryTransaction,
    T,
    abandoned_error,
    decide_claim,
    dismissal_fields,
    transition_fields,
)

if TYPE_CHECKING:
    from google.cloud.firestore import Client as FirestoreClient

logger = logging.getLogger(__name__)

# Firestore caps a write batch at 500 operations.
_BATCH_LIMIT = 450


def _snapshot_dict(snapshot) -> Dict[str, Any]:
    data = snapshot.to_dict() or {}
    data.setdefault("id", snapshot.id)
    return data


# =============================================================================
# Transactional functions
# =============================================================================


@firestore.transactional
def _claim_in_transaction(
    transaction: firestore.Transaction,
    doc_ref: firestore.DocumentReference,
    now: datetime,
    stale_after_sec: float,
    max_attempts: int,
) -> Optional[Dict[str, Any]]:
    snapshot = doc_ref.get(transaction=transaction)
    if not snapshot.exists:
        return None

    data = _snapshot_dict(snapshot)
    item = RawFeedbackItem.from_dict(data)
    decision = decide_claim(
        item, now=now, stale_after_sec=stale_after_sec, max_attempts=max_attempts
    )

    if decision == ClaimDecision.ABANDON:
        transaction.update(doc_ref, {
            "processing_state": ProcessingState.FAILED.value,
            "state_changed_at": to_iso(now),
            "last_error": abandoned_error(item.attempt_count),
        })
        return None
    if decision != ClaimDecision.CLAIM:
        return None

    updates = {
        "processing_state": ProcessingState.EXTRACTING.value,
        "state_changed_at": to_iso(now),
        "attempt_count": item.attempt_count + 1,
    }
    transaction.update(doc_ref, updates)
    data.update(updates)
    return data


@firestore.transactional
def _transition_in_transaction(
    transaction: firestore.Transaction,
    doc_ref: firestore.DocumentReference,
    expected_state: ProcessingState,
    expected_attempt: Optional[int],
    fields: Dict[str, Any],
) -> bool:
    snapshot = doc_ref.get(transaction=transaction)
    if not snapshot.exists:
        return False
    data = snapshot.to_dict() or {}
    if data.get("processing_state") != expected_state.value:
        return False
    if expected_attempt is not None and data.get("attempt_count", 0) != expected_attempt:
        return False
    transaction.update(doc_ref, fields)
    return True


@firestore.transactional
def _reset_in_transaction(
    transaction: firestore.Transaction,
    doc_ref: firestore.DocumentReference,
    now: datetime,
) -> Dict[str, Any]:
    snapshot = doc_ref.get(transaction=transaction)
    if not snapshot.exists:
        raise RawItemNotFoundError(f"Raw item {doc_ref.id} not found")

    data = _snapshot_dict(snapshot)
    current = data.get("processing_state", "unknown")
    if current != ProcessingState.FAILED.value:
        raise InvalidItemStateError(doc_ref.id, current, ProcessingState.FAILED.value)

    updates = {
        "processing_state": ProcessingState.READY_FOR_EXTRACTION.value,
        "state_changed_at": to_iso(now),
        "last_error": None,
        "attempt_count": 0,
    }
    transaction.update(doc_ref, updates)
    data.update(updates)
    return data


@firestore.transactional
def _insert_suggestion_in_transaction(
    transaction: firestore.Transaction,
    collection: firestore.CollectionReference,
    suggestion: FeedbackSuggestion,
) -> Tuple[Dict[str, Any], bool]:
    query = (
        collection
        .where(filter=FieldFilter("raw_feedback_item_id", "==", suggestion.raw_feedback_item_id))
        .where(filter=FieldFilter("suggestion_type", "==", suggestion.suggestion_type.value))
        .where(filter=FieldFilter("status", "==", SuggestionStatus.PENDING.value))
        .limit(1)
    )
    existing = list(transaction.get(query))
    if existing:
        return _snapshot_dict(existing[0]), False

    transaction.create(collection.document(suggestion.id), suggestion.to_dict())
    return suggestion.to_dict(), True


@firestore.transactional
def _dismiss_pending_in_transaction(
    transaction: firestore.Transaction,
    collection: firestore.CollectionReference,
    raw_item_id: str,
    fields: Dict[str, Any],
) -> int:
    query = (
        collection
        .where(filter=FieldFilter("raw_feedback_item_id", "==", raw_item_id))
        .where(filter=FieldFilter("status", "==", SuggestionStatus.PENDING.value))
    )
    pending = list(transaction.get(query))
    for snapshot in pending:
        transaction.update(snapshot.reference, fields)
    return len(pending)


@firestore.transactional
def _run_callable_in_transaction(
    transaction: firestore.Transaction,
    repository: "FirestoreFeedbackRepository",
    fn: Callable[[RepositoryTransaction], Any],
) -> Any:
    return fn(FirestoreTransaction(repository, transaction))


class FirestoreTransaction(RepositoryTransaction):
    """RepositoryTransaction bound to a live Firestore transaction."""

    def __init__(self, repository: "FirestoreFeedbackRepository", transaction: firestore.Transaction):
        self._repo = repository
        self._transaction = transaction

    def get_suggestion(self, suggestion_id: str) -> Optional[FeedbackSuggestion]:
        snapshot = self._repo.suggestions_ref.document(suggestion_id).get(
            transaction=self._transaction
        )
        return FeedbackSuggestion.from_dict(_snapshot_dict(snapshot)) if snapshot.exists else None

    def get_post(self, post_id: str) -> Optional[Post]:
        snapshot = self._repo.posts_ref.document(post_id).get(transaction=self._transaction)
        return Post.from_dict(_snapshot_dict(snapshot)) if snapshot.exists else None

    def vote_exists(self, post_id: str, principal_id: str) -> bool:
        snapshot = self._repo.votes_ref.document(vote_key(post_id, principal_id)).get(
            transaction=self._transaction
        )
        return snapshot.exists

    def insert_vote(self, vote: Vote) -> None:
        self._transaction.create(self._repo.votes_ref.document(vote.key), vote.to_dict())

    def increment_vote_count(self, post_id: str, amount: int, now: datetime) -> None:
        self._transaction.update(self._repo.posts_ref.document(post_id), {
            "vote_count": firestore.Increment(amount),
            "updated_at": to_iso(now),
        })

    def create_post(self, post: Post) -> None:
        self._transaction.create(self._repo.posts_ref.document(post.id), post.to_dict())

    def save_suggestion(self, suggestion: FeedbackSuggestion) -> None:
        self._transaction.set(
            self._repo.suggestions_ref.document(suggestion.id), suggestion.to_dict()
        )


class FirestoreFeedbackRepository(FeedbackRepository):
    """FeedbackRepository backed by Cloud Firestore."""

    def __init__(
        self,
        client: Optional["FirestoreClient"] = None,
        config: Optional[FirestoreConfig] = None,
    ):
        """Initialize the repository.

        Args:
            client: Optional Firestore client. If not provided, creates one lazily.
            config: Optional FirestoreConfig. If not provided, loads from environment.
        """
        self.config = config or load_firestore_config()
        self._client = client

    @property
    def client(self) -> "FirestoreClient":
        if self._client is None:
            self._client = get_firestore_client(self.config)
        return self._client

    @property
    def raw_items_ref(self):
        return self.client.collection(raw_items_collection(self.config.collection_prefix))

    @property
    def signals_ref(self):
        return self.client.collection(signals_collection(self.config.collection_prefix))

    @property
    def suggestions_ref(self):
        return self.client.collection(suggestions_collection(self.config.collection_prefix))

    @property
    def posts_ref(self):
        return self.client.collection(posts_collection(self.config.collection_prefix))

    @property
    def votes_ref(self):
        return self.client.collection(votes_collection(self.config.collection_prefix))

    # =========================================================================
    # Raw items
    # =========================================================================

    def insert_raw_item(self, item: RawFeedbackItem) -> Tuple[RawFeedbackItem, bool]:
        doc_ref = self.raw_items_ref.document(item.id)
        try:
            doc_ref.create(item.to_dict())
            return item, True
        except AlreadyExists:
            snapshot = doc_ref.get()
            if not snapshot.exists:
                raise RepositoryError(f"Raw item {item.id} reported as existing but not found")
            logger.info(
                "Duplicate raw item ignored",
                extra={"item_id": item.id, "dedupe_key": item.dedupe_key},
            )
            return RawFeedbackItem.from_dict(_snapshot_dict(snapshot)), False

    def get_raw_item(self, item_id: str) -> Optional[RawFeedbackItem]:
        snapshot = self.raw_items_ref.document(item_id).get()
        if not snapshot.exists:
            return None
        return RawFeedbackItem.from_dict(_snapshot_dict(snapshot))

    def list_raw_items(
        self, state: Optional[ProcessingState] = None, limit: int = 100
    ) -> List[RawFeedbackItem]:
        query = self.raw_items_ref
        if state is not None:
            query = query.where(filter=FieldFilter("processing_state", "==", state.value))
        query = query.order_by("created_at").limit(limit)
        return [RawFeedbackItem.from_dict(_snapshot_dict(doc)) for doc in query.stream()]

    def claim_raw_item(
        self,
        item_id: str,
        *,
        now: datetime,
        stale_after_sec: float,
        max_attempts: int,
    ) -> Optional[RawFeedbackItem]:
        data = _claim_in_transaction(
            self.client.transaction(),
            self.raw_items_ref.document(item_id),
            now,
            stale_after_sec,
            max_attempts,
        )
        return RawFeedbackItem.from_dict(data) if data else None

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
        return _transition_in_transaction(
            self.client.transaction(),
            self.raw_items_ref.document(item_id),
            expected_state,
            expected_attempt,
            transition_fields(new_state, now, last_error),
        )

    def reset_raw_item_for_retry(self, item_id: str, *, now: datetime) -> RawFeedbackItem:
        data = _reset_in_transaction(
            self.client.transaction(),
            self.raw_items_ref.document(item_id),
            now,
        )
        return RawFeedbackItem.from_dict(data)

    # =========================================================================
    # Signals
    # =========================================================================

    def replace_signals(self, item_id: str, signals: List[FeedbackSignal]) -> None:
        existing = self.signals_ref.where(
            filter=FieldFilter("raw_feedback_item_id", "==", item_id)
        ).stream()

        batch = self.client.batch()
        pending = 0
        for doc in existing:
            batch.delete(doc.reference)
            pending += 1
            if pending >= _BATCH_LIMIT:
                batch.commit()
                batch, pending = self.client.batch(), 0
        for signal in signals:
            batch.set(self.signals_ref.document(signal.id), signal.to_dict())
            pending += 1
            if pending >= _BATCH_LIMIT:
                batch.commit()
                batch, pending = self.client.batch(), 0
        if pending:
            batch.commit()

    def list_signals(self, item_id: str) -> List[FeedbackSignal]:
        query = self.signals_ref.where(filter=FieldFilter("raw_feedback_item_id", "==", item_id))
        signals = [FeedbackSignal.from_dict(_snapshot_dict(doc)) for doc in query.stream()]
        signals.sort(key=lambda s: s.created_at)
        return signals

    # =========================================================================
    # Suggestions
    # =========================================================================

    def insert_suggestion_if_absent(
        self, suggestion: FeedbackSuggestion
    ) -> Tuple[FeedbackSuggestion, bool]:
        data, created = _insert_suggestion_in_transaction(
            self.client.transaction(),
            self.suggestions_ref,
            suggestion,
        )
        return FeedbackSuggestion.from_dict(data), created

    def dismiss_pending_suggestions(
        self, raw_item_id: str, *, now: datetime, principal_id: str
    ) -> int:
        return _dismiss_pending_in_transaction(
            self.client.transaction(),
            self.suggestions_ref,
            raw_item_id,
            dismissal_fields(now, principal_id),
        )

    def get_suggestion(self, suggestion_id: str) -> Optional[FeedbackSuggestion]:
        snapshot = self.suggestions_ref.document(suggestion_id).get()
        if not snapshot.exists:
            return None
        return FeedbackSuggestion.from_dict(_snapshot_dict(snapshot))

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
        """List suggestions with cursor-based pagination.

        Uses start_after() on the cursor document and the limit + 1 trick to
        detect another page.
        """
        collection = self.suggestions_ref
        query = collection

        if raw_item_id:
            query = query.where(filter=FieldFilter("raw_feedback_item_id", "==", raw_item_id))
        if status:
            query = query.where(filter=FieldFilter("status", "==", status.value))
        if suggestion_type:
            query = query.where(filter=FieldFilter("suggestion_type", "==", suggestion_type.value))
        if board_id:
            query = query.where(filter=FieldFilter("board_id", "==", board_id))

        if sort == SuggestionSort.SIMILARITY:
            query = query.order_by("similarity_score", direction=firestore.Query.DESCENDING)
        query = query.order_by("created_at", direction=firestore.Query.DESCENDING)

        if cursor:
            cursor_doc = collection.document(cursor).get()
            if not cursor_doc.exists:
                raise InvalidCursorError(cursor)
            query = query.start_after(cursor_doc)

        docs = list(query.limit(limit + 1).stream())
        has_more = len(docs) > limit
        page = docs[:limit]
        next_cursor = page[-1].id if page and has_more else None
        return [FeedbackSuggestion.from_dict(_snapshot_dict(doc)) for doc in page], next_cursor

    # =========================================================================
    # Posts and votes
    # =========================================================================

    def list_candidate_posts(self, workspace_id: str) -> List[Post]:
        query = self.posts_ref.where(filter=FieldFilter("workspace_id", "==", workspace_id))
        return [Post.from_dict(_snapshot_dict(doc)) for doc in query.stream()]

    def get_post(self, post_id: str) -> Optional[Post]:
        snapshot = self.posts_ref.document(post_id).get()
        if not snapshot.exists:
            return None
        return Post.from_dict(_snapshot_dict(snapshot))

    def save_post(self, post: Post) -> Post:
        self.posts_ref.document(post.id).set(post.to_dict())
        return post

    def has_vote(self, post_id: str, principal_id: str) -> bool:
        return self.votes_ref.document(vote_key(post_id, principal_id)).get().exists

    # =========================================================================
    # Transactions and stats
    # =========================================================================

    def run_in_transaction(self, fn: Callable[[RepositoryTransaction], T]) -> T:
        return _run_callable_in_transaction(self.client.transaction(), self, fn)

    def count_raw_items_by_state(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for doc in self.raw_items_ref.select(["processing_state"]).stream():
            state = (doc.to_dict() or {}).get("processing_state", "unknown")
            counts[state] = counts.get(state, 0) + 1
        return counts

    def count_signals(self) -> int:
        return sum(1 for _ in self.signals_ref.select([]).stream())

    def count_pending_suggestions_by_type(self) -> Dict[str, int]:
        query = self.suggestions_ref.where(
            filter=FieldFilter("status", "==", SuggestionStatus.PENDING.value)
        )
        counts: Dict[str, int] = {}
        for doc in query.select(["suggestion_type"]).stream():
            kind = (doc.to_dict() or {}).get("suggestion_type", "unknown")
            counts[kind] = counts.get(kind, 0) + 1
        return counts
