"""
Integration tests for the Firestore repository against a live database.

These tests verify that the Firestore backend honours the same contracts as
the in-memory backend:
1. Dedupe-key idempotent raw item inserts
2. Conditional claims and transitions
3. One pending suggestion per (raw item, suggestion type)
4. Transactional accept with vote uniqueness and Increment

Requirements:
- RUN_LIVE_TESTS=1 environment variable must be set
- Valid GOOGLE_CLOUD_PROJECT and credentials configured
- Firestore access configured (composite indexes from scripts/bootstrap_firestore.py)

Usage:
    RUN_LIVE_TESTS=1 python -m pytest tests/integration/test_firestore_repository_live.py -v
"""

import os
import uuid

import pytest

from src.common.config import FirestoreConfig, load_firestore_config
from src.common.timestamps import utc_now
from src.deduplication.models import FeedbackSuggestion, Post, SuggestionStatus, SuggestionType
from src.ingestion.models import ProcessingState
from src.ingestion.service import IngestionService
from src.resolution.engine import ResolutionEngine
from src.storage.firestore_repository import FirestoreFeedbackRepository

from tests.fakes import ingest_payload


pytestmark = pytest.mark.skipif(
    not os.getenv("RUN_LIVE_TESTS"),
    reason="Live Firestore integration tests require RUN_LIVE_TESTS=1"
)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def test_prefix():
    """Generate unique prefix for test data isolation."""
    return f"test_{uuid.uuid4().hex[:8]}_"


@pytest.fixture
def live_repository(test_prefix):
    base = load_firestore_config()
    repository = FirestoreFeedbackRepository(config=FirestoreConfig(
        collection_prefix=test_prefix,
        project_id=base.project_id,
        database_id=base.database_id,
    ))
    yield repository

    for ref in (
        repository.raw_items_ref,
        repository.signals_ref,
        repository.suggestions_ref,
        repository.posts_ref,
        repository.votes_ref,
    ):
        for doc in ref.stream():
            doc.reference.delete()


# ============================================================================
# Tests
# ============================================================================


def test_duplicate_ingest_is_noop(live_repository):
    service = IngestionService(live_repository)

    first, created = service.ingest(ingest_payload("live:dedupe-1"))
    second, created_again = service.ingest(ingest_payload("live:dedupe-1"))

    assert created is True
    assert created_again is False
    assert second.id == first.id


def test_claim_is_exclusive(live_repository):
    item, _ = IngestionService(live_repository).ingest(ingest_payload("live:claim-1"))
    now = utc_now()

    first = live_repository.claim_raw_item(item.id, now=now, stale_after_sec=600, max_attempts=3)
    second = live_repository.claim_raw_item(item.id, now=now, stale_after_sec=600, max_attempts=3)

    assert first is not None
    assert first.attempt_count == 1
    assert second is None

    assert live_repository.transition_raw_item(
        item.id,
        expected_state=ProcessingState.EXTRACTING,
        new_state=ProcessingState.COMPLETED,
        now=utc_now(),
    )
    assert not live_repository.transition_raw_item(
        item.id,
        expected_state=ProcessingState.EXTRACTING,
        new_state=ProcessingState.FAILED,
        now=utc_now(),
        last_error="late failure",
    )
    assert live_repository.get_raw_item(item.id).processing_state == ProcessingState.COMPLETED


def test_one_pending_suggestion_per_type(live_repository):
    def _suggestion():
        return FeedbackSuggestion(
            id=f"sugg_{uuid.uuid4().hex}",
            raw_feedback_item_id="raw_live_1",
            suggestion_type=SuggestionType.CREATE_POST,
            suggested_title="Dark mode",
            board_id="board_general",
        )

    first, created = live_repository.insert_suggestion_if_absent(_suggestion())
    second, created_again = live_repository.insert_suggestion_if_absent(_suggestion())

    assert created is True
    assert created_again is False
    assert second.id == first.id


def test_accept_merge_votes_once(live_repository):
    live_repository.save_post(Post(
        id="post_live_dark",
        board_id="board_general",
        title="Dark mode",
        vote_count=2,
        embedding=[1.0, 0.0, 0.0],
    ))
    live_repository.insert_suggestion_if_absent(FeedbackSuggestion(
        id="sugg_live_merge",
        raw_feedback_item_id="raw_live_2",
        suggestion_type=SuggestionType.MERGE_POST,
        target_post_id="post_live_dark",
        target_post_title="Dark mode",
        similarity_score=0.9,
    ))
    engine = ResolutionEngine(live_repository)

    post = engine.accept("sugg_live_merge", "reviewer_live")

    assert post.vote_count == 3
    assert live_repository.get_post("post_live_dark").vote_count == 3
    assert live_repository.has_vote("post_live_dark", "reviewer_live")
    assert live_repository.get_suggestion("sugg_live_merge").status == SuggestionStatus.ACCEPTED
    assert engine.cast_vote("post_live_dark", "reviewer_live") is False
