"""Unit tests for the per-item pipeline and its claim/transition rules."""

import pytest

from src.deduplication.embedding_client import EmbeddingServiceError
from src.deduplication.models import SuggestionStatus, SuggestionType
from src.extraction.gemini_client import GeminiAPIError
from src.extraction.models import GateReason, ItemOutcomeStatus, SignalDraft
from src.extraction.pipeline import GATE_PRINCIPAL_ID, FeedbackPipeline
from src.ingestion.models import ProcessingState
from src.storage.base import ClaimDecision, decide_claim

from tests.fakes import DARK_MODE_VECTOR, PARAPHRASE_VECTOR, FakeDrafter, make_post


def _suggestions(repository, item_id):
    suggestions, _ = repository.list_suggestions(raw_item_id=item_id, status=None, limit=100)
    return suggestions


# =============================================================================
# Gate outcomes
# =============================================================================


def test_one_word_item_completed_with_nothing_extracted(repository, pipeline, ingest, classifier):
    item = ingest(content={"text": "thanks"})

    outcome = pipeline.process(item.id)

    assert outcome.status == ItemOutcomeStatus.GATE_REJECTED
    assert outcome.gate_reason == GateReason.TOO_SHORT
    stored = repository.get_raw_item(item.id)
    assert stored.processing_state == ProcessingState.COMPLETED
    assert stored.processed_at is not None
    assert repository.list_signals(item.id) == []
    assert _suggestions(repository, item.id) == []
    assert classifier.calls == []


def test_not_actionable_item_has_no_signals(repository, pipeline, ingest, classifier):
    classifier.actionable = False
    item = ingest()

    outcome = pipeline.process(item.id)

    assert outcome.status == ItemOutcomeStatus.GATE_REJECTED
    assert outcome.gate_reason == GateReason.NOT_ACTIONABLE
    assert repository.list_signals(item.id) == []
    assert _suggestions(repository, item.id) == []


# =============================================================================
# Suggestions
# =============================================================================


def test_paraphrase_of_existing_post_yields_merge(repository, pipeline, ingest, embedder):
    post = make_post(repository, "post_dark", "Dark mode", DARK_MODE_VECTOR)
    embedder.vectors = {"dark mode": PARAPHRASE_VECTOR}
    item = ingest()

    outcome = pipeline.process(item.id)

    assert outcome.status == ItemOutcomeStatus.COMPLETED
    assert outcome.signal_count == 1
    suggestions = _suggestions(repository, item.id)
    assert len(suggestions) == 1
    assert suggestions[0].suggestion_type == SuggestionType.MERGE_POST
    assert suggestions[0].target_post_id == post.id
    assert suggestions[0].similarity_score == pytest.approx(0.9, abs=1e-6)
    assert repository.get_raw_item(item.id).processing_state == ProcessingState.COMPLETED


def test_identical_embedding_selected_with_score_one(repository, pipeline, ingest):
    make_post(repository, "post_close", "Dark theme", PARAPHRASE_VECTOR)
    make_post(repository, "post_exact", "Dark mode", DARK_MODE_VECTOR)
    item = ingest()

    pipeline.process(item.id)

    suggestion = _suggestions(repository, item.id)[0]
    assert suggestion.target_post_id == "post_exact"
    assert suggestion.similarity_score == pytest.approx(1.0)


def test_novel_request_during_embedder_outage_yields_one_create(repository, pipeline, ingest, embedder):
    make_post(repository, "post_dark", "Dark mode", DARK_MODE_VECTOR)
    embedder.error = EmbeddingServiceError("vertex unavailable")
    item = ingest(content={"text": "We need a way to schedule reports to Slack every Monday."})

    outcome = pipeline.process(item.id)

    assert outcome.status == ItemOutcomeStatus.COMPLETED
    suggestions = _suggestions(repository, item.id)
    assert len(suggestions) == 1
    assert suggestions[0].suggestion_type == SuggestionType.CREATE_POST
    assert suggestions[0].embedding is None


def test_every_passed_item_gets_at_least_one_suggestion(repository, pipeline, ingest):
    for n in range(5):
        item = ingest(
            f"email:thread-{n}",
            externalId=f"thread-{n}",
            content={"text": f"Feature idea number {n}: let admins export audit logs as CSV files."},
        )
        outcome = pipeline.process(item.id)
        assert outcome.status == ItemOutcomeStatus.COMPLETED
        assert len(_suggestions(repository, item.id)) >= 1


def test_multiple_signals_one_pending_per_type(repository, settings, classifier, embedder, clock, ingest, interpreter):
    interpreter.drafts = [
        SignalDraft(signal_type="feature_request", summary="Add dark mode", confidence=0.9),
        SignalDraft(signal_type="feature_request", summary="Schedule exports", confidence=0.8),
    ]
    pipeline = FeedbackPipeline.from_settings(
        repository, settings, classifier=classifier, embedder=embedder,
        interpreter=interpreter, clock=clock,
    )
    item = ingest()

    outcome = pipeline.process(item.id)

    assert outcome.signal_count == 2
    assert outcome.created_suggestion_count == 1
    suggestions = _suggestions(repository, item.id)
    assert len(suggestions) == 1
    assert suggestions[0].suggestion_type == SuggestionType.CREATE_POST


@pytest.mark.parametrize("enabled", [True, False])
def test_post_drafter_follows_setting(repository, settings, classifier, embedder, clock, ingest, enabled):
    settings.use_post_drafter = enabled
    drafter = FakeDrafter()
    pipeline = FeedbackPipeline.from_settings(
        repository, settings, classifier=classifier, embedder=embedder,
        drafter=drafter, clock=clock,
    )
    item = ingest()

    pipeline.process(item.id)

    [suggestion] = _suggestions(repository, item.id)
    assert (suggestion.suggested_title == "Dark mode for the dashboard") is enabled
    assert len(drafter.calls) == (1 if enabled else 0)


# =============================================================================
# Replay and claims
# =============================================================================


def test_rerun_never_duplicates_pending_suggestions(repository, pipeline, ingest):
    item = ingest()

    pipeline.process(item.id)
    # Simulate a crash-retry: item handed back to the queue.
    repository.transition_raw_item(
        item.id,
        expected_state=ProcessingState.COMPLETED,
        new_state=ProcessingState.READY_FOR_EXTRACTION,
        now=pipeline.clock(),
    )
    second = pipeline.process(item.id)

    assert second.status == ItemOutcomeStatus.COMPLETED
    assert second.created_suggestion_count == 0
    pending = [s for s in _suggestions(repository, item.id) if s.status == SuggestionStatus.PENDING]
    assert len(pending) == 1
    assert len(repository.list_signals(item.id)) == 1


def test_gate_reject_after_interrupted_pass_clears_its_output(repository, pipeline, ingest, classifier, clock):
    item = ingest()
    # A pass that stored its output and then died before completing the item.
    claimed = repository.claim_raw_item(item.id, now=clock(), stale_after_sec=600, max_attempts=3)
    pipeline._run_stages(claimed)
    assert len(repository.list_signals(item.id)) == 1
    assert len(_suggestions(repository, item.id)) == 1

    classifier.actionable = False
    clock.advance(601)
    outcome = pipeline.process(item.id)

    assert outcome.status == ItemOutcomeStatus.GATE_REJECTED
    assert outcome.attempt == 2
    assert repository.list_signals(item.id) == []
    suggestions = _suggestions(repository, item.id)
    assert [s.status for s in suggestions] == [SuggestionStatus.DISMISSED]
    assert suggestions[0].resolved_by_principal_id == GATE_PRINCIPAL_ID
    assert suggestions[0].resolved_at == clock()
    assert repository.get_raw_item(item.id).processing_state == ProcessingState.COMPLETED


def test_gate_reject_after_manual_retry_clears_signals(repository, pipeline, ingest, classifier, clock, monkeypatch):
    item = ingest()

    def _storage_down(suggestion):
        raise RuntimeError("suggestion store unavailable")

    monkeypatch.setattr(repository, "insert_suggestion_if_absent", _storage_down)
    assert pipeline.process(item.id).status == ItemOutcomeStatus.FAILED
    assert len(repository.list_signals(item.id)) == 1
    monkeypatch.undo()

    # Reset puts attempt_count back to zero, so the next pass is attempt 1 again.
    repository.reset_raw_item_for_retry(item.id, now=clock())
    classifier.actionable = False
    outcome = pipeline.process(item.id)

    assert outcome.status == ItemOutcomeStatus.GATE_REJECTED
    assert outcome.attempt == 1
    assert repository.list_signals(item.id) == []
    assert _suggestions(repository, item.id) == []


def test_gate_reject_leaves_resolved_suggestions_alone(repository, pipeline, ingest, classifier, clock):
    item = ingest()
    pipeline.process(item.id)
    [suggestion] = _suggestions(repository, item.id)
    accepted = suggestion.model_copy(update={"status": SuggestionStatus.ACCEPTED})
    repository.run_in_transaction(lambda tx: tx.save_suggestion(accepted))
    repository.transition_raw_item(
        item.id,
        expected_state=ProcessingState.COMPLETED,
        new_state=ProcessingState.READY_FOR_EXTRACTION,
        now=clock(),
    )

    classifier.actionable = False
    pipeline.process(item.id)

    assert [s.status for s in _suggestions(repository, item.id)] == [SuggestionStatus.ACCEPTED]


def test_completed_item_is_skipped(pipeline, ingest):
    item = ingest()
    pipeline.process(item.id)

    outcome = pipeline.process(item.id)

    assert outcome.status == ItemOutcomeStatus.SKIPPED


def test_unknown_item_is_skipped(pipeline):
    assert pipeline.process("raw_missing").status == ItemOutcomeStatus.SKIPPED


def test_second_claim_while_extracting_returns_nothing(repository, ingest, clock):
    item = ingest()

    first = repository.claim_raw_item(item.id, now=clock(), stale_after_sec=600, max_attempts=3)
    second = repository.claim_raw_item(item.id, now=clock(), stale_after_sec=600, max_attempts=3)

    assert first is not None
    assert first.processing_state == ProcessingState.EXTRACTING
    assert first.attempt_count == 1
    assert second is None


def test_stale_claim_is_reclaimed(repository, ingest, clock):
    item = ingest()
    repository.claim_raw_item(item.id, now=clock(), stale_after_sec=600, max_attempts=3)

    clock.advance(601)
    reclaimed = repository.claim_raw_item(item.id, now=clock(), stale_after_sec=600, max_attempts=3)

    assert reclaimed is not None
    assert reclaimed.attempt_count == 2


def test_stale_claim_without_attempts_left_is_abandoned(repository, ingest, clock):
    item = ingest()
    repository.claim_raw_item(item.id, now=clock(), stale_after_sec=600, max_attempts=1)

    clock.advance(601)
    result = repository.claim_raw_item(item.id, now=clock(), stale_after_sec=600, max_attempts=1)

    assert result is None
    stored = repository.get_raw_item(item.id)
    assert stored.processing_state == ProcessingState.FAILED
    assert "abandoned" in stored.last_error


def test_superseded_claim_cannot_transition(repository, ingest, clock):
    item = ingest()
    repository.claim_raw_item(item.id, now=clock(), stale_after_sec=600, max_attempts=3)
    clock.advance(601)
    repository.claim_raw_item(item.id, now=clock(), stale_after_sec=600, max_attempts=3)

    stale = repository.transition_raw_item(
        item.id,
        expected_state=ProcessingState.EXTRACTING,
        new_state=ProcessingState.FAILED,
        now=clock(),
        last_error="late failure",
        expected_attempt=1,
    )

    assert stale is False
    stored = repository.get_raw_item(item.id)
    assert stored.processing_state == ProcessingState.EXTRACTING
    assert stored.last_error is None
    assert repository.transition_raw_item(
        item.id,
        expected_state=ProcessingState.EXTRACTING,
        new_state=ProcessingState.COMPLETED,
        now=clock(),
        expected_attempt=2,
    )


def test_slow_pass_does_not_complete_reclaimed_item(repository, pipeline, ingest, clock, monkeypatch):
    item = ingest()
    admit = pipeline.gate.admit

    def _admit_then_lose_claim(claimed):
        decision = admit(claimed)
        clock.advance(601)
        repository.claim_raw_item(item.id, now=clock(), stale_after_sec=600, max_attempts=3)
        return decision

    monkeypatch.setattr(pipeline.gate, "admit", _admit_then_lose_claim)
    outcome = pipeline.process(item.id)

    assert outcome.attempt == 1
    stored = repository.get_raw_item(item.id)
    assert stored.processing_state == ProcessingState.EXTRACTING
    assert stored.attempt_count == 2
    assert stored.processed_at is None


def test_decide_claim_rules(ingest, clock):
    item = ingest()
    assert decide_claim(item, now=clock(), stale_after_sec=600, max_attempts=3) == ClaimDecision.CLAIM

    failed = item.model_copy(update={"processing_state": ProcessingState.FAILED, "attempt_count": 3})
    assert decide_claim(failed, now=clock(), stale_after_sec=600, max_attempts=3) == ClaimDecision.SKIP

    completed = item.model_copy(update={"processing_state": ProcessingState.COMPLETED})
    assert decide_claim(completed, now=clock(), stale_after_sec=600, max_attempts=3) == ClaimDecision.SKIP


# =============================================================================
# Failures
# =============================================================================


def test_classifier_outage_marks_item_failed(repository, pipeline, ingest, classifier):
    classifier.error = GeminiAPIError("503 Service Unavailable")
    item = ingest()

    outcome = pipeline.process(item.id)

    assert outcome.status == ItemOutcomeStatus.FAILED
    assert outcome.retryable is True
    stored = repository.get_raw_item(item.id)
    assert stored.processing_state == ProcessingState.FAILED
    assert "503" in stored.last_error
    assert stored.attempt_count == 1


def test_failed_item_stays_failed_after_max_attempts(repository, pipeline, ingest, classifier):
    classifier.error = GeminiAPIError("503 Service Unavailable")
    item = ingest()

    outcomes = [pipeline.process(item.id) for _ in range(4)]

    assert [o.status for o in outcomes] == [
        ItemOutcomeStatus.FAILED,
        ItemOutcomeStatus.FAILED,
        ItemOutcomeStatus.FAILED,
        ItemOutcomeStatus.SKIPPED,
    ]
    stored = repository.get_raw_item(item.id)
    assert stored.processing_state == ProcessingState.FAILED
    assert stored.attempt_count == 3


def test_unexpected_error_is_not_retryable(repository, pipeline, ingest, classifier):
    classifier.error = KeyError("rationale")
    item = ingest()

    outcome = pipeline.process(item.id)

    assert outcome.status == ItemOutcomeStatus.FAILED
    assert outcome.retryable is False
    assert repository.get_raw_item(item.id).last_error.startswith("KeyError")


def test_last_error_is_truncated(repository, pipeline, ingest, classifier):
    classifier.error = GeminiAPIError("x" * 5000)
    item = ingest()

    pipeline.process(item.id)

    assert len(repository.get_raw_item(item.id).last_error) == 1000


def test_reset_for_retry_clears_attempts(repository, pipeline, ingest, classifier, clock):
    classifier.error = GeminiAPIError("503")
    item = ingest()
    pipeline.process(item.id)

    reset = repository.reset_raw_item_for_retry(item.id, now=clock())

    assert reset.processing_state == ProcessingState.READY_FOR_EXTRACTION
    assert reset.attempt_count == 0
    assert reset.last_error is None

    classifier.error = None
    assert pipeline.process(item.id).status == ItemOutcomeStatus.COMPLETED
