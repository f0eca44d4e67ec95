"""Builds merge_post / create_post suggestions from signals and matches.

A match yields ``merge_post``; no match (including signals without an
embedding) yields ``create_post``. Inserts go through the repository's
"insert unless a pending suggestion exists for (item, type)" operation so
replays after a crash never fan out duplicate pending suggestions.

create_post title and body come from the PostDrafter when one is configured.
If drafting fails, or no drafter is wired, the signal summary becomes the
title and the source text the body.

Board selection for create_post, first hit wins:
    1. ``board_id`` hint in the item's context envelope
    2. the drafter's pick, if it names a known board
    3. ``board_routing`` for the signal type
    4. ``default_board_id``
"""

import logging
import uuid
from typing import Dict, List, Optional, Tuple

from src.common.logging import log_item
from src.common.timestamps import utc_now
from src.deduplication.models import FeedbackSuggestion, MatchResult, SuggestionType
from src.extraction.capabilities import CapabilityError, PostDrafter
from src.extraction.models import FeedbackSignal, PostDraft
from src.extraction.quality_gate import normalize_text
from src.ingestion.models import RawFeedbackItem
from src.storage.base import FeedbackRepository

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100
MAX_BODY_LENGTH = 500


def new_suggestion_id() -> str:
    return f"sugg_{uuid.uuid4().hex}"


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


class SuggestionBuilder:
    """Converts (item, signal, match) into a persisted suggestion."""

    def __init__(
        self,
        repository: FeedbackRepository,
        *,
        default_board_id: Optional[str] = None,
        board_routing: Optional[Dict[str, str]] = None,
        drafter: Optional[PostDrafter] = None,
    ):
        self.repository = repository
        self.default_board_id = default_board_id
        self.board_routing = board_routing or {}
        self.drafter = drafter

    @property
    def known_boards(self) -> List[str]:
        boards = set(self.board_routing.values())
        if self.default_board_id:
            boards.add(self.default_board_id)
        return sorted(boards)

    def board_for(
        self,
        signal: FeedbackSignal,
        item: Optional[RawFeedbackItem] = None,
        drafted_board_id: Optional[str] = None,
    ) -> Optional[str]:
        if item is not None and item.envelope_hints.board_id:
            return item.envelope_hints.board_id
        if drafted_board_id and drafted_board_id in self.known_boards:
            return drafted_board_id
        return self.board_routing.get(signal.signal_type.value, self.default_board_id)

    def _draft_post(self, item: RawFeedbackItem, signal: FeedbackSignal) -> Optional[PostDraft]:
        if self.drafter is None:
            return None
        try:
            return self.drafter.draft_post(signal, item, self.known_boards)
        except CapabilityError as e:
            logger.warning(
                "post_draft_failed",
                extra={
                    "event": "post_draft_failed",
                    "item_id": item.id,
                    "signal_id": signal.id,
                    "error": str(e),
                    "fallback": "signal_summary",
                },
            )
            return None

    def draft(
        self,
        item: RawFeedbackItem,
        signal: FeedbackSignal,
        match: Optional[MatchResult],
    ) -> FeedbackSuggestion:
        """Build the suggestion without persisting it."""
        now = utc_now()
        common = dict(
            id=new_suggestion_id(),
            raw_feedback_item_id=item.id,
            signal_id=signal.id,
            workspace_id=item.workspace_id,
            created_at=now,
            updated_at=now,
        )

        if match is not None:
            return FeedbackSuggestion(
                suggestion_type=SuggestionType.MERGE_POST,
                target_post_id=match.post.id,
                target_post_title=match.post.title,
                similarity_score=match.score,
                reasoning=(
                    f"Similar to existing request \"{match.post.title}\" "
                    f"({match.score:.0%} similarity)"
                ),
                **common,
            )

        post = self._draft_post(item, signal)
        if post is not None:
            title = _truncate(post.title, MAX_TITLE_LENGTH)
            body = post.body or signal.summary
            reasoning = post.reasoning or f"Drafted from {signal.signal_type.value} signal"
        else:
            body_source = normalize_text(item.content.text or "")
            title = _truncate(signal.summary, MAX_TITLE_LENGTH)
            body = _truncate(body_source, MAX_BODY_LENGTH) if body_source else signal.summary
            reasoning = f"Auto-generated from {signal.signal_type.value} signal"
        if not signal.has_embedding:
            reasoning += " (no embedding available)"

        return FeedbackSuggestion(
            suggestion_type=SuggestionType.CREATE_POST,
            suggested_title=title,
            suggested_body=body,
            board_id=self.board_for(signal, item, post.board_id if post else None),
            embedding=signal.embedding,
            reasoning=reasoning,
            **common,
        )

    def build(
        self,
        item: RawFeedbackItem,
        signal: FeedbackSignal,
        match: Optional[MatchResult],
    ) -> Tuple[FeedbackSuggestion, bool]:
        """Persist a suggestion unless one is already pending for (item, type).

        Returns:
            (suggestion, created). When ``created`` is False the returned
            suggestion is the existing pending one.
        """
        suggestion = self.draft(item, signal, match)
        stored, created = self.repository.insert_suggestion_if_absent(suggestion)

        log_item(
            logger,
            "suggestion_created" if created else "suggestion_already_pending",
            item_id=item.id,
            suggestion_id=stored.id,
            suggestion_type=stored.suggestion_type.value,
            signal_id=signal.id,
            target_post_id=stored.target_post_id,
            similarity_score=stored.similarity_score,
            board_id=stored.board_id,
        )
        return stored, created
