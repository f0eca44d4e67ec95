"""Similarity matcher: picks the existing post a signal should merge into."""

import logging
from typing import List, Optional, Sequence

from src.common.logging import log_decision
from src.deduplication.models import MatchResult, Post
from src.deduplication.similarity import find_all_matches, to_vector
from src.storage.base import FeedbackRepository

logger = logging.getLogger(__name__)


class SimilarityMatcher:
    """Finds the best merge target among posts in the same workspace.

    Posts without an embedding are excluded from matching, not scored as 0.
    """

    def __init__(self, repository: FeedbackRepository, threshold: float = 0.80):
        self.repository = repository
        self.threshold = threshold

    def match(
        self,
        embedding: Optional[Sequence[float]],
        workspace_id: str,
        *,
        item_id: Optional[str] = None,
    ) -> Optional[MatchResult]:
        query = to_vector(embedding)
        if query is None:
            return None

        posts = self.repository.list_candidate_posts(workspace_id)
        return self.match_against(query, posts, item_id=item_id)

    def match_against(self, query, posts: List[Post], *, item_id: Optional[str] = None) -> Optional[MatchResult]:
        by_id = {}
        candidates = []
        for post in posts:
            vector = to_vector(post.embedding)
            if vector is None:
                continue
            by_id[post.id] = post
            candidates.append((post.id, vector, post.created_at))

        ranked = find_all_matches(query, candidates, threshold=self.threshold)
        best = ranked[0] if ranked else None
        runner_up = ranked[1] if len(ranked) > 1 else None

        log_decision(
            logger,
            item_id=item_id,
            action="similarity_match",
            outcome="matched" if best else "no_match",
            candidate_count=len(candidates),
            excluded_without_embedding=len(posts) - len(candidates),
            qualifying_count=len(ranked),
            target_post_id=best[0] if best else None,
            score=round(best[1], 4) if best else None,
            runner_up_post_id=runner_up[0] if runner_up else None,
            runner_up_score=round(runner_up[1], 4) if runner_up else None,
            threshold=self.threshold,
        )

        if best is None:
            return None
        post_id, score = best
        # Float error can push identical vectors a hair past 1.0.
        return MatchResult(post=by_id[post_id], score=min(max(score, 0.0), 1.0))
