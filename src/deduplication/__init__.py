"""Matching signals against existing posts and building suggestions.

Each signal embedding is compared with the embeddings of posts in the same
workspace. A close enough match (cosine >= SIMILARITY_THRESHOLD, default 0.80)
becomes a merge_post suggestion; anything else becomes create_post.

Shared Utilities (from src/common/):
    - config: PipelineSettings, EmbeddingConfig
    - logging: log_decision() for match results

Modules:
    models: Post, Vote, FeedbackSuggestion, SuggestionEdits and enums
    similarity: Cosine similarity computation and best match finding
    embedding_client: Vertex AI text embeddings with caching and retry
    matcher: SimilarityMatcher over the repository's candidate posts
    suggestion_builder: Idempotent merge_post / create_post suggestion inserts
"""

from src.deduplication.models import (
    FeedbackSuggestion,
    MatchResult,
    Post,
    SuggestionEdits,
    SuggestionSort,
    SuggestionStatus,
    SuggestionType,
    Vote,
)

__all__ = [
    "FeedbackSuggestion",
    "MatchResult",
    "Post",
    "SuggestionEdits",
    "SuggestionSort",
    "SuggestionStatus",
    "SuggestionType",
    "Vote",
]
