"""Persistence layer for the feedback pipeline.

Modules:
    base: FeedbackRepository / RepositoryTransaction interfaces, claim rules, errors
    firestore_repository: Cloud Firestore backend (transactions, Increment)
    memory_repository: In-process backend for local runs and tests
"""

from typing import Optional

from src.common.config import FirestoreConfig
from src.storage.base import FeedbackRepository


def create_repository(backend: str, firestore_config: Optional[FirestoreConfig] = None) -> FeedbackRepository:
    """Build the repository for ``backend`` (``firestore`` or ``memory``)."""
    if backend == "memory":
        from src.storage.memory_repository import InMemoryFeedbackRepository

        return InMemoryFeedbackRepository()

    from src.storage.firestore_repository import FirestoreFeedbackRepository

    return FirestoreFeedbackRepository(config=firestore_config)


__all__ = ["FeedbackRepository", "create_repository"]
