"""Shared Firestore utilities for the feedback pipeline.

Usage:
    from src.common.firestore import get_firestore_client, raw_items_collection

    client = get_firestore_client()
    collection = client.collection(raw_items_collection("feedback_"))
"""

from __future__ import annotations

from typing import Any, Dict, Optional, TYPE_CHECKING

from src.common.config import FirestoreConfig, load_firestore_config

if TYPE_CHECKING:
    from google.cloud.firestore import Client as FirestoreClient


class FirestoreError(Exception):
    """Base exception for Firestore-related errors."""

    pass


def get_firestore_client(
    config: Optional[FirestoreConfig] = None,
) -> "FirestoreClient":
    """Get a configured Firestore client.

    Args:
        config: Optional FirestoreConfig. If not provided, loads from environment.

    Returns:
        Configured Firestore client.

    Raises:
        FirestoreError: If client initialization fails.
    """
    from google.cloud import firestore

    if config is None:
        config = load_firestore_config()

    kwargs: Dict[str, Any] = {}
    if config.project_id:
        kwargs["project"] = config.project_id
    if config.database_id:
        kwargs["database"] = config.database_id

    try:
        return firestore.Client(**kwargs)
    except Exception as e:
        raise FirestoreError(f"Failed to initialize Firestore client: {e}") from e


def get_collection_prefix(config: Optional[FirestoreConfig] = None) -> str:
    """Get the collection prefix from config or environment."""
    if config is None:
        config = load_firestore_config()
    return config.collection_prefix


# Standard collection names
def raw_items_collection(prefix: Optional[str] = None) -> str:
    """Raw inbound feedback items, keyed by dedupe-key hash."""
    prefix = prefix or get_collection_prefix()
    return f"{prefix}raw_feedback_items"


def signals_collection(prefix: Optional[str] = None) -> str:
    prefix = prefix or get_collection_prefix()
    return f"{prefix}feedback_signals"


def suggestions_collection(prefix: Optional[str] = None) -> str:
    prefix = prefix or get_collection_prefix()
    return f"{prefix}feedback_suggestions"


def posts_collection(prefix: Optional[str] = None) -> str:
    prefix = prefix or get_collection_prefix()
    return f"{prefix}posts"


def votes_collection(prefix: Optional[str] = None) -> str:
    """Votes keyed by ``{post_id}:{principal_id}``."""
    prefix = prefix or get_collection_prefix()
    return f"{prefix}votes"
