"""Utility script to verify the Firestore collections used by the pipeline.

Firestore creates collections on first write, so this only checks that each
one is readable with the configured credentials. Also prints the composite
indexes the repository queries need; create them with
``gcloud firestore indexes composite create`` or from the console.
"""

from __future__ import annotations

import sys
from pathlib import Path

from google.cloud import firestore

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.common.config import load_firestore_config
from src.common.env import load_env
from src.common.firestore import (
    get_firestore_client,
    posts_collection,
    raw_items_collection,
    signals_collection,
    suggestions_collection,
    votes_collection,
)

# (collection suffix, fields) for queries that combine filters with ordering.
COMPOSITE_INDEXES = [
    ("raw_feedback_items", "processing_state ASC, created_at ASC"),
    ("feedback_suggestions", "raw_feedback_item_id ASC, status ASC, created_at DESC"),
    ("feedback_suggestions", "status ASC, created_at DESC"),
    ("feedback_suggestions", "status ASC, suggestion_type ASC, created_at DESC"),
    ("feedback_suggestions", "status ASC, board_id ASC, created_at DESC"),
    ("feedback_suggestions", "status ASC, similarity_score DESC, created_at DESC"),
]


def check_collection(client: firestore.Client, name: str) -> bool:
    """Read one document to confirm the collection is reachable."""
    try:
        docs = list(client.collection(name).limit(1).stream())
    except Exception as e:
        print(f"  {name}: FAILED ({e})")
        return False
    print(f"  {name}: ok ({'non-empty' if docs else 'empty'})")
    return True


def main() -> None:
    load_env()
    config = load_firestore_config()
    client = get_firestore_client(config)

    names = [
        raw_items_collection(config.collection_prefix),
        signals_collection(config.collection_prefix),
        suggestions_collection(config.collection_prefix),
        posts_collection(config.collection_prefix),
        votes_collection(config.collection_prefix),
    ]
    print("Collections:")
    reachable = [check_collection(client, name) for name in names]

    print("\nComposite indexes required:")
    for suffix, fields in COMPOSITE_INDEXES:
        print(f"  {config.collection_prefix}{suffix}: {fields}")

    if not all(reachable):
        sys.exit(1)


if __name__ == "__main__":
    main()
