#!/usr/bin/env python3
"""Backfill script: run stored raw items through the extraction pipeline.

Picks up items that were ingested while no worker pool was running
(``ready_for_extraction``) and, with ``--include-failed``, resets failed items
and runs them again. Waits for every item to reach a final outcome and prints
a summary by outcome status.

Usage:
    python scripts/backfill_feedback_pipeline.py --limit 200
    python scripts/backfill_feedback_pipeline.py --include-failed --dry-run
"""

import argparse
import asyncio
import json
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.api.dependencies import PipelineComponents, build_components
from src.common.config import ApiConfig, load_api_config
from src.common.env import load_env
from src.common.timestamps import utc_now
from src.ingestion.models import ProcessingState
from src.storage.base import InvalidItemStateError


def select_item_ids(components: PipelineComponents, limit: int, include_failed: bool) -> List[str]:
    """Ids of ready items, plus failed ones when requested, up to ``limit``."""
    repository = components.repository
    ids = [item.id for item in repository.list_raw_items(ProcessingState.READY_FOR_EXTRACTION, limit=limit)]
    if include_failed and len(ids) < limit:
        failed = repository.list_raw_items(ProcessingState.FAILED, limit=limit - len(ids))
        ids.extend(item.id for item in failed)
    return ids


async def run_backfill(components: PipelineComponents, item_ids: List[str]) -> Dict[str, Any]:
    pool = components.worker_pool
    await pool.start()
    try:
        submitted_ids: List[str] = []
        futures = []
        for item_id in item_ids:
            item = components.repository.get_raw_item(item_id)
            if item is not None and item.processing_state == ProcessingState.FAILED:
                try:
                    components.repository.reset_raw_item_for_retry(item_id, now=utc_now())
                except InvalidItemStateError:
                    continue
            submitted_ids.append(item_id)
            futures.append(pool.submit_for_extraction(item_id))
        outcomes = await asyncio.gather(*futures, return_exceptions=True)
    finally:
        await pool.stop()

    statuses: Counter = Counter()
    errors = []
    for item_id, outcome in zip(submitted_ids, outcomes):
        if isinstance(outcome, BaseException):
            statuses["crashed"] += 1
            errors.append({"rawItemId": item_id, "error": str(outcome)})
            continue
        statuses[outcome.status.value] += 1
        if outcome.error:
            errors.append({"rawItemId": item_id, "error": outcome.error})

    return {
        "submitted": len(submitted_ids),
        "outcomes": dict(statuses),
        "errors": errors,
        "pipeline": components.repository.pipeline_stats(),
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Run stored feedback items through the pipeline")
    parser.add_argument("-n", "--limit", type=int, default=500, help="Maximum items to process")
    parser.add_argument("--include-failed", action="store_true", help="Reset and rerun failed items too")
    parser.add_argument("--dry-run", action="store_true", help="List the items that would be processed")
    parser.add_argument(
        "--backend",
        choices=["firestore", "memory"],
        help="Override STORAGE_BACKEND",
    )
    parser.add_argument("-o", "--output", type=str, help="Write the summary as JSON to this file")
    args = parser.parse_args()

    load_env()
    api_config = load_api_config()
    if args.backend:
        api_config = ApiConfig(api_key=api_config.api_key, storage_backend=args.backend)

    try:
        components = build_components(api_config)
        item_ids = select_item_ids(components, args.limit, args.include_failed)

        if args.dry_run:
            print(f"Would process {len(item_ids)} item(s)")
            for item_id in item_ids:
                print(f"  {item_id}")
            return

        summary = asyncio.run(run_backfill(components, item_ids))
    except Exception as e:
        print(f"Backfill failed: {e}", file=sys.stderr)
        sys.exit(2)

    print(json.dumps(summary, indent=2, default=str))
    if args.output:
        with open(args.output, "w") as f:
            json.dump(summary, f, indent=2, default=str)
        print(f"\nSummary written to: {args.output}")

    sys.exit(1 if summary["outcomes"].get("failed") or summary["outcomes"].get("crashed") else 0)


if __name__ == "__main__":
    main()
