"""Ingestion service: the entry point external adapters call.

Adapters (helpdesk webhooks, email pollers, the HTTP API) normalize an inbound
event into an ``IngestRequest`` and call ``ingest``. The item is stored in
``ready_for_extraction``; a repeated dedupe key returns the stored item
unchanged. Extraction is scheduled separately through ``submit_for_extraction``
so adapters can batch or defer it.

Repository work and queueing are separate steps: ``require_item`` and the
``reset_failed_*`` methods block on storage and belong in a worker thread when
called from async code, while ``enqueue`` only touches the worker pool and
must run on its event loop. ``submit_for_extraction`` and the ``retry_*``
methods chain both for synchronous callers.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from src.common.logging import log_audit, log_item
from src.common.timestamps import utc_now
from src.extraction.models import ItemOutcome
from src.extraction.worker import ExtractionWorkerPool
from src.ingestion.models import (
    FeedbackAuthor,
    IngestRequest,
    ProcessingState,
    RawFeedbackItem,
    raw_item_id_for,
)
from src.storage.base import FeedbackRepository, InvalidItemStateError, RawItemNotFoundError

logger = logging.getLogger(__name__)


class IngestionValidationError(ValueError):
    """Raised when an inbound payload does not describe a usable item."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        self.errors = errors or []
        super().__init__(message)


class RawItemNotRetryableError(InvalidItemStateError):
    """Raised when a manual retry targets an item that is not failed."""


class IngestionService:
    """Stores inbound items and hands them to the extraction worker pool."""

    def __init__(
        self,
        repository: FeedbackRepository,
        worker_pool: Optional[ExtractionWorkerPool] = None,
        *,
        default_workspace_id: str = "default",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.worker_pool = worker_pool
        self.default_workspace_id = default_workspace_id
        self.clock = clock

    def ingest(
        self, payload: Union[IngestRequest, Mapping[str, Any]]
    ) -> Tuple[RawFeedbackItem, bool]:
        """Store one inbound event.

        Args:
            payload: An IngestRequest or a dict in its (camelCase or
                snake_case) shape.

        Returns:
            (item, created). ``created`` is False when the dedupe key was
            already known; the stored item is returned untouched.

        Raises:
            IngestionValidationError: If the payload is malformed.
        """
        request = self._validate(payload)
        now = self.clock()

        item = RawFeedbackItem(
            id=raw_item_id_for(request.dedupe_key),
            workspace_id=request.workspace_id or self.default_workspace_id,
            source_id=request.source_id,
            source_type=request.source_type,
            external_id=request.external_id,
            dedupe_key=request.dedupe_key,
            external_url=request.external_url,
            principal_id=request.principal_id,
            author=request.author or FeedbackAuthor(),
            content=request.content,
            context_envelope=dict(request.context_envelope or {}),
            processing_state=ProcessingState.READY_FOR_EXTRACTION,
            state_changed_at=now,
            created_at=now,
        )

        stored, created = self.repository.insert_raw_item(item)
        log_item(
            logger,
            "item_ingested" if created else "item_duplicate",
            item_id=stored.id,
            source_id=stored.source_id,
            source_type=stored.source_type.value,
            external_id=stored.external_id,
        )
        return stored, created

    @staticmethod
    def _validate(payload: Union[IngestRequest, Mapping[str, Any]]) -> IngestRequest:
        if isinstance(payload, IngestRequest):
            return payload
        if not isinstance(payload, Mapping):
            raise IngestionValidationError(
                f"Payload must be an object, got {type(payload).__name__}"
            )
        try:
            return IngestRequest.model_validate(dict(payload))
        except ValidationError as e:
            errors = e.errors(include_url=False)
            raise IngestionValidationError(
                f"Invalid ingestion payload: {len(errors)} error(s)", errors=errors
            ) from e

    @property
    def accepting_jobs(self) -> bool:
        return self.worker_pool is not None and self.worker_pool.running

    def require_item(self, raw_item_id: str) -> RawFeedbackItem:
        """Return the stored item.

        Raises:
            RawItemNotFoundError: If no item has this id.
        """
        item = self.repository.get_raw_item(raw_item_id)
        if item is None:
            raise RawItemNotFoundError(f"Raw item {raw_item_id} not found")
        return item

    def enqueue(self, raw_item_id: str) -> "asyncio.Future[ItemOutcome]":
        """Hand an item id to the worker pool without touching storage."""
        return self._pool().submit_for_extraction(raw_item_id)

    def reset_failed_item(self, raw_item_id: str) -> RawFeedbackItem:
        """Put a failed item back to ``ready_for_extraction`` with attempts cleared.

        Raises:
            RawItemNotFoundError: If no item has this id.
            RawItemNotRetryableError: If the item is not failed.
        """
        try:
            item = self.repository.reset_raw_item_for_retry(raw_item_id, now=self.clock())
        except InvalidItemStateError as e:
            raise RawItemNotRetryableError(e.item_id, e.current_state, e.expected_state) from e

        log_audit(
            logger,
            actor="operator",
            action="retry_failed_item",
            target=item.id,
            status="reset",
        )
        return item

    def reset_failed_items(self, limit: int = 500) -> List[str]:
        """Reset up to ``limit`` failed items; returns the ids that were reset."""
        reset_ids: List[str] = []
        for item in self.repository.list_raw_items(ProcessingState.FAILED, limit=limit):
            try:
                self.repository.reset_raw_item_for_retry(item.id, now=self.clock())
            except InvalidItemStateError:
                # Picked up again by a worker since it was listed.
                continue
            reset_ids.append(item.id)

        log_audit(
            logger,
            actor="operator",
            action="retry_all_failed_items",
            status="reset",
            count=len(reset_ids),
            limit=limit,
        )
        return reset_ids

    def submit_for_extraction(self, raw_item_id: str) -> "asyncio.Future[ItemOutcome]":
        """Schedule one pipeline pass for a stored item.

        Raises:
            RawItemNotFoundError: If no item has this id.
        """
        self.require_item(raw_item_id)
        return self.enqueue(raw_item_id)

    def retry_failed_item(self, raw_item_id: str) -> "asyncio.Future[ItemOutcome]":
        """Reset a failed item (attempts and last_error cleared) and resubmit it.

        Raises:
            RawItemNotFoundError: If no item has this id.
            RawItemNotRetryableError: If the item is not failed.
        """
        self._pool()
        item = self.reset_failed_item(raw_item_id)
        return self.enqueue(item.id)

    def retry_all_failed_items(self, limit: int = 500) -> int:
        """Reset and resubmit up to ``limit`` failed items. Returns the count."""
        self._pool()
        reset_ids = self.reset_failed_items(limit)
        for item_id in reset_ids:
            self.enqueue(item_id)
        return len(reset_ids)

    def _pool(self) -> ExtractionWorkerPool:
        if self.worker_pool is None:
            raise RuntimeError("IngestionService has no worker pool configured")
        return self.worker_pool
