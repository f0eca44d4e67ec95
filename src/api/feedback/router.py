"""FastAPI router for raw feedback item endpoints.

Ingestion, manual extraction and operator retries. Endpoints that enqueue
work are ``async`` so submission happens on the worker pool's event loop;
their storage calls run in the threadpool so a slow repository never stalls
the loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from starlette.concurrency import run_in_threadpool

from src.api.auth import verify_api_key
from src.api.dependencies import get_ingestion_service, get_repository
from src.api.feedback.models import (
    ExtractionQueuedResponse,
    IngestResponse,
    RawItemDetail,
    RawItemView,
    RetryFailedResponse,
)
from src.common.logging import get_logger
from src.extraction.worker import WorkerPoolNotRunningError
from src.ingestion.models import IngestRequest
from src.ingestion.service import (
    IngestionService,
    IngestionValidationError,
    RawItemNotRetryableError,
)
from src.storage.base import FeedbackRepository, RawItemNotFoundError

logger = get_logger(__name__)

router = APIRouter(tags=["feedback"])


def _pool_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Extraction worker pool is not running",
    )


@router.post(
    "/feedback/items",
    response_model=IngestResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        200: {"description": "Duplicate dedupe key; existing item returned"},
        401: {"description": "Invalid or missing API key"},
        422: {"description": "Malformed payload"},
    },
)
async def ingest_feedback_item(
    payload: IngestRequest,
    response: Response,
    submit: bool = Query(True, description="Submit newly created items for extraction"),
    api_key: str = Depends(verify_api_key),
    service: IngestionService = Depends(get_ingestion_service),
) -> IngestResponse:
    """Store an inbound feedback event.

    Returns 201 for a new item and 200 with ``created=false`` when the dedupe
    key was already ingested.
    """
    try:
        item, created = await run_in_threadpool(service.ingest, payload)
    except IngestionValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors or str(e),
        )

    submitted = False
    if created and submit:
        try:
            service.enqueue(item.id)
            submitted = True
        except WorkerPoolNotRunningError:
            logger.warning(
                "Item stored but not submitted; worker pool not running",
                extra={"item_id": item.id},
            )

    if not created:
        response.status_code = status.HTTP_200_OK

    return IngestResponse(created=created, submitted=submitted, item=RawItemView.from_item(item))


@router.post(
    "/feedback/items/retry-failed",
    response_model=RetryFailedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        401: {"description": "Invalid or missing API key"},
        503: {"description": "Extraction worker pool is not running"},
    },
)
async def retry_failed_items(
    limit: int = Query(500, ge=1, le=5000, description="Maximum items to resubmit"),
    api_key: str = Depends(verify_api_key),
    service: IngestionService = Depends(get_ingestion_service),
) -> RetryFailedResponse:
    """Reset and resubmit every failed item, up to ``limit``."""
    if not service.accepting_jobs:
        raise _pool_unavailable()
    reset_ids = await run_in_threadpool(service.reset_failed_items, limit)
    try:
        for item_id in reset_ids:
            service.enqueue(item_id)
    except WorkerPoolNotRunningError:
        raise _pool_unavailable()
    return RetryFailedResponse(resubmitted=len(reset_ids))


@router.get(
    "/feedback/items/{itemId}",
    response_model=RawItemDetail,
    responses={
        401: {"description": "Invalid or missing API key"},
        404: {"description": "Raw item not found"},
    },
)
def get_feedback_item(
    itemId: str,
    api_key: str = Depends(verify_api_key),
    repository: FeedbackRepository = Depends(get_repository),
) -> RawItemDetail:
    """Processing state, last error, attempt count and signals of an item."""
    item = repository.get_raw_item(itemId)
    if item is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Raw item not found",
        )
    return RawItemDetail.from_item_and_signals(item, repository.list_signals(itemId))


@router.post(
    "/feedback/items/{itemId}/extract",
    response_model=ExtractionQueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        401: {"description": "Invalid or missing API key"},
        404: {"description": "Raw item not found"},
        503: {"description": "Extraction worker pool is not running"},
    },
)
async def extract_feedback_item(
    itemId: str,
    api_key: str = Depends(verify_api_key),
    service: IngestionService = Depends(get_ingestion_service),
) -> ExtractionQueuedResponse:
    """Queue one pipeline pass for an item."""
    try:
        await run_in_threadpool(service.require_item, itemId)
    except RawItemNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Raw item not found",
        )
    try:
        service.enqueue(itemId)
    except WorkerPoolNotRunningError:
        raise _pool_unavailable()
    return ExtractionQueuedResponse(raw_item_id=itemId)


@router.post(
    "/feedback/items/{itemId}/retry",
    response_model=ExtractionQueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        401: {"description": "Invalid or missing API key"},
        404: {"description": "Raw item not found"},
        409: {"description": "Raw item is not failed"},
        503: {"description": "Extraction worker pool is not running"},
    },
)
async def retry_feedback_item(
    itemId: str,
    api_key: str = Depends(verify_api_key),
    service: IngestionService = Depends(get_ingestion_service),
) -> ExtractionQueuedResponse:
    """Reset a failed item's attempts and resubmit it."""
    if not service.accepting_jobs:
        raise _pool_unavailable()
    try:
        await run_in_threadpool(service.reset_failed_item, itemId)
    except RawItemNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Raw item not found",
        )
    except RawItemNotRetryableError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Raw item is not failed (current: {e.current_state})",
        )
    try:
        service.enqueue(itemId)
    except WorkerPoolNotRunningError:
        raise _pool_unavailable()
    return ExtractionQueuedResponse(raw_item_id=itemId)
