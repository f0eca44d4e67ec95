"""Asynchronous worker pool consuming extraction jobs.

Stands in for the durable job queue: jobs are delivered at least once to one
of ``concurrency`` asyncio workers, each of which runs the synchronous
pipeline in a thread. A job whose outcome is ``failed`` and retryable is
retried with exponential backoff (tenacity) until ``max_attempts`` passes have
run; the item's own ``attempt_count`` caps claims at the same number.

``submit_for_extraction`` returns an ``asyncio.Future`` resolved with the final
ItemOutcome. Callers may await it or drop it; failures are already logged and
persisted on the raw item either way. Stopping the pool without draining
cancels the future of every job that has not finished.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from src.common.config import PipelineSettings
from src.common.logging import log_error, log_item
from src.extraction.models import ItemOutcome, ItemOutcomeStatus
from src.extraction.pipeline import FeedbackPipeline

logger = logging.getLogger(__name__)


class WorkerPoolNotRunningError(RuntimeError):
    """Raised when submitting to a pool that has not been started."""


@dataclass
class _Job:
    raw_item_id: str
    future: "asyncio.Future[ItemOutcome]"


def _should_retry(outcome: ItemOutcome) -> bool:
    return outcome.status == ItemOutcomeStatus.FAILED and outcome.retryable


def _last_outcome(retry_state: RetryCallState) -> ItemOutcome:
    return retry_state.outcome.result()


class ExtractionWorkerPool:
    """Fixed-size pool of asyncio workers running ``FeedbackPipeline.process``."""

    def __init__(
        self,
        pipeline: FeedbackPipeline,
        *,
        concurrency: int = 4,
        max_attempts: int = 3,
        backoff_min_sec: float = 1.0,
        backoff_max_sec: float = 30.0,
    ):
        self.pipeline = pipeline
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.backoff_min_sec = backoff_min_sec
        self.backoff_max_sec = backoff_max_sec
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []

    @classmethod
    def from_settings(cls, pipeline: FeedbackPipeline, settings: PipelineSettings) -> "ExtractionWorkerPool":
        return cls(
            pipeline,
            concurrency=settings.worker_concurrency,
            max_attempts=settings.max_attempts,
            backoff_min_sec=settings.retry_backoff_min_sec,
            backoff_max_sec=settings.retry_backoff_max_sec,
        )

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue()
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"extraction-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info("Worker pool started", extra={"concurrency": self.concurrency})

    async def stop(self, drain: bool = True) -> None:
        """Stop the workers, by default after every queued job has finished.

        With ``drain=False`` queued and in-flight jobs are abandoned and their
        futures cancelled. An abandoned item stays ``extracting`` until its
        claim goes stale.
        """
        if not self._workers:
            return
        if self._queue is not None:
            if drain:
                await self._queue.join()
            else:
                self._cancel_queued()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Worker pool stopped")

    def _cancel_queued(self) -> None:
        assert self._queue is not None
        cancelled = 0
        while not self._queue.empty():
            job = self._queue.get_nowait()
            job.future.cancel()
            self._queue.task_done()
            cancelled += 1
        if cancelled:
            logger.warning("Queued extraction jobs cancelled", extra={"cancelled_count": cancelled})

    async def join(self) -> None:
        """Wait until every submitted job has a final outcome."""
        if self._queue is not None:
            await self._queue.join()

    def submit_for_extraction(self, raw_item_id: str) -> "asyncio.Future[ItemOutcome]":
        """Enqueue one pipeline pass and return a future for its final outcome.

        Must be called from the event loop the pool was started on.
        """
        if not self._workers or self._queue is None:
            raise WorkerPoolNotRunningError("Extraction worker pool is not running")

        future: asyncio.Future[ItemOutcome] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(_Job(raw_item_id=raw_item_id, future=future))
        log_item(logger, "item_submitted", item_id=raw_item_id, queue_depth=self._queue.qsize())
        return future

    async def _worker_loop(self, index: int) -> None:
        assert self._queue is not None
        while True:
            job = await self._queue.get()
            try:
                outcome = await self._run_job(job.raw_item_id)
                if not job.future.done():
                    job.future.set_result(outcome)
            except asyncio.CancelledError:
                job.future.cancel()
                raise
            except Exception as e:
                log_error(
                    logger,
                    "extraction_job_crashed",
                    item_id=job.raw_item_id,
                    error=e,
                    event="extraction_job_crashed",
                    worker=index,
                )
                if not job.future.done():
                    job.future.set_exception(e)
            finally:
                self._queue.task_done()

    async def _run_job(self, raw_item_id: str) -> ItemOutcome:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.backoff_min_sec,
                min=self.backoff_min_sec,
                max=self.backoff_max_sec,
            ),
            retry=retry_if_result(_should_retry),
            retry_error_callback=_last_outcome,
            before_sleep=self._log_retry,
        )
        return await retrying(asyncio.to_thread, self.pipeline.process, raw_item_id)

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        outcome: ItemOutcome = retry_state.outcome.result()
        logger.warning(
            "extraction_retry_scheduled",
            extra={
                "event": "extraction_retry_scheduled",
                "item_id": outcome.raw_item_id,
                "attempt": retry_state.attempt_number,
                "error": outcome.error,
                "sleep_sec": retry_state.next_action.sleep if retry_state.next_action else None,
            },
        )
