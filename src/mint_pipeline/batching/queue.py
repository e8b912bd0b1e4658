"""FIFO batch queue turning admitted requests into ledger entries.

Lifecycle
---------
1. :meth:`BatchQueue.enqueue` appends a request to the pending sequence.
2. :meth:`BatchQueue.drain` removes up to ``max_batch_size`` requests from the
   front and wraps them in a :class:`~mint_pipeline.batching.types.BatchJob`.
   Only one job may be in flight at a time.
3. :meth:`BatchQueue.process_batch` creates a token for each item and appends
   it to the ledger.  A failing item is recorded and skipped; it never aborts
   the rest of the batch.

Ordering
--------
Items are committed in strict enqueue order, within a batch and across
batches.  With ``max_parallelism > 1`` token *creation* runs on a thread pool,
but results are consumed, and appended to the ledger, in item order.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from mint_pipeline.batching.models import MintRequestPayload, parse_request
from mint_pipeline.batching.types import (
    BatchFailure,
    BatchJob,
    BatchResult,
    ClearResult,
    EnqueueReceipt,
    MintRequest,
    RequestStatus,
)
from mint_pipeline.config import QueueSettings
from mint_pipeline.core.bus import PipelineBus
from mint_pipeline.core.clock import Clock, utcnow
from mint_pipeline.core.events import Events
from mint_pipeline.errors import (
    BatchInFlightError,
    BatchStateError,
    ErrorContext,
    PipelineError,
)
from mint_pipeline.ledger.chain import HashChainedLedger
from mint_pipeline.ledger.types import LedgerEntry
from mint_pipeline.tokens.factory import TokenCreator
from mint_pipeline.tokens.types import Token

logger = logging.getLogger(__name__)


class BatchQueue:
    """Pending mint requests plus the single in-flight batch job.

    Args:
        token_creator: Collaborator that turns a request into a token.
        ledger:        Destination for committed tokens.
        settings:      Batch sizes, wait estimate and parallelism.
        bus:           Optional bus receiving ``batch:*`` events.
        clock:         Source of ``queued_at`` / batch timestamps.
    """

    def __init__(
        self,
        token_creator: TokenCreator,
        ledger: HashChainedLedger,
        settings: QueueSettings | None = None,
        *,
        bus: PipelineBus | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._creator = token_creator
        self._ledger = ledger
        self._settings = settings or QueueSettings()
        self._bus = bus
        self._clock = clock or utcnow

        self._lock = threading.Lock()
        self._pending: deque[MintRequest] = deque()
        self._in_flight: BatchJob | None = None
        self._processing = False
        self._history: deque[BatchResult] = deque(maxlen=self._settings.history_limit)
        self._request_ids = itertools.count(1)
        self._batch_ids = itertools.count(1)
        self._total_committed = 0
        self._total_failed = 0

    # ------------------------------------------------------------------
    # Enqueue / drain
    # ------------------------------------------------------------------

    def enqueue(self, request: MintRequestPayload | Mapping[str, Any]) -> EnqueueReceipt:
        """Append one request to the back of the queue.

        Raises:
            RequestValidationError: If ``request`` is a mapping with a bad shape.
        """
        payload = parse_request(request)
        with self._lock:
            item = MintRequest(
                request_id=f"req-{next(self._request_ids):06d}",
                token_type=payload.token_type,
                owner=payload.owner,
                amount=payload.amount,
                metadata=dict(payload.metadata),
                queued_at=self._clock(),
            )
            self._pending.append(item)
            position = len(self._pending)

        receipt = EnqueueReceipt(
            request_id=item.request_id,
            position=position,
            estimated_wait=position * self._settings.seconds_per_item,
        )
        logger.debug("batching: enqueued %s at position %d", item.request_id, position)
        self._emit(
            Events.REQUEST_ENQUEUED,
            {"request_id": item.request_id, "position": position, "token_type": item.token_type},
        )
        return receipt

    def drain(self, max_size: int | None = None) -> BatchJob | None:
        """Remove up to ``max_size`` requests from the front as one batch job.

        Returns:
            The new job, or None if nothing is pending.

        Raises:
            BatchInFlightError: If a previous job has not been processed yet.
            ValueError:         If ``max_size`` is less than 1.
        """
        size = self._settings.max_batch_size if max_size is None else max_size
        if size < 1:
            raise ValueError(f"max_size must be >= 1, got {size!r}.")

        with self._lock:
            if self._in_flight is not None:
                raise BatchInFlightError(self._in_flight.batch_id)
            if not self._pending:
                return None
            count = min(size, len(self._pending))
            items = tuple(self._pending.popleft() for _ in range(count))
            job = BatchJob(
                batch_id=f"batch-{next(self._batch_ids):06d}",
                items=items,
                started_at=self._clock(),
            )
            self._in_flight = job

        logger.info("batching: drained %s with %d item(s)", job.batch_id, len(job))
        self._emit(Events.BATCH_DRAINED, {"batch_id": job.batch_id, "size": len(job)})
        return job

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_batch(self, job: BatchJob) -> BatchResult:
        """Create and append a token for every item of ``job``, in order.

        Per-item failures (any exception from the token creator, a creation
        timeout, or a :exc:`~mint_pipeline.errors.PipelineError` from the
        ledger) are recorded in :attr:`BatchResult.failures` and do not affect
        other items.  Any other error from the ledger aborts the remaining
        items and is re-raised.

        Raises:
            BatchStateError: If ``job`` is not the queue's in-flight job, or is
                already being processed by another call.
        """
        with self._lock:
            if self._in_flight is not job:
                raise BatchStateError(
                    f"Batch {job.batch_id!r} is not the in-flight job.",
                    context=ErrorContext("batching.process_batch", job.batch_id),
                )
            if self._processing:
                raise BatchStateError(
                    f"Batch {job.batch_id!r} is already being processed.",
                    context=ErrorContext("batching.process_batch", job.batch_id),
                )
            self._processing = True

        committed: list[Token] = []
        entries: list[LedgerEntry] = []
        failures: list[BatchFailure] = []

        try:
            for item in job.items:
                item.mark_processing()

            outcomes = self._create_tokens(job)
            for index, (item, outcome) in enumerate(zip(job.items, outcomes, strict=True)):
                if isinstance(outcome, str):
                    failures.append(self._fail(job, index, item, outcome))
                    continue
                try:
                    entry = self._ledger.append(outcome)
                except PipelineError as exc:
                    failures.append(self._fail(job, index, item, str(exc)))
                    continue
                item.mark_committed(outcome.id)
                committed.append(outcome)
                entries.append(entry)
        finally:
            for item in job.items:
                if not item.status.is_terminal:
                    if item.status is RequestStatus.QUEUED:
                        item.mark_processing()
                    item.mark_failed("aborted")
            with self._lock:
                self._in_flight = None
                self._processing = False

        result = BatchResult(
            batch_id=job.batch_id,
            started_at=job.started_at,
            finished_at=self._clock(),
            size=len(job),
            committed_tokens=tuple(committed),
            entries=tuple(entries),
            failures=tuple(failures),
        )
        with self._lock:
            self._history.append(result)
            self._total_committed += result.committed_count
            self._total_failed += result.failed_count

        logger.info(
            "batching: %s complete, %d committed, %d failed",
            job.batch_id,
            result.committed_count,
            result.failed_count,
        )
        self._emit(Events.BATCH_COMPLETED, result.as_dict())
        return result

    def auto_process(self) -> BatchResult | None:
        """Drain and process ``auto_process_min`` items once that many are pending."""
        threshold = self._settings.auto_process_min
        with self._lock:
            if len(self._pending) < threshold:
                return None
        job = self.drain(threshold)
        return self.process_batch(job) if job is not None else None

    def process_all(self) -> BatchResult | None:
        """Drain and process every pending item as a single batch."""
        with self._lock:
            count = len(self._pending)
        if count == 0:
            return None
        job = self.drain(count)
        return self.process_batch(job) if job is not None else None

    def clear(self) -> ClearResult:
        """Drop every pending item.  The in-flight job, if any, is untouched."""
        with self._lock:
            cleared = len(self._pending)
            self._pending.clear()
        logger.info("batching: cleared %d pending item(s)", cleared)
        self._emit(Events.QUEUE_CLEARED, {"cleared_count": cleared})
        return ClearResult(cleared_count=cleared)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def in_flight(self) -> BatchJob | None:
        with self._lock:
            return self._in_flight

    def pending(self) -> list[MintRequest]:
        with self._lock:
            return list(self._pending)

    def history(self, limit: int | None = None) -> list[BatchResult]:
        """Return processed batch summaries, oldest first, optionally only the last ``limit``."""
        with self._lock:
            results = list(self._history)
        return results[-limit:] if limit else results

    def status(self) -> dict[str, Any]:
        with self._lock:
            pending = len(self._pending)
            in_flight = self._in_flight.batch_id if self._in_flight else None
            processed = len(self._history)
            committed = self._total_committed
            failed = self._total_failed
        return {
            "pending": pending,
            "in_flight": in_flight,
            "processed_batches": processed,
            "total_committed": committed,
            "total_failed": failed,
            "estimated_wait": pending * self._settings.seconds_per_item,
            "max_batch_size": self._settings.max_batch_size,
            "auto_process_min": self._settings.auto_process_min,
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _create_tokens(self, job: BatchJob) -> list[Token | str]:
        """Return one token or failure reason per item, in item order."""
        parallelism = max(1, self._settings.max_parallelism)
        timeout = self._settings.item_timeout_seconds or None

        if parallelism == 1 and timeout is None:
            return [self._create_one(item) for item in job.items]

        executor = ThreadPoolExecutor(max_workers=parallelism, thread_name_prefix="mint-create")
        try:
            futures: list[Future[Token | str]] = [
                executor.submit(self._create_one, item) for item in job.items
            ]
            outcomes: list[Token | str] = []
            for future in futures:
                try:
                    outcomes.append(future.result(timeout=timeout))
                except TimeoutError:
                    future.cancel()
                    outcomes.append(f"timed out after {timeout:g}s")
                except Exception as exc:  # noqa: BLE001
                    outcomes.append(f"{type(exc).__name__}: {exc}")
            return outcomes
        finally:
            # Timed-out creations may still be running; do not wait for them.
            executor.shutdown(wait=False, cancel_futures=True)

    def _create_one(self, item: MintRequest) -> Token | str:
        try:
            return self._creator.create_token(
                item.token_type, item.owner, item.amount, item.metadata
            )
        except PipelineError as exc:
            return str(exc)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "batching: token creator failed for %s", item.request_id, exc_info=True
            )
            return f"{type(exc).__name__}: {exc}"

    def _fail(self, job: BatchJob, index: int, item: MintRequest, reason: str) -> BatchFailure:
        item.mark_failed(reason)
        logger.warning(
            "batching: %s item %d (%s) failed: %s", job.batch_id, index, item.request_id, reason
        )
        self._emit(
            Events.ITEM_FAILED,
            {
                "batch_id": job.batch_id,
                "index": index,
                "request_id": item.request_id,
                "reason": reason,
            },
        )
        return BatchFailure(index=index, request_id=item.request_id, reason=reason)

    def _emit(self, event_type: str, detail: dict[str, Any]) -> None:
        if self._bus is not None:
            self._bus.emit(event_type, detail, source="batching")
