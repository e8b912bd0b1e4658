"""Records owned by the batch queue.

:class:`MintRequest` is the only mutable record here; its ``status`` moves
``queued -> processing -> committed | failed`` and nothing else.  Every other
record is a frozen summary handed back to callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from mint_pipeline.errors import ErrorContext, RequestStateError
from mint_pipeline.ledger.types import LedgerEntry
from mint_pipeline.tokens.types import Token


class RequestStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMMITTED = "committed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.COMMITTED, RequestStatus.FAILED)


_ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.QUEUED: frozenset({RequestStatus.PROCESSING}),
    RequestStatus.PROCESSING: frozenset({RequestStatus.COMMITTED, RequestStatus.FAILED}),
    RequestStatus.COMMITTED: frozenset(),
    RequestStatus.FAILED: frozenset(),
}


@dataclass
class MintRequest:
    """One pending mint, as held by the queue.

    Attributes:
        request_id:     Queue-assigned identifier.
        token_type:     Requested catalog type.
        owner:          Requested owner.
        amount:         Requested value.
        metadata:       Free-form metadata forwarded to the token creator.
        queued_at:      When the request was enqueued.
        status:         Lifecycle state; see :class:`RequestStatus`.
        failure_reason: Set when ``status`` is ``failed``.
        token_id:       Set when ``status`` is ``committed``.
    """

    request_id: str
    token_type: str
    owner: str
    amount: float
    metadata: dict[str, Any]
    queued_at: datetime
    status: RequestStatus = RequestStatus.QUEUED
    failure_reason: str | None = None
    token_id: str | None = None

    def _transition(self, target: RequestStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise RequestStateError(
                f"Request {self.request_id!r} cannot move "
                f"from {self.status.value} to {target.value}.",
                context=ErrorContext("batching.transition", self.request_id),
            )
        self.status = target

    def mark_processing(self) -> None:
        self._transition(RequestStatus.PROCESSING)

    def mark_committed(self, token_id: str) -> None:
        self._transition(RequestStatus.COMMITTED)
        self.token_id = token_id

    def mark_failed(self, reason: str) -> None:
        self._transition(RequestStatus.FAILED)
        self.failure_reason = reason


@dataclass(frozen=True)
class EnqueueReceipt:
    """Returned by ``enqueue``: 1-based position and a rough wait estimate in seconds."""

    request_id: str
    position: int
    estimated_wait: float


@dataclass(frozen=True)
class BatchJob:
    """A contiguous run of requests removed from the front of the queue."""

    batch_id: str
    items: tuple[MintRequest, ...]
    started_at: datetime

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class BatchFailure:
    """One item of a batch that could not be committed.

    Attributes:
        index:      Position of the item within its batch (0-based).
        request_id: The failed request.
        reason:     Human-readable failure reason.
    """

    index: int
    request_id: str
    reason: str


@dataclass(frozen=True)
class BatchResult:
    """Summary of one processed batch."""

    batch_id: str
    started_at: datetime
    finished_at: datetime
    size: int
    committed_tokens: tuple[Token, ...] = ()
    entries: tuple[LedgerEntry, ...] = ()
    failures: tuple[BatchFailure, ...] = field(default_factory=tuple)

    @property
    def committed_count(self) -> int:
        return len(self.committed_tokens)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    def as_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "size": self.size,
            "committed": self.committed_count,
            "failed": self.failed_count,
            "failures": [
                {"index": f.index, "request_id": f.request_id, "reason": f.reason}
                for f in self.failures
            ],
        }


@dataclass(frozen=True)
class ClearResult:
    cleared_count: int
