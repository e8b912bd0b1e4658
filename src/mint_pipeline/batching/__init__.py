"""Batching package — FIFO queue between admission and the ledger.

Public surface
--------------
- :class:`BatchQueue`         — enqueue, drain, process, clear.
- :class:`MintRequestPayload` — pydantic shape check for inbound requests.
- :func:`parse_request`       — validate a mapping, raising
  :exc:`~mint_pipeline.errors.RequestValidationError`.
- Records: :class:`MintRequest`, :class:`BatchJob`, :class:`BatchResult`,
  :class:`BatchFailure`, :class:`EnqueueReceipt`, :class:`ClearResult`.
"""

from mint_pipeline.batching.models import MintRequestPayload, parse_request
from mint_pipeline.batching.queue import BatchQueue
from mint_pipeline.batching.types import (
    BatchFailure,
    BatchJob,
    BatchResult,
    ClearResult,
    EnqueueReceipt,
    MintRequest,
    RequestStatus,
)

__all__ = [
    "BatchFailure",
    "BatchJob",
    "BatchQueue",
    "BatchResult",
    "ClearResult",
    "EnqueueReceipt",
    "MintRequest",
    "MintRequestPayload",
    "RequestStatus",
    "parse_request",
]
