"""Typed exceptions for the mint pipeline.

This module defines a small, explicit exception hierarchy shared by the
admission, batching and ledger packages.

Design intent:
    - Expected domain outcomes (insufficient charge, a failed batch item, a
      broken chain link found by verification) are returned as structured
      result objects, not raised.
    - Caller mistakes and rejected operations (drain while a batch is in
      flight, appending a mutable token, a malformed request) raise typed
      exceptions so the caller can decide whether to retry, reject or abort.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class ErrorContext:
    """Structured operation metadata carried by pipeline exceptions.

    Attributes:
        operation: Stable operation identifier (for example
            ``"ledger.append"``).
        details: Optional human-readable context for logs and debugging.
    """

    operation: str
    details: str | None = None


class PipelineError(RuntimeError):
    """Base exception for all mint pipeline failures.

    Args:
        message: Human-readable description.
        context: Optional structured operation metadata.
    """

    def __init__(self, message: str, *, context: ErrorContext | None = None) -> None:
        super().__init__(message)
        self.context = context


class ValidationError(PipelineError):
    """A request or token failed shape or business-rule validation."""


class RequestValidationError(ValidationError):
    """An inbound mint request payload is malformed.

    Attributes:
        errors: One human-readable message per offending field.
    """

    def __init__(self, errors: list[str]) -> None:
        super().__init__(
            "Invalid mint request: " + "; ".join(errors),
            context=ErrorContext("batching.validate_request", "; ".join(errors)),
        )
        self.errors = errors


class TokenValidationError(ValidationError):
    """The token collaborator refused to create a token."""


class InsufficientCharge(PipelineError):
    """Admission was refused because the charge is below threshold.

    Normally surfaced as a :class:`~mint_pipeline.admission.types.DischargeRejected`
    result; raised only by callers that want exception semantics.

    Attributes:
        charge: Charge at the time of the attempt.
        threshold: Charge required to admit.
        needed: ``threshold - charge``.
    """

    def __init__(self, charge: float, threshold: float) -> None:
        self.charge = charge
        self.threshold = threshold
        self.needed = threshold - charge
        super().__init__(
            f"Insufficient charge: {charge:g} < {threshold:g} (need {self.needed:g} more)."
        )


class BatchInFlightError(PipelineError):
    """``drain`` was called while a previous batch job is still outstanding.

    Attributes:
        batch_id: Identifier of the batch currently in flight.
    """

    def __init__(self, batch_id: str) -> None:
        self.batch_id = batch_id
        super().__init__(
            f"Batch {batch_id!r} is already processing; retry once it completes.",
            context=ErrorContext("batching.drain", batch_id),
        )


class BatchStateError(PipelineError):
    """A batch job was processed out of turn (not the in-flight job)."""


class RequestStateError(PipelineError):
    """A mint request was moved through an illegal status transition."""


class NotImmutableError(PipelineError):
    """``append`` was given a token that is not marked immutable."""


class LedgerExportError(PipelineError):
    """An exported ledger snapshot is unreadable or fails its checksum."""
