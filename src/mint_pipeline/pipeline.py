"""Mint pipeline orchestrator.

:class:`MintPipeline` wires one admission controller, one batch queue and one
ledger together and owns all three.  The flow for a single mint is::

    record_activity ─► charge rises
    submit(payload) ─► shape check ─► abuse gate ─► attempt_discharge ─► enqueue
    process()       ─► drain ─► create token ─► ledger append ─► seal

Abuse handling:
    Detection itself is advisory.  The pipeline is where the advice is acted
    on: a ``throttle`` recommendation rejects submissions until the cooldown
    expires, and ``require_variety`` rejects them until an activity of a
    different kind is recorded.

Nothing here is global.  Construct as many pipelines as needed; each one has
its own bus unless a shared bus is passed in.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from mint_pipeline.admission.controller import AdmissionController
from mint_pipeline.admission.types import (
    AbuseReport,
    ActivityResult,
    DischargeRejected,
    RecommendedAction,
)
from mint_pipeline.batching.models import MintRequestPayload, parse_request
from mint_pipeline.batching.queue import BatchQueue
from mint_pipeline.batching.types import BatchResult, EnqueueReceipt
from mint_pipeline.config import PipelineConfig
from mint_pipeline.core.bus import PipelineBus
from mint_pipeline.core.clock import Clock, utcnow
from mint_pipeline.core.events import Events
from mint_pipeline.delivery.fanout import DeliveryFanout, Sink
from mint_pipeline.errors import RequestValidationError
from mint_pipeline.ledger.chain import HashChainedLedger
from mint_pipeline.ledger.export import write_export
from mint_pipeline.ledger.types import DigestMismatch, IntegrityReport
from mint_pipeline.tokens.catalog import load_catalog
from mint_pipeline.tokens.factory import TokenCreator, TokenFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityOutcome:
    """Result of :meth:`MintPipeline.record_activity`."""

    activity: ActivityResult
    abuse: AbuseReport


@dataclass(frozen=True)
class Rejection:
    """Why a submission was not admitted.

    Attributes:
        reason:      ``validation``, ``throttled``, ``variety_required`` or
                     ``insufficient_charge``.
        message:     Human-readable explanation.
        needed:      Charge deficit (``insufficient_charge`` only).
        retry_after: Seconds until the throttle lifts (``throttled`` only).
        errors:      Field errors (``validation`` only).
    """

    reason: str
    message: str
    needed: float | None = None
    retry_after: float | None = None
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class SubmitResult:
    accepted: bool
    request_id: str | None = None
    receipt: EnqueueReceipt | None = None
    rejection: Rejection | None = None


@dataclass(frozen=True)
class VerificationSummary:
    """Chain walk plus digest recomputation for the live ledger."""

    integrity: IntegrityReport
    digest_mismatches: tuple[DigestMismatch, ...] = ()

    @property
    def valid(self) -> bool:
        return self.integrity.valid and not self.digest_mismatches


class MintPipeline:
    """Activity-gated, batched, hash-chained token minting.

    Args:
        settings:      Complete configuration.  Defaults to built-in values.
        token_creator: Token collaborator.  Defaults to a
                       :class:`~mint_pipeline.tokens.factory.TokenFactory`
                       over the configured catalog.
        bus:           Shared event bus.  A private one is created if omitted.
        clock:         Time source shared by every component.
        destinations:  Optional delivery sinks, fed from the bus.

    Attributes:
        controller, queue, ledger, bus, fanout: The owned components.
    """

    def __init__(
        self,
        settings: PipelineConfig | None = None,
        token_creator: TokenCreator | None = None,
        *,
        bus: PipelineBus | None = None,
        clock: Clock | None = None,
        destinations: Mapping[str, Sink] | None = None,
    ) -> None:
        self.settings = settings or PipelineConfig()
        self._clock = clock or utcnow
        self.bus = bus or PipelineBus(
            clock=self._clock, debug=self.settings.logging.trace_events
        )

        if token_creator is None:
            catalog = load_catalog(self.settings.tokens.catalog_path or None)
            token_creator = TokenFactory(catalog, clock=self._clock)
        self.token_creator = token_creator

        self.controller = AdmissionController(
            self.settings.admission, self.settings.abuse, clock=self._clock
        )
        self.ledger = HashChainedLedger(
            self.settings.ledger.seal_interval, bus=self.bus, clock=self._clock
        )
        self.queue = BatchQueue(
            token_creator, self.ledger, self.settings.queue, bus=self.bus, clock=self._clock
        )

        self.fanout: DeliveryFanout | None = None
        if destinations:
            self.fanout = DeliveryFanout(destinations, clock=self._clock)
            self.fanout.attach(self.bus)

        self._gate_lock = threading.Lock()
        self._throttled_until: datetime | None = None
        self._variety_kind: str | None = None

    # ------------------------------------------------------------------
    # Activity & admission
    # ------------------------------------------------------------------

    def record_activity(self, kind: str, intensity: float = 1.0) -> ActivityOutcome:
        """Register activity, then act on any abuse pattern it completes."""
        activity = self.controller.register_activity(kind, intensity)
        self.bus.emit(
            Events.ACTIVITY_REGISTERED,
            {
                "kind": kind,
                "intensity": intensity,
                "charge": activity.charge,
                "can_mint": activity.can_mint,
            },
            source="admission",
        )

        with self._gate_lock:
            if self._variety_kind is not None and kind != self._variety_kind:
                logger.info("pipeline: variety requirement satisfied by %r", kind)
                self._variety_kind = None

        report = self.controller.detect_abuse()
        if report.abuse_detected:
            self._apply_abuse(kind, report)
        return ActivityOutcome(activity=activity, abuse=report)

    def submit(self, payload: MintRequestPayload | Mapping[str, Any]) -> SubmitResult:
        """Validate, gate, discharge and enqueue one mint request.

        Never raises for an ordinary refusal; the reason comes back in
        :attr:`SubmitResult.rejection` and nothing is enqueued.
        """
        try:
            request = parse_request(payload)
        except RequestValidationError as exc:
            return self._reject(
                Rejection(reason="validation", message=str(exc), errors=tuple(exc.errors))
            )

        gate = self._check_gate()
        if gate is not None:
            return self._reject(gate)

        outcome = self.controller.attempt_discharge()
        if isinstance(outcome, DischargeRejected):
            error = outcome.to_error()
            return self._reject(
                Rejection(reason="insufficient_charge", message=str(error), needed=error.needed)
            )
        self.bus.emit(
            Events.CHARGE_DISCHARGED,
            {"charge": outcome.charge, "timestamp": outcome.timestamp.isoformat()},
            source="admission",
        )

        receipt = self.queue.enqueue(request)
        return SubmitResult(accepted=True, request_id=receipt.request_id, receipt=receipt)

    # ------------------------------------------------------------------
    # Processing, verification, export
    # ------------------------------------------------------------------

    def process(self) -> BatchResult | None:
        """Process one auto-sized batch if enough requests are pending."""
        return self.queue.auto_process()

    def process_all(self) -> BatchResult | None:
        """Process every pending request now."""
        return self.queue.process_all()

    def verify(self) -> VerificationSummary:
        return VerificationSummary(
            integrity=self.ledger.verify_integrity(),
            digest_mismatches=tuple(self.ledger.verify_digests()),
        )

    def export(self, path: str | Path | None = None) -> Path:
        """Write a checksummed ledger snapshot.

        Without ``path`` the file goes to the configured export directory,
        named after the export time.
        """
        if path is None:
            stamp = self._clock().strftime("%Y%m%dT%H%M%S%fZ")
            path = self.settings.ledger.absolute_export_dir / f"ledger-{stamp}.json"
        return write_export(self.ledger.export_ledger(), path)

    def status(self) -> dict[str, Any]:
        with self._gate_lock:
            throttled_until = self._throttled_until
            variety_kind = self._variety_kind
        return {
            "admission": self.controller.status(),
            "queue": self.queue.status(),
            "ledger": self.ledger.stats(),
            "gate": {
                "throttled_until": throttled_until.isoformat() if throttled_until else None,
                "variety_required_after": variety_kind,
            },
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _apply_abuse(self, kind: str, report: AbuseReport) -> None:
        with self._gate_lock:
            if report.recommended_action is RecommendedAction.THROTTLE:
                cooldown = timedelta(milliseconds=report.cooldown_ms or 0)
                self._throttled_until = self._clock() + cooldown
            elif report.recommended_action is RecommendedAction.REQUIRE_VARIETY:
                self._variety_kind = kind

        logger.warning(
            "pipeline: %s detected after %r activity, action=%s",
            report.pattern.value if report.pattern else "abuse",
            kind,
            report.recommended_action.value if report.recommended_action else None,
        )
        self.bus.emit(
            Events.ABUSE_DETECTED,
            {
                "pattern": report.pattern.value if report.pattern else None,
                "recommended_action": (
                    report.recommended_action.value if report.recommended_action else None
                ),
                "cooldown_ms": report.cooldown_ms,
            },
            source="admission",
        )

    def _check_gate(self) -> Rejection | None:
        now = self._clock()
        with self._gate_lock:
            if self._throttled_until is not None:
                if now < self._throttled_until:
                    remaining = (self._throttled_until - now).total_seconds()
                    return Rejection(
                        reason="throttled",
                        message=f"Too many rapid activities; retry in {remaining:.1f}s.",
                        retry_after=remaining,
                    )
                self._throttled_until = None
            if self._variety_kind is not None:
                return Rejection(
                    reason="variety_required",
                    message=f"Record an activity other than {self._variety_kind!r} first.",
                )
        return None

    def _reject(self, rejection: Rejection) -> SubmitResult:
        logger.info("pipeline: submission rejected (%s): %s", rejection.reason, rejection.message)
        self.bus.emit(
            Events.REQUEST_REJECTED,
            {"reason": rejection.reason, "message": rejection.message},
            source="admission",
        )
        return SubmitResult(accepted=False, rejection=rejection)
