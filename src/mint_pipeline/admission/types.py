"""Immutable records produced by the admission controller.

The controller owns a single mutable charge value; everything it hands back to
callers is one of these frozen snapshots, so a caller can never mutate charge
state except through the controller's methods.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from mint_pipeline.errors import InsufficientCharge


class AbusePattern(str, Enum):
    """Burst-abuse patterns recognised over the trailing activity window."""

    RAPID_FIRE = "rapid_fire"
    REPETITIVE = "repetitive"


class RecommendedAction(str, Enum):
    """What the detector advises the caller to do about a pattern."""

    THROTTLE = "throttle"
    REQUIRE_VARIETY = "require_variety"


@dataclass(frozen=True)
class ActivityEvent:
    """One registered activity, as retained in the trailing history.

    Attributes:
        kind:         Caller-defined activity label, e.g. ``"click"``.
        intensity:    Non-negative activity weight.
        observed_at:  When the controller registered the activity.
        charge_added: Charge actually added after clamping to ``max_charge``.
        total_charge: Charge immediately after this activity.
    """

    kind: str
    intensity: float
    observed_at: datetime
    charge_added: float
    total_charge: float


@dataclass(frozen=True)
class ChargeSnapshot:
    """Point-in-time copy of the controller's charge state."""

    charge: float
    max_charge: float
    threshold: float
    last_discharge_at: datetime | None

    @property
    def can_mint(self) -> bool:
        return self.charge >= self.threshold


@dataclass(frozen=True)
class ActivityResult:
    """Returned by :meth:`AdmissionController.register_activity`."""

    charge: float
    can_mint: bool


@dataclass(frozen=True)
class DischargeResult:
    """A successful discharge: admission granted.

    Attributes:
        charge:    Charge remaining after the discharge (floored at 0).
        timestamp: When the discharge happened (also stored as
                   ``last_discharge_at``).
    """

    charge: float
    timestamp: datetime
    accepted: bool = True


@dataclass(frozen=True)
class DischargeRejected:
    """A refused discharge: charge is below threshold.

    Attributes:
        charge:    Current charge (unchanged by the attempt).
        threshold: Charge required to admit.
        needed:    Exact deficit, ``threshold - charge``.
    """

    charge: float
    threshold: float
    needed: float
    accepted: bool = False

    def to_error(self) -> InsufficientCharge:
        """The same refusal as an exception, for callers that raise."""
        return InsufficientCharge(self.charge, self.threshold)


@dataclass(frozen=True)
class BoostResult:
    """Returned by :meth:`AdmissionController.boost`."""

    boost_amount: float
    charge: float


@dataclass(frozen=True)
class AbuseReport:
    """Advisory result of :meth:`AdmissionController.detect_abuse`.

    ``abuse_detected`` is False and every other field is None when no pattern
    matched (or fewer than a full window of events has been recorded).
    """

    abuse_detected: bool
    pattern: AbusePattern | None = None
    recommended_action: RecommendedAction | None = None
    cooldown_ms: int | None = None
    suggestion: str | None = None

    def as_dict(self) -> dict:
        return {
            "abuse_detected": self.abuse_detected,
            "pattern": self.pattern.value if self.pattern else None,
            "recommended_action": (
                self.recommended_action.value if self.recommended_action else None
            ),
            "cooldown_ms": self.cooldown_ms,
            "suggestion": self.suggestion,
        }


#: Returned when no pattern matched.
NO_ABUSE = AbuseReport(abuse_detected=False)
