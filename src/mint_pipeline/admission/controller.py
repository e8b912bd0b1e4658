"""Charge-based admission controller.

:class:`AdmissionController` gates mint admission behind a bounded charge
accumulator.  Activity raises the charge; a successful admission discharges a
fixed amount; idle decay lowers it.  Admission is possible only while
``charge >= threshold``.

State and locking:
    One controller owns exactly one charge value and one trailing activity
    history.  Every public method takes ``self._lock`` for its whole
    read-modify-write cycle, so concurrent activity sources can share a
    controller without losing updates or observing an out-of-range charge.

Invariant:
    ``0 <= charge <= max_charge`` after every public call.  All mutations go
    through :meth:`_set_charge`, which clamps.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime

from mint_pipeline.admission.abuse import detect_abuse
from mint_pipeline.admission.types import (
    AbuseReport,
    ActivityEvent,
    ActivityResult,
    BoostResult,
    ChargeSnapshot,
    DischargeRejected,
    DischargeResult,
)
from mint_pipeline.config import AbuseSettings, AdmissionSettings
from mint_pipeline.core.clock import Clock, utcnow

logger = logging.getLogger(__name__)


class AdmissionController:
    """Bounded charge accumulator with advisory abuse detection.

    Args:
        settings: Charge limits, rates and history capacity.
        abuse:    Abuse-rule thresholds.  Defaults to :class:`AbuseSettings`.
        clock:    Source of ``observed_at`` / discharge timestamps.
    """

    def __init__(
        self,
        settings: AdmissionSettings | None = None,
        abuse: AbuseSettings | None = None,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings or AdmissionSettings()
        _check_settings(self._settings)
        self._abuse = abuse or AbuseSettings()
        self._clock = clock or utcnow
        self._lock = threading.Lock()

        self._charge: float = 0.0
        self._last_discharge_at: datetime | None = None
        self._history: deque[ActivityEvent] = deque(maxlen=self._settings.history_capacity)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def settings(self) -> AdmissionSettings:
        return self._settings

    @property
    def charge(self) -> float:
        with self._lock:
            return self._charge

    @property
    def threshold(self) -> float:
        return self._settings.threshold

    # ------------------------------------------------------------------
    # Charge mutation
    # ------------------------------------------------------------------

    def register_activity(self, kind: str, intensity: float = 1.0) -> ActivityResult:
        """Add ``intensity * charge_rate`` to the charge, clamped to ``max_charge``.

        The activity is appended to the trailing history (oldest evicted once
        ``history_capacity`` is reached).  An intensity of ``0`` records the
        event without adding charge.

        Raises:
            ValueError: If ``intensity`` is negative.  Charge is unchanged.
        """
        if intensity < 0:
            raise ValueError(f"register_activity: intensity must be >= 0, got {intensity!r}.")

        with self._lock:
            before = self._charge
            self._set_charge(before + intensity * self._settings.charge_rate)
            self._history.append(
                ActivityEvent(
                    kind=kind,
                    intensity=intensity,
                    observed_at=self._clock(),
                    charge_added=self._charge - before,
                    total_charge=self._charge,
                )
            )
            return ActivityResult(charge=self._charge, can_mint=self._can_mint())

    def attempt_discharge(self) -> DischargeResult | DischargeRejected:
        """Consume ``discharge_amount`` of charge if the threshold is met.

        Returns:
            :class:`DischargeResult` with the remaining charge on success, or
            :class:`DischargeRejected` carrying the exact deficit.  A rejection
            leaves the charge untouched.
        """
        with self._lock:
            if not self._can_mint():
                return DischargeRejected(
                    charge=self._charge,
                    threshold=self._settings.threshold,
                    needed=self._settings.threshold - self._charge,
                )

            self._set_charge(self._charge - self._settings.discharge_amount)
            self._last_discharge_at = self._clock()
            logger.debug("admission: discharged to %.2f", self._charge)
            return DischargeResult(charge=self._charge, timestamp=self._last_discharge_at)

    def decay(self, rate: float | None = None) -> float:
        """Lower the charge toward zero by ``rate`` (idle cooldown).

        Args:
            rate: Amount to subtract; defaults to ``settings.decay_rate``.

        Returns:
            The charge after decay.

        Raises:
            ValueError: If ``rate`` is negative (decay never raises charge).
        """
        rate = self._settings.decay_rate if rate is None else rate
        if rate < 0:
            raise ValueError(f"decay: rate must be >= 0, got {rate!r}.")
        with self._lock:
            self._set_charge(self._charge - rate)
            return self._charge

    def boost(self, amount: float) -> BoostResult:
        """Administrative override: raise the charge directly.

        Bypasses activity accumulation (no history entry) but obeys the same
        ``max_charge`` clamp.

        Raises:
            ValueError: If ``amount`` is negative.
        """
        if amount < 0:
            raise ValueError(f"boost: amount must be >= 0, got {amount!r}.")
        with self._lock:
            self._set_charge(self._charge + amount)
            logger.info("admission: boosted by %.2f to %.2f", amount, self._charge)
            return BoostResult(boost_amount=amount, charge=self._charge)

    def reset(self) -> None:
        """Administrative reset: zero charge, forget history and last discharge."""
        with self._lock:
            self._charge = 0.0
            self._last_discharge_at = None
            self._history.clear()
        logger.info("admission: controller reset")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def can_mint(self) -> bool:
        """Return True while ``charge >= threshold``."""
        with self._lock:
            return self._can_mint()

    def detect_abuse(self) -> AbuseReport:
        """Evaluate the abuse rules over the trailing history (advisory only)."""
        with self._lock:
            history = list(self._history)
        return detect_abuse(history, self._abuse)

    def state(self) -> ChargeSnapshot:
        with self._lock:
            return ChargeSnapshot(
                charge=self._charge,
                max_charge=self._settings.max_charge,
                threshold=self._settings.threshold,
                last_discharge_at=self._last_discharge_at,
            )

    def history(self, limit: int | None = None) -> list[ActivityEvent]:
        """Return the trailing activity history, oldest first."""
        with self._lock:
            events = list(self._history)
        return events[-limit:] if limit is not None else events

    def status(self) -> dict:
        """Diagnostic summary of charge state and recent activity."""
        snapshot = self.state()
        return {
            "charge": snapshot.charge,
            "max_charge": snapshot.max_charge,
            "threshold": snapshot.threshold,
            "can_mint": snapshot.can_mint,
            "charge_percentage": round(snapshot.charge / snapshot.max_charge * 100, 1),
            "last_discharge_at": (
                snapshot.last_discharge_at.isoformat() if snapshot.last_discharge_at else None
            ),
            "recent_activities": [
                {"kind": e.kind, "intensity": e.intensity, "observed_at": e.observed_at.isoformat()}
                for e in self.history(limit=5)
            ],
            "abuse_check": self.detect_abuse().as_dict(),
        }

    # ------------------------------------------------------------------
    # Private helpers (caller holds self._lock)
    # ------------------------------------------------------------------

    def _can_mint(self) -> bool:
        return self._charge >= self._settings.threshold

    def _set_charge(self, value: float) -> None:
        self._charge = min(self._settings.max_charge, max(0.0, value))


def _check_settings(settings: AdmissionSettings) -> None:
    """Reject limits under which charge could never be tracked or admitted."""
    if settings.max_charge <= 0:
        raise ValueError(f"max_charge must be > 0, got {settings.max_charge!r}.")
    if not 0 <= settings.threshold <= settings.max_charge:
        raise ValueError(
            f"threshold must be within [0, max_charge={settings.max_charge:g}], "
            f"got {settings.threshold!r}."
        )
    for name in ("charge_rate", "discharge_amount", "decay_rate"):
        if getattr(settings, name) < 0:
            raise ValueError(f"{name} must be >= 0, got {getattr(settings, name)!r}.")
    if settings.history_capacity < 1:
        raise ValueError(f"history_capacity must be >= 1, got {settings.history_capacity!r}.")
