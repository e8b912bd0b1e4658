"""Burst-abuse pattern rules.

Pure functions over the controller's trailing activity history.  Rules are
checked in a fixed order and the first match wins:

1. ``rapid_fire`` — the whole window arrived faster than
   ``rapid_fire_window_ms``.  Advice: throttle for ``throttle_cooldown_ms``.
2. ``repetitive`` — every event in the window shares one ``kind`` (and the
   window holds at least ``repetitive_min_events``).  Advice: require variety.

Detection is advisory.  Nothing here blocks activity registration; the caller
decides whether to honour the recommendation.
"""

from __future__ import annotations

from collections.abc import Sequence

from mint_pipeline.admission.types import (
    NO_ABUSE,
    AbusePattern,
    AbuseReport,
    ActivityEvent,
    RecommendedAction,
)
from mint_pipeline.config import AbuseSettings


def detect_abuse(history: Sequence[ActivityEvent], settings: AbuseSettings) -> AbuseReport:
    """Evaluate the abuse rules over the last ``settings.window_size`` events.

    Args:
        history:  Activity history, oldest first.
        settings: Window size and rule thresholds.

    Returns:
        :data:`~mint_pipeline.admission.types.NO_ABUSE` when fewer than a full
        window has been recorded or no rule matches; otherwise the report for
        the first matching rule.
    """
    if len(history) < settings.window_size:
        return NO_ABUSE

    window = list(history)[-settings.window_size :]

    if _is_rapid_fire(window, settings.rapid_fire_window_ms):
        return AbuseReport(
            abuse_detected=True,
            pattern=AbusePattern.RAPID_FIRE,
            recommended_action=RecommendedAction.THROTTLE,
            cooldown_ms=settings.throttle_cooldown_ms,
        )

    if _is_repetitive(window, settings.repetitive_min_events):
        return AbuseReport(
            abuse_detected=True,
            pattern=AbusePattern.REPETITIVE,
            recommended_action=RecommendedAction.REQUIRE_VARIETY,
            suggestion="Vary activity types",
        )

    return NO_ABUSE


def _is_rapid_fire(window: list[ActivityEvent], window_ms: int) -> bool:
    span = window[-1].observed_at - window[0].observed_at
    return span.total_seconds() * 1000 < window_ms


def _is_repetitive(window: list[ActivityEvent], min_events: int) -> bool:
    if len(window) < min_events:
        return False
    first_kind = window[0].kind
    return all(event.kind == first_kind for event in window)
