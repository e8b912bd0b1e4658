"""Injectable wall clock.

Every component takes an optional ``clock`` so tests can pin timestamps (the
abuse detector's rapid-fire rule is defined over wall-clock spans).
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

#: A zero-argument callable returning a timezone-aware UTC datetime.
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


class SteppingClock:
    """Deterministic clock that only moves when told to.

    Used by ``mint-pipeline simulate`` to space simulated activities, and by
    tests to pin timestamps.

    Args:
        start: First reading.  Defaults to the current UTC time.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or utcnow()

    def __call__(self) -> datetime:
        return self._now

    def advance(self, *, milliseconds: float = 0, seconds: float = 0) -> datetime:
        self._now += timedelta(milliseconds=milliseconds, seconds=seconds)
        return self._now
