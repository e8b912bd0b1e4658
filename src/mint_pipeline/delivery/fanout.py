"""Best-effort delivery of ledger entries to external destinations.

A *sink* is any callable ``(destination_name, entry) -> bool``.  Returning
False or raising counts as a failed delivery; either way the fan-out logs the
failure, records it, and moves on to the next destination.  Nothing here ever
raises back into the ledger or the bus.

Retry is caller-driven: inspect :meth:`DeliveryFanout.failed_deliveries` and
pass the records (or nothing, for all of them) to :meth:`DeliveryFanout.retry`.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from mint_pipeline.core.bus import PipelineBus, PipelineEvent, Unsubscribe
from mint_pipeline.core.clock import Clock, utcnow
from mint_pipeline.core.events import Events
from mint_pipeline.ledger.types import LedgerEntry

logger = logging.getLogger(__name__)

Sink = Callable[[str, LedgerEntry], bool]

#: Number of delivery attempts kept in the log.
DELIVERY_LOG_SIZE = 1000


@dataclass(frozen=True)
class DeliveryRecord:
    """Outcome of one attempt to deliver one entry to one destination."""

    destination: str
    entry: LedgerEntry
    delivered: bool
    attempted_at: datetime
    error: str | None = None


class DeliveryFanout:
    """Deliver each ledger entry to every configured destination.

    Args:
        destinations: Destination name -> sink.
        log_size:     Number of attempts retained for inspection and retry.
        clock:        Source of ``attempted_at`` timestamps.
    """

    def __init__(
        self,
        destinations: Mapping[str, Sink],
        *,
        log_size: int = DELIVERY_LOG_SIZE,
        clock: Clock | None = None,
    ) -> None:
        self._destinations = dict(destinations)
        self._clock = clock or utcnow
        self._lock = threading.Lock()
        self._log: deque[DeliveryRecord] = deque(maxlen=log_size)

    @property
    def destinations(self) -> list[str]:
        return list(self._destinations)

    def attach(self, bus: PipelineBus) -> Unsubscribe:
        """Deliver every entry announced on ``bus`` from now on."""
        return bus.on(Events.LEDGER_ENTRY_APPENDED, self._on_entry_appended)

    def deliver(self, entry: LedgerEntry) -> list[DeliveryRecord]:
        """Send ``entry`` to every destination and return one record per attempt."""
        return [self._attempt(name, entry) for name in self._destinations]

    def failed_deliveries(self) -> list[DeliveryRecord]:
        """Failed attempts in the log that have not since succeeded."""
        with self._lock:
            log = list(self._log)
        succeeded = {(r.destination, r.entry.index) for r in log if r.delivered}
        seen: set[tuple[str, int]] = set()
        failed: list[DeliveryRecord] = []
        for record in reversed(log):
            key = (record.destination, record.entry.index)
            if record.delivered or key in succeeded or key in seen:
                continue
            seen.add(key)
            failed.append(record)
        failed.reverse()
        return failed

    def retry(self, records: Iterable[DeliveryRecord] | None = None) -> list[DeliveryRecord]:
        """Re-attempt failed deliveries (all outstanding ones by default).

        Records whose destination has since been removed are skipped.
        """
        pending = self.failed_deliveries() if records is None else list(records)
        return [
            self._attempt(record.destination, record.entry)
            for record in pending
            if record.destination in self._destinations
        ]

    def delivery_log(self, limit: int | None = None) -> list[DeliveryRecord]:
        with self._lock:
            log = list(self._log)
        return log[-limit:] if limit else log

    def _on_entry_appended(self, event: PipelineEvent) -> None:
        entry = event.detail.get("entry")
        if isinstance(entry, LedgerEntry):
            self.deliver(entry)

    def _attempt(self, name: str, entry: LedgerEntry) -> DeliveryRecord:
        sink = self._destinations[name]
        error: str | None = None
        try:
            delivered = bool(sink(name, entry))
            if not delivered:
                error = "sink reported failure"
        except Exception as exc:  # noqa: BLE001
            delivered = False
            error = f"{type(exc).__name__}: {exc}"

        if not delivered:
            logger.warning(
                "delivery: %s rejected entry #%d (%s): %s", name, entry.index, entry.token_id, error
            )

        record = DeliveryRecord(
            destination=name,
            entry=entry,
            delivered=delivered,
            attempted_at=self._clock(),
            error=error,
        )
        with self._lock:
            self._log.append(record)
        return record
