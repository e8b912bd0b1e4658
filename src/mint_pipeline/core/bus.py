"""
Mint Pipeline Event Bus

Every significant fact in the pipeline (an activity registered, a request
admitted, a batch completed, a ledger entry appended, a range sealed) is
emitted on a bus. External collaborators such as the delivery fan-out subscribe
to the bus instead of being called directly by the ledger.

=============================================================================
ARCHITECTURAL PRINCIPLES
=============================================================================

1. THE BUS RECORDS FACTS
   - Events represent things that HAPPENED (past tense)
   - "ledger:entry_appended" means the entry is already in the chain
   - The bus does not decide outcomes, it records them

2. EVENTS ARE IMMUTABLE
   - Once emitted, an event cannot be changed
   - Handlers receive events, they cannot modify them

3. EMIT IS SYNCHRONOUS
   - Sequence assignment and log commit happen under a lock
   - Sequence numbers enforce a global order across threads

4. ASYNC IS AN EXECUTION DETAIL
   - Handlers may be sync or async
   - Async handlers are SCHEDULED after the event is committed

5. SUBSCRIBERS REACT, THEY DO NOT INTERVENE
   - A failing handler is logged and skipped; it never un-commits an event
     or aborts the component that emitted it

6. ONE BUS PER PIPELINE
   - The bus is an ordinary object. Construct it and pass it to the
     components that should share it; there is no module-level instance.

=============================================================================
USAGE
=============================================================================

    from mint_pipeline.core.bus import PipelineBus
    from mint_pipeline.core.events import Events

    bus = PipelineBus()
    unsubscribe = bus.on(Events.LEDGER_ENTRY_APPENDED, lambda e: print(e.detail))

    bus.emit(Events.LEDGER_ENTRY_APPENDED, {"index": 0, "token_id": "ALC_1"}, source="ledger")
    unsubscribe()

=============================================================================
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from mint_pipeline.core.clock import Clock, utcnow

logger = logging.getLogger(__name__)


# =============================================================================
# TYPE ALIASES
# =============================================================================

# A sync handler takes an event and returns nothing
SyncHandler = Callable[["PipelineEvent"], None]

# An async handler takes an event and returns a coroutine
AsyncHandler = Callable[["PipelineEvent"], Coroutine[Any, Any, None]]

# A handler can be either sync or async
EventHandler = SyncHandler | AsyncHandler

# An unsubscribe function takes no args and returns nothing
Unsubscribe = Callable[[], None]


# =============================================================================
# EVENT METADATA
# =============================================================================


@dataclass(frozen=True)
class EventMetadata:
    """
    Metadata attached to every event.

    Attributes:
        timestamp: Unix epoch milliseconds (UTC). Time of emission, read from the bus clock.
                   Used for display, NOT for ordering.
        source: Name of the component that emitted this event.
                Examples: "admission", "queue", "ledger"
        sequence: Monotonically increasing integer. The ONLY reliable way to
                  determine event order.
    """

    timestamp: int
    source: str
    sequence: int

    @staticmethod
    def create(source: str, sequence: int, now: datetime | None = None) -> EventMetadata:
        """Create metadata stamped with ``now`` (default: the current UTC time)."""
        now_ms = int((now or datetime.now(UTC)).timestamp() * 1000)
        return EventMetadata(timestamp=now_ms, source=source, sequence=sequence)


# =============================================================================
# PIPELINE EVENT
# =============================================================================


@dataclass(frozen=True)
class PipelineEvent:
    """
    A single event on the bus.

    Attributes:
        type: The event type string, "domain:action" in past tense.
              Examples: "ledger:entry_appended", "batch:completed"
        detail: The event payload. Treat as read-only.
        _meta: Event metadata (timestamp, source, sequence).
    """

    type: str
    detail: dict = field(default_factory=dict)
    _meta: EventMetadata | None = field(default=None)

    def __str__(self) -> str:
        """Human-readable representation for logging."""
        if self._meta:
            return (
                f"PipelineEvent(type='{self.type}', "
                f"source='{self._meta.source}', "
                f"seq={self._meta.sequence})"
            )
        return f"PipelineEvent(type='{self.type}')"

    @property
    def meta(self) -> EventMetadata | None:
        """Public accessor for event metadata."""
        return self._meta


# =============================================================================
# PIPELINE BUS
# =============================================================================


class PipelineBus:
    """
    The event bus shared by the components of one pipeline.

    Thread Safety:
    - ``emit`` assigns the sequence number and commits to the log under a
      lock, so events emitted from worker threads are still totally ordered.
    - Handlers run outside the lock, on the emitting thread.

    Key Methods:
    - emit(): Record an event (synchronous, returns committed event)
    - on(): Subscribe to an event type (returns unsubscribe function)
    - once(): Subscribe for a single event only
    - get_event_log(): Retrieve bounded event history

    Args:
        log_size: Capacity of the in-memory event log (oldest evicted first).
        clock:    Source of event timestamps.  Defaults to the wall clock.
        debug:    Log every emit, subscribe and unsubscribe at DEBUG level.
    """

    def __init__(
        self, log_size: int = 10_000, *, clock: Clock | None = None, debug: bool = False
    ) -> None:
        # Maps event_type -> list of handlers, in registration order
        self._handlers: dict[str, list[EventHandler]] = {}

        # Bounded deque prevents unbounded memory growth
        self._event_log: deque[PipelineEvent] = deque(maxlen=log_size)

        # Monotonically increasing; the only reliable ordering
        self._sequence: int = 0

        # Guards _sequence, _event_log and _handlers
        self._lock = threading.Lock()

        self._clock = clock or utcnow

        # When True, logs all emit/subscribe/unsubscribe operations
        self.debug: bool = debug

    # =========================================================================
    # EMIT
    # =========================================================================

    def emit(
        self, event_type: str, detail: dict[str, Any] | None = None, source: str = "pipeline"
    ) -> PipelineEvent:
        """
        Emit an event to the bus.

        When this returns, the event has a sequence number, is committed to
        the log, every sync handler has run and every async handler has been
        scheduled.

        Args:
            event_type: The type of event (see :class:`~mint_pipeline.core.events.Events`).
            detail: The event payload. Optional, defaults to empty dict.
            source: Which component is emitting.

        Returns:
            The committed PipelineEvent.
        """
        with self._lock:
            self._sequence += 1
            event = PipelineEvent(
                type=event_type,
                detail=detail if detail is not None else {},
                _meta=EventMetadata.create(source, self._sequence, self._clock()),
            )
            self._event_log.append(event)
            handlers = list(self._handlers.get(event_type, ()))

        if self.debug:
            logger.debug("EMIT [%d]: %s from %s", event._meta.sequence, event.type, source)

        self._notify_handlers(event, handlers)
        return event

    def _notify_handlers(self, event: PipelineEvent, handlers: list[EventHandler]) -> None:
        """
        Call each handler in registration order.

        Errors are logged but don't affect other handlers; the event is
        committed regardless.
        """
        for handler in handlers:
            try:
                if asyncio.iscoroutinefunction(handler):
                    self._schedule_async_handler(handler, event)
                else:
                    handler(event)
            except Exception:
                logger.error("Handler error for '%s'", event.type, exc_info=True)

    def _schedule_async_handler(self, handler: AsyncHandler, event: PipelineEvent) -> None:
        """
        Schedule an async handler for execution.

        With a running event loop the handler becomes a background task;
        otherwise (tests, CLI) it runs to completion via ``asyncio.run``.
        """
        try:
            loop = asyncio.get_running_loop()
            loop.create_task(handler(event))
        except RuntimeError:
            asyncio.run(handler(event))

    # =========================================================================
    # SUBSCRIBE
    # =========================================================================

    def on(self, event_type: str, handler: EventHandler) -> Unsubscribe:
        """
        Subscribe to an event type.

        Args:
            event_type: The event type to listen for.
            handler: Function to call. Can be sync or async.

        Returns:
            An unsubscribe function. Call it to stop receiving events.
        """
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            count = len(self._handlers[event_type])

        if self.debug:
            logger.debug("SUBSCRIBE: '%s' (total handlers: %d)", event_type, count)

        def unsubscribe() -> None:
            """Remove this handler from the subscription list."""
            with self._lock:
                try:
                    self._handlers.get(event_type, []).remove(handler)
                except ValueError:
                    # Handler already removed
                    return
            if self.debug:
                logger.debug("UNSUBSCRIBE: '%s'", event_type)

        return unsubscribe

    def once(self, event_type: str, handler: EventHandler) -> Unsubscribe:
        """
        Subscribe to an event type for a single event only.

        Returns:
            An unsubscribe function (in case you want to cancel early)
        """
        unsub: Unsubscribe | None = None

        def one_time_wrapper(event: PipelineEvent) -> None:
            """Wrapper that calls handler then unsubscribes."""
            try:
                if asyncio.iscoroutinefunction(handler):
                    self._schedule_async_handler(handler, event)
                else:
                    handler(event)
            finally:
                if unsub is not None:
                    unsub()

        unsub = self.on(event_type, one_time_wrapper)
        return unsub

    # =========================================================================
    # EVENT LOG ACCESS
    # =========================================================================

    def get_event_log(
        self, limit: int | None = None, event_type: str | None = None
    ) -> list[PipelineEvent]:
        """
        Get events from the log, oldest first.

        Args:
            limit: Maximum number of events to return (from the end).
            event_type: Only return events of this type.
        """
        with self._lock:
            events = list(self._event_log)
        if event_type is not None:
            events = [e for e in events if e.type == event_type]
        if limit is not None:
            return events[-limit:]
        return events

    def get_sequence(self) -> int:
        """Return the last assigned sequence number."""
        return self._sequence

    def get_handler_count(self, event_type: str) -> int:
        """Return the number of handlers subscribed to ``event_type``."""
        return len(self._handlers.get(event_type, ()))

    def clear_event_log(self) -> None:
        """Erase event history. Sequence numbers keep counting."""
        with self._lock:
            self._event_log.clear()
