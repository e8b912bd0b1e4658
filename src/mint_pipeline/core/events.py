"""
Event Type Constants for the Mint Pipeline

Events use "domain:action" format in PAST TENSE:

    Good: "ledger:entry_appended", "batch:completed"
    Bad:  "ledger:append", "complete_batch"

The past tense emphasizes that events record FACTS about what HAPPENED,
not requests for something to happen.

Usage:

    from mint_pipeline.core.events import Events

    bus.emit(Events.LEDGER_RANGE_SEALED, {...}, source="ledger")
    bus.on(Events.LEDGER_ENTRY_APPENDED, fanout.handle_event)
"""


class Events:
    """
    All standard event types in the mint pipeline, organized by domain.
    """

    # =========================================================================
    # ADMISSION
    # =========================================================================

    ACTIVITY_REGISTERED = "admission:activity_registered"
    """
    Detail: {"kind": str, "intensity": float, "charge": float, "can_mint": bool}
    """

    ABUSE_DETECTED = "admission:abuse_detected"
    """
    Detail: {"pattern": str, "recommended_action": str, "cooldown_ms": int | None}
    """

    CHARGE_DISCHARGED = "admission:charge_discharged"
    """
    Detail: {"charge": float, "timestamp": str}
    """

    REQUEST_REJECTED = "admission:request_rejected"
    """
    Detail: {"reason": str, "message": str}
    """

    # =========================================================================
    # BATCHING
    # =========================================================================

    REQUEST_ENQUEUED = "batch:request_enqueued"
    """
    Detail: {"request_id": str, "position": int}
    """

    BATCH_DRAINED = "batch:drained"
    """
    Detail: {"batch_id": str, "size": int}
    """

    ITEM_FAILED = "batch:item_failed"
    """
    Detail: {"batch_id": str, "index": int, "request_id": str, "reason": str}
    """

    BATCH_COMPLETED = "batch:completed"
    """
    Detail: {"batch_id": str, "committed": int, "failed": int}
    """

    QUEUE_CLEARED = "batch:queue_cleared"
    """
    Detail: {"cleared_count": int}
    """

    # =========================================================================
    # LEDGER
    # =========================================================================

    LEDGER_ENTRY_APPENDED = "ledger:entry_appended"
    """
    Detail: {"entry": LedgerEntry}
    """

    LEDGER_RANGE_SEALED = "ledger:range_sealed"
    """
    Detail: {"digest": BatchDigest}
    """

    LEDGER_INTEGRITY_FAILED = "ledger:integrity_failed"
    """
    Detail: {"errors": int, "first_broken_index": int}
    """


def get_all_event_types() -> list[str]:
    """Return every event type string defined on :class:`Events`."""
    return sorted(
        value
        for name, value in vars(Events).items()
        if name.isupper() and isinstance(value, str)
    )


def is_valid_event_type(event_type: str) -> bool:
    """Return True if ``event_type`` is one of the standard event types."""
    return event_type in get_all_event_types()
