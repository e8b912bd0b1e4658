"""Append-only, hash-chained ledger with periodic range sealing.

Overview
--------
:class:`HashChainedLedger` is the single owner of the entry sequence and the
digest sequence.  :meth:`~HashChainedLedger.append` is the **only** mutation
path for entry content.

Chain
-----
Each entry carries ``hash = H(token_id, token_type, owner, value, timestamp)``
and ``previous_hash`` = the ``hash`` of the entry before it
(:data:`~mint_pipeline.ledger.hashing.GENESIS_HASH` for index 0).  Indices are
dense and 0-based.

Sealing
-------
Whenever at least ``seal_interval`` (``K``) entries lie beyond the last seal
point, the next ``K`` entries are sealed: a
:class:`~mint_pipeline.ledger.types.BatchDigest` is computed over the
concatenation of their hashes and each entry in the range is replaced by a
copy with ``sealed=True`` and ``batch_digest_id`` set.  The seal point only
moves forward, so a range is sealed at most once no matter how often the
check runs.

Concurrency
-----------
One ``threading.RLock`` serialises append, the seal check-and-create step and
every read that needs a consistent view.  Appends from concurrent callers are
therefore totally ordered and can never fork the chain.  Bus events are
emitted while the lock is held so subscribers observe appends in chain order.

Verification
------------
:meth:`~HashChainedLedger.verify_integrity` walks every link and reports
*all* breaks (collect-all, not fail-fast).  Corruption is reported, never
repaired.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import Any

from mint_pipeline.core.bus import PipelineBus
from mint_pipeline.core.clock import Clock, utcnow
from mint_pipeline.core.events import Events
from mint_pipeline.errors import ErrorContext, NotImmutableError
from mint_pipeline.ledger.hashing import (
    GENESIS_HASH,
    ContentHasher,
    DigestHasher,
    content_hash,
    range_digest,
)
from mint_pipeline.ledger.types import (
    BatchDigest,
    ChainBreak,
    DigestMismatch,
    IntegrityReport,
    LedgerEntry,
)
from mint_pipeline.tokens.types import Token

logger = logging.getLogger(__name__)

#: Version string stamped on :meth:`HashChainedLedger.export_ledger` snapshots.
EXPORT_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Verification helpers (shared with offline export verification)
# ---------------------------------------------------------------------------


def verify_chain(entries: Sequence[LedgerEntry]) -> IntegrityReport:
    """Check ``entries[i].previous_hash == entries[i-1].hash`` for every ``i >= 1``.

    Every mismatch is recorded; the walk never stops early.
    """
    errors: list[ChainBreak] = []
    verified = 0
    for i in range(1, len(entries)):
        expected = entries[i - 1].hash
        actual = entries[i].previous_hash
        if actual != expected:
            errors.append(ChainBreak(index=entries[i].index, expected=expected, actual=actual))
        else:
            verified += 1
    return IntegrityReport(
        valid=not errors,
        total_entries=len(entries),
        verified_count=verified,
        errors=tuple(errors),
    )


def verify_digest_ranges(
    entries: Sequence[LedgerEntry],
    digests: Iterable[BatchDigest],
    digest_hasher: DigestHasher = range_digest,
) -> list[DigestMismatch]:
    """Recompute each digest over its range and return the ones that differ.

    A digest whose range runs past the end of ``entries`` is reported with
    ``actual=""``.
    """
    mismatches: list[DigestMismatch] = []
    for digest in digests:
        if digest.range_end >= len(entries) or digest.range_start < 0:
            actual = ""
        else:
            actual = digest_hasher(
                [e.hash for e in entries[digest.range_start : digest.range_end + 1]]
            )
        if actual != digest.digest_hash:
            mismatches.append(
                DigestMismatch(
                    digest_id=digest.digest_id,
                    range_start=digest.range_start,
                    range_end=digest.range_end,
                    expected=digest.digest_hash,
                    actual=actual,
                )
            )
    return mismatches


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class HashChainedLedger:
    """Single-writer, append-only token ledger.

    Args:
        seal_interval: ``K``, the number of entries per sealed range.  Must be >= 1.
        hasher:        Content hash function (default SHA-256).
        digest_hasher: Range digest function (default SHA-256).
        bus:           Optional bus receiving ``ledger:*`` events.
        clock:         Source of ``appended_at`` / ``created_at`` timestamps.
    """

    def __init__(
        self,
        seal_interval: int = 100,
        *,
        hasher: ContentHasher = content_hash,
        digest_hasher: DigestHasher = range_digest,
        bus: PipelineBus | None = None,
        clock: Clock | None = None,
    ) -> None:
        if seal_interval < 1:
            raise ValueError(f"seal_interval must be >= 1, got {seal_interval!r}.")
        self._seal_interval = seal_interval
        self._hasher = hasher
        self._digest_hasher = digest_hasher
        self._bus = bus
        self._clock = clock or utcnow
        self._lock = threading.RLock()

        self._entries: list[LedgerEntry] = []
        self._digests: list[BatchDigest] = []
        self._by_token: dict[str, int] = {}
        # Index of the first entry not yet covered by a digest.
        self._seal_point = 0

    # ------------------------------------------------------------------
    # Append & seal
    # ------------------------------------------------------------------

    def append(self, token: Token) -> LedgerEntry:
        """Append one immutable token to the chain.

        Args:
            token: Any record exposing ``id``, ``token_type``, ``owner``,
                   ``value``, ``timestamp`` and ``immutable``.

        Returns:
            The appended entry as stored after this call (already sealed if
            this append completed a range).

        Raises:
            NotImmutableError: If ``token.immutable`` is not True.  Nothing is
                               appended.
        """
        if getattr(token, "immutable", False) is not True:
            raise NotImmutableError(
                f"Only immutable tokens can be appended (token {token.id!r}).",
                context=ErrorContext("ledger.append", token.id),
            )

        with self._lock:
            index = len(self._entries)
            entry = LedgerEntry(
                index=index,
                token_id=token.id,
                token_type=token.token_type,
                owner=token.owner,
                value=token.value,
                timestamp=token.timestamp,
                hash=self._hasher(
                    token.id, token.token_type, token.owner, token.value, token.timestamp
                ),
                previous_hash=self._entries[-1].hash if self._entries else GENESIS_HASH,
                appended_at=self._clock().isoformat(),
            )
            self._entries.append(entry)
            self._by_token.setdefault(token.id, index)
            logger.debug("ledger: appended #%d %s", index, token.id)
            self._emit(Events.LEDGER_ENTRY_APPENDED, {"entry": entry})

            self._seal_pending_locked()
            return self._entries[index]

    def seal_pending(self) -> list[BatchDigest]:
        """Seal every complete range beyond the seal point.

        :meth:`append` already runs this check; calling it again at the same
        ledger length creates nothing.

        Returns:
            The digests created by this call (usually empty).
        """
        with self._lock:
            return self._seal_pending_locked()

    def _seal_pending_locked(self) -> list[BatchDigest]:
        created: list[BatchDigest] = []
        while len(self._entries) - self._seal_point >= self._seal_interval:
            start = self._seal_point
            end = start + self._seal_interval - 1
            digest = BatchDigest(
                digest_id=f"digest-{start:08d}-{end:08d}",
                range_start=start,
                range_end=end,
                entry_count=self._seal_interval,
                digest_hash=self._digest_hasher([e.hash for e in self._entries[start : end + 1]]),
                created_at=self._clock().isoformat(),
            )
            for i in range(start, end + 1):
                self._entries[i] = replace(
                    self._entries[i], sealed=True, batch_digest_id=digest.digest_id
                )
            self._digests.append(digest)
            self._seal_point = end + 1
            created.append(digest)

            logger.info("ledger: sealed [%d, %d] as %s", start, end, digest.digest_id)
            self._emit(Events.LEDGER_RANGE_SEALED, {"digest": digest})
        return created

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_integrity(self) -> IntegrityReport:
        """Walk the whole chain and report every broken link."""
        with self._lock:
            entries = list(self._entries)

        report = verify_chain(entries)
        if not report.valid:
            logger.error(
                "ledger: integrity check found %d broken link(s), first at index %d",
                len(report.errors),
                report.errors[0].index,
            )
            self._emit(
                Events.LEDGER_INTEGRITY_FAILED,
                {"errors": len(report.errors), "first_broken_index": report.errors[0].index},
            )
        return report

    def verify_digests(self) -> list[DigestMismatch]:
        """Recompute every digest over its range (advisory)."""
        with self._lock:
            entries = list(self._entries)
            digests = list(self._digests)
        return verify_digest_ranges(entries, digests, self._digest_hasher)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def seal_interval(self) -> int:
        return self._seal_interval

    @property
    def last_hash(self) -> str:
        """Hash of the newest entry, or the genesis hash when empty."""
        with self._lock:
            return self._entries[-1].hash if self._entries else GENESIS_HASH

    def entries(self) -> list[LedgerEntry]:
        with self._lock:
            return list(self._entries)

    def digests(self) -> list[BatchDigest]:
        with self._lock:
            return list(self._digests)

    def get(self, token_id: str) -> LedgerEntry | None:
        """Return the entry for ``token_id`` (first occurrence), or None."""
        with self._lock:
            index = self._by_token.get(token_id)
            return self._entries[index] if index is not None else None

    def query(
        self,
        *,
        owner: str | None = None,
        token_type: str | None = None,
        from_index: int | None = None,
        to_index: int | None = None,
    ) -> list[LedgerEntry]:
        """Return entries matching every provided filter (inclusive index bounds)."""
        with self._lock:
            entries = list(self._entries)
        return [
            e
            for e in entries
            if (owner is None or e.owner == owner)
            and (token_type is None or e.token_type == token_type)
            and (from_index is None or e.index >= from_index)
            and (to_index is None or e.index <= to_index)
        ]

    def stats(self) -> dict[str, Any]:
        with self._lock:
            entries = list(self._entries)
            digest_count = len(self._digests)

        by_type: dict[str, int] = {}
        for e in entries:
            by_type[e.token_type] = by_type.get(e.token_type, 0) + 1
        sealed = sum(1 for e in entries if e.sealed)
        return {
            "total_entries": len(entries),
            "total_value": sum(e.value for e in entries),
            "digests": digest_count,
            "sealed_entries": sealed,
            "unsealed_entries": len(entries) - sealed,
            "by_type": by_type,
            "integrity": verify_chain(entries).valid,
        }

    # ------------------------------------------------------------------
    # Export / restore
    # ------------------------------------------------------------------

    def export_ledger(self) -> dict[str, Any]:
        """Return a JSON-ready snapshot sufficient to rebuild and re-verify the chain."""
        with self._lock:
            entries = [e.to_dict() for e in self._entries]
            digests = [d.to_dict() for d in self._digests]
            stats = self.stats()
        return {
            "version": EXPORT_VERSION,
            "exported_at": self._clock().isoformat(),
            "seal_interval": self._seal_interval,
            "genesis_hash": GENESIS_HASH,
            "entries": entries,
            "digests": digests,
            "stats": stats,
        }

    @classmethod
    def restore(
        cls,
        entries: Sequence[LedgerEntry],
        digests: Sequence[BatchDigest],
        seal_interval: int = 100,
        **kwargs: Any,
    ) -> HashChainedLedger:
        """Rebuild a ledger from previously exported entries and digests.

        Entries are taken as-is (not re-hashed) so that any corruption in the
        source remains detectable by :meth:`verify_integrity`.

        Raises:
            ValueError: If entry indices are not dense and 0-based.
        """
        for position, entry in enumerate(entries):
            if entry.index != position:
                raise ValueError(
                    f"restore: entry at position {position} has index {entry.index}."
                )

        ledger = cls(seal_interval, **kwargs)
        ledger._entries = list(entries)
        ledger._digests = list(digests)
        for entry in entries:
            ledger._by_token.setdefault(entry.token_id, entry.index)
        ledger._seal_point = max((d.range_end + 1 for d in digests), default=0)
        return ledger

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _emit(self, event_type: str, detail: dict[str, Any]) -> None:
        if self._bus is not None:
            self._bus.emit(event_type, detail, source="ledger")
