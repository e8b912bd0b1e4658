"""Ledger package — append-only, hash-chained record of minted tokens.

The ledger is the **authoritative record** of every committed token.  Each
entry links to the one before it by hash, and every ``seal_interval`` entries
are summarised by a :class:`BatchDigest`.

Public surface
--------------
- :class:`HashChainedLedger`     — append, seal, verify, query, export.
- :func:`write_export` / :func:`read_export` — checksummed snapshot files.
- :func:`verify_snapshot` / :func:`verify_snapshot_digests` — offline checks.
- :func:`content_hash` / :func:`range_digest` — default SHA-256 hashers.
- :class:`LedgerEntry`, :class:`BatchDigest`, :class:`IntegrityReport` — records.

Usage example
-------------
::

    from mint_pipeline.ledger import HashChainedLedger, write_export

    ledger = HashChainedLedger(seal_interval=100)
    entry = ledger.append(token)
    report = ledger.verify_integrity()
    if not report.valid:
        logger.error("Chain broken at %s", [e.index for e in report.errors])
    write_export(ledger.export_ledger(), "data/exports/ledger.json")

Design notes
------------
- Integrity failures are reported, never repaired.
- Appending a token whose ``immutable`` flag is not True raises
  :exc:`~mint_pipeline.errors.NotImmutableError`.
- The hash chain is tamper-evident, not signed.
"""

from mint_pipeline.ledger.chain import HashChainedLedger, verify_chain, verify_digest_ranges
from mint_pipeline.ledger.export import (
    digests_from_snapshot,
    entries_from_snapshot,
    read_export,
    verify_snapshot,
    verify_snapshot_digests,
    write_export,
)
from mint_pipeline.ledger.hashing import GENESIS_HASH, content_hash, range_digest
from mint_pipeline.ledger.types import (
    BatchDigest,
    ChainBreak,
    DigestMismatch,
    IntegrityReport,
    LedgerEntry,
)

__all__ = [
    "GENESIS_HASH",
    "BatchDigest",
    "ChainBreak",
    "DigestMismatch",
    "HashChainedLedger",
    "IntegrityReport",
    "LedgerEntry",
    "content_hash",
    "digests_from_snapshot",
    "entries_from_snapshot",
    "range_digest",
    "read_export",
    "verify_chain",
    "verify_digest_ranges",
    "verify_snapshot",
    "verify_snapshot_digests",
    "write_export",
]
