"""Checksummed JSON export files for ledger snapshots.

A snapshot produced by :meth:`~mint_pipeline.ledger.chain.HashChainedLedger.export_ledger`
is written as a single JSON document with one extra top-level field::

    {
      "version":       "1.0.0",
      "exported_at":   "2026-10-19T09:12:44.101233+00:00",
      "seal_interval": 100,
      "genesis_hash":  "0000...",
      "entries":       [ ... ],
      "digests":       [ ... ],
      "stats":         { ... },
      "_checksum":     "sha256:b94f3e..."
    }

``_checksum`` is computed over the body (every field **except**
``_checksum``) serialised with ``sort_keys=True``, so it never feeds its own
input.  The checksum detects accidental file corruption; the hash chain inside
``entries`` is what detects tampering with individual records.

Concurrency
-----------
``fcntl.flock(LOCK_EX)`` is held while the file is written, so two exporters
targeting the same path never interleave.  ``fcntl`` is POSIX-only.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from mint_pipeline.errors import ErrorContext, LedgerExportError
from mint_pipeline.ledger.chain import verify_chain, verify_digest_ranges
from mint_pipeline.ledger.types import BatchDigest, DigestMismatch, IntegrityReport, LedgerEntry

logger = logging.getLogger(__name__)

_CHECKSUM_FIELD = "_checksum"


def write_export(snapshot: Mapping[str, Any], path: str | Path) -> Path:
    """Write ``snapshot`` to ``path`` with an embedded body checksum.

    Parent directories are created as needed.  An existing file is replaced.

    Args:
        snapshot: Output of ``export_ledger()``.  Must not already carry a
                  ``_checksum`` field.
        path:     Destination file.

    Returns:
        The resolved destination path.

    Raises:
        ValueError:        If ``snapshot`` already contains ``_checksum``.
        LedgerExportError: If the filesystem write fails.
    """
    if _CHECKSUM_FIELD in snapshot:
        raise ValueError("write_export: snapshot already carries a _checksum field.")

    body = dict(snapshot)
    document = {**body, _CHECKSUM_FIELD: f"sha256:{_compute_checksum(body)}"}
    text = json.dumps(document, ensure_ascii=False, sort_keys=True, indent=2)

    target = Path(path)
    try:
        _write_locked(target, text)
    except OSError as exc:
        raise LedgerExportError(
            f"Failed to write ledger export to {target}: {exc}",
            context=ErrorContext("ledger.write_export", str(target)),
        ) from exc

    logger.info(
        "ledger: exported %d entries and %d digests to %s",
        len(body.get("entries", [])),
        len(body.get("digests", [])),
        target,
    )
    return target


def read_export(path: str | Path) -> dict[str, Any]:
    """Load an export file and verify its checksum.

    Returns:
        The snapshot body, without the ``_checksum`` field.

    Raises:
        LedgerExportError: If the file is missing, unreadable, not a JSON
                           object, lacks a checksum, or the checksum does not
                           match.
    """
    source = Path(path)
    context = ErrorContext("ledger.read_export", str(source))

    try:
        raw = source.read_text(encoding="utf-8")
    except OSError as exc:
        raise LedgerExportError(
            f"Cannot read ledger export {source}: {exc}", context=context
        ) from exc

    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LedgerExportError(
            f"Ledger export {source} is not valid JSON: {exc}", context=context
        ) from exc

    if not isinstance(document, dict):
        raise LedgerExportError(f"Ledger export {source} is not a JSON object.", context=context)

    recorded = document.get(_CHECKSUM_FIELD)
    if not isinstance(recorded, str):
        raise LedgerExportError(
            f"Ledger export {source} is missing or has a non-string '_checksum' field.",
            context=context,
        )

    body = {k: v for k, v in document.items() if k != _CHECKSUM_FIELD}
    expected = f"sha256:{_compute_checksum(body)}"
    if recorded != expected:
        raise LedgerExportError(
            f"Checksum mismatch in {source}. Recorded: {recorded!r}. Expected: {expected!r}.",
            context=context,
        )
    return body


def entries_from_snapshot(snapshot: Mapping[str, Any]) -> list[LedgerEntry]:
    """Rebuild :class:`LedgerEntry` records from a snapshot's ``entries`` list.

    Raises:
        LedgerExportError: If an entry is missing a field or has a bad value.
    """
    try:
        return [LedgerEntry.from_dict(raw) for raw in snapshot.get("entries", [])]
    except (KeyError, TypeError, ValueError) as exc:
        raise LedgerExportError(
            f"Malformed ledger entry in snapshot: {exc!r}",
            context=ErrorContext("ledger.entries_from_snapshot"),
        ) from exc


def digests_from_snapshot(snapshot: Mapping[str, Any]) -> list[BatchDigest]:
    """Rebuild :class:`BatchDigest` records from a snapshot's ``digests`` list."""
    try:
        return [BatchDigest.from_dict(raw) for raw in snapshot.get("digests", [])]
    except (KeyError, TypeError, ValueError) as exc:
        raise LedgerExportError(
            f"Malformed batch digest in snapshot: {exc!r}",
            context=ErrorContext("ledger.digests_from_snapshot"),
        ) from exc


def verify_snapshot(snapshot: Mapping[str, Any]) -> IntegrityReport:
    """Apply the live ledger's link rule to an exported snapshot."""
    return verify_chain(entries_from_snapshot(snapshot))


def verify_snapshot_digests(snapshot: Mapping[str, Any]) -> list[DigestMismatch]:
    """Recompute every digest in a snapshot over its range of entries."""
    return verify_digest_ranges(entries_from_snapshot(snapshot), digests_from_snapshot(snapshot))


# ── Internal helpers ──────────────────────────────────────────────────────────


def _compute_checksum(payload: Mapping[str, Any]) -> str:
    canonical = json.dumps(payload, ensure_ascii=False, sort_keys=True)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _write_locked(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # "a" then truncate under the lock so a concurrent writer cannot clobber
    # the file between open and lock.
    with path.open("a", encoding="utf-8") as fh:
        fcntl.flock(fh, fcntl.LOCK_EX)
        try:
            fh.seek(0)
            fh.truncate()
            fh.write(text + "\n")
            fh.flush()
        finally:
            fcntl.flock(fh, fcntl.LOCK_UN)
