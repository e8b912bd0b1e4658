"""Immutable records of the hash-chained ledger.

:class:`LedgerEntry` and :class:`BatchDigest` are frozen.  Sealing an entry
does not mutate it: the ledger swaps in a copy with ``sealed=True`` and
``batch_digest_id`` set, exactly once per entry.  Content fields (everything
that feeds the hash) are identical between the two copies.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class LedgerEntry:
    """One appended token.

    Attributes:
        index:           Dense 0-based position in the chain.
        token_id:        Identifier of the appended token.
        token_type:      Catalog type of the token.
        owner:           Owning account.
        value:           Minted amount.
        timestamp:       Token creation time (ISO-8601); hashed.
        hash:            Content hash over token_id, token_type, owner, value
                         and timestamp.
        previous_hash:   ``hash`` of entry ``index - 1``, or the genesis
                         constant for ``index == 0``.
        appended_at:     When the ledger accepted the entry (ISO-8601).
        sealed:          True once the entry's range has been sealed.
        batch_digest_id: Digest that sealed the entry, or None.
    """

    index: int
    token_id: str
    token_type: str
    owner: str
    value: float
    timestamp: str
    hash: str
    previous_hash: str
    appended_at: str
    sealed: bool = False
    batch_digest_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> LedgerEntry:
        return cls(
            index=int(raw["index"]),
            token_id=str(raw["token_id"]),
            token_type=str(raw["token_type"]),
            owner=str(raw["owner"]),
            value=float(raw["value"]),
            timestamp=str(raw["timestamp"]),
            hash=str(raw["hash"]),
            previous_hash=str(raw["previous_hash"]),
            appended_at=str(raw["appended_at"]),
            sealed=bool(raw.get("sealed", False)),
            batch_digest_id=raw.get("batch_digest_id"),
        )


@dataclass(frozen=True)
class BatchDigest:
    """Summary hash sealing the contiguous range ``[range_start, range_end]``."""

    digest_id: str
    range_start: int
    range_end: int
    entry_count: int
    digest_hash: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> BatchDigest:
        return cls(
            digest_id=str(raw["digest_id"]),
            range_start=int(raw["range_start"]),
            range_end=int(raw["range_end"]),
            entry_count=int(raw["entry_count"]),
            digest_hash=str(raw["digest_hash"]),
            created_at=str(raw["created_at"]),
        )


@dataclass(frozen=True)
class ChainBreak:
    """One broken link: ``entries[index].previous_hash != entries[index-1].hash``."""

    index: int
    expected: str
    actual: str
    error: str = "Hash chain broken"


@dataclass(frozen=True)
class IntegrityReport:
    """Collect-all result of a chain walk.

    Attributes:
        valid:          True iff no link is broken.
        total_entries:  Number of entries examined.
        verified_count: Number of links that matched.
        errors:         Every broken link, in index order.
    """

    valid: bool
    total_entries: int
    verified_count: int
    errors: tuple[ChainBreak, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "total_entries": self.total_entries,
            "verified_count": self.verified_count,
            "errors": [asdict(e) for e in self.errors],
        }


@dataclass(frozen=True)
class DigestMismatch:
    """A sealed range whose recomputed digest differs from the recorded one."""

    digest_id: str
    range_start: int
    range_end: int
    expected: str
    actual: str
