"""Content and range hashing for the ledger.

Both hash functions are pluggable on :class:`~mint_pipeline.ledger.chain.HashChainedLedger`;
these SHA-256 implementations are the defaults.

The content hash serialises its five fields as a canonical JSON array rather
than concatenating them, so field boundaries are unambiguous (``"ab" + "c"``
and ``"a" + "bc"`` hash differently).

The chain is tamper-*evident* in memory and in exports; it is not signed, so
anyone able to rewrite a whole export can also recompute its hashes.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable, Sequence

#: ``previous_hash`` of the entry at index 0.
GENESIS_HASH = "0" * 64

#: ``(token_id, token_type, owner, value, timestamp) -> hex digest``
ContentHasher = Callable[[str, str, str, float, str], str]

#: ``(entry hashes, oldest first) -> hex digest``
DigestHasher = Callable[[Sequence[str]], str]


def content_hash(token_id: str, token_type: str, owner: str, value: float, timestamp: str) -> str:
    """SHA-256 over the canonical JSON array of the five content fields."""
    canonical = json.dumps(
        [token_id, token_type, owner, value, timestamp],
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def range_digest(hashes: Sequence[str]) -> str:
    """SHA-256 over the concatenation of a range's entry hashes."""
    return hashlib.sha256("".join(hashes).encode("utf-8")).hexdigest()
