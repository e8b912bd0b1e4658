"""Token records exchanged between the token factory, the queue and the ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TokenTypeSpec:
    """Catalog description of one token type.

    Attributes:
        type_id:      Catalog key, e.g. ``"ALC"``.
        name:         Display name.
        mintable:     Whether new tokens of this type may be created.
        transferable: Copied onto created tokens.
        burnable:     Copied onto created tokens.
        description:  Free text.
    """

    type_id: str
    name: str
    mintable: bool
    transferable: bool
    burnable: bool
    description: str = ""

    def describe(self) -> dict[str, bool]:
        return {
            "mintable": self.mintable,
            "transferable": self.transferable,
            "burnable": self.burnable,
        }


@dataclass(frozen=True)
class Token:
    """A created token, ready to be appended to the ledger.

    The ledger only relies on ``id``, ``token_type``, ``owner``, ``value``,
    ``timestamp`` and ``immutable``; the rest is carried for downstream sinks.

    Attributes:
        id:         Unique token identifier.
        token_type: Catalog key of the token's type.
        owner:      Owning account.
        value:      Minted amount.
        timestamp:  ISO-8601 UTC creation time (part of the ledger hash).
        immutable:  Must be True for the ledger to accept the token.
    """

    id: str
    token_type: str
    owner: str
    value: float
    timestamp: str
    immutable: bool = True
    transferable: bool = True
    burnable: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
