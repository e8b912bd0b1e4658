"""Reference token factory.

The batch queue only depends on the :class:`TokenCreator` protocol; this
module provides the catalog-backed implementation used by the CLI and tests.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Mapping
from typing import Any, Protocol

from mint_pipeline.core.clock import Clock, utcnow
from mint_pipeline.errors import ErrorContext, TokenValidationError
from mint_pipeline.tokens.catalog import TokenCatalog
from mint_pipeline.tokens.types import Token

logger = logging.getLogger(__name__)


class TokenCreator(Protocol):
    """Anything that can turn a mint request into a :class:`Token`.

    Implementations raise :exc:`~mint_pipeline.errors.TokenValidationError`
    (or any other :exc:`~mint_pipeline.errors.PipelineError`) to refuse.
    """

    def create_token(
        self,
        token_type: str,
        owner: str,
        amount: float,
        metadata: Mapping[str, Any] | None = None,
    ) -> Token: ...


class TokenFactory:
    """Create tokens validated against a :class:`TokenCatalog`.

    Validation order: known type, mintable type, owner present (when the
    catalog requires one), ``min_value <= amount <= max_value``.

    Safe to call from several worker threads at once.
    """

    def __init__(self, catalog: TokenCatalog, *, clock: Clock | None = None) -> None:
        self._catalog = catalog
        self._clock = clock or utcnow
        self._lock = threading.Lock()
        self._created = 0

    @property
    def catalog(self) -> TokenCatalog:
        return self._catalog

    @property
    def created_count(self) -> int:
        return self._created

    def describe(self, token_type: str) -> dict[str, bool]:
        return self._catalog.describe(token_type)

    def create_token(
        self,
        token_type: str,
        owner: str,
        amount: float,
        metadata: Mapping[str, Any] | None = None,
    ) -> Token:
        """Create one token.

        Raises:
            TokenValidationError: If the request breaks a catalog rule.
        """
        spec = self._catalog.get(token_type)
        if spec is None:
            raise self._reject(f"Unknown token type: {token_type!r}")
        if not spec.mintable:
            raise self._reject(f"Token type {token_type!r} is not mintable")

        rules = self._catalog.rules
        if rules.require_owner and not (owner and owner.strip()):
            raise self._reject("Token owner is required")
        if amount < rules.min_value:
            raise self._reject(f"Amount {amount:g} is below the minimum {rules.min_value:g}")
        if amount > rules.max_value:
            raise self._reject(f"Amount {amount:g} exceeds the maximum {rules.max_value:g}")

        now = self._clock().isoformat()
        token = Token(
            id=f"{token_type}_{uuid.uuid4().hex}",
            token_type=token_type,
            owner=owner,
            value=float(amount),
            timestamp=now,
            immutable=self._catalog.immutable,
            transferable=spec.transferable,
            burnable=spec.burnable,
            metadata={
                **dict(metadata or {}),
                "created_at": now,
                "catalog_version": self._catalog.version,
            },
        )

        with self._lock:
            self._created += 1

        logger.debug("tokens: created %s for %s (%g)", token.id, owner, token.value)
        return token

    @staticmethod
    def _reject(message: str) -> TokenValidationError:
        return TokenValidationError(message, context=ErrorContext("tokens.create_token", message))
