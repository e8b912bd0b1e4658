"""Token package — catalog of token types and the reference token factory.

Public surface
--------------
- :class:`TokenCatalog` / :func:`load_catalog` — YAML-backed type table.
- :class:`TokenFactory` — catalog-validated token creation.
- :class:`TokenCreator` — the protocol the batch queue depends on.
- :class:`Token`, :class:`TokenTypeSpec` — records.
"""

from mint_pipeline.tokens.catalog import (
    DEFAULT_CATALOG_PATH,
    TokenCatalog,
    ValidationRules,
    load_catalog,
)
from mint_pipeline.tokens.factory import TokenCreator, TokenFactory
from mint_pipeline.tokens.types import Token, TokenTypeSpec

__all__ = [
    "DEFAULT_CATALOG_PATH",
    "Token",
    "TokenCatalog",
    "TokenCreator",
    "TokenFactory",
    "TokenTypeSpec",
    "ValidationRules",
    "load_catalog",
]
