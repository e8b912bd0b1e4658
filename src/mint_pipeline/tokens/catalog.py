"""Token catalog — YAML loader and lookup table of token types.

The catalog is a declarative description of which token types exist and the
rules every created token must satisfy.  A default catalog ships with the
package (``default_catalog.yaml``); deployments point
``[tokens] catalog_path`` at their own file.

Expected layout::

    version: "1.0"
    token_structure:
      immutable: true
    validation_rules:
      require_owner: true
      min_value: 0.01
      max_value: 1000000
    token_types:
      ALC:
        name: Andy Lian Coin
        mintable: true
        transferable: true
        burnable: false

Design notes:
- :func:`load_catalog` raises :exc:`FileNotFoundError` if the file is absent
  and :exc:`ValueError` on schema validation failure.  Neither is caught here.
- :class:`TokenCatalog` is immutable after load.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from mint_pipeline.tokens.types import TokenTypeSpec

#: Bundled catalog used when no ``catalog_path`` is configured.
DEFAULT_CATALOG_PATH = Path(__file__).parent / "default_catalog.yaml"


@dataclass(frozen=True)
class ValidationRules:
    """Business rules applied to every created token."""

    require_owner: bool = True
    min_value: float = 0.0
    max_value: float = float("inf")


@dataclass(frozen=True)
class TokenCatalog:
    """Immutable lookup table of token types keyed by type identifier.

    Attributes:
        version:         Catalog schema version, stamped onto token metadata.
        immutable:       Value of ``immutable`` on every token the factory
                         creates (``token_structure.immutable``).
        rules:           :class:`ValidationRules` for created tokens.
        types:           Mapping of type id to :class:`TokenTypeSpec`.
    """

    version: str
    immutable: bool
    rules: ValidationRules
    types: Mapping[str, TokenTypeSpec]

    def __contains__(self, type_id: object) -> bool:
        return type_id in self.types

    def get(self, type_id: str) -> TokenTypeSpec | None:
        return self.types.get(type_id)

    def describe(self, type_id: str) -> dict[str, bool]:
        """Return ``{mintable, transferable, burnable}`` for ``type_id``.

        Raises:
            KeyError: If ``type_id`` is not in the catalog.
        """
        return self.types[type_id].describe()

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> TokenCatalog:
        """Build a catalog from an already-parsed mapping (YAML or test data).

        Raises:
            ValueError: On missing or malformed fields.
        """
        if not isinstance(raw, Mapping):
            raise ValueError("token catalog must be a mapping at the top level.")

        version = raw.get("version")
        if not version:
            raise ValueError("token catalog: missing required field 'version'.")

        structure = raw.get("token_structure") or {}
        if not isinstance(structure, Mapping):
            raise ValueError("token catalog: 'token_structure' must be a mapping.")

        rules_raw = raw.get("validation_rules") or {}
        if not isinstance(rules_raw, Mapping):
            raise ValueError("token catalog: 'validation_rules' must be a mapping.")
        rules = ValidationRules(
            require_owner=bool(rules_raw.get("require_owner", True)),
            min_value=float(rules_raw.get("min_value", 0.0)),
            max_value=float(rules_raw.get("max_value", float("inf"))),
        )
        if rules.min_value > rules.max_value:
            raise ValueError("token catalog: validation_rules.min_value exceeds max_value.")

        types_raw = raw.get("token_types")
        if not isinstance(types_raw, Mapping) or not types_raw:
            raise ValueError("token catalog: 'token_types' must be a non-empty mapping.")

        types = {
            str(type_id): _parse_type(str(type_id), spec) for type_id, spec in types_raw.items()
        }

        return cls(
            version=str(version),
            immutable=bool(structure.get("immutable", True)),
            rules=rules,
            types=types,
        )


def load_catalog(path: Path | str | None = None) -> TokenCatalog:
    """Load and validate a token catalog YAML file.

    Args:
        path: Catalog file.  ``None`` or ``""`` loads the bundled default.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError:        On schema validation failure.
    """
    catalog_path = Path(path) if path else DEFAULT_CATALOG_PATH
    if not catalog_path.exists():
        raise FileNotFoundError(f"Token catalog not found: {catalog_path}")

    with catalog_path.open(encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)

    return TokenCatalog.from_mapping(raw)


def _parse_type(type_id: str, spec: Any) -> TokenTypeSpec:
    if not isinstance(spec, Mapping):
        raise ValueError(f"token catalog: token_types.{type_id} must be a mapping.")
    return TokenTypeSpec(
        type_id=type_id,
        name=str(spec.get("name", type_id)),
        mintable=bool(spec.get("mintable", False)),
        transferable=bool(spec.get("transferable", False)),
        burnable=bool(spec.get("burnable", False)),
        description=str(spec.get("description", "")),
    )
