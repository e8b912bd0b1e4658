"""Mint Pipeline — charge-gated, batched, hash-chained token minting.

Three stages, each an explicitly constructed handle:

- :mod:`mint_pipeline.admission` — the charge accumulator and abuse advisor
  that decides whether a mint request may be admitted.
- :mod:`mint_pipeline.batching`  — the FIFO batch queue that drains admitted
  requests in atomic groups with per-item failure isolation.
- :mod:`mint_pipeline.ledger`    — the append-only, hash-chained ledger that
  seals every fixed-size range of entries under a batch digest.

:class:`mint_pipeline.pipeline.MintPipeline` wires the three together.

Version Management
------------------
``__version__`` is read from the installed package metadata at import time.
The single source of truth is the ``version`` field in ``pyproject.toml``.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

# ---------------------------------------------------------------------------
# Package version, read from pyproject.toml via importlib.metadata.
#
# When the package is installed (``pip install -e .``), importlib.metadata
# resolves the version from the distribution metadata that pip wrote.  If the
# package is imported without being installed we fall back to "0.0.0-dev".
# ---------------------------------------------------------------------------
try:
    __version__: str = version("mint-pipeline")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
