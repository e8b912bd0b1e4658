"""
Shared pytest fixtures for the mint pipeline test suite.

This module provides fixtures that are automatically available to all test files:
- A deterministic stepping clock
- The bundled token catalog and a factory over it
- Fresh bus, ledger and queue instances
- A small-threshold pipeline configuration

Every fixture is function-scoped; no component is shared between tests.
"""

from datetime import UTC, datetime

import pytest

from mint_pipeline.batching.queue import BatchQueue
from mint_pipeline.config import (
    AbuseSettings,
    AdmissionSettings,
    LedgerSettings,
    PipelineConfig,
    QueueSettings,
)
from mint_pipeline.core.bus import PipelineBus
from mint_pipeline.core.clock import SteppingClock
from mint_pipeline.ledger.chain import HashChainedLedger
from mint_pipeline.tokens.catalog import TokenCatalog, load_catalog
from mint_pipeline.tokens.factory import TokenFactory
from mint_pipeline.tokens.types import Token

START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


# ============================================================================
# CLOCK AND BUS
# ============================================================================


@pytest.fixture
def clock() -> SteppingClock:
    """Clock pinned at 2026-01-01 12:00 UTC; only moves when advanced."""
    return SteppingClock(START)


@pytest.fixture
def bus(clock) -> PipelineBus:
    return PipelineBus(clock=clock)


# ============================================================================
# TOKENS
# ============================================================================


@pytest.fixture
def catalog() -> TokenCatalog:
    return load_catalog()


@pytest.fixture
def factory(catalog: TokenCatalog, clock: SteppingClock) -> TokenFactory:
    return TokenFactory(catalog, clock=clock)


def make_token(n: int, *, owner: str = "alice", token_type: str = "ALC", **overrides) -> Token:
    """Build a deterministic token without going through the factory."""
    fields = {
        "id": f"{token_type}_{n:04d}",
        "token_type": token_type,
        "owner": owner,
        "value": float(n + 1),
        "timestamp": f"2026-01-01T12:00:{n % 60:02d}+00:00",
    }
    fields.update(overrides)
    return Token(**fields)


@pytest.fixture
def token_builder():
    """Expose :func:`make_token` to tests as a fixture."""
    return make_token


# ============================================================================
# LEDGER AND QUEUE
# ============================================================================


@pytest.fixture
def ledger(bus: PipelineBus, clock: SteppingClock) -> HashChainedLedger:
    """Ledger with a small seal interval so sealing is easy to reach."""
    return HashChainedLedger(5, bus=bus, clock=clock)


@pytest.fixture
def queue(factory: TokenFactory, ledger: HashChainedLedger, bus, clock) -> BatchQueue:
    return BatchQueue(factory, ledger, QueueSettings(auto_process_min=3), bus=bus, clock=clock)


# ============================================================================
# CONFIGURATION
# ============================================================================


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    """
    Configuration used by orchestrator tests.

    Threshold 100, discharge 20, seal every 5 entries, auto-process at 3.
    """
    return PipelineConfig(
        admission=AdmissionSettings(max_charge=100.0, threshold=100.0, discharge_amount=20.0),
        abuse=AbuseSettings(),
        queue=QueueSettings(auto_process_min=3),
        ledger=LedgerSettings(seal_interval=5),
    )
