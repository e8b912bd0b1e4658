"""
Pipeline configuration management.

This module handles loading and accessing pipeline configuration from multiple
sources with a clear priority order:

    1. Environment variables (highest priority) - for containerized deployments
    2. Config file (config/pipeline.ini) - for static deployments
    3. Built-in defaults (lowest priority) - sensible fallbacks

Configuration is loaded once at module import time and cached. Components do
not read the module-level ``config`` themselves; the caller hands each one the
settings section it needs.

Usage:
    from mint_pipeline.config import config

    print(config.admission.threshold)
    print(config.ledger.seal_interval)

Environment Variable Mapping:
    MINT_MAX_CHARGE          -> admission.max_charge
    MINT_THRESHOLD           -> admission.threshold
    MINT_CHARGE_RATE         -> admission.charge_rate
    MINT_DISCHARGE_AMOUNT    -> admission.discharge_amount
    MINT_RAPID_FIRE_WINDOW_MS -> abuse.rapid_fire_window_ms
    MINT_THROTTLE_COOLDOWN_MS -> abuse.throttle_cooldown_ms
    MINT_MAX_BATCH_SIZE      -> queue.max_batch_size
    MINT_AUTO_PROCESS_MIN    -> queue.auto_process_min
    MINT_MAX_PARALLELISM     -> queue.max_parallelism
    MINT_ITEM_TIMEOUT_SECONDS -> queue.item_timeout_seconds
    MINT_SEAL_INTERVAL       -> ledger.seal_interval
    MINT_EXPORT_DIR          -> ledger.export_dir
    MINT_CATALOG_PATH        -> tokens.catalog_path
    MINT_LOG_LEVEL           -> logging.level
    MINT_TRACE_EVENTS        -> logging.trace_events
"""

import configparser
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

# Project root directory (contains src/, config/, data/)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Config file paths
CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_FILE = CONFIG_DIR / "pipeline.ini"
CONFIG_EXAMPLE = CONFIG_DIR / "pipeline.example.ini"


# =============================================================================
# CONFIGURATION DATACLASSES
# =============================================================================


@dataclass
class AdmissionSettings:
    """Charge accumulator configuration."""

    max_charge: float = 100.0
    threshold: float = 100.0
    charge_rate: float = 1.0
    discharge_amount: float = 20.0
    decay_rate: float = 0.1
    history_capacity: int = 100


@dataclass
class AbuseSettings:
    """Abuse-pattern detection configuration."""

    window_size: int = 10
    rapid_fire_window_ms: int = 1000
    throttle_cooldown_ms: int = 5000
    repetitive_min_events: int = 8


@dataclass
class QueueSettings:
    """Batch queue configuration."""

    max_batch_size: int = 100
    auto_process_min: int = 10
    seconds_per_item: float = 0.1
    history_limit: int = 50
    max_parallelism: int = 1
    item_timeout_seconds: float = 0.0  # 0 = no per-item timeout


@dataclass
class LedgerSettings:
    """Hash-chained ledger configuration."""

    seal_interval: int = 100
    export_dir: str = "data/exports"

    @property
    def absolute_export_dir(self) -> Path:
        """Get absolute path to the export directory."""
        p = Path(self.export_dir)
        if p.is_absolute():
            return p
        return PROJECT_ROOT / p


@dataclass
class TokenSettings:
    """Token catalog configuration."""

    catalog_path: str = ""  # empty = bundled default catalog


@dataclass
class LoggingSettings:
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["simple", "detailed"] = "detailed"
    trace_events: bool = False  # log every bus emit/subscribe at DEBUG


@dataclass
class PipelineConfig:
    """
    Complete pipeline configuration.

    This is the main configuration object that aggregates all settings sections.
    Access via the module-level `config` singleton, or build one directly in
    tests.
    """

    admission: AdmissionSettings = field(default_factory=AdmissionSettings)
    abuse: AbuseSettings = field(default_factory=AbuseSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    tokens: TokenSettings = field(default_factory=TokenSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================


# Section name (also the PipelineConfig attribute) -> {option: ConfigParser getter}.
# Every option listed here may appear in the INI file; unknown options are ignored.
_INI_FIELDS: dict[str, dict[str, str]] = {
    "admission": {
        "max_charge": "getfloat",
        "threshold": "getfloat",
        "charge_rate": "getfloat",
        "discharge_amount": "getfloat",
        "decay_rate": "getfloat",
        "history_capacity": "getint",
    },
    "abuse": {
        "window_size": "getint",
        "rapid_fire_window_ms": "getint",
        "throttle_cooldown_ms": "getint",
        "repetitive_min_events": "getint",
    },
    "queue": {
        "max_batch_size": "getint",
        "auto_process_min": "getint",
        "seconds_per_item": "getfloat",
        "history_limit": "getint",
        "max_parallelism": "getint",
        "item_timeout_seconds": "getfloat",
    },
    "ledger": {
        "seal_interval": "getint",
        "export_dir": "get",
    },
    "tokens": {
        "catalog_path": "get",
    },
}


def _load_from_ini(parser: configparser.ConfigParser, cfg: PipelineConfig) -> None:
    """Load configuration from parsed INI file into PipelineConfig."""
    for section, options in _INI_FIELDS.items():
        if not parser.has_section(section):
            continue
        target = getattr(cfg, section)
        for option, getter in options.items():
            if parser.has_option(section, option):
                setattr(target, option, getattr(parser, getter)(section, option))

    # Logging section
    if parser.has_section("logging"):
        if parser.has_option("logging", "level"):
            cfg.logging.level = parser.get("logging", "level").upper()
        if parser.has_option("logging", "format"):
            val = parser.get("logging", "format").lower()
            if val in ("simple", "detailed"):
                cfg.logging.format = val  # type: ignore[assignment]
        if parser.has_option("logging", "trace_events"):
            cfg.logging.trace_events = parser.getboolean("logging", "trace_events")


def _apply_env_overrides(cfg: PipelineConfig) -> None:
    """Apply environment variable overrides to configuration."""
    # Admission settings
    if env_max := os.getenv("MINT_MAX_CHARGE"):
        cfg.admission.max_charge = float(env_max)
    if env_threshold := os.getenv("MINT_THRESHOLD"):
        cfg.admission.threshold = float(env_threshold)
    if env_rate := os.getenv("MINT_CHARGE_RATE"):
        cfg.admission.charge_rate = float(env_rate)
    if env_discharge := os.getenv("MINT_DISCHARGE_AMOUNT"):
        cfg.admission.discharge_amount = float(env_discharge)

    # Abuse settings
    if env_window := os.getenv("MINT_RAPID_FIRE_WINDOW_MS"):
        cfg.abuse.rapid_fire_window_ms = int(env_window)
    if env_cooldown := os.getenv("MINT_THROTTLE_COOLDOWN_MS"):
        cfg.abuse.throttle_cooldown_ms = int(env_cooldown)

    # Queue settings
    if env_batch := os.getenv("MINT_MAX_BATCH_SIZE"):
        cfg.queue.max_batch_size = int(env_batch)
    if env_auto := os.getenv("MINT_AUTO_PROCESS_MIN"):
        cfg.queue.auto_process_min = int(env_auto)
    if env_parallel := os.getenv("MINT_MAX_PARALLELISM"):
        cfg.queue.max_parallelism = int(env_parallel)
    if env_timeout := os.getenv("MINT_ITEM_TIMEOUT_SECONDS"):
        cfg.queue.item_timeout_seconds = float(env_timeout)

    # Ledger settings
    if env_seal := os.getenv("MINT_SEAL_INTERVAL"):
        cfg.ledger.seal_interval = int(env_seal)
    if env_export := os.getenv("MINT_EXPORT_DIR"):
        cfg.ledger.export_dir = env_export

    # Token settings
    if env_catalog := os.getenv("MINT_CATALOG_PATH"):
        cfg.tokens.catalog_path = env_catalog

    # Logging settings
    if env_log := os.getenv("MINT_LOG_LEVEL"):
        cfg.logging.level = env_log.upper()
    if env_trace := os.getenv("MINT_TRACE_EVENTS"):
        cfg.logging.trace_events = env_trace.lower() in ("1", "true", "yes", "on")


def load_config() -> PipelineConfig:
    """
    Load configuration from all sources with proper priority.

    Priority (highest wins):
        1. Environment variables
        2. config/pipeline.ini
        3. config/pipeline.example.ini (fallback for development)
        4. Built-in defaults

    Returns:
        PipelineConfig: Fully populated configuration object.
    """
    cfg = PipelineConfig()

    # Determine which config file to use
    config_file = None
    if CONFIG_FILE.exists():
        config_file = CONFIG_FILE
    elif CONFIG_EXAMPLE.exists():
        config_file = CONFIG_EXAMPLE

    if config_file:
        parser = configparser.ConfigParser()
        parser.read(config_file)
        _load_from_ini(parser, cfg)

    # Apply environment variable overrides (highest priority)
    _apply_env_overrides(cfg)

    return cfg


def reload_config() -> "PipelineConfig":
    """
    Reload configuration from disk and environment.

    This updates the module-level `config` singleton. Pipelines that were
    already constructed keep the settings they were built with.

    Returns:
        PipelineConfig: The newly loaded configuration.
    """
    global config
    config = load_config()
    return config


# =============================================================================
# LOGGING
# =============================================================================

_LOG_FORMATS = {
    "simple": "%(levelname)s %(message)s",
    "detailed": "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
}


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Apply the logging level and format to the root logger.

    Intended for entry points (the CLI).  Library code only ever calls
    ``logging.getLogger(__name__)``.
    """
    settings = settings or config.logging
    logging.basicConfig(
        level=getattr(logging, settings.level.upper(), logging.INFO),
        format=_LOG_FORMATS.get(settings.format, _LOG_FORMATS["detailed"]),
        force=True,
    )


# =============================================================================
# MODULE-LEVEL SINGLETON
# =============================================================================

# Load configuration once at module import time
config = load_config()


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def get_config_status() -> dict:
    """
    Get configuration status for diagnostics.

    Returns a dictionary with configuration source information.
    """
    return {
        "config_file_exists": CONFIG_FILE.exists(),
        "config_file_path": str(CONFIG_FILE),
        "using_example": not CONFIG_FILE.exists() and CONFIG_EXAMPLE.exists(),
        "threshold": config.admission.threshold,
        "seal_interval": config.ledger.seal_interval,
        "catalog": config.tokens.catalog_path or "<bundled>",
    }


def print_config_summary() -> None:
    """Print a summary of current configuration to stdout."""
    status = get_config_status()
    print("\n" + "=" * 60)
    print("PIPELINE CONFIGURATION")
    print("=" * 60)
    print(f"Config file: {status['config_file_path']}")
    print(f"File exists: {status['config_file_exists']}")
    if status["using_example"]:
        print("WARNING: Using example config (copy to pipeline.ini to customise)")
    print("-" * 60)
    print(
        f"Charge:      max={config.admission.max_charge:g} "
        f"threshold={config.admission.threshold:g} "
        f"discharge={config.admission.discharge_amount:g}"
    )
    print(
        f"Abuse:       window={config.abuse.window_size} "
        f"rapid_fire<{config.abuse.rapid_fire_window_ms}ms "
        f"cooldown={config.abuse.throttle_cooldown_ms}ms"
    )
    print(
        f"Queue:       batch={config.queue.max_batch_size} "
        f"auto_min={config.queue.auto_process_min} "
        f"parallelism={config.queue.max_parallelism}"
    )
    print(f"Ledger:      seal every {config.ledger.seal_interval} entries")
    print(f"Exports:     {config.ledger.absolute_export_dir}")
    print(f"Catalog:     {status['catalog']}")
    print(f"Log level:   {config.logging.level} (trace events: {config.logging.trace_events})")
    print("=" * 60 + "\n")
