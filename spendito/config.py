"""Configuration loading for Spendito.

Settings come from a TOML file (default ``~/.config/spendito/config.toml``)
with environment variable overrides:

- ``SPENDITO_CONFIG``: path to the TOML file
- ``SPENDITO_DATA_DIR``: directory holding the SQLite database
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "spendito" / "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "spendito"


@dataclass
class CategorizationConfig:
    """Rule-based categorizer settings."""

    # Confidence for the "other income/expense" fallback
    fallback_confidence: float = 0.1
    # Ceiling for automatic matches; 1.0 is reserved for user confirmation
    max_confidence: float = 0.99
    # Starting priority for rules learned from corrections
    learned_rule_priority: int = 150
    # Priority increase when a correction reinforces an existing rule
    boost_priority: int = 10


@dataclass
class DuplicateConfig:
    """Cross-account duplicate and Guthaben-Transfer linking settings."""

    time_window_days: int = 5
    amount_tolerance: float = 0.01
    similarity_threshold: float = 0.5
    high_confidence: float = 0.9
    medium_confidence: float = 0.7
    transfer_window_days: int = 1


@dataclass
class ReviewConfig:
    """Settings for the quarterly categorization review."""

    # Transactions below this confidence are sent to review
    confidence_threshold: float = 0.8
    # Rule-based review flags anything below this as uncertain
    low_confidence: float = 0.5
    # A differing rule suggestion needs at least this confidence
    suggestion_confidence: float = 0.7


@dataclass
class Config:
    """Top-level configuration."""

    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    db_name: str = "spendito.db"
    categorization: CategorizationConfig = field(default_factory=CategorizationConfig)
    duplicates: DuplicateConfig = field(default_factory=DuplicateConfig)
    review: ReviewConfig = field(default_factory=ReviewConfig)

    @property
    def db_path(self) -> Path:
        """Full path of the SQLite database file."""
        return self.data_dir / self.db_name


def _section(cls, values: dict[str, Any], name: str):
    """Build a config dataclass from a TOML table, rejecting unknown keys."""
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown keys in [{name}]: {', '.join(sorted(unknown))}")
    return cls(**values)


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from TOML, falling back to defaults.

    Args:
        config_path: Explicit path to a TOML file. When omitted, the
            ``SPENDITO_CONFIG`` environment variable or the default path is used.

    Returns:
        Populated Config instance.

    Raises:
        ConfigError: If the file exists but is not valid TOML or has unknown keys.
    """
    if config_path is None:
        env_path = os.environ.get("SPENDITO_CONFIG")
        config_path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    data: dict[str, Any] = {}
    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file {config_path}: {e}") from e
        logger.debug("Loaded config from %s", config_path)
    else:
        logger.debug("No config file at %s, using defaults", config_path)

    storage = data.get("storage", {})
    config = Config(
        categorization=_section(
            CategorizationConfig, data.get("categorization", {}), "categorization"
        ),
        duplicates=_section(DuplicateConfig, data.get("duplicates", {}), "duplicates"),
        review=_section(ReviewConfig, data.get("review", {}), "review"),
    )
    if "data_dir" in storage:
        config.data_dir = Path(storage["data_dir"]).expanduser()
    if "db_name" in storage:
        config.db_name = storage["db_name"]

    env_data_dir = os.environ.get("SPENDITO_DATA_DIR")
    if env_data_dir:
        config.data_dir = Path(env_data_dir).expanduser()

    return config
