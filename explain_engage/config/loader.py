"""
Configuration management and loading.

Handles the YAML settings file for quotas, storage, retries and generation.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from explain_engage.core.quota import QuotaLimits
from explain_engage.storage.db import DEFAULT_DB_PATH


@dataclass(frozen=True)
class StorageConfig:
    """Where the engagement store lives."""
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        if not self.db_path or not self.db_path.strip():
            raise ValueError("db_path cannot be empty")


@dataclass(frozen=True)
class RetryConfig:
    """Bounded retries for post-answer bookkeeping."""
    max_attempts: int = 3
    initial_delay: float = 0.1  # seconds
    backoff: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0:
            raise ValueError("initial_delay cannot be negative")
        if self.backoff < 1:
            raise ValueError("backoff must be >= 1")


@dataclass(frozen=True)
class GenerationConfig:
    """LLM settings for the OpenAI explainer."""
    model: str = "gpt-4o-mini"
    timeout: float = 30.0  # seconds

    def __post_init__(self):
        if not self.model or not self.model.strip():
            raise ValueError("model cannot be empty")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")


@dataclass(frozen=True)
class EngagementConfig:
    """Complete engagement configuration."""
    quota: QuotaLimits = field(default_factory=QuotaLimits)
    storage: StorageConfig = field(default_factory=StorageConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)


# Section -> {key: accepted types}
_SECTION_SCHEMAS: Dict[str, Dict[str, Tuple[type, ...]]] = {
    "quota": {
        "free_daily_limit": (int,),
        "starter_monthly_limit": (int,),
    },
    "storage": {
        "db_path": (str,),
    },
    "retry": {
        "max_attempts": (int,),
        "initial_delay": (int, float),
        "backoff": (int, float),
    },
    "generation": {
        "model": (str,),
        "timeout": (int, float),
    },
}

_SECTION_TYPES = {
    "quota": QuotaLimits,
    "storage": StorageConfig,
    "retry": RetryConfig,
    "generation": GenerationConfig,
}


def load_engagement_config(path: Optional[str] = None) -> EngagementConfig:
    """Load and validate engagement configuration from a YAML file.

    Every section is optional and falls back to defaults, but anything
    present is validated strictly: unknown keys, wrong types and
    out-of-range values are rejected rather than ignored.

    Args:
        path: Path to YAML configuration file; None returns defaults

    Returns:
        Validated EngagementConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return EngagementConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Engagement config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    unknown_keys = set(raw_config.keys()) - set(_SECTION_SCHEMAS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {}
    for name, data in raw_config.items():
        sections[name] = _parse_section(name, data)

    return EngagementConfig(**sections)


def _parse_section(name: str, data: Any):
    """Parse and validate one configuration section.

    Args:
        name: Section name
        data: Raw section data

    Returns:
        The section's config dataclass

    Raises:
        ValueError: If the section is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    schema = _SECTION_SCHEMAS[name]
    unknown_keys = set(data.keys()) - set(schema)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")

    for key, value in data.items():
        # bool is an int subclass; never accept it for a number
        if isinstance(value, bool) or not isinstance(value, schema[key]):
            expected = " or ".join(t.__name__ for t in schema[key])
            raise ValueError(f"'{key}' in {name} must be {expected}")

    return _SECTION_TYPES[name](**data)
