"""Engine configuration loading.

Precedence: explicit path, then ./.nodeflow/config.yaml, then
~/.nodeflow/config.yaml, then built-in defaults. Environment variables
override individual values.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from nodeflow.core.errors import ConfigError

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EngineConfig(BaseModel):
    """Runtime settings for the engine and its outer surfaces"""

    executor_delay: float = Field(default=0.0, ge=0)  # Simulated executor latency (seconds)
    log_level: str = "WARNING"
    studio_host: str = "127.0.0.1"
    studio_port: int = Field(default=8000, ge=1, le=65535)
    definitions_path: Path | None = None  # Default node definition library

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level '{v}'. Use one of: {', '.join(LOG_LEVELS)}")
        return level


ENV_OVERRIDES = {
    "NODEFLOW_EXECUTOR_DELAY": "executor_delay",
    "NODEFLOW_LOG_LEVEL": "log_level",
    "NODEFLOW_STUDIO_PORT": "studio_port",
}


def config_search_paths(cwd: Path | None = None) -> list[Path]:
    base = cwd or Path.cwd()
    return [
        base / ".nodeflow/config.yaml",
        Path.home() / ".nodeflow/config.yaml",
    ]


def load_config(path: Path | None = None, cwd: Path | None = None) -> EngineConfig:
    """
    Load engine configuration.

    Raises:
        ConfigError: file unreadable, not a mapping, or values invalid
    """
    data: dict = {}
    source = path
    if source is None:
        source = next((p for p in config_search_paths(cwd) if p.exists()), None)
    elif not source.exists():
        raise ConfigError(f"Config file not found: {source}")

    if source is not None:
        try:
            with open(source, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config {source}: {e}") from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"{source}: config must be a mapping")
        data.update(loaded)
        logger.debug(f"Loaded config from {source}")

    for env_var, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value is not None:
            data[key] = value

    try:
        return EngineConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
