"""
Configuration settings for the dynamo emitter.

Precedence, lowest first: field defaults, YAML config file, ``DYNAMO_*``
environment variables, command line overrides.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .models import EmissionSchedule

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


class Settings(BaseSettings):
    """Emitter settings"""

    model_config = SettingsConfigDict(env_prefix="DYNAMO_", extra="forbid")

    # Delivery
    target: str = "tcp://localhost:9000"
    max_retries: int = Field(default=5, ge=0)
    connect_timeout: float = Field(default=5.0, gt=0)
    batch_size: int = Field(default=5, ge=1)
    batch_timeout: float = Field(default=5.0, gt=0)
    hostname: Optional[str] = None

    # Emission
    scenarios: List[str] = Field(default_factory=lambda: ["http"])
    rate: float = Field(default=100.0, gt=0)
    duration: Optional[float] = Field(default=None, gt=0)
    count: Optional[int] = Field(default=None, ge=1)
    anomaly_offset: Optional[int] = Field(default=None, ge=0)
    anomaly_every: Optional[int] = Field(default=None, ge=0)
    seed: Optional[int] = None

    # Logging
    status_interval: float = Field(default=10.0, ge=0)
    log_level: str = "INFO"

    def emission_schedule(self) -> EmissionSchedule:
        return EmissionSchedule(rate=self.rate, duration=self.duration, count=self.count)


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load settings from a YAML file, defaulting to the packaged config.yaml"""
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in error.errors()
    )


def load_settings(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Settings:
    """Merge config file, environment and overrides into validated settings"""
    file_values = load_config_file(config_path)

    try:
        env_values = Settings().model_dump(exclude_unset=True)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid environment settings: {_describe(e)}") from e

    merged = {**file_values, **env_values}
    merged.update({k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        settings = Settings(**merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {_describe(e)}") from e

    logger.debug("Loaded settings: %s", settings.model_dump())
    return settings
