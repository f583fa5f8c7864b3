"""
Configuration loading for the account monitor.

Reads the YAML service config and the YAML accounts file and validates
both with pydantic. Any problem here is fatal at startup and surfaces as
a ConfigurationError.
"""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .models import Context, Module

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/config.yml"
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class ConfigurationError(Exception):
    """Raised for invalid configuration; the process cannot start."""
    pass


class DatabaseConfig(BaseModel):
    path: str = "data/monitor.db"


class CollectionConfig(BaseModel):
    modules: list[Module] = Field(default_factory=list)


class APIConfig(BaseModel):
    api_key: Optional[str] = None
    requests_per_second: float = Field(default=2.0, gt=0)
    timeout: float = Field(default=30.0, gt=0)


class PollingConfig(BaseModel):
    row_amount: int = Field(default=10, gt=0)
    loop_interval: float = Field(default=300, ge=0)
    failed_task_sleep: float = Field(default=30, ge=0)


class ReportConfig(BaseModel):
    range: int = Field(default=86400, gt=0)
    output_dir: str = "reports"


class Config(BaseModel):
    """Top-level service configuration (config/config.yml)."""
    log_level: str = Field(default="INFO", validate_default=True)
    accounts_file: str
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    collection: CollectionConfig = Field(default_factory=CollectionConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level: {v}")
        return level

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level)


def _read_yaml(path: str | Path, what: str):
    path = Path(path)
    try:
        with open(path) as f:
            return yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Failed to read {what} '{path}': {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse {what} '{path}': {e}") from e


def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> Config:
    """
    Load and validate the service configuration.

    Args:
        path: Path to the YAML config file

    Returns:
        Validated Config

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid
    """
    content = _read_yaml(path, "config file")
    if not isinstance(content, dict):
        raise ConfigurationError(f"Config file '{path}' must contain a mapping")

    try:
        return Config.model_validate(content)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config file '{path}': {e}") from e


def load_accounts(path: str | Path) -> list[Context]:
    """
    Load the accounts to monitor.

    The file is a YAML sequence of ``{stash, network, description}``
    entries. An empty file or empty list is rejected.

    Raises:
        ConfigurationError: If the file is missing, unparsable, invalid or empty
    """
    content = _read_yaml(path, "accounts file")
    if not content:
        raise ConfigurationError("no accounts were specified to monitor")
    if not isinstance(content, list):
        raise ConfigurationError(f"Accounts file '{path}' must contain a list")

    try:
        accounts = [Context.model_validate(entry) for entry in content]
    except ValidationError as e:
        raise ConfigurationError(f"Invalid accounts file '{path}': {e}") from e

    logger.debug(f"Loaded {len(accounts)} accounts from {path}")
    return accounts
