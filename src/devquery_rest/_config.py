"""Settings loaded from the environment and optional YAML config files."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings, read from ``DEVQUERY_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DEVQUERY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Connection lifecycle
    session_timeout_seconds: float = Field(default=3600, gt=0)
    sweep_interval_seconds: float = Field(default=300, gt=0)

    # Metadata cache
    cache_ttl_seconds: float = Field(default=1800, gt=0)
    cache_max_entries: int = Field(default=10_000, gt=0)

    # Adapter deadlines
    connect_timeout_ms: int = Field(default=30_000, gt=0)
    query_timeout_ms: int = Field(default=30_000, gt=0)
    schema_timeout_ms: int = Field(default=60_000, gt=0)

    # Drivers
    pool_size: int = Field(default=10, gt=0)
    odbc_driver: str = "ODBC Driver 18 for SQL Server"

    # HTTP layer
    max_connections_per_owner: int | None = Field(default=None, gt=0)
    admin_token: SecretStr | None = None

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console"] = "console"

    @property
    def connect_timeout(self) -> float:
        return self.connect_timeout_ms / 1000

    @property
    def query_timeout(self) -> float:
        return self.query_timeout_ms / 1000

    @property
    def schema_timeout(self) -> float:
        return self.schema_timeout_ms / 1000


def load_settings(path: str | Path | None = None) -> Settings:
    """Build settings from the environment, overlaid with a YAML file if given.

    Expected format:
        devquery:
          session_timeout_seconds: 1800
          connect_timeout_ms: 5000
          max_connections_per_owner: 3
    """
    if path is None:
        return Settings()

    with open(path) as f:
        config = yaml.safe_load(f)

    if not isinstance(config, dict) or "devquery" not in config:
        raise ValueError("Config file must have a top-level 'devquery' key")

    values = config["devquery"] or {}
    if not isinstance(values, dict):
        raise ValueError("'devquery' must be a mapping of setting names to values")

    return Settings(**values)
