"""
Pydantic Settings for Task Store Operations

This module provides strongly-typed configuration settings using Pydantic,
with support for environment variables and YAML configuration files.
"""

from typing import List, Optional, Union
from pathlib import Path
import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConnectionSettings(BaseSettings):
    """
    Connection settings for establishing and maintaining the store connection.

    These settings control how the process connects to its persistent store:
    - Endpoint location and authentication
    - Server selection timeout applied to every connection attempt
    - Minimum number of pooled sessions opened per connection
    - Backoff behaviour between failed connection attempts

    The settings are frozen once loaded; a running process never changes
    where or how it connects.
    """
    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )

    uri: Optional[str] = Field(None,
                               description="Endpoint URI of the store (required before connecting)")
    user: str = Field("",
                      description="Username for authentication (if enabled on server)")
    password: str = Field("",
                          description="Password for authentication (if enabled on server)")
    secure: bool = Field(False,
                         description="Whether to use TLS/SSL for secure connection")
    server_selection_timeout_ms: int = Field(5000, ge=1,
                                             description="How long a single attempt may wait for the server, in milliseconds")
    min_pool_size: int = Field(2, ge=1,
                               description="Minimum number of sessions opened for each connection")
    retry_base_delay_ms: int = Field(1000, ge=0,
                                     description="Delay after the first failed attempt; later delays grow linearly")
    retry_max_delay_ms: int = Field(30000, ge=0,
                                    description="Upper bound for the delay between connection attempts")
    max_connect_attempts: Optional[int] = Field(None, ge=1,
                                                description="Soft ceiling on connection attempts (None = retry forever)")

    def missing_required(self) -> List[str]:
        """Return the environment variable names of required settings that are unset."""
        missing = []
        if self.uri is None or not self.uri.strip():
            missing.append("STORE_URI")
        return missing

    @property
    def server_selection_timeout(self) -> float:
        """Server selection timeout in seconds."""
        return self.server_selection_timeout_ms / 1000.0


class HealthSettings(BaseSettings):
    """
    Health monitoring settings for the live store session.

    The health monitor pings the store on a fixed period and keeps a short
    trailing window of probe results for diagnostics.
    """
    model_config = SettingsConfigDict(
        env_prefix="STORE_HEALTH_",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )

    check_interval_seconds: float = Field(30.0, gt=0,
                                          description="Seconds between two liveness probes")
    history_size: int = Field(10, ge=1,
                              description="Number of probe results retained for diagnostics")


class ShutdownSettings(BaseSettings):
    """Settings for the graceful shutdown sequence."""
    model_config = SettingsConfigDict(
        env_prefix="STORE_SHUTDOWN_",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )

    grace_period_seconds: float = Field(10.0, gt=0,
                                        description="Time allowed for closing connections before forcing exit")


class MonitoringSettings(BaseSettings):
    """
    Logging settings for the connection manager.

    Controls logging verbosity and the record format used when the
    supervisor configures logging for the process.
    """
    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field("INFO",
                           description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")
    log_format: str = Field("%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                            description="Format string for log records")


class StoreSettings(BaseSettings):
    """
    Main settings class that consolidates all configuration categories.

    Usage:
        # Load from environment variables and defaults
        settings = StoreSettings()

        # Load from YAML file
        settings = StoreSettings.from_yaml('config.yaml')

        # Access nested settings
        uri = settings.connection.uri
        interval = settings.health.check_interval_seconds
    """
    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    connection: ConnectionSettings = Field(default_factory=ConnectionSettings,
                                           description="Connection settings for the store")
    health: HealthSettings = Field(default_factory=HealthSettings,
                                   description="Liveness probe settings")
    shutdown: ShutdownSettings = Field(default_factory=ShutdownSettings,
                                       description="Graceful shutdown settings")
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings,
                                           description="Logging settings")

    @classmethod
    def from_yaml(cls, yaml_file: Union[str, Path]) -> "StoreSettings":
        """Load settings from YAML file"""
        import yaml
        with open(yaml_file, 'r') as f:
            data = yaml.safe_load(f) or {}
        return cls(
            connection=ConnectionSettings(**data.get("connection", {})),
            health=HealthSettings(**data.get("health", {})),
            shutdown=ShutdownSettings(**data.get("shutdown", {})),
            monitoring=MonitoringSettings(**data.get("monitoring", {})),
        )


def load_settings(config_path: Optional[str] = None) -> StoreSettings:
    """
    Load settings from file and/or environment variables.

    - If config_path is provided and exists, loads settings from the YAML file
    - Otherwise, creates a new settings instance with values from environment variables

    Sections missing from the YAML file still pick up environment variables
    and defaults.

    Args:
        config_path: Path to YAML configuration file. If None or file doesn't exist,
                    falls back to environment variables and default values.

    Returns:
        StoreSettings object with loaded configuration

    Example:
        settings = load_settings("/path/to/config.yaml")
        settings = load_settings()
    """
    if config_path and os.path.exists(config_path):
        return StoreSettings.from_yaml(config_path)
    return StoreSettings()
