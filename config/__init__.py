"""
Configuration Module

This module provides centralized configuration management for the store
connection manager:
- Connection configuration (endpoint, timeouts, pool size, backoff)
- Health monitoring configuration
- Graceful shutdown configuration
- Logging configuration

Settings are loaded once at process start from environment variables or a
YAML file and validated with Pydantic.
"""

from .settings import (
    StoreSettings,
    ConnectionSettings,
    HealthSettings,
    ShutdownSettings,
    MonitoringSettings,
    load_settings,
)

__all__ = [
    'StoreSettings',
    'ConnectionSettings',
    'HealthSettings',
    'ShutdownSettings',
    'MonitoringSettings',
    'load_settings',
]
