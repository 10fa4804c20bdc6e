"""Shared fixtures for the connection management tests."""

import os

import pytest

from config import ConnectionSettings, HealthSettings, ShutdownSettings, StoreSettings
from connection_management.event_bus import LifecycleEventBus
from fakes import TEST_URI, EventRecorder


@pytest.fixture(autouse=True)
def clean_store_env(monkeypatch):
    """Keep developer STORE_* variables from leaking into settings under test."""
    for name in list(os.environ):
        if name.upper().startswith("STORE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def connection_settings() -> ConnectionSettings:
    return ConnectionSettings(uri=TEST_URI, min_pool_size=2, server_selection_timeout_ms=5000)


@pytest.fixture
def store_settings(connection_settings) -> StoreSettings:
    return StoreSettings(
        connection=connection_settings,
        health=HealthSettings(check_interval_seconds=3600, history_size=5),
        shutdown=ShutdownSettings(grace_period_seconds=1),
    )


@pytest.fixture
def event_bus() -> LifecycleEventBus:
    return LifecycleEventBus()


@pytest.fixture
def recorder(event_bus) -> EventRecorder:
    return EventRecorder(event_bus)
