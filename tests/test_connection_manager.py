"""Tests for the connection manager facade: readiness, session access, reconnection and close."""

import asyncio

import pytest

from connection_management.connection_exceptions import (
    ConnectionClosedError,
    HealthProbeError,
    ServerUnavailableError,
    StoreNotReadyError,
)
from connection_management.connection_manager import ConnectionManager
from connection_management.connection_state import ConnectionState
from fakes import EventRecorder, FakeSession, RecordingSleep, ScriptedConnector


async def wait_for_new_session(manager, old_session, limit=200):
    for _ in range(limit):
        session = manager.context.session
        if session is not None and session is not old_session:
            return session
        await asyncio.sleep(0.01)
    raise AssertionError(f"no replacement session, state is {manager.state}")


def make_manager(store_settings, connector, sleep=None):
    manager = ConnectionManager(store_settings, connector=connector, sleep=sleep or RecordingSleep())
    return manager, EventRecorder(manager.event_bus)


@pytest.mark.asyncio
async def test_not_ready_before_connect(store_settings):
    manager, _ = make_manager(store_settings, ScriptedConnector())

    assert manager.state == ConnectionState.DISCONNECTED
    assert not manager.is_ready()
    with pytest.raises(StoreNotReadyError):
        manager.get_session()


@pytest.mark.asyncio
async def test_connect_makes_store_ready(store_settings):
    session = FakeSession()
    manager, recorder = make_manager(store_settings, ScriptedConnector(session))

    await manager.connect()

    assert manager.is_ready()
    assert manager.get_session() is session
    assert manager.health_monitor.running
    assert recorder.topics() == ["connected"]
    await manager.close()


@pytest.mark.asyncio
async def test_failed_probe_clears_readiness_without_changing_state(store_settings):
    session = FakeSession()
    manager, recorder = make_manager(store_settings, ScriptedConnector(session))
    await manager.connect()

    session.ping_error = HealthProbeError("Ping failed")
    await manager.health_monitor.probe()

    assert manager.state == ConnectionState.CONNECTED
    assert not manager.is_ready()
    assert recorder.topics() == ["connected", "error"]

    session.ping_error = None
    await manager.health_monitor.probe()
    assert manager.is_ready()
    await manager.close()


@pytest.mark.asyncio
async def test_session_disconnect_triggers_reconnect(store_settings):
    old_session, new_session = FakeSession("old"), FakeSession("new")
    connector = ScriptedConnector(old_session, ServerUnavailableError("ECONNREFUSED"), new_session)
    manager, recorder = make_manager(store_settings, connector)
    await manager.connect()

    cause = ConnectionResetError("connection lost")
    old_session.notify("disconnected", cause)

    await wait_for_new_session(manager, old_session)

    assert old_session.closed
    assert manager.get_session() is new_session
    assert connector.calls == 3
    assert recorder.events[:2] == [("connected",), ("disconnected", cause)]
    assert recorder.topics() == ["connected", "disconnected", "connected"]
    await manager.close()


@pytest.mark.asyncio
async def test_session_error_is_forwarded_and_reconnects(store_settings):
    old_session, new_session = FakeSession("old"), FakeSession("new")
    manager, recorder = make_manager(store_settings, ScriptedConnector(old_session, new_session))
    await manager.connect()

    cause = ServerUnavailableError("server unavailable")
    old_session.notify("error", cause)
    await wait_for_new_session(manager, old_session)

    assert manager.get_session() is new_session
    assert ("error", cause) in recorder.events
    assert recorder.topics()[-1] == "connected"
    await manager.close()


@pytest.mark.asyncio
async def test_duplicate_session_notifications_reconnect_once(store_settings):
    old_session = FakeSession("old")
    connector = ScriptedConnector(old_session)
    manager, _ = make_manager(store_settings, connector)
    await manager.connect()

    old_session.notify("disconnected", ConnectionResetError("lost"))
    old_session.notify("error", ConnectionResetError("lost again"))
    await wait_for_new_session(manager, old_session)
    for _ in range(10):
        await asyncio.sleep(0)

    assert connector.calls == 2
    await manager.close()


@pytest.mark.asyncio
async def test_events_from_retired_session_are_ignored(store_settings):
    old_session, new_session = FakeSession("old"), FakeSession("new")
    connector = ScriptedConnector(old_session, new_session)
    manager, recorder = make_manager(store_settings, connector)
    await manager.connect()
    old_session.notify("disconnected", ConnectionResetError("lost"))
    await wait_for_new_session(manager, old_session)
    events_before = list(recorder.events)

    old_session.notify("disconnected", ConnectionResetError("late"))
    for _ in range(10):
        await asyncio.sleep(0)

    assert recorder.events == events_before
    assert connector.calls == 2
    await manager.close()


@pytest.mark.asyncio
async def test_close_releases_session_and_emits_disconnected(store_settings):
    session = FakeSession()
    manager, recorder = make_manager(store_settings, ScriptedConnector(session))
    await manager.connect()

    await manager.close()

    assert session.closed
    assert manager.state == ConnectionState.DISCONNECTED
    assert not manager.is_ready()
    assert not manager.health_monitor.running
    assert recorder.topics() == ["connected", "disconnected"]
    with pytest.raises(ConnectionClosedError):
        manager.get_session()

    await manager.close()
    assert recorder.topics() == ["connected", "disconnected"]


@pytest.mark.asyncio
async def test_close_interrupts_pending_backoff(store_settings):
    never = asyncio.Event()
    waits = []

    async def blocking_sleep(seconds):
        waits.append(seconds)
        await never.wait()

    connector = ScriptedConnector(default=ServerUnavailableError("ECONNREFUSED"))
    manager, recorder = make_manager(store_settings, connector, sleep=blocking_sleep)
    task = manager.start()
    while not waits:
        await asyncio.sleep(0)

    await asyncio.wait_for(manager.close(), timeout=1)

    assert task.cancelled()
    assert manager.state == ConnectionState.DISCONNECTED
    assert recorder.topics() == []


@pytest.mark.asyncio
async def test_start_returns_same_task_while_connecting(store_settings):
    manager, _ = make_manager(store_settings, ScriptedConnector())

    first = manager.start()
    second = manager.start()
    assert first is second

    await first
    assert manager.is_ready()
    await manager.close()


@pytest.mark.asyncio
async def test_async_context_manager(store_settings):
    session = FakeSession()
    async with ConnectionManager(store_settings, connector=ScriptedConnector(session)) as manager:
        assert manager.is_ready()
    assert session.closed


@pytest.mark.asyncio
async def test_status_snapshot(store_settings):
    connector = ScriptedConnector(ServerUnavailableError("ECONNREFUSED"))
    manager, _ = make_manager(store_settings, connector)
    await manager.connect()
    await manager.health_monitor.probe()

    status = manager.get_status()

    assert status["state"] == "connected"
    assert status["ready"] is True
    assert status["connected_once"] is True
    assert [a["outcome"] for a in status["attempts"]] == ["failure", "success"]
    assert status["attempts"][0]["cause"] == "ECONNREFUSED"
    assert status["last_probe"]["alive"] is True
    assert status["probe_history"] == [True]
    await manager.close()
