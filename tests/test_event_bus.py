"""Tests for the lifecycle event bus."""

import logging

import pytest

from connection_management.event_bus import CONNECTED, DISCONNECTED, ERROR, LifecycleEventBus


def test_all_handlers_run_once_in_registration_order_despite_failure(caplog):
    bus = LifecycleEventBus()
    calls = []

    def failing():
        calls.append("failing")
        raise RuntimeError("handler exploded")

    bus.subscribe(CONNECTED, lambda: calls.append("first"))
    bus.subscribe(CONNECTED, failing)
    bus.subscribe(CONNECTED, lambda: calls.append("third"))
    bus.subscribe(CONNECTED, lambda: calls.append("fourth"))

    with caplog.at_level(logging.ERROR):
        delivered = bus.emit(CONNECTED)

    assert calls == ["first", "failing", "third", "fourth"]
    assert delivered == 3
    assert "failed for 'connected' event" in caplog.text


def test_emit_passes_cause_to_handlers():
    bus = LifecycleEventBus()
    received = []
    cause = ConnectionResetError("ECONNRESET")
    bus.subscribe(ERROR, received.append)

    bus.emit(ERROR, cause)

    assert received == [cause]


def test_topics_are_independent():
    bus = LifecycleEventBus()
    received = []
    bus.subscribe(DISCONNECTED, received.append)

    bus.emit(ERROR, "boom")
    bus.emit(CONNECTED)

    assert received == []


def test_unsubscribe_stops_delivery():
    bus = LifecycleEventBus()
    received = []
    unsubscribe = bus.subscribe(ERROR, received.append)

    bus.emit(ERROR, "first")
    unsubscribe()
    bus.emit(ERROR, "second")

    assert received == ["first"]
    assert bus.handler_count(ERROR) == 0


def test_unsubscribing_twice_is_harmless():
    bus = LifecycleEventBus()
    handler = lambda cause: None  # noqa: E731
    bus.subscribe(ERROR, handler)
    bus.unsubscribe(ERROR, handler)
    bus.unsubscribe(ERROR, handler)
    assert bus.handler_count(ERROR) == 0


def test_unknown_topic_is_rejected():
    bus = LifecycleEventBus()
    with pytest.raises(ValueError, match="Unknown lifecycle topic"):
        bus.subscribe("reconnected", lambda: None)
    with pytest.raises(ValueError):
        bus.emit("open")


def test_emit_without_subscribers():
    assert LifecycleEventBus().emit(CONNECTED) == 0
