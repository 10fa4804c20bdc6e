"""
Store Connection State

This module holds the connection state machine values and the context object
that publishes the current state and session handle to the rest of the
application.

Only the retry loop writes into a ConnectionContext. Every other component
reads from it, so readers always see a single, fully published value.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, List, Optional


class ConnectionState(str, Enum):
    """
    States of the store connection.

    - DISCONNECTED: No session; initial state and the state after a session is retired
    - CONNECTING: The retry loop is attempting to establish a session
    - CONNECTED: A live session is installed
    - ERRORED: The session reported an error, or the attempt ceiling was reached
    - ABORTED: Terminal; configuration is invalid and the process must exit
    """
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERRORED = "errored"
    ABORTED = "aborted"


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class AttemptRecord:
    """One connection attempt, kept for logging and diagnostics only."""
    attempt: int
    outcome: AttemptOutcome
    timestamp: float = field(default_factory=time.time)
    cause: Optional[str] = None


@dataclass(frozen=True)
class HealthProbeResult:
    """Outcome of a single liveness probe."""
    alive: bool
    timestamp: float = field(default_factory=time.time)
    cause: Optional[BaseException] = None


class ConnectionContext:
    """
    Holds the current ConnectionState and session handle.

    One context is created per process (or per test) and injected into the
    retry loop, the health monitor and the connection manager. State and
    session are swapped under a lock so a reader never sees a session
    that does not match the published state.
    """

    def __init__(self, history_size: int = 10):
        self._lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._session: Optional[Any] = None
        self._connected_once = False
        self._probe_results: Deque[HealthProbeResult] = deque(maxlen=history_size)
        self._attempts: Deque[AttemptRecord] = deque(maxlen=history_size)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> Optional[Any]:
        return self._session

    @property
    def connected_once(self) -> bool:
        return self._connected_once

    def publish(self, state: ConnectionState, session: Optional[Any] = None) -> None:
        """
        Publish a new state together with the session that belongs to it.

        The session is only kept for CONNECTED; any other state clears it.
        """
        with self._lock:
            self._state = state
            if state == ConnectionState.CONNECTED:
                self._session = session
                self._connected_once = True
            else:
                self._session = None

    def record_attempt(self, record: AttemptRecord) -> None:
        with self._lock:
            self._attempts.append(record)

    def record_probe(self, result: HealthProbeResult) -> None:
        with self._lock:
            self._probe_results.append(result)

    def clear_probes(self) -> None:
        with self._lock:
            self._probe_results.clear()

    @property
    def last_probe(self) -> Optional[HealthProbeResult]:
        with self._lock:
            return self._probe_results[-1] if self._probe_results else None

    def probe_history(self) -> List[HealthProbeResult]:
        with self._lock:
            return list(self._probe_results)

    def attempt_history(self) -> List[AttemptRecord]:
        with self._lock:
            return list(self._attempts)
