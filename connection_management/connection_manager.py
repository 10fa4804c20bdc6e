"""
Store Connection Manager

This module provides the high-level interface the rest of the application
uses to reach the task store: a readiness query, lifecycle event
subscription and access to the live session handle.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from config import StoreSettings, load_settings
from connection_management.connection_exceptions import ConnectionClosedError, StoreNotReadyError
from connection_management.connection_state import ConnectionContext, ConnectionState
from connection_management.event_bus import DISCONNECTED, ERROR, LifecycleEventBus
from connection_management.health_monitor import HealthMonitor
from connection_management.retry_loop import ConnectionRetryLoop, Connector

# Logger setup
logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    High-level manager for the task store connection.

    The manager wires together the retry loop, the health monitor and the
    lifecycle event bus around one ConnectionContext. Collaborators never
    inspect those parts directly; they ask :meth:`is_ready`, subscribe to
    lifecycle events, and fetch the session with :meth:`get_session`.

    When the live session reports an asynchronous ``error`` or
    ``disconnected``, the manager forwards the event to subscribers, retires
    the old session and runs the retry loop again. Only one reconnection runs
    at a time.

    Example:
        >>> manager = ConnectionManager(load_settings())
        >>> manager.subscribe("connected", lambda: logger.info("store ready"))
        >>> await manager.connect()
        >>> session = manager.get_session()
        >>> await manager.close()
    """

    def __init__(
        self,
        config: Optional[StoreSettings] = None,
        connector: Optional[Connector] = None,
        event_bus: Optional[LifecycleEventBus] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the connection manager. No I/O happens here.

        Args:
            config: StoreSettings object. If None, settings are loaded from
                    the standard configuration sources.
            connector: Replacement for the single connection attempt, mainly
                       for tests and alternative store clients.
            event_bus: Shared lifecycle bus. A private one is created if None.
            sleep: Awaitable used for backoff waits between connection attempts.
        """
        self.config = config if config is not None else load_settings()
        self.context = ConnectionContext(history_size=self.config.health.history_size)
        self.event_bus = event_bus or LifecycleEventBus()
        self._health_monitor = HealthMonitor(
            self.context,
            self.event_bus,
            interval=self.config.health.check_interval_seconds,
            probe_timeout=self.config.connection.server_selection_timeout,
        )
        self._retry_loop = ConnectionRetryLoop(
            self.config.connection,
            self.context,
            self.event_bus,
            health_monitor=self._health_monitor,
            connector=connector,
            on_session_event=self._on_session_event,
            sleep=sleep,
        )
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._closing = False

        logger.info("ConnectionManager initialized")

    @property
    def state(self) -> ConnectionState:
        return self.context.state

    @property
    def health_monitor(self) -> HealthMonitor:
        return self._health_monitor

    def is_ready(self) -> bool:
        """
        Whether the store is currently reachable.

        True when a session is installed and the most recent liveness probe,
        if any ran since it was installed, succeeded. Never blocks.
        """
        if self.context.state != ConnectionState.CONNECTED:
            return False
        last_probe = self.context.last_probe
        return last_probe is None or last_probe.alive

    def subscribe(self, topic: str, handler: Callable[..., Any]) -> Callable[[], None]:
        """Subscribe to ``connected``, ``error`` or ``disconnected``."""
        return self.event_bus.subscribe(topic, handler)

    def get_session(self) -> Any:
        """
        Return the live session handle.

        Raises:
            StoreNotReadyError: The store has never been connected.
            ConnectionClosedError: The store was connected before but the
                session is currently being replaced or was closed.
        """
        if not self.context.connected_once:
            raise StoreNotReadyError("Store session requested before the first successful connection")
        session = self.context.session
        if session is None:
            raise ConnectionClosedError(
                f"Store session is not available (state: {self.context.state.value})"
            )
        return session

    async def connect(self) -> Any:
        """
        Run the retry loop until the store is connected.

        Raises:
            FatalConfigurationError: Required settings are missing.
        """
        self._loop = asyncio.get_running_loop()
        self._closing = False
        return await self._retry_loop.run()

    def start(self) -> asyncio.Task:
        """Connect in the background and return the connecting task."""
        if self._connect_task is not None and not self._connect_task.done():
            return self._connect_task
        self._loop = asyncio.get_running_loop()
        self._connect_task = self._loop.create_task(self.connect())
        self._connect_task.add_done_callback(self._log_task_result)
        return self._connect_task

    def _log_task_result(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Store connection task ended with error: {error}")

    def _on_session_event(self, session: Any, event: str, cause: BaseException) -> None:
        # Sessions may notify from executor threads.
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._handle_session_event(session, event, cause)
        else:
            loop.call_soon_threadsafe(self._handle_session_event, session, event, cause)

    def _handle_session_event(self, session: Any, event: str, cause: BaseException) -> None:
        if self._closing or session is not self.context.session:
            logger.debug(f"Ignoring '{event}' from retired session: {cause}")
            return

        if event == DISCONNECTED:
            logger.warning(f"Store disconnected: {cause}")
            self.event_bus.emit(DISCONNECTED, cause)
            next_state = ConnectionState.DISCONNECTED
        else:
            logger.error(f"Store connection error: {cause}")
            self.event_bus.emit(ERROR, cause)
            next_state = ConnectionState.ERRORED

        if self._connect_task is not None and not self._connect_task.done():
            return
        self._connect_task = self._loop.create_task(self._reconnect(next_state))
        self._connect_task.add_done_callback(self._log_task_result)

    async def _reconnect(self, state: ConnectionState) -> Any:
        await self._retry_loop.retire(state)
        return await self._retry_loop.run()

    def get_status(self) -> Dict[str, Any]:
        """
        Snapshot of the connection for diagnostics endpoints.

        Returns:
            Dict with state, readiness, recent attempts and recent probes.
        """
        last_probe = self.context.last_probe
        return {
            "state": self.context.state.value,
            "ready": self.is_ready(),
            "connected_once": self.context.connected_once,
            "attempts": [
                {"attempt": r.attempt, "outcome": r.outcome.value, "timestamp": r.timestamp, "cause": r.cause}
                for r in self.context.attempt_history()
            ],
            "last_probe": None if last_probe is None else {
                "alive": last_probe.alive,
                "timestamp": last_probe.timestamp,
                "cause": str(last_probe.cause) if last_probe.cause else None,
            },
            "probe_history": [probe.alive for probe in self.context.probe_history()],
        }

    async def close(self) -> None:
        """
        Release the store connection.

        Interrupts a pending connection attempt or backoff wait, stops the
        health monitor and closes the session. Idempotent.
        """
        self._closing = True
        task, self._connect_task = self._connect_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Connection task finished with error during close: {e}")

        if self.context.state == ConnectionState.ABORTED:
            logger.info("ConnectionManager closed (connection was never attempted)")
            return

        was_connected = self.context.state == ConnectionState.CONNECTED
        await self._retry_loop.retire(ConnectionState.DISCONNECTED)
        if was_connected:
            self.event_bus.emit(DISCONNECTED, None)
        logger.info("ConnectionManager closed")

    async def __aenter__(self) -> "ConnectionManager":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
