"""
Store Connection Retry Loop

The single authority over the store connection state.

The loop validates configuration, then drives connection attempts with
linear backoff between failures until one succeeds. Missing configuration
aborts immediately and is never retried; connectivity failures are retried
without limit unless a soft ceiling is configured.
"""

import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
)

from config import ConnectionSettings
from taskstore_ops_exceptions import FatalConfigurationError
from connection_management.backoff import LinearBackoff
from connection_management.connection_exceptions import (
    ConnectionAttemptError,
    MaxRetriesExceededError,
)
from connection_management.connection_state import (
    AttemptOutcome,
    AttemptRecord,
    ConnectionContext,
    ConnectionState,
)
from connection_management.event_bus import CONNECTED, ERROR, LifecycleEventBus
from connection_management.health_monitor import HealthMonitor
from connection_management.milvus_session import SESSION_EVENTS, attempt_connection

logger = logging.getLogger(__name__)

Connector = Callable[[ConnectionSettings], Awaitable[Any]]
SessionEventHandler = Callable[[Any, str, BaseException], None]


def describe_cause(error: Optional[BaseException]) -> str:
    """Short human readable cause for logs."""
    if error is None:
        return "unknown error"
    if isinstance(error, ConnectionAttemptError):
        return error.cause
    return str(error) or type(error).__name__


class ConnectionRetryLoop:
    """
    Establishes the store session and owns every state transition.

    On success the loop publishes CONNECTED with the new session, emits
    ``connected``, subscribes ``on_session_event`` to the session's own
    ``error``/``disconnected`` notifications and starts the health monitor.

    Args:
        settings: Frozen connection settings.
        context: Context receiving the published state and session.
        event_bus: Bus for lifecycle events.
        health_monitor: Monitor started after every successful connection.
        connector: Performs one connection attempt. Defaults to the pymilvus attempt.
        on_session_event: Receives asynchronous session failures as
            ``(session, event, cause)``.
        sleep: Awaitable used for backoff waits. Cancelling the task running
            :meth:`run` interrupts a pending wait.
    """

    def __init__(
        self,
        settings: ConnectionSettings,
        context: ConnectionContext,
        event_bus: LifecycleEventBus,
        health_monitor: Optional[HealthMonitor] = None,
        connector: Optional[Connector] = None,
        on_session_event: Optional[SessionEventHandler] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.context = context
        self.event_bus = event_bus
        self.health_monitor = health_monitor
        self.backoff = LinearBackoff.from_settings(settings)
        self._connector = connector or attempt_connection
        self._on_session_event = on_session_event
        self._sleep = sleep
        self._attempt = 0

    @property
    def attempts(self) -> int:
        """Attempts made by the current or most recent run."""
        return self._attempt

    def _check_configuration(self) -> None:
        missing = self.settings.missing_required()
        if not missing:
            return
        for name in missing:
            logger.error(f"{name} environment variable is not defined")
        self.context.publish(ConnectionState.ABORTED)
        raise FatalConfigurationError(missing)

    def _build_retrying(self) -> AsyncRetrying:
        max_attempts = self.settings.max_connect_attempts
        return AsyncRetrying(
            stop=stop_never if max_attempts is None else stop_after_attempt(max_attempts),
            wait=self.backoff,
            retry=retry_if_exception_type(Exception),
            after=self._log_failed_attempt,
            before_sleep=self._log_retry_wait,
            sleep=self._sleep,
            reraise=False,
        )

    async def _attempt_once(self) -> Any:
        self._attempt += 1
        return await self._connector(self.settings)

    def _log_failed_attempt(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        cause = describe_cause(error)
        self.context.record_attempt(
            AttemptRecord(attempt=retry_state.attempt_number, outcome=AttemptOutcome.FAILURE, cause=cause)
        )
        logger.error(f"Store connection attempt {retry_state.attempt_number} failed: {cause}")

    def _log_retry_wait(self, retry_state: RetryCallState) -> None:
        delay_ms = self.backoff.delay_ms(retry_state.attempt_number)
        logger.info(f"Store connection retrying in {delay_ms}ms")

    async def run(self) -> Any:
        """
        Connect, retrying until a session is established.

        Returns:
            The live session handle.

        Raises:
            FatalConfigurationError: Required settings are missing. No attempt is made.
            MaxRetriesExceededError: Only when ``max_connect_attempts`` is set and reached.
        """
        self._check_configuration()

        if self.context.state == ConnectionState.CONNECTED:
            return self.context.session

        first_connection = not self.context.connected_once
        self._attempt = 0
        self.context.publish(ConnectionState.CONNECTING)
        logger.info("Connecting to store...")

        try:
            session = await self._build_retrying()(self._attempt_once)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            error = MaxRetriesExceededError(e.last_attempt.attempt_number, describe_cause(last_error))
            logger.error(f"Giving up on store connection: {error}")
            self.context.publish(ConnectionState.ERRORED)
            self.event_bus.emit(ERROR, error)
            raise error from last_error
        except asyncio.CancelledError:
            logger.info("Store connection attempts cancelled")
            self.context.publish(ConnectionState.DISCONNECTED)
            raise

        self.context.record_attempt(AttemptRecord(attempt=self._attempt, outcome=AttemptOutcome.SUCCESS))
        self.context.clear_probes()
        self.context.publish(ConnectionState.CONNECTED, session)
        if first_connection:
            logger.info("Store connected successfully")
        else:
            logger.info(f"Store reconnected successfully after {self._attempt} attempt(s)")
        self.event_bus.emit(CONNECTED)

        self._watch_session(session)
        if self.health_monitor is not None:
            self.health_monitor.start()
        return session

    def _watch_session(self, session: Any) -> None:
        if self._on_session_event is None or not hasattr(session, "on"):
            return
        for event in SESSION_EVENTS:
            session.on(event, partial(self._on_session_event, session, event))

    async def retire(self, state: ConnectionState = ConnectionState.DISCONNECTED) -> None:
        """
        Stop monitoring and close the current session.

        The new state is published before the session is closed, so readers
        never get handed a session that is being torn down.
        """
        if self.health_monitor is not None:
            await self.health_monitor.stop()

        session = self.context.session
        self.context.publish(state)
        if session is None:
            return

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, session.close)
        except Exception as e:
            logger.warning(f"Error closing store session: {e}")
