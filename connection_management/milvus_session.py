"""
Milvus Store Session

This module provides the session handle for the task store and the single
connection attempt used by the retry loop.

A MilvusSession owns ``min_pool_size`` pymilvus connection aliases, all
opened during the attempt so the first queries never pay connection setup.
The session has its own small notification channel (``error`` and
``disconnected``) through which it reports failures discovered after the
attempt succeeded; the connection manager listens there and hands the
failure back to the retry loop.
"""

import asyncio
import itertools
import logging
import threading
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from pymilvus import connections, utility

from config import ConnectionSettings
from connection_management.connection_exceptions import (
    ConnectionAttemptError,
    ConnectionAuthenticationError,
    ConnectionClosedError,
    ConnectionTimeoutError,
    HealthProbeError,
    ServerUnavailableError,
)

logger = logging.getLogger(__name__)

SESSION_EVENTS = ("error", "disconnected")

_session_ids = itertools.count(1)

_UNAVAILABLE_PATTERNS = (
    "econnrefused",
    "connection refused",
    "cannot connect to server",
    "server unavailable",
    "name or service not known",
    "failed to resolve",
    "enotfound",
    "unreachable",
)
_TIMEOUT_PATTERNS = ("timeout", "timed out", "deadline exceeded")
_AUTH_PATTERNS = ("auth", "permission denied", "unauthenticated", "credential")


def classify_connection_error(error: BaseException) -> ConnectionAttemptError:
    """
    Map a store client exception to a typed connection attempt cause.

    pymilvus does not expose granular exception types for every network
    condition, so the message is inspected. Anything unrecognised becomes a
    plain ConnectionAttemptError; every result is retryable.
    """
    if isinstance(error, ConnectionAttemptError):
        return error

    message = str(error) or type(error).__name__
    lowered = message.lower()

    if any(pattern in lowered for pattern in _AUTH_PATTERNS):
        return ConnectionAuthenticationError(message, error)
    if any(pattern in lowered for pattern in _TIMEOUT_PATTERNS):
        return ConnectionTimeoutError(message, error)
    if any(pattern in lowered for pattern in _UNAVAILABLE_PATTERNS):
        return ServerUnavailableError(message, error)
    return ConnectionAttemptError(message, error)


class MilvusSession:
    """
    Live connection to the task store.

    The retry loop owns the session and is the only component that closes
    it; the health monitor only calls :meth:`ping`. Application code issues
    queries through :meth:`execute`, which passes a connection alias to the
    supplied callable.
    """

    def __init__(self, settings: ConnectionSettings, name: Optional[str] = None):
        self.settings = settings
        self.name = name or f"taskstore-{next(_session_ids)}"
        self._aliases: List[str] = []
        self._alias_cycle = None
        self._closed = False
        self._lost = False
        self._lock = threading.RLock()
        self._listeners: Dict[str, List[Callable[[BaseException], Any]]] = {
            event: [] for event in SESSION_EVENTS
        }

    @property
    def aliases(self) -> List[str]:
        return list(self._aliases)

    @property
    def primary_alias(self) -> str:
        if not self._aliases:
            raise ConnectionClosedError(f"Session {self.name} has no open connections")
        return self._aliases[0]

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, event: str, listener: Callable[[BaseException], Any]) -> None:
        """Register a listener on the session's own notification channel."""
        if event not in self._listeners:
            raise ValueError(f"Unknown session event '{event}'")
        self._listeners[event].append(listener)

    def _notify(self, event: str, cause: BaseException) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener(cause)
            except Exception:
                logger.exception(f"Session {self.name} listener failed for '{event}'")

    def open(self) -> "MilvusSession":
        """
        Open ``min_pool_size`` connections. Blocking.

        Raises:
            ConnectionAttemptError: If any connection fails; connections
                opened before the failure are released first.
        """
        opened = []
        try:
            for index in range(self.settings.min_pool_size):
                alias = f"{self.name}-{index}"
                connections.connect(
                    alias=alias,
                    uri=self.settings.uri,
                    user=self.settings.user,
                    password=self.settings.password,
                    secure=self.settings.secure,
                    timeout=self.settings.server_selection_timeout,
                )
                opened.append(alias)
                logger.debug(f"Opened store connection {alias}")
        except Exception as e:
            for alias in opened:
                self._disconnect_alias(alias)
            raise classify_connection_error(e) from e

        with self._lock:
            self._aliases = opened
            self._alias_cycle = itertools.cycle(opened)
        return self

    def _is_alias_healthy(self, alias: str) -> bool:
        try:
            return connections.has_connection(alias)
        except Exception:
            return False

    def _disconnect_alias(self, alias: str) -> None:
        try:
            connections.disconnect(alias)
        except Exception as e:
            logger.warning(f"Error closing store connection {alias}: {e}")

    def ping_sync(self) -> Any:
        """
        Administrative round trip against the store. Blocking.

        A connection that vanished from the client registry means the session
        is gone for good: ``disconnected`` is notified once and
        ConnectionClosedError raised. A server that is unreachable or does
        not answer in time is reported on the ``error`` channel. Every probe
        failure raises HealthProbeError.
        """
        if self._closed:
            raise ConnectionClosedError(f"Session {self.name} is closed")

        lost = [alias for alias in self._aliases if not self._is_alias_healthy(alias)]
        if lost:
            error = ConnectionClosedError(f"Store connection lost: {', '.join(lost)}")
            self._mark_lost(error)
            raise error

        try:
            return utility.get_server_version(
                using=self.primary_alias,
                timeout=self.settings.server_selection_timeout,
            )
        except Exception as e:
            classified = classify_connection_error(e)
            if isinstance(classified, (ServerUnavailableError, ConnectionTimeoutError)):
                self._notify("error", classified)
            raise HealthProbeError(f"Ping failed: {e}") from e

    async def ping(self) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.ping_sync)

    def _mark_lost(self, cause: BaseException) -> None:
        with self._lock:
            if self._lost:
                return
            self._lost = True
        logger.warning(f"Session {self.name} lost its store connection: {cause}")
        self._notify("disconnected", cause)

    def execute(self, operation: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Run ``operation(alias, *args, **kwargs)`` on one of the pooled connections.

        Failures that show the server is unavailable are reported on the
        ``error`` channel before being re-raised.

        Example:
            >>> session.execute(lambda alias: utility.list_collections(using=alias))
        """
        if self._closed or self._alias_cycle is None:
            raise ConnectionClosedError(f"Session {self.name} is not open")
        with self._lock:
            alias = next(self._alias_cycle)
        try:
            return operation(alias, *args, **kwargs)
        except Exception as e:
            classified = classify_connection_error(e)
            if isinstance(classified, ServerUnavailableError):
                self._notify("error", classified)
            raise

    def close(self) -> None:
        """Disconnect every pooled connection. Idempotent; notifies nobody."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            aliases, self._aliases = self._aliases, []
            self._alias_cycle = None
        for alias in aliases:
            self._disconnect_alias(alias)
        logger.info(f"Store session {self.name} closed")

    def __repr__(self) -> str:
        return f"MilvusSession(name='{self.name}', connections={len(self._aliases)}, closed={self._closed})"


async def attempt_connection(settings: ConnectionSettings) -> MilvusSession:
    """
    Perform one connection attempt against the configured endpoint.

    The blocking pymilvus calls run in the default executor so the event
    loop keeps serving other tasks while the attempt waits on the network.

    Raises:
        ConnectionAttemptError: Typed cause of the failure.
    """
    session = MilvusSession(settings)
    loop = asyncio.get_running_loop()
    opening = loop.run_in_executor(None, session.open)
    try:
        return await asyncio.shield(opening)
    except asyncio.CancelledError:
        # open() keeps running in its worker thread; release what it opens.
        opening.add_done_callback(partial(_release_abandoned, session))
        raise


def _release_abandoned(session: MilvusSession, opening: asyncio.Future) -> None:
    if opening.cancelled() or opening.exception() is not None:
        return
    logger.info(f"Releasing store session {session.name} opened by a cancelled attempt")
    session.close()
