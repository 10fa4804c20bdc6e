"""
Connection Management Exceptions

This module defines specialized exceptions for store connection management.

Every failure of a single connection attempt is a ConnectionAttemptError
(or one of its subclasses) and is retried by the retry loop. Configuration
problems are not connection errors; they live in taskstore_ops_exceptions
and are never retried.
"""

from typing import Optional

from taskstore_ops_exceptions import TaskStoreOpsError


class ConnectionError(TaskStoreOpsError):
    """
    Base exception for all connection-related errors.

    Applications can catch all connection errors uniformly while still
    having access to the specific subclass.
    """
    pass


class ConnectionAttemptError(ConnectionError):
    """
    Raised when a single attempt to establish a store session fails.

    The retry loop treats every instance as transient. ``cause`` keeps the
    short reason reported by the store client (for example ``ECONNREFUSED``).
    """

    def __init__(self, cause: str, original: Optional[BaseException] = None):
        self.cause = cause
        self.original = original
        super().__init__(cause)


class ConnectionTimeoutError(ConnectionAttemptError):
    """Raised when a connection attempt exceeds the server selection timeout."""
    pass


class ConnectionAuthenticationError(ConnectionAttemptError):
    """
    Raised when the store rejects the supplied credentials.

    Still retried: credentials may be rotated while the process is waiting.
    """
    pass


class ServerUnavailableError(ConnectionAttemptError):
    """Raised when the store server refuses or cannot be reached."""
    pass


class ConnectionClosedError(ConnectionError):
    """Raised when attempting to use a closed session."""
    pass


class StoreNotReadyError(ConnectionError):
    """Raised when the session is requested before the store ever connected."""
    pass


class MaxRetriesExceededError(ConnectionError):
    """
    Raised when the configured soft ceiling on connection attempts is reached.

    Only possible when ``max_connect_attempts`` is set; by default the retry
    loop never gives up on connectivity errors.
    """

    def __init__(self, attempts: int, last_cause: Optional[str] = None):
        self.attempts = attempts
        self.last_cause = last_cause
        super().__init__(
            f"Store connection failed after {attempts} attempts"
            + (f": {last_cause}" if last_cause else "")
        )


class HealthProbeError(ConnectionError):
    """Raised when a liveness probe against the live session fails."""
    pass
