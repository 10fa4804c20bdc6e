"""
Connection Management Module

This module owns the task store connection for the whole process.

Key capabilities:
- Linear, capped backoff between connection attempts
- Unbounded retry for transient connectivity failures; immediate abort on
  missing configuration
- Explicit connection state machine with a single writer
- Periodic liveness probing of the live session
- Lifecycle events (``connected``, ``error``, ``disconnected``) as the only
  outward signal besides the readiness query
- Graceful shutdown that always releases the session
"""

from .backoff import LinearBackoff, backoff_delay_ms
from .connection_state import (
    AttemptOutcome,
    AttemptRecord,
    ConnectionContext,
    ConnectionState,
    HealthProbeResult,
)
from .event_bus import CONNECTED, DISCONNECTED, ERROR, LIFECYCLE_TOPICS, LifecycleEventBus
from .milvus_session import MilvusSession, attempt_connection, classify_connection_error
from .health_monitor import HealthMonitor
from .retry_loop import ConnectionRetryLoop
from .connection_manager import ConnectionManager
from .supervisor import (
    EXIT_CONFIGURATION_ERROR,
    EXIT_FORCED_SHUTDOWN,
    EXIT_OK,
    ProcessSupervisor,
)
from .connection_exceptions import (
    ConnectionError,
    ConnectionAttemptError,
    ConnectionTimeoutError,
    ConnectionAuthenticationError,
    ServerUnavailableError,
    ConnectionClosedError,
    StoreNotReadyError,
    MaxRetriesExceededError,
    HealthProbeError,
)

__all__ = [
    'LinearBackoff',
    'backoff_delay_ms',
    'AttemptOutcome',
    'AttemptRecord',
    'ConnectionContext',
    'ConnectionState',
    'HealthProbeResult',
    'CONNECTED',
    'DISCONNECTED',
    'ERROR',
    'LIFECYCLE_TOPICS',
    'LifecycleEventBus',
    'MilvusSession',
    'attempt_connection',
    'classify_connection_error',
    'HealthMonitor',
    'ConnectionRetryLoop',
    'ConnectionManager',
    'ProcessSupervisor',
    'EXIT_OK',
    'EXIT_CONFIGURATION_ERROR',
    'EXIT_FORCED_SHUTDOWN',
    'ConnectionError',
    'ConnectionAttemptError',
    'ConnectionTimeoutError',
    'ConnectionAuthenticationError',
    'ServerUnavailableError',
    'ConnectionClosedError',
    'StoreNotReadyError',
    'MaxRetriesExceededError',
    'HealthProbeError',
]
