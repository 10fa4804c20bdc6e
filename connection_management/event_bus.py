"""
Lifecycle Event Bus

Named notifications about the store connection. The connection manager
publishes ``connected``, ``error`` and ``disconnected`` here; route handlers,
background jobs and alerting subscribe without touching connection internals.
"""

import logging
import threading
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

CONNECTED = "connected"
ERROR = "error"
DISCONNECTED = "disconnected"

LIFECYCLE_TOPICS = (CONNECTED, ERROR, DISCONNECTED)

Handler = Callable[..., Any]


class LifecycleEventBus:
    """
    Synchronous publish/subscribe for connection lifecycle events.

    Handlers run in registration order on the emitting thread. A handler
    that raises is logged and skipped; the remaining handlers still run and
    the emitter never sees the exception.

    Example:
        >>> bus = LifecycleEventBus()
        >>> bus.subscribe("error", lambda cause: print(f"store error: {cause}"))
        >>> bus.emit("error", "ECONNRESET")
        store error: ECONNRESET
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: Dict[str, List[Handler]] = {topic: [] for topic in LIFECYCLE_TOPICS}

    def _check_topic(self, topic: str) -> None:
        if topic not in self._handlers:
            raise ValueError(
                f"Unknown lifecycle topic '{topic}'. Expected one of {', '.join(LIFECYCLE_TOPICS)}"
            )

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """
        Register ``handler`` for ``topic``.

        Returns:
            A callable that removes this registration.
        """
        self._check_topic(topic)
        with self._lock:
            self._handlers[topic].append(handler)

        def _unsubscribe() -> None:
            self.unsubscribe(topic, handler)

        return _unsubscribe

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        self._check_topic(topic)
        with self._lock:
            try:
                self._handlers[topic].remove(handler)
            except ValueError:
                logger.debug(f"Handler {handler!r} was not subscribed to '{topic}'")

    def emit(self, topic: str, *args: Any) -> int:
        """
        Invoke every handler registered for ``topic``.

        Returns:
            int: Number of handlers that completed without raising.
        """
        self._check_topic(topic)
        with self._lock:
            handlers = list(self._handlers[topic])

        delivered = 0
        for handler in handlers:
            try:
                handler(*args)
                delivered += 1
            except Exception:
                logger.exception(f"Lifecycle handler {handler!r} failed for '{topic}' event")
        return delivered

    def handler_count(self, topic: str) -> int:
        self._check_topic(topic)
        with self._lock:
            return len(self._handlers[topic])
