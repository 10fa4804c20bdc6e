"""
Store Health Monitor

Periodic liveness probing of the live store session.

The monitor only observes: a failed probe is published as an ``error``
lifecycle event and recorded for readiness, but the monitor never changes
the connection state and never reconnects. Reconnection belongs to the
retry loop.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from connection_management.connection_exceptions import HealthProbeError
from connection_management.connection_state import ConnectionContext, HealthProbeResult
from connection_management.event_bus import ERROR, LifecycleEventBus

logger = logging.getLogger(__name__)


class HealthMonitor:
    """
    Runs a liveness probe against the current session every ``interval`` seconds.

    The probe loop is a cancellable asyncio task: :meth:`start` schedules it
    and :meth:`stop` cancels it and waits until it has finished, so no timer
    outlives the session it was watching.
    """

    def __init__(
        self,
        context: ConnectionContext,
        event_bus: LifecycleEventBus,
        interval: float = 30.0,
        probe_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.context = context
        self.event_bus = event_bus
        self.interval = interval
        self.probe_timeout = probe_timeout
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Schedule the probe loop. Calling it while running returns the existing task."""
        if self.running:
            return self._task
        if self.context.session is None:
            logger.debug("Health monitor started without a live session; probes will be skipped")
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug(f"Health monitor started (interval {self.interval}s)")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Health monitor stopped")

    async def _run(self) -> None:
        while True:
            await self._sleep(self.interval)
            await self.probe()

    async def probe(self) -> Optional[HealthProbeResult]:
        """
        Issue one liveness probe.

        Returns:
            The probe result, or None when there was no session to probe.
        """
        session = self.context.session
        if session is None:
            logger.debug("No live store session, skipping health probe")
            return None

        try:
            if self.probe_timeout:
                await asyncio.wait_for(session.ping(), timeout=self.probe_timeout)
            else:
                await session.ping()
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            cause = HealthProbeError(f"Ping timed out after {self.probe_timeout}s")
            return self._record_failure(cause)
        except Exception as e:
            return self._record_failure(e)

        result = HealthProbeResult(alive=True)
        self.context.record_probe(result)
        logger.debug("Store heartbeat ok")
        return result

    def _record_failure(self, cause: BaseException) -> HealthProbeResult:
        result = HealthProbeResult(alive=False, cause=cause)
        self.context.record_probe(result)
        logger.error(f"Store health check failed: {cause}")
        self.event_bus.emit(ERROR, cause)
        return result
