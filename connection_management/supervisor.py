"""
Process Supervisor

Entry point that owns the process lifecycle around the store connection:
it starts the connection manager, turns SIGTERM/SIGINT into a graceful
shutdown bounded by a grace period, and terminates the process with exit
code 1 when the store configuration is unusable.
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Callable, Optional

from config import load_settings
from taskstore_ops_exceptions import FatalConfigurationError
from connection_management.connection_manager import ConnectionManager
from utils.logging_setup import configure_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIGURATION_ERROR = 1
EXIT_FORCED_SHUTDOWN = 1

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class ProcessSupervisor:
    """
    Runs the connection manager for the lifetime of the process.

    A fatal configuration error from the retry loop is the only condition
    under which the supervisor ends the process on its own; every other
    connection failure is left to the retry loop.

    Args:
        manager: Connection manager to supervise.
        grace_period: Seconds allowed for closing the store connection on shutdown.
            Defaults to the manager's shutdown settings.
        exit_func: Called with the final exit code. Defaults to ``sys.exit``.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        grace_period: Optional[float] = None,
        exit_func: Callable[[int], None] = sys.exit,
    ):
        self.manager = manager
        self.grace_period = (
            grace_period if grace_period is not None
            else manager.config.shutdown.grace_period_seconds
        )
        self._exit = exit_func
        self._shutdown_event: Optional[asyncio.Event] = None
        self._installed_signals = []
        self.exit_reason: Optional[str] = None

    def request_shutdown(self, reason: str = "shutdown requested") -> None:
        """Ask the supervisor to shut down. Safe to call before :meth:`serve` starts waiting."""
        logger.info(f"Received {reason}, shutting down gracefully...")
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()
        self._shutdown_event.set()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
                self._installed_signals.append(sig)
            except (NotImplementedError, RuntimeError) as e:
                logger.warning(f"Cannot install handler for {sig.name}: {e}")

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        while self._installed_signals:
            loop.remove_signal_handler(self._installed_signals.pop())

    async def serve(self) -> int:
        """
        Start the store connection and wait for shutdown.

        Returns:
            int: Exit code for the process.
        """
        loop = asyncio.get_running_loop()
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()
        self._install_signal_handlers(loop)

        connect_task = self.manager.start()
        shutdown_wait = loop.create_task(self._shutdown_event.wait())
        try:
            done, _ = await asyncio.wait(
                {connect_task, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED
            )
            if connect_task in done and not connect_task.cancelled():
                error = connect_task.exception()
                if isinstance(error, FatalConfigurationError):
                    logger.critical(f"Fatal configuration error, terminating process: {error}")
                    self.exit_reason = "fatal configuration error"
                    await self.manager.close()
                    return EXIT_CONFIGURATION_ERROR
            await shutdown_wait
        finally:
            if not shutdown_wait.done():
                shutdown_wait.cancel()
            self._remove_signal_handlers(loop)

        return await self.shutdown()

    async def shutdown(self) -> int:
        """
        Close the store connection within the grace period.

        Returns:
            int: EXIT_OK, or EXIT_FORCED_SHUTDOWN when the grace period lapsed.
        """
        try:
            await asyncio.wait_for(self.manager.close(), timeout=self.grace_period)
        except asyncio.TimeoutError:
            logger.error("Could not close connections in time, forcefully shutting down")
            self.exit_reason = f"connections not closed within the {self.grace_period}s grace period"
            return EXIT_FORCED_SHUTDOWN
        logger.info("Store connection closed, shutdown complete")
        return EXIT_OK

    def terminate(self, code: int) -> None:
        if code == EXIT_OK:
            logger.info("Process exiting normally")
        else:
            reason = f": {self.exit_reason}" if self.exit_reason else ""
            logger.error(f"Process exiting with status {code}{reason}")
        self._exit(code)

    def run(self) -> None:
        """Serve until shutdown, then exit the process with the resulting code."""
        code = asyncio.run(self.serve())
        self.terminate(code)


def main(config_path: Optional[str] = None) -> None:
    """
    Process entry point.

    Loads settings (YAML file from ``STORE_CONFIG_FILE`` if present,
    otherwise environment variables), configures logging and supervises the
    store connection until SIGTERM or SIGINT.
    """
    settings = load_settings(config_path or os.environ.get("STORE_CONFIG_FILE"))
    configure_logging(settings.monitoring)
    supervisor = ProcessSupervisor(ConnectionManager(settings))
    supervisor.run()


if __name__ == "__main__":
    main()
