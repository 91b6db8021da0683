"""
Shutdown coordination for the proxy process.

SIGINT/SIGTERM set one asyncio.Event that both lifecycles watch; the process
waits for both lifecycles to finish before exiting.
"""

import asyncio
import logging
import signal
from typing import Awaitable

logger = logging.getLogger("stproxy.shutdown")

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownCoordinator:
    """
    Single-fire shutdown signal shared by the HTTP and discovery lifecycles.

    Usage:
        coordinator = ShutdownCoordinator()
        coordinator.install_signal_handlers()
        await coordinator.run(server.serve(coordinator.event), discovery.run(coordinator.event))
    """

    def __init__(self) -> None:
        self.event = asyncio.Event()
        self.reason: str | None = None
        self.ignored_requests = 0
        self._installed: list[int] = []

    @property
    def is_set(self) -> bool:
        return self.event.is_set()

    @property
    def installed_signals(self) -> list[int]:
        return list(self._installed)

    def trigger(self, reason: str = "requested") -> bool:
        """
        Fire the shutdown signal.

        Returns:
            True if this call fired it, False if it had already fired
        """
        if self.event.is_set():
            self.ignored_requests += 1
            logger.info("Shutdown already in progress; ignoring %s", reason)
            return False
        self.reason = reason
        logger.info("Shutdown requested (%s)", reason)
        self.event.set()
        return True

    def _on_signal(self, signum: int) -> None:
        self.trigger(signal.Signals(signum).name)

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Route SIGINT/SIGTERM on the running loop to ``trigger``."""
        loop = loop or asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
                self._installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # Windows event loops: fall back to signal.signal
                signal.signal(sig, lambda signum, _frame: loop.call_soon_threadsafe(self._on_signal, signum))

    def remove_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in self._installed:
            loop.remove_signal_handler(sig)
        self._installed.clear()

    async def run(self, *lifecycles: Awaitable[None]) -> None:
        """
        Run the lifecycles concurrently and wait for all of them.

        If one fails, the shutdown signal fires so the others drain, and the
        first failure is re-raised once everything has finished.
        """

        async def _guard(lifecycle: Awaitable[None]) -> None:
            try:
                await lifecycle
            except Exception:
                self.trigger("lifecycle failure")
                raise

        results = await asyncio.gather(*(_guard(lc) for lc in lifecycles), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        logger.info("Server Shutdown!")
