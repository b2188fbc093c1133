"""
Shutdown signal handler for graceful controller termination.
"""
import asyncio
import signal
from typing import Optional

from dboperator.config.logging import get_logger

logger = get_logger(__name__)


class ShutdownHandler:
    """Handles graceful shutdown on SIGINT/SIGTERM signals."""

    def __init__(self):
        """Initialize shutdown handler."""
        self.shutdown_event: Optional[asyncio.Event] = None

    def setup(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Install signal handlers on the running event loop."""
        loop = loop or asyncio.get_running_loop()
        if self.shutdown_event is None:
            self.shutdown_event = asyncio.Event()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._signal_handler, sig)
        logger.info("shutdown_handler_installed")

    def _signal_handler(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        logger.info("shutdown_signal_received", signal=sig.name)
        self.request_shutdown()

    def request_shutdown(self) -> None:
        """Ask every loop waiting on this handler to stop."""
        if self.shutdown_event is None:
            self.shutdown_event = asyncio.Event()
        self.shutdown_event.set()

    def is_shutting_down(self) -> bool:
        """Check if shutdown has been requested."""
        return bool(self.shutdown_event and self.shutdown_event.is_set())

    async def wait(self) -> None:
        """Block until shutdown is requested."""
        if self.shutdown_event is None:
            self.shutdown_event = asyncio.Event()
        await self.shutdown_event.wait()

    async def wait_or_shutdown(self, delay: float) -> bool:
        """
        Wait for delay seconds or until shutdown is requested.

        Args:
            delay: Time to wait in seconds

        Returns:
            True if shutdown was requested, False if wait completed normally
        """
        if self.shutdown_event is None:
            self.shutdown_event = asyncio.Event()

        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=delay)
            return True  # Shutdown requested
        except asyncio.TimeoutError:
            return False  # Wait completed normally
