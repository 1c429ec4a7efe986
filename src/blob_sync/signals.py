# src/blob_sync/signals.py
"""
Graceful shutdown for long-running uploads.

SIGINT and SIGTERM are turned into an `asyncio.Event` that the upload
workers watch: the first signal stops new files from being started, a
second one exits immediately.
"""

import asyncio
import logging
import os
import signal
from types import FrameType
from typing import Any, Callable, Dict, Optional, Tuple

logger: logging.Logger = logging.getLogger(__name__)

_SignalHandler = Callable[[int, Optional[FrameType]], Any]

HANDLED_SIGNALS: Tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class GracefulShutdown:
    """
    Async context manager that exposes shutdown signals as an event.

    Previous handlers are restored on exit, so nesting inside other tools or
    test runners is safe.
    """

    def __init__(self) -> None:
        self._event: asyncio.Event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous: Dict[signal.Signals, _SignalHandler] = {}
        self.received: int = 0

    def _on_signal(self, sig: int, _: Optional[FrameType]) -> None:
        self.received += 1
        if self.received > 1:
            logger.critical("Received second shutdown signal. Exiting without cleanup.")
            os._exit(130)
        logger.warning(
            f"Received {signal.strsignal(sig)}. Finishing in-flight work, "
            "press Ctrl+C again to abort."
        )
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._event.set)

    async def __aenter__(self) -> asyncio.Event:
        """
        Installs the handlers.

        Returns:
            asyncio.Event: Set once the first signal arrives.
        """
        self._loop = asyncio.get_running_loop()
        for sig in HANDLED_SIGNALS:
            try:
                self._previous[sig] = signal.signal(sig, self._on_signal)
            except (ValueError, OSError) as e:
                # Only the main thread may install handlers
                logger.warning(f"Could not set handler for {sig.name}: {e}")
        return self._event

    async def __aexit__(self, *args: Any) -> None:
        """Restores the handlers that were active before."""
        while self._previous:
            sig, handler = self._previous.popitem()
            try:
                signal.signal(sig, handler)
            except (ValueError, OSError) as e:
                logger.warning(f"Could not restore handler for {sig.name}: {e}")
