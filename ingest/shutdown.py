"""Graceful shutdown for long-running imports.

SIGINT/SIGTERM set a threading.Event that the pipeline checks between
categories and products, so a product that is half reconciled is always
finished before the run stops.
"""

import signal
import sys
import threading
from typing import Callable, List, Optional

from ingest.logging_config import get_logger

__all__ = [
    "ShutdownHandler",
    "get_shutdown_handler",
]

logger = get_logger("shutdown")


class ShutdownHandler:
    """Handles graceful shutdown on SIGINT/SIGTERM signals.

    Usage:
        handler = get_shutdown_handler().install()
        pipeline = build_pipeline(options, cancel_event=handler.event)
        handler.register_cleanup(pipeline.close)
        report = pipeline.run()
    """

    _instance: Optional["ShutdownHandler"] = None
    _lock = threading.Lock()

    def __init__(self) -> None:
        self._shutdown_requested = threading.Event()
        self._cleanup_callbacks: List[Callable[[], None]] = []
        self._original_sigint = None
        self._original_sigterm = None
        self._installed = False

    @classmethod
    def get_instance(cls) -> "ShutdownHandler":
        """Get or create the singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @property
    def event(self) -> threading.Event:
        """Cancellation token to hand to the pipeline."""
        return self._shutdown_requested

    def install(self) -> "ShutdownHandler":
        """Install signal handlers (main thread only).

        Returns:
            Self for chaining
        """
        if self._installed:
            return self

        self._original_sigint = signal.getsignal(signal.SIGINT)
        self._original_sigterm = signal.getsignal(signal.SIGTERM)

        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

        self._installed = True
        return self

    def uninstall(self) -> None:
        """Restore original signal handlers and drop cleanup callbacks."""
        if not self._installed:
            return

        if self._original_sigint is not None:
            signal.signal(signal.SIGINT, self._original_sigint)
        if self._original_sigterm is not None:
            signal.signal(signal.SIGTERM, self._original_sigterm)

        self._cleanup_callbacks.clear()
        self._installed = False

    def _handle_signal(self, signum: int, frame) -> None:
        signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
        logger.warning(
            f"Received {signal_name}, stopping after the current product "
            "(press Ctrl+C again to force quit)"
        )
        self._shutdown_requested.set()

        # Second signal forces exit
        signal.signal(signum, self._force_exit)

    def _force_exit(self, signum: int, frame) -> None:
        logger.error("Force quitting")
        self.cleanup()
        sys.exit(130)

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested.is_set()

    def request_shutdown(self) -> None:
        self._shutdown_requested.set()

    def register_cleanup(self, callback: Callable[[], None]) -> None:
        self._cleanup_callbacks.append(callback)

    def cleanup(self) -> None:
        """Run all registered cleanup callbacks."""
        for callback in self._cleanup_callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cleanup callback failed: {e}")

        self._cleanup_callbacks.clear()

    def reset(self) -> None:
        """Reset shutdown state (for testing or reuse)."""
        self._shutdown_requested.clear()


def get_shutdown_handler() -> ShutdownHandler:
    """Get the global shutdown handler instance."""
    return ShutdownHandler.get_instance()

