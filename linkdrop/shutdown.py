"""Turn platform termination signals into a single shutdown request."""

from __future__ import annotations

import logging
import signal
import sys
import threading
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

ShutdownCallback = Callable[[int], None]


def platform_signals() -> List[signal.Signals]:
    """Signals that ask the process to stop on this platform."""
    if sys.platform == "win32":
        names = ("SIGINT", "SIGBREAK")
    else:
        names = ("SIGINT", "SIGTERM", "SIGHUP")
    return [getattr(signal, name) for name in names if hasattr(signal, name)]


class ShutdownCoordinator:
    """Collects shutdown requests from any source and notifies subscribers.

    Subscribers are called with the number of requests received so far, so a
    second request can escalate to an immediate exit.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        # Re-entrant: a second signal can interrupt the first handler on the
        # main thread while it holds the lock.
        self._lock = threading.RLock()
        self._callbacks: List[ShutdownCallback] = []
        self._count = 0
        self._previous: Dict[int, Any] = {}

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def subscribe(self, callback: ShutdownCallback) -> None:
        self._callbacks.append(callback)

    def request_shutdown(self, reason: str) -> None:
        with self._lock:
            self._count += 1
            count = self._count

        if count == 1:
            logger.info("Shutdown requested (%s); finishing in-flight requests", reason)
        else:
            logger.warning("Shutdown requested again (%s); exiting now", reason)

        self._event.set()
        for callback in list(self._callbacks):
            callback(count)

    def install(self) -> None:
        """Route this platform's termination signals to ``request_shutdown``."""
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in the main thread; signal handlers not installed")
            return
        for sig in platform_signals():
            self._previous[sig] = signal.signal(sig, self._handle_signal)
        logger.debug("Installed handlers for %s", ", ".join(s.name for s in self._previous))

    def restore(self) -> None:
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()

    def _handle_signal(self, signum: int, frame: Any) -> None:
        self.request_shutdown(signal.Signals(signum).name)
