"""Process-wide progress events for live-status consumers.

The pipeline publishes four event kinds through a ProgressBridge:

    start     {}
    progress  {current, total, scraped, errors, skipped, categories, url, phase}
    error     {message}
    finish    {processed, created, updated, skipped, errors}

Consumers (such as the server-sent events endpoint in ``web.api``)
subscribe per event name and must unsubscribe when they go away. The
bridge knows nothing about HTTP.
"""

import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from ingest.logging_config import get_logger

__all__ = [
    "START",
    "PROGRESS",
    "ERROR",
    "FINISH",
    "EVENT_NAMES",
    "Listener",
    "ProgressBridge",
    "get_progress_bridge",
]

logger = get_logger("events")

START = "start"
PROGRESS = "progress"
ERROR = "error"
FINISH = "finish"
EVENT_NAMES = (START, PROGRESS, ERROR, FINISH)

Listener = Callable[[str, Dict[str, Any]], None]


class ProgressBridge:
    """Thread-safe publish point for pipeline lifecycle events."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: Dict[str, List[Listener]] = {name: [] for name in EVENT_NAMES}

    def subscribe(self, listener: Listener, events: Iterable[str] = EVENT_NAMES) -> None:
        with self._lock:
            for name in events:
                if name not in self._listeners:
                    raise ValueError(f"Unknown event: {name}")
                self._listeners[name].append(listener)

    def unsubscribe(self, listener: Listener, events: Iterable[str] = EVENT_NAMES) -> None:
        with self._lock:
            for name in events:
                handlers = self._listeners.get(name, [])
                if listener in handlers:
                    handlers.remove(listener)

    @contextmanager
    def subscription(self, listener: Listener, events: Iterable[str] = EVENT_NAMES) -> Iterator[None]:
        """Subscribe for the duration of a ``with`` block."""
        events = tuple(events)
        self.subscribe(listener, events)
        try:
            yield
        finally:
            self.unsubscribe(listener, events)

    def listener_count(self, event: Optional[str] = None) -> int:
        with self._lock:
            if event is not None:
                return len(self._listeners.get(event, []))
            return sum(len(handlers) for handlers in self._listeners.values())

    def emit(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """Deliver an event to every listener of that name.

        A failing listener is logged and does not affect the others or the
        publisher.
        """
        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event}")
        payload = dict(payload or {})
        with self._lock:
            handlers = list(self._listeners[event])
        for handler in handlers:
            try:
                handler(event, payload)
            except Exception:
                logger.exception(f"Progress listener failed on '{event}'")


_bridge: Optional[ProgressBridge] = None
_bridge_lock = threading.Lock()


def get_progress_bridge() -> ProgressBridge:
    """Get the process-wide bridge instance."""
    global _bridge
    if _bridge is None:
        with _bridge_lock:
            if _bridge is None:
                _bridge = ProgressBridge()
    return _bridge
