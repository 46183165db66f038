"""Processing events and the publish/subscribe channel that carries them."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ProcessingEvent(str, Enum):
    INITIAL_START = "initial-start"
    NO_SCREENSHOTS = "no-screenshots"
    PROBLEM_EXTRACTED = "problem-extracted"
    SOLUTION_SUCCESS = "solution-success"
    INITIAL_SOLUTION_ERROR = "initial-solution-error"
    API_KEY_INVALID = "api-key-invalid"
    DEBUG_START = "debug-start"
    DEBUG_SUCCESS = "debug-success"
    DEBUG_ERROR = "debug-error"
    STATUS = "processing-status"
    CANCELED = "processing-canceled"


Listener = Callable[[ProcessingEvent, Any], None]


class EventChannel:
    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: ProcessingEvent, payload: Any = None) -> None:
        with self._lock:
            listeners = list(self._listeners)
        logger.debug("Emitting %s to %d listener(s)", event.value, len(listeners))
        for listener in listeners:
            try:
                listener(event, payload)
            except Exception:
                logger.exception("Listener failed while handling %s", event.value)


class RecordingChannel(EventChannel):
    """Keeps every emitted event in order."""

    def __init__(self) -> None:
        super().__init__()
        self.events: List[Tuple[ProcessingEvent, Any]] = []

    def emit(self, event: ProcessingEvent, payload: Any = None) -> None:
        with self._lock:
            self.events.append((event, payload))
        super().emit(event, payload)

    def names(self) -> List[str]:
        return [event.value for event, _ in self.events]

    def last(self, event: ProcessingEvent) -> Optional[Any]:
        for name, payload in reversed(self.events):
            if name is event:
                return payload
        return None
