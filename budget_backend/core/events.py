"""In-process change notifications.

Producers only see :class:`EventSink` (one ``emit`` method). The publisher is
a best-effort fan-out: subscribers are called synchronously, a subscriber that
raises is logged and skipped, and nothing is persisted or replayed.
"""

from __future__ import annotations

from threading import Lock
from typing import Any, Callable, Protocol

from .logging import get_logger

logger = get_logger(__name__)

Subscriber = Callable[[str, Any], None]


class EventSink(Protocol):
    def emit(self, event_name: str, payload: Any) -> None: ...


class EventPublisher:
    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` and return a function that removes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, event_name: str, payload: Any) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event_name, payload)
            except Exception:
                logger.warning("event.subscriber_failed", event_name=event_name, exc_info=True)

    notify = emit


class NullEventSink:
    def emit(self, event_name: str, payload: Any) -> None:
        return None


publisher = EventPublisher()
