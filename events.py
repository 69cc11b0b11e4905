"""
Publish/subscribe channels used between pipeline stages.

Delivery is synchronous on the publishing thread. A failing subscriber is
logged and skipped; it never stops delivery to the others or the producer.
"""
import logging
import threading
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventChannel(Generic[T]):
    """Fan-out channel with any number of independent subscribers."""

    def __init__(self, name: str):
        self.name = name
        self._subscribers: List[Callable[[T], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register callback; returns a function that removes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: T) -> int:
        """Deliver event to every subscriber; returns how many succeeded."""
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for callback in subscribers:
            try:
                callback(event)
                delivered += 1
            except Exception as exc:
                logger.error(f"[{self.name}] Error in subscriber callback: {exc}", exc_info=True)
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()


class StateChannel(EventChannel[T]):
    """Channel that remembers the latest value and replays it to new subscribers."""

    def __init__(self, name: str, initial: Optional[T] = None):
        super().__init__(name)
        self._value = initial

    @property
    def value(self) -> Optional[T]:
        return self._value

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        unsubscribe = super().subscribe(callback)
        try:
            callback(self._value)
        except Exception as exc:
            logger.error(f"[{self.name}] Error replaying state to subscriber: {exc}", exc_info=True)
        return unsubscribe

    def publish(self, event: T) -> int:
        self._value = event
        return super().publish(event)
