"""
Write-coalescing buffer between the P&L engine and portfolio state.

Updates are staged per position id (last write wins) and committed together
either when the debounce timer fires or on an explicit flush().
"""
import logging
import threading
from typing import Callable, Dict, List, Optional

from models import PLUpdate

logger = logging.getLogger(__name__)


class PendingWrites:
    """
    Debounced, keyed write buffer.

    Args:
        sink:          Receives the coalesced list of updates on flush. May be
                       called with an empty list when a flush was requested
                       without new writes (heartbeat commits).
        delay_seconds: Debounce window. Every schedule() restarts it.
        timer_factory: threading.Timer compatible factory; tests inject a fake.
    """

    def __init__(
        self,
        sink: Callable[[List[PLUpdate]], None],
        delay_seconds: float = 0.1,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self._sink = sink
        self._delay = delay_seconds
        self._timer_factory = timer_factory
        self._pending: Dict[str, PLUpdate] = {}
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_scheduled(self) -> bool:
        return self._timer is not None

    def stage(self, updates: List[PLUpdate]) -> None:
        with self._lock:
            for update in updates:
                self._pending[update.position_id] = update

    def schedule(self) -> None:
        """(Re)start the debounce timer."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self._timer_factory(self._delay, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> int:
        """Commit everything staged now. Returns the number of writes committed."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            writes = list(self._pending.values())
            self._pending.clear()

        self._sink(writes)
        return len(writes)

    def cancel(self) -> None:
        """Drop the timer and anything staged."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()
