"""
Timer primitives for the pipeline's polling loops and debounced writes.
"""
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTimer:
    """
    Calls fn every interval seconds on a daemon thread until stopped.
    The interval can be changed while running; it applies from the next wait.
    Exceptions from fn are logged and the loop keeps going.
    """

    def __init__(self, interval: float, fn: Callable[[], None], name: str = "timer"):
        self._interval = interval
        self._fn = fn
        self._name = name
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def interval(self) -> float:
        return self._interval

    @interval.setter
    def interval(self, seconds: float) -> None:
        self._interval = seconds
        self._wake.set()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 1.0) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        while not self._stop.is_set():
            self._wake.clear()
            if self._wake.wait(self._interval):
                # Interval changed or stop requested: re-evaluate without firing
                continue
            if self._stop.is_set():
                break
            try:
                self._fn()
            except Exception as exc:
                logger.error(f"[{self._name}] tick failed: {exc}", exc_info=True)
