import threading
from typing import Callable, Optional

from andar_bahar.logging_utils import get_logger

logger = get_logger(__name__)


class IntervalTimer:
    """
    Fires ``callback`` every ``interval_s`` seconds on a daemon thread.

    The next wait only starts after the callback returns, so two firings
    never overlap. Pausing, resuming and interval changes wake the thread,
    which then restarts its wait with the current settings.
    """

    def __init__(self, callback: Callable[[], None], interval_s: float, name: str = "interval-timer") -> None:
        self._callback = callback
        self._interval_s = interval_s
        self._name = name
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._running = False
        self._cancelled = False
        self._thread: Optional[threading.Thread] = None

    @property
    def interval_s(self) -> float:
        return self._interval_s

    def is_running(self) -> bool:
        with self._lock:
            return self._running and not self._cancelled

    def start(self) -> None:
        with self._lock:
            if self._cancelled:
                raise RuntimeError("Timer was cancelled")
            self._running = True
            if self._thread is None:
                self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
                self._thread.start()
        self._wake.set()

    def resume(self) -> None:
        self.start()

    def pause(self) -> None:
        with self._lock:
            self._running = False
        self._wake.set()

    def set_interval(self, interval_s: float) -> None:
        with self._lock:
            self._interval_s = interval_s
        self._wake.set()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            self._running = False
            thread = self._thread
        self._wake.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)

    def _loop(self) -> None:
        while True:
            with self._lock:
                if self._cancelled:
                    return
                running = self._running
                interval = self._interval_s
            if not running:
                self._wake.wait()
                self._wake.clear()
                continue
            if self._wake.wait(interval):
                # Settings changed; start over with the new ones
                self._wake.clear()
                continue
            with self._lock:
                if not self._running or self._cancelled:
                    continue
            try:
                self._callback()
            except Exception:
                logger.exception("Timer callback failed")
