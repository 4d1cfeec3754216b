"""Periodic flush task owned by the durable store."""
import logging
import threading
from typing import Callable, Optional

from notepocket.exceptions import WriteFailedError

logger = logging.getLogger(__name__)


class AutosaveTask:
    """Calls ``flush`` every ``interval`` seconds on a daemon thread.

    ``cancel()`` sets the stop event and waits for the thread; the owner is
    responsible for the final flush after cancelling. A failed flush is
    logged and retried on the next tick.
    """

    def __init__(
        self,
        interval: float,
        flush: Callable[[], None],
        name: str = "notepocket-autosave",
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.interval = interval
        self._flush = flush
        self._name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        logger.debug(f"Autosave started (every {self.interval}s)")

    def cancel(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the task. Safe to call more than once."""
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self._flush()
            except WriteFailedError as e:
                self.failures += 1
                logger.error(f"Autosave failed, will retry: {e}")
