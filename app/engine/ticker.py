# app/engine/ticker.py

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TickScheduler:
    """
    Periodic task owned by one assessment session.

    Calls ``callback`` every ``interval`` seconds on a daemon thread until
    stopped. Ticks never overlap: the next wait starts after the callback
    returns. Safe to stop from inside the callback.
    """

    def __init__(self, callback: Callable[[], object], interval: float = 1.0, name: str = "assessment-tick"):
        self.callback = callback
        self.interval = interval
        self.name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name=self.name,
                daemon=True,
            )
            self._thread.start()

    def stop(self) -> None:
        with self._lock:
            self._stop_event.set()
            thread = self._thread

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(self.interval * 2, 1.0))

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval):
            try:
                self.callback()
            except Exception:
                # A failed tick must not kill the countdown
                logger.exception("Tick callback failed in %s", self.name)
