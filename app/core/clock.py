# app/core/clock.py

import time
from datetime import datetime, timezone


class Clock:
    """
    Wall-clock source for the session engine.

    Timers are persisted across reloads, so reads are epoch seconds rather
    than a process-local monotonic counter.
    """

    def now(self) -> float:
        return time.time()

    def utcnow(self) -> datetime:
        return datetime.fromtimestamp(self.now(), tz=timezone.utc)


system_clock = Clock()
