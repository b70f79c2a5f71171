from __future__ import annotations

import threading
import time
from typing import Callable, Optional


class RateLimiter:
    """Enforce a minimum spacing between outbound calls.

    Callers are serialized: ``wait`` holds the lock while sleeping out the
    remainder of the interval, so concurrent request threads queue up rather
    than fail.
    """

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval = max(0.0, float(min_interval))
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: Optional[float] = None

    def wait(self) -> float:
        """Block until a call is permitted; returns the seconds waited."""
        with self._lock:
            now = self._clock()
            waited = 0.0
            if self._last_call is not None:
                remaining = self.min_interval - (now - self._last_call)
                if remaining > 0:
                    self._sleep(remaining)
                    waited = remaining
                    now = max(self._clock(), self._last_call + self.min_interval)
            self._last_call = now
            return waited

    @property
    def last_call(self) -> Optional[float]:
        return self._last_call
