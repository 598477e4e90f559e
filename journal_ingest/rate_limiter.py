"""Admission control using a fixed-window burst budget."""

import time


class RateLimiter:
    """Allows up to ``burst`` records per ``interval`` seconds.

    The window opens on the first call and reopens on the first call made
    ``interval`` seconds or more after it opened. ``interval == 0`` disables
    limiting. The clock is read once per call; there is no background timer.
    """

    def __init__(self, interval: float, burst: int, time_func=None):
        self._interval = interval
        self._burst = burst
        self._time_func = time_func or time.monotonic
        self._count = 0
        self._window_start: float | None = None

    @property
    def enabled(self) -> bool:
        return self._interval > 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def burst(self) -> int:
        return self._burst

    def admit(self) -> bool:
        """Return True if the record may be forwarded, False if it is dropped."""
        if not self.enabled:
            return True

        now = self._time_func()
        if self._window_start is None or now - self._window_start >= self._interval:
            self._window_start = now
            self._count = 0

        if self._count >= self._burst:
            return False
        self._count += 1
        return True
