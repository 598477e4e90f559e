"""Thread-safe counters for the ingestion loop."""

import threading
import time
from collections import defaultdict


class IngestStats:
    def __init__(self):
        self._lock = threading.Lock()
        self._counters: dict[str, int] = defaultdict(int)
        self._start_time = time.monotonic()

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[name] += amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> dict:
        """Return a point-in-time snapshot of all counters."""
        with self._lock:
            elapsed = time.monotonic() - self._start_time
            counters = dict(self._counters)

        received = counters.get("received", 0)
        return {
            "counters": counters,
            "elapsed_seconds": round(elapsed, 2),
            "entries_per_second": round(received / elapsed, 2) if elapsed > 0 else 0.0,
        }
