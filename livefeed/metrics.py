"""Counters for the live feed."""

import time


class Metrics:
    def __init__(self):
        self._start_time = time.monotonic()
        self.publications = 0
        self.parse_failures = 0
        self.reconnect_attempts = 0

    def record_publication(self, is_error: bool):
        self.publications += 1
        if is_error:
            self.parse_failures += 1

    def record_reconnect(self):
        self.reconnect_attempts += 1

    def snapshot(self) -> dict:
        """Return a point-in-time snapshot of all counters."""
        elapsed = time.monotonic() - self._start_time
        return {
            "publications": self.publications,
            "parse_failures": self.parse_failures,
            "reconnect_attempts": self.reconnect_attempts,
            "elapsed_seconds": round(elapsed, 2),
            "publications_per_second": round(self.publications / elapsed, 2) if elapsed > 0 else 0.0,
        }
