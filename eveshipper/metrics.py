"""Thread-safe processing counters for the periodic statistics summary."""

import threading


class Metrics:
    """Counters for one tailing session.

    ``total`` only ever grows; every other counter covers the interval since
    the last ``snapshot_and_reset()``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._total = 0
        self._committed = 0
        self._eofs = 0
        self._commits = 0
        self._commit_failures = 0
        self._submit_failures = 0
        self._malformed = 0

    @property
    def total(self) -> int:
        with self._lock:
            return self._total

    def record_committed(self, count: int):
        with self._lock:
            self._total += count
            self._committed += count
            self._commits += 1

    def record_eof(self):
        with self._lock:
            self._eofs += 1

    def record_commit_failure(self):
        with self._lock:
            self._commit_failures += 1

    def record_submit_failure(self):
        with self._lock:
            self._submit_failures += 1

    def record_malformed(self):
        with self._lock:
            self._malformed += 1

    def snapshot_and_reset(self) -> dict:
        """Atomically read all counters and reset the interval ones."""
        with self._lock:
            snapshot = {
                "total": self._total,
                "committed": self._committed,
                "eofs": self._eofs,
                "commits": self._commits,
                "commit_failures": self._commit_failures,
                "submit_failures": self._submit_failures,
                "malformed": self._malformed,
            }

            self._committed = 0
            self._eofs = 0
            self._commits = 0
            self._commit_failures = 0
            self._submit_failures = 0
            self._malformed = 0

            return snapshot
