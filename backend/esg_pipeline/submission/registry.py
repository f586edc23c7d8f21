"""
ActiveRunRegistry — single-flight guard and cancellation flags per case.

Shared by the API event loop and Celery worker threads, so every access
goes through a threading.Lock.
"""

from __future__ import annotations

import threading


class CancellationFlag:
    """Cooperative cancellation marker.  Checked by the run at step boundaries."""

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_set(self) -> bool:
        return self._event.is_set()


class ActiveRunRegistry:
    """case_id -> CancellationFlag.  Presence of an entry means a run is in flight."""

    def __init__(self) -> None:
        self._runs: dict[str, CancellationFlag] = {}
        self._lock = threading.Lock()

    def try_acquire(self, case_id: str) -> CancellationFlag | None:
        """Register a run for `case_id`.  Returns None if one is already active."""
        with self._lock:
            if case_id in self._runs:
                return None
            flag = CancellationFlag()
            self._runs[case_id] = flag
            return flag

    def release(self, case_id: str, flag: CancellationFlag | None = None) -> None:
        with self._lock:
            if flag is None or self._runs.get(case_id) is flag:
                self._runs.pop(case_id, None)

    def cancel(self, case_id: str) -> bool:
        """Set the flag for an active run.  False when nothing is running."""
        with self._lock:
            flag = self._runs.get(case_id)
        if flag is None:
            return False
        flag.cancel()
        return True

    def is_active(self, case_id: str) -> bool:
        with self._lock:
            return case_id in self._runs

    def active_case_ids(self) -> list[str]:
        with self._lock:
            return list(self._runs)


# Process-wide registry shared by the API and worker tasks
active_runs = ActiveRunRegistry()
