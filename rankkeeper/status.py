"""
In-memory activity state shown to the user.

Holds refresh progress, whether a refresh or sync is in flight, and a
single last-error message that the most recent failure replaces.
"""

import threading

from django.utils import timezone


class ActivityStatus:
    """Thread-safe status board shared by the refresher and the sync loop."""

    def __init__(self):
        self._lock = threading.Lock()
        self._state = {
            "refreshing": False,
            "syncing": False,
            "total": 0,
            "completed": 0,
            "current_keyword": "",
            "started_at": None,
            "last_completed_at": None,
            "last_sync_at": None,
            "error": None,
            "error_at": None,
            "quota_exceeded": False,
        }

    def get(self) -> dict:
        """Return a snapshot of the current status."""
        with self._lock:
            state = dict(self._state)
        state["busy"] = state["refreshing"] or state["syncing"]
        return state

    def update(self, **kwargs):
        with self._lock:
            self._state.update(kwargs)

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._state["refreshing"] or self._state["syncing"]

    @property
    def last_error(self) -> str | None:
        with self._lock:
            return self._state["error"]

    def report_error(self, message: str):
        """Replace the last-error message."""
        self.update(error=message, error_at=timezone.now().isoformat())

    def clear_error(self):
        self.update(error=None, error_at=None)
