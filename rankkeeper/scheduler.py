"""
Background sync and auto-refresh scheduler for RankKeeper.

Runs a daemon thread that keeps the local and remote copies of the
tracked apps in step and periodically refreshes rankings.

Schedule:
  - Syncs once on startup.
  - Syncs shortly after a local change (changes are batched for a few
    seconds; changes made during a refresh are synced when it ends).
  - Polls the remote folder and syncs when another device changed it.
  - Runs a full refresh when the last one is older than the configured
    interval.
"""

import logging
import threading
import time
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from .domain import decode_datetime, encode_datetime
from .exceptions import StoreError
from .sync import SyncTrigger

logger = logging.getLogger(__name__)

LAST_REFRESH_KEY = "lastRefreshDate"
LOCAL_CHANGE_DEBOUNCE_SECONDS = 3


class SyncScheduler:
    def __init__(self, runtime, poll_seconds=None, auto_refresh_hours=None):
        self.runtime = runtime
        self.poll_seconds = poll_seconds or getattr(settings, "RANKKEEPER_SYNC_POLL_SECONDS", 60)
        self.auto_refresh_hours = (
            auto_refresh_hours if auto_refresh_hours is not None
            else getattr(settings, "RANKKEEPER_AUTO_REFRESH_HOURS", 24)
        )
        self._wake = threading.Event()
        self._sync_pending = False
        self._stop = threading.Event()
        self._remote_fingerprint = None
        runtime.collection.add_listener(self.request_sync)

    def request_sync(self, reason: str = "local_change"):
        """Collection listener: a local change wants to be synced."""
        self._wake.set()

    def stop(self):
        self._stop.set()
        self._wake.set()

    # ── Checks ────────────────────────────────────────────────────────────

    def _remember_remote(self):
        remote = self.runtime.remote_store
        if remote is None:
            return
        try:
            self._remote_fingerprint = remote.fingerprint()
        except StoreError as e:
            logger.warning(f"Could not scan remote store: {e}")

    def remote_changed(self) -> bool:
        remote = self.runtime.remote_store
        if remote is None:
            return False
        try:
            return remote.fingerprint() != self._remote_fingerprint
        except StoreError as e:
            logger.warning(f"Could not scan remote store: {e}")
            return False

    def refresh_due(self) -> bool:
        """True when auto-refresh is on, something is tracked and the last sweep is old."""
        if not self.auto_refresh_hours:
            return False
        if not any(app.keywords for app in self.runtime.collection.apps):
            return False
        try:
            raw = self.runtime.local_store.get(LAST_REFRESH_KEY)
        except StoreError as e:
            logger.warning(f"Could not read last refresh time: {e}")
            return False
        if not raw:
            return True
        last = decode_datetime(raw)
        return timezone.now() - last >= timedelta(hours=self.auto_refresh_hours)

    # ── Actions ───────────────────────────────────────────────────────────

    def sync(self, trigger: SyncTrigger):
        result = self.runtime.orchestrator.sync(trigger)
        if not result.skipped:
            self._remember_remote()
        return result

    def run_auto_refresh(self):
        report = self.runtime.refresher.run()
        if report is None:
            return None
        try:
            self.runtime.local_store.set(LAST_REFRESH_KEY, encode_datetime(timezone.now()))
        except StoreError as e:
            logger.error(f"Could not record refresh time: {e}")
        return report

    def tick(self, woke: bool):
        """
        One pass of the loop; ``woke`` means a local change was signalled.

        A local change seen while a refresh is running stays pending and
        is synced on the first pass after the refresh ends.
        """
        if woke:
            self._sync_pending = True
        if self._sync_pending and not self.runtime.refresher.running:
            self._sync_pending = False
            self.sync(SyncTrigger.LOCAL_CHANGE)
        elif self.remote_changed():
            logger.info("Remote store changed; syncing.")
            self.sync(SyncTrigger.REMOTE_CHANGE)

        if self.refresh_due():
            self.run_auto_refresh()

    # ── Loop ──────────────────────────────────────────────────────────────

    def run(self):
        """Sync once, then serve wake-ups and polls until stopped."""
        if self._stop.is_set():
            return

        try:
            self.sync(SyncTrigger.STARTUP)
        except Exception as e:
            logger.error(f"Startup sync failed: {e}")
            self.runtime.status.report_error(str(e))

        while not self._stop.is_set():
            woke = self._wake.wait(self.poll_seconds)
            if self._stop.is_set():
                break
            if woke:
                self._wake.clear()
                # Let a burst of edits settle into one sync
                self._stop.wait(LOCAL_CHANGE_DEBOUNCE_SECONDS)
                self._wake.clear()
            try:
                self.tick(woke)
            except Exception as e:
                logger.error(f"Scheduler error: {e}")
                self.runtime.status.report_error(str(e))


# ── Scheduler thread ─────────────────────────────────────────────────────

STARTUP_DELAY_SECONDS = 30


def _scheduler_loop(get_runtime, startup_delay):
    # Wait for the app to fully start before touching the database
    time.sleep(startup_delay)
    SyncScheduler(get_runtime()).run()


_scheduler_started = False
_scheduler_lock = threading.Lock()


def start_scheduler(get_runtime, startup_delay: float = STARTUP_DELAY_SECONDS):
    """Start the background scheduler thread (idempotent)."""
    global _scheduler_started
    with _scheduler_lock:
        if _scheduler_started:
            return
        _scheduler_started = True

    thread = threading.Thread(
        target=_scheduler_loop, args=(get_runtime, startup_delay),
        daemon=True, name="rankkeeper-scheduler",
    )
    thread.start()
    logger.info("Sync scheduler started.")
